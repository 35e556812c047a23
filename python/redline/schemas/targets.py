"""Annotation target and style schemas.

A Target is a tagged union discriminated on ``kind``, one variant per
(surface, shape) combination:

- image_point:  normalized {x, y} with zero width/height
- image_region: normalized {x, y, w, h} box
- web_point:    one AnchoredPoint
- web_region:   {start, end} AnchoredPoints defining opposite corners

Image coordinates are fractions of the design surface. Website anchors are
re-resolved from locator + relative_position; absolute_position and
element_rect are capture-time diagnostics only.
"""

from datetime import datetime
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

from redline.db.models import AnnotationType, FileType

# Tolerance for float drift when checking x + w <= 1
_BOX_EPSILON = 1e-9

Unit = Annotated[float, Field(ge=0.0, le=1.0)]


class Point(BaseModel):
    x: float
    y: float


class NormalizedPoint(BaseModel):
    x: Unit
    y: Unit


class ElementRect(BaseModel):
    """Element bounding box in document pixels at capture time."""

    width: float = Field(..., ge=0)
    height: float = Field(..., ge=0)
    top: float
    left: float


class AnchoredPoint(BaseModel):
    """A point anchored to a DOM element by structural locator."""

    locator: str = Field(..., min_length=1, max_length=2048)
    tag_name: str = Field(..., min_length=1, max_length=64)
    relative_position: NormalizedPoint
    absolute_position: Point
    element_rect: ElementRect
    captured_at: datetime


class ImagePointTarget(BaseModel):
    kind: Literal["image_point"] = "image_point"
    x: Unit
    y: Unit
    w: float = Field(0.0, ge=0.0, le=0.0)
    h: float = Field(0.0, ge=0.0, le=0.0)


class ImageRegionTarget(BaseModel):
    kind: Literal["image_region"] = "image_region"
    x: Unit
    y: Unit
    w: Annotated[float, Field(gt=0.0, le=1.0)]
    h: Annotated[float, Field(gt=0.0, le=1.0)]

    @model_validator(mode="after")
    def box_inside_surface(self) -> "ImageRegionTarget":
        if self.x + self.w > 1.0 + _BOX_EPSILON or self.y + self.h > 1.0 + _BOX_EPSILON:
            raise ValueError("region extends past the image bounds")
        return self


class WebPointTarget(BaseModel):
    kind: Literal["web_point"] = "web_point"
    point: AnchoredPoint


class WebRegionTarget(BaseModel):
    kind: Literal["web_region"] = "web_region"
    start: AnchoredPoint
    end: AnchoredPoint


Target = Annotated[
    ImagePointTarget | ImageRegionTarget | WebPointTarget | WebRegionTarget,
    Field(discriminator="kind"),
]

TARGET_ADAPTER: TypeAdapter[Target] = TypeAdapter(Target)

# The one target kind valid for each (surface, annotation type) pair
TARGET_KIND_FOR: dict[tuple[FileType, AnnotationType], str] = {
    (FileType.IMAGE, AnnotationType.POINT): "image_point",
    (FileType.IMAGE, AnnotationType.REGION): "image_region",
    (FileType.WEBSITE, AnnotationType.POINT): "web_point",
    (FileType.WEBSITE, AnnotationType.REGION): "web_region",
}


class AnnotationStyle(BaseModel):
    """Optional rendering style for an annotation marker."""

    color: str | None = Field(None, pattern=r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6}|[0-9a-fA-F]{8})$")
    opacity: float | None = Field(None, ge=0.0, le=1.0)
    stroke_width: float | None = Field(None, gt=0.0, le=32.0)

    model_config = ConfigDict(extra="forbid")
