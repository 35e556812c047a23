"""Turn a pointer interaction into a persisted annotation target.

resolve() is pure: it takes what the viewer captured (screen points for image
surfaces, hit elements for website surfaces) and returns one Target variant,
or None when the interaction is rejected. A None result means no pending
annotation is created and no request is sent.

Rejections:
- regions smaller than MIN_REGION_FRACTION of the design surface on either axis
- website interactions whose element cannot be given a locator
"""

from dataclasses import dataclass
from datetime import datetime, timezone

from redline.anchoring.coordinates import (
    CoordinateMapper,
    Rect,
    ScreenPoint,
    anchor_to_design_point,
    bounding_rect,
)
from redline.anchoring.locators import generate_locator
from redline.db.models import AnnotationType, FileType
from redline.logging import get_logger
from redline.schemas.targets import (
    AnchoredPoint,
    ElementRect,
    ImagePointTarget,
    ImageRegionTarget,
    NormalizedPoint,
    Point,
    Target,
    WebPointTarget,
    WebRegionTarget,
)

logger = get_logger(__name__)

MIN_REGION_FRACTION = 0.01


@dataclass(frozen=True)
class ImageInteraction:
    """Pointer press (and release, for drags) over an image surface, in screen pixels."""

    start: ScreenPoint
    end: ScreenPoint | None = None


@dataclass(frozen=True)
class ElementHit:
    """An element under the pointer on a website surface.

    element_rect is the element's document-space box at capture time; pointer
    is in screen pixels and is mapped to document space through the mapper.
    """

    element: object
    element_rect: ElementRect
    pointer: ScreenPoint


@dataclass(frozen=True)
class WebInteraction:
    start: ElementHit
    end: ElementHit | None = None


def resolve(
    surface_type: FileType | str,
    annotation_type: AnnotationType | str,
    interaction: ImageInteraction | WebInteraction,
    mapper: CoordinateMapper,
    now: datetime | None = None,
) -> Target | None:
    surface_type = FileType(surface_type)
    annotation_type = AnnotationType(annotation_type)

    if surface_type == FileType.IMAGE:
        if not isinstance(interaction, ImageInteraction):
            raise TypeError("image surfaces take an ImageInteraction")
        if annotation_type == AnnotationType.POINT:
            return _image_point(interaction, mapper)
        return _image_region(interaction, mapper)

    if not isinstance(interaction, WebInteraction):
        raise TypeError("website surfaces take a WebInteraction")
    captured_at = now or datetime.now(timezone.utc)
    if annotation_type == AnnotationType.POINT:
        return _web_point(interaction, mapper, captured_at)
    return _web_region(interaction, mapper, captured_at)


# =============================================================================
# Image surfaces
# =============================================================================


def _image_point(interaction: ImageInteraction, mapper: CoordinateMapper) -> ImagePointTarget:
    point = mapper.to_normalized(interaction.start)
    return ImagePointTarget(x=point.x, y=point.y)


def _image_region(
    interaction: ImageInteraction, mapper: CoordinateMapper
) -> ImageRegionTarget | None:
    if interaction.end is None:
        return None

    box = bounding_rect(
        mapper.to_normalized(interaction.start),
        mapper.to_normalized(interaction.end),
    )
    if not _large_enough(box.width, box.height):
        logger.debug("region_rejected_too_small", w=box.width, h=box.height)
        return None
    return ImageRegionTarget(x=box.x, y=box.y, w=box.width, h=box.height)


def _large_enough(width_fraction: float, height_fraction: float) -> bool:
    return width_fraction >= MIN_REGION_FRACTION and height_fraction >= MIN_REGION_FRACTION


# =============================================================================
# Website surfaces
# =============================================================================


def build_anchor(
    hit: ElementHit, mapper: CoordinateMapper, captured_at: datetime
) -> AnchoredPoint | None:
    """Anchor a pointer position to the element under it."""
    locator = generate_locator(hit.element)
    if locator is None:
        return None

    rect = hit.element_rect
    pointer = mapper.screen_to_design(hit.pointer)
    offset_x = pointer.x - rect.left
    offset_y = pointer.y - rect.top

    return AnchoredPoint(
        locator=locator,
        tag_name=hit.element.tag.lower(),
        relative_position=NormalizedPoint(
            x=_relative(offset_x, rect.width),
            y=_relative(offset_y, rect.height),
        ),
        absolute_position=Point(x=offset_x, y=offset_y),
        element_rect=rect,
        captured_at=captured_at,
    )


def _relative(offset: float, extent: float) -> float:
    if extent <= 0:
        return 0.0
    return min(1.0, max(0.0, offset / extent))


def _web_point(
    interaction: WebInteraction, mapper: CoordinateMapper, captured_at: datetime
) -> WebPointTarget | None:
    anchor = build_anchor(interaction.start, mapper, captured_at)
    if anchor is None:
        logger.debug("web_point_rejected_no_locator")
        return None
    return WebPointTarget(point=anchor)


def _web_region(
    interaction: WebInteraction, mapper: CoordinateMapper, captured_at: datetime
) -> WebRegionTarget | None:
    if interaction.end is None:
        return None

    start = build_anchor(interaction.start, mapper, captured_at)
    end = build_anchor(interaction.end, mapper, captured_at)
    if start is None or end is None:
        logger.debug("web_region_rejected_no_locator")
        return None

    box = bounding_rect(
        anchor_to_design_point(start, interaction.start.element_rect),
        anchor_to_design_point(end, interaction.end.element_rect),
    )
    design = mapper.design_size
    if not _large_enough(box.width / design.width, box.height / design.height):
        logger.debug("region_rejected_too_small", width=box.width, height=box.height)
        return None
    return WebRegionTarget(start=start, end=end)


def anchor_to_screen_point(
    anchor: AnchoredPoint, element_rect_now: ElementRect, mapper: CoordinateMapper
) -> ScreenPoint:
    """Where an anchor renders now, container-relative.

    Uses only the element's current rect and the stored relative position.
    """
    rect: Rect = mapper.to_screen_rect(anchor, element_rect=element_rect_now)
    return ScreenPoint(rect.x, rect.y)
