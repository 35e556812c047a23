"""Pydantic schemas for request/response models.

All schemas are re-exported here for convenient imports.
"""

from redline.schemas.annotations import (
    AnnotationOut,
    CommentImagesAttached,
    CreateAnnotationWithCommentOut,
    CreateAnnotationWithCommentRequest,
    EntityDeleted,
)
from redline.schemas.comments import (
    CommentOut,
    CreateCommentRequest,
    UpdateCommentRequest,
    UserOut,
)
from redline.schemas.targets import (
    TARGET_ADAPTER,
    AnchoredPoint,
    AnnotationStyle,
    ElementRect,
    ImagePointTarget,
    ImageRegionTarget,
    NormalizedPoint,
    Point,
    Target,
    WebPointTarget,
    WebRegionTarget,
)

__all__ = [
    "AnchoredPoint",
    "AnnotationOut",
    "AnnotationStyle",
    "CommentImagesAttached",
    "CommentOut",
    "CreateAnnotationWithCommentOut",
    "CreateAnnotationWithCommentRequest",
    "CreateCommentRequest",
    "ElementRect",
    "EntityDeleted",
    "ImagePointTarget",
    "ImageRegionTarget",
    "NormalizedPoint",
    "Point",
    "TARGET_ADAPTER",
    "Target",
    "UpdateCommentRequest",
    "UserOut",
    "WebPointTarget",
    "WebRegionTarget",
]
