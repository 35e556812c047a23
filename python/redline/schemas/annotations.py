"""Annotation Pydantic schemas.

Contains request and response models for the annotation endpoints and the
payloads carried by the per-file broadcast channel.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from redline.db.models import AnnotationType, Viewport
from redline.schemas.comments import MAX_COMMENT_LENGTH, CommentOut, UserOut
from redline.schemas.targets import AnnotationStyle, Target

MAX_IMAGES_PER_COMMENT = 5


# =============================================================================
# Output Schemas
# =============================================================================


class AnnotationOut(BaseModel):
    """Response schema for an annotation with its comment tree."""

    id: UUID
    file_id: UUID
    author: UserOut
    annotation_type: AnnotationType
    target: Target
    style: AnnotationStyle | None = None
    viewport: Viewport | None = None
    created_at: datetime
    updated_at: datetime
    comments: list[CommentOut] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class CreateAnnotationWithCommentOut(BaseModel):
    """The created (or reused) annotation and its first comment."""

    annotation: AnnotationOut
    comment: CommentOut


class CommentImagesAttached(BaseModel):
    """Payload of comment-images-attached: only the new URLs, not the comment."""

    annotation_id: UUID
    comment_id: UUID
    image_urls: list[str]


class EntityDeleted(BaseModel):
    """Payload of annotation-deleted / comment-deleted."""

    id: UUID
    annotation_id: UUID | None = None


# =============================================================================
# Request Schemas
# =============================================================================


class CreateAnnotationWithCommentRequest(BaseModel):
    """Request schema for atomically creating an annotation and its first comment.

    id and comment_id are client-generated so a retried request is idempotent.
    comment may be empty only when images are attached. image_urls is the
    alternate path for images the client uploaded separately.
    """

    id: UUID
    file_id: UUID
    annotation_type: AnnotationType
    target: Target
    style: AnnotationStyle | None = None
    viewport: Viewport | None = None
    comment: str = Field("", max_length=MAX_COMMENT_LENGTH)
    comment_id: UUID | None = None
    image_urls: list[str] | None = Field(None, max_length=MAX_IMAGES_PER_COMMENT)
