"""Comment Pydantic schemas.

Comments are stored flat (parent_id set on replies) and returned as a
one-level tree: top-level comments carry their replies, replies never do.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from redline.db.models import CommentStatus

MAX_COMMENT_LENGTH = 2000


class UserOut(BaseModel):
    """Public author profile embedded in annotations and comments."""

    id: UUID
    name: str | None = None
    email: str | None = None
    avatar_url: str | None = None

    model_config = ConfigDict(from_attributes=True)


class CommentOut(BaseModel):
    """Response schema for a comment.

    image_urls is always a list; it is empty until attachments succeed.
    """

    id: UUID
    annotation_id: UUID
    author: UserOut
    text: str
    status: CommentStatus
    image_urls: list[str] = Field(default_factory=list)
    parent_id: UUID | None = None
    created_at: datetime
    updated_at: datetime
    replies: list["CommentOut"] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class CreateCommentRequest(BaseModel):
    """Request schema for adding a comment or reply to an existing annotation.

    id is optional; when the client supplies it, retries are idempotent.
    """

    id: UUID | None = None
    annotation_id: UUID
    text: str = Field(..., max_length=MAX_COMMENT_LENGTH)
    parent_id: UUID | None = None
    image_urls: list[str] | None = Field(None, max_length=5)


class UpdateCommentRequest(BaseModel):
    """Request schema for editing a comment's text and/or status."""

    text: str | None = Field(None, min_length=1, max_length=MAX_COMMENT_LENGTH)
    status: CommentStatus | None = None

    @model_validator(mode="after")
    def at_least_one_field(self) -> "UpdateCommentRequest":
        if self.text is None and self.status is None:
            raise ValueError("text or status is required")
        return self


class CommentImageUploadOut(BaseModel):
    """A stored image ready to be passed as image_urls for its comment id."""

    comment_id: UUID
    path: str
    url: str
