"""Broadcast channel envelope.

Every change to a file's annotations is published on ``annotations:{file_id}``
as a JSON envelope:

    {"event": "comment-created", "payload": {...}, "sender_id": "<user uuid>"}

Payloads carry the full entity, except comment-images-attached (only the new
URLs) and the deletes (ids only).
"""

from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

CHANNEL_PREFIX = "annotations:"


class EventKind(str, Enum):
    ANNOTATION_CREATED = "annotation-created"
    ANNOTATION_UPDATED = "annotation-updated"
    ANNOTATION_DELETED = "annotation-deleted"
    COMMENT_CREATED = "comment-created"
    COMMENT_UPDATED = "comment-updated"
    COMMENT_DELETED = "comment-deleted"
    COMMENT_IMAGES_ATTACHED = "comment-images-attached"


class ChannelEnvelope(BaseModel):
    event: EventKind
    payload: dict[str, Any] = Field(default_factory=dict)
    sender_id: str | None = None


def channel_name(file_id: UUID | str) -> str:
    return f"{CHANNEL_PREFIX}{file_id}"
