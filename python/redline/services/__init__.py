"""Business logic services.

This module contains service-layer functions that implement business logic.
Services are called by route handlers and orchestrate database operations,
storage uploads, and event broadcasts.
"""

from redline.services.annotations import (
    create_annotation_with_comment,
    delete_annotation,
    get_annotation,
    list_annotations_for_file,
)
from redline.services.bootstrap import ensure_user
from redline.services.broadcast import Broadcaster, get_broadcaster
from redline.services.comments import create_comment, delete_comment, update_comment

__all__ = [
    "Broadcaster",
    "create_annotation_with_comment",
    "create_comment",
    "delete_annotation",
    "delete_comment",
    "ensure_user",
    "get_annotation",
    "get_broadcaster",
    "list_annotations_for_file",
    "update_comment",
]
