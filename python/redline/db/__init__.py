"""Database module for Redline.

Provides engine creation, session management, transaction helpers, and ORM models.
"""

from redline.db.engine import create_db_engine, get_engine
from redline.db.models import (
    Annotation,
    AnnotationType,
    Base,
    Comment,
    CommentStatus,
    File,
    FileType,
    Project,
    ProjectMember,
    ProjectRole,
    User,
    Viewport,
)
from redline.db.session import get_db, insert_ignoring_conflict, transaction

__all__ = [
    # Engine and session
    "create_db_engine",
    "get_engine",
    "get_db",
    "transaction",
    "insert_ignoring_conflict",
    # Base
    "Base",
    # Enums
    "AnnotationType",
    "CommentStatus",
    "FileType",
    "ProjectRole",
    "Viewport",
    # Models
    "User",
    "Project",
    "ProjectMember",
    "File",
    "Annotation",
    "Comment",
]
