"""SQLAlchemy ORM models for Redline.

Defines all database tables using SQLAlchemy 2.x declarative patterns.
Enums are Python str enums stored as text with CHECK constraints, and column
types are the portable SQLAlchemy ones (Uuid, JSON with a JSONB variant) so the
same metadata runs against PostgreSQL and the SQLite test engine.
"""

from datetime import UTC, datetime
from enum import Enum as PyEnum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

JsonType = JSON().with_variant(JSONB(), "postgresql")


def utc_now() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# =============================================================================
# Enums
# =============================================================================


class ProjectRole(str, PyEnum):
    """Roles a user can hold in a project, lowest to highest."""

    viewer = "viewer"
    commenter = "commenter"
    editor = "editor"
    admin = "admin"


class FileType(str, PyEnum):
    """Rendering surface of an annotatable file."""

    IMAGE = "IMAGE"
    WEBSITE = "WEBSITE"


class AnnotationType(str, PyEnum):
    POINT = "POINT"
    REGION = "REGION"


class Viewport(str, PyEnum):
    """Fixed website viewport presets."""

    DESKTOP = "DESKTOP"
    TABLET = "TABLET"
    MOBILE = "MOBILE"


class CommentStatus(str, PyEnum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"


# =============================================================================
# Models
# =============================================================================


class User(Base):
    """User account model.

    The user ID matches the identity provider's user ID (sub claim).
    """

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str | None] = mapped_column(Text, nullable=True)
    email: Mapped[str | None] = mapped_column(Text, nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
        nullable=False,
    )


class Project(Base):
    """Project model - container of files and the unit of access control."""

    __tablename__ = "projects"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    owner_user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
        nullable=False,
    )

    members: Mapped[list["ProjectMember"]] = relationship(
        "ProjectMember", back_populates="project", passive_deletes=True
    )


class ProjectMember(Base):
    """Project membership model - user's role in a project.

    The project owner needs no row; ownership implies admin.
    """

    __tablename__ = "project_members"

    project_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="CASCADE"),
        primary_key=True,
    )
    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    role: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint(
            "role IN ('viewer', 'commenter', 'editor', 'admin')",
            name="ck_project_members_role",
        ),
    )

    project: Mapped["Project"] = relationship("Project", back_populates="members")


class File(Base):
    """Annotatable file (one revision) inside a project.

    width/height hold the natural pixel size for IMAGE files.
    A non-null signed_off_at locks the revision against annotation changes.
    """

    __tablename__ = "files"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    project_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    file_type: Mapped[str] = mapped_column(Text, nullable=False)
    width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    height: Mapped[int | None] = mapped_column(Integer, nullable=True)
    signed_off_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint(
            "file_type IN ('IMAGE', 'WEBSITE')",
            name="ck_files_file_type",
        ),
        Index("idx_files_project_id", "project_id"),
    )

    project: Mapped["Project"] = relationship("Project")

    @property
    def is_website(self) -> bool:
        return self.file_type == FileType.WEBSITE.value

    @property
    def is_signed_off(self) -> bool:
        return self.signed_off_at is not None


class Annotation(Base):
    """Spatial annotation anchored on a file.

    The id is client-generated so that retried creates are idempotent.
    target holds one of the four tagged Target variants as JSON.
    viewport is set iff the file is a website.
    """

    __tablename__ = "annotations"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    file_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("files.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    annotation_type: Mapped[str] = mapped_column(Text, nullable=False)
    target: Mapped[dict[str, Any]] = mapped_column(JsonType, nullable=False)
    style: Mapped[dict[str, Any] | None] = mapped_column(JsonType, nullable=True)
    viewport: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        onupdate=utc_now,
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint(
            "annotation_type IN ('POINT', 'REGION')",
            name="ck_annotations_type",
        ),
        CheckConstraint(
            "viewport IS NULL OR viewport IN ('DESKTOP', 'TABLET', 'MOBILE')",
            name="ck_annotations_viewport",
        ),
        Index("idx_annotations_file_viewport", "file_id", "viewport"),
    )

    author: Mapped["User"] = relationship("User", lazy="joined")
    file: Mapped["File"] = relationship("File")
    comments: Mapped[list["Comment"]] = relationship(
        "Comment",
        back_populates="annotation",
        order_by="Comment.created_at",
        passive_deletes=True,
    )


class Comment(Base):
    """Comment on an annotation.

    Replies are flat rows with parent_id set; nesting is limited to one level.
    image_urls is NULL until the attachment pipeline patches it.
    """

    __tablename__ = "comments"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    annotation_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("annotations.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    parent_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("comments.id", ondelete="CASCADE"),
        nullable=True,
    )
    text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(
        Text, nullable=False, default=CommentStatus.OPEN.value, server_default="OPEN"
    )
    image_urls: Mapped[list[str] | None] = mapped_column(JsonType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        onupdate=utc_now,
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('OPEN', 'IN_PROGRESS', 'RESOLVED')",
            name="ck_comments_status",
        ),
        CheckConstraint("length(text) <= 2000", name="ck_comments_text_length"),
        Index("idx_comments_annotation_id", "annotation_id"),
    )

    author: Mapped["User"] = relationship("User", lazy="joined")
    annotation: Mapped["Annotation"] = relationship("Annotation", back_populates="comments")
