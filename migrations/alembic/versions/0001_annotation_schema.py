"""Annotation schema - users, projects, files, annotations, comments

Revision ID: 0001
Revises:
Create Date: 2026-10-18

Key tables:
- users: mirrors identity-provider users (id = sub claim)
- projects / project_members: unit of access control, role per member
- files: annotatable file revisions; signed_off_at locks a revision
- annotations: spatial anchors with a JSONB target, viewport set for websites
- comments: flat rows, replies reference a top-level parent_id

Annotation and comment ids are client-generated so creates can be retried.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.TIMESTAMP(timezone=True),
        server_default=sa.text("now()"),
        nullable=False,
    )


def _updated_at() -> sa.Column:
    return sa.Column(
        "updated_at",
        sa.TIMESTAMP(timezone=True),
        server_default=sa.text("now()"),
        nullable=False,
    )


def upgrade() -> None:
    # ==========================================================================
    # Step 1: Users and projects
    # ==========================================================================
    op.create_table(
        "users",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("avatar_url", sa.Text(), nullable=True),
        _created_at(),
    )

    op.create_table(
        "projects",
        sa.Column(
            "id",
            sa.UUID(),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column(
            "owner_user_id",
            sa.UUID(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        _created_at(),
    )

    op.create_table(
        "project_members",
        sa.Column(
            "project_id",
            sa.UUID(),
            sa.ForeignKey("projects.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "user_id",
            sa.UUID(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("role", sa.Text(), nullable=False),
        _created_at(),
    )
    op.create_check_constraint(
        "ck_project_members_role",
        "project_members",
        "role IN ('viewer', 'commenter', 'editor', 'admin')",
    )
    op.create_index("idx_project_members_user_id", "project_members", ["user_id"])

    # ==========================================================================
    # Step 2: Files
    # ==========================================================================
    op.create_table(
        "files",
        sa.Column(
            "id",
            sa.UUID(),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column(
            "project_id",
            sa.UUID(),
            sa.ForeignKey("projects.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("file_type", sa.Text(), nullable=False),
        sa.Column("width", sa.Integer(), nullable=True),
        sa.Column("height", sa.Integer(), nullable=True),
        sa.Column("signed_off_at", sa.TIMESTAMP(timezone=True), nullable=True),
        _created_at(),
    )
    op.create_check_constraint(
        "ck_files_file_type",
        "files",
        "file_type IN ('IMAGE', 'WEBSITE')",
    )
    op.create_index("idx_files_project_id", "files", ["project_id"])

    # ==========================================================================
    # Step 3: Annotations
    # ==========================================================================
    op.create_table(
        "annotations",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column(
            "file_id",
            sa.UUID(),
            sa.ForeignKey("files.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            sa.UUID(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("annotation_type", sa.Text(), nullable=False),
        sa.Column("target", postgresql.JSONB(), nullable=False),
        sa.Column("style", postgresql.JSONB(), nullable=True),
        sa.Column("viewport", sa.Text(), nullable=True),
        _created_at(),
        _updated_at(),
    )
    op.create_check_constraint(
        "ck_annotations_type",
        "annotations",
        "annotation_type IN ('POINT', 'REGION')",
    )
    op.create_check_constraint(
        "ck_annotations_viewport",
        "annotations",
        "viewport IS NULL OR viewport IN ('DESKTOP', 'TABLET', 'MOBILE')",
    )
    op.create_index(
        "idx_annotations_file_viewport",
        "annotations",
        ["file_id", "viewport"],
    )

    # ==========================================================================
    # Step 4: Comments (one level of replies via parent_id)
    # ==========================================================================
    op.create_table(
        "comments",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column(
            "annotation_id",
            sa.UUID(),
            sa.ForeignKey("annotations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            sa.UUID(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "parent_id",
            sa.UUID(),
            sa.ForeignKey("comments.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("text", sa.Text(), nullable=False, server_default=""),
        sa.Column("status", sa.Text(), nullable=False, server_default="OPEN"),
        sa.Column("image_urls", postgresql.JSONB(), nullable=True),
        _created_at(),
        _updated_at(),
    )
    op.create_check_constraint(
        "ck_comments_status",
        "comments",
        "status IN ('OPEN', 'IN_PROGRESS', 'RESOLVED')",
    )
    op.create_check_constraint(
        "ck_comments_text_length",
        "comments",
        "length(text) <= 2000",
    )
    op.create_index("idx_comments_annotation_id", "comments", ["annotation_id"])
    op.create_index("idx_comments_parent_id", "comments", ["parent_id"])


def downgrade() -> None:
    op.drop_table("comments")
    op.drop_table("annotations")
    op.drop_table("files")
    op.drop_table("project_members")
    op.drop_table("projects")
    op.drop_table("users")
