"""Authorization predicates for project access.

These predicates are the single source of truth for who may read and write
annotations. Services turn them into HTTP errors.

All functions:
- Accept an explicit SQLAlchemy Session
- Return roles or booleans only (no HTTP exceptions)
- Must not leak existence: a missing project and a non-member both yield None

Role ladder (lowest to highest): viewer < commenter < editor < admin.
The project owner is always admin, with or without a project_members row.

Access levels:
- read: any role
- write (annotate, comment, change status): commenter and above
- moderate (delete other users' annotations/comments): admin
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from redline.auth.access_cache import MISS, get_access_cache
from redline.db.models import Project, ProjectMember, ProjectRole

ROLE_RANK: dict[str, int] = {
    ProjectRole.viewer.value: 0,
    ProjectRole.commenter.value: 1,
    ProjectRole.editor.value: 2,
    ProjectRole.admin.value: 3,
}

WRITE_ROLE = ProjectRole.commenter
MODERATE_ROLE = ProjectRole.admin


def _lookup_project_role(session: Session, user_id: UUID, project_id: UUID) -> str | None:
    owner_id = session.execute(
        select(Project.owner_user_id).where(Project.id == project_id)
    ).scalar_one_or_none()
    if owner_id is None:
        return None
    if owner_id == user_id:
        return ProjectRole.admin.value

    return session.execute(
        select(ProjectMember.role).where(
            ProjectMember.project_id == project_id,
            ProjectMember.user_id == user_id,
        )
    ).scalar_one_or_none()


def get_project_role(session: Session, user_id: UUID, project_id: UUID) -> str | None:
    """Return the user's role in the project, or None if they have no access.

    Results (including "no access") are memoized in the process-wide AccessCache.
    """
    cache = get_access_cache()
    cached = cache.get(project_id, user_id)
    if cached is not MISS:
        return cached

    role = _lookup_project_role(session, user_id, project_id)
    cache.set(project_id, user_id, role)
    return role


def role_at_least(role: str | None, minimum: ProjectRole) -> bool:
    """Whether role ranks at or above minimum. None never qualifies."""
    if role is None:
        return False
    return ROLE_RANK.get(role, -1) >= ROLE_RANK[minimum.value]


def can_read_project(session: Session, user_id: UUID, project_id: UUID) -> bool:
    return get_project_role(session, user_id, project_id) is not None


def can_write_project(session: Session, user_id: UUID, project_id: UUID) -> bool:
    return role_at_least(get_project_role(session, user_id, project_id), WRITE_ROLE)


def can_moderate_project(session: Session, user_id: UUID, project_id: UUID) -> bool:
    return role_at_least(get_project_role(session, user_id, project_id), MODERATE_ROLE)
