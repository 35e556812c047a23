"""User bootstrap service.

Provides race-safe user row creation on first authenticated request, so that
annotations and comments always have an author to join against.
"""

import logging
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from redline.db.models import User
from redline.db.session import insert_ignoring_conflict, transaction

logger = logging.getLogger(__name__)


def profile_from_claims(claims: dict[str, Any]) -> dict[str, str | None]:
    """Extract display fields from Supabase-style JWT claims."""
    metadata = claims.get("user_metadata") or {}
    return {
        "name": metadata.get("full_name") or metadata.get("name"),
        "email": claims.get("email"),
        "avatar_url": metadata.get("avatar_url"),
    }


def ensure_user(db: Session, user_id: UUID, claims: dict[str, Any] | None = None) -> None:
    """Ensure a users row exists and carries the latest profile fields.

    Idempotent and safe under concurrent first requests: the insert ignores
    primary key conflicts. Profile fields are only overwritten with non-empty
    claim values.
    """
    profile = profile_from_claims(claims or {})

    with transaction(db):
        created = insert_ignoring_conflict(db, User.__table__, {"id": user_id, **profile})
        if created:
            logger.info("Created user %s", user_id)
            return

        user = db.get(User, user_id)
        for field, value in profile.items():
            if value and getattr(user, field) != value:
                setattr(user, field, value)
