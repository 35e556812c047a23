"""Tests for the project access cache and the permission predicates."""

from uuid import uuid4

import pytest

from redline.auth.access_cache import MISS, AccessCache, configure_access_cache, get_access_cache
from redline.auth.permissions import (
    can_moderate_project,
    can_read_project,
    can_write_project,
    get_project_role,
    role_at_least,
)
from redline.db.models import ProjectMember, ProjectRole
from tests.factories import add_project_member, create_test_project, create_test_user


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class TestAccessCache:
    def test_miss_vs_cached_none(self, clock):
        cache = AccessCache(clock=clock)
        project_id, user_id = uuid4(), uuid4()

        assert cache.get(project_id, user_id) is MISS

        cache.set(project_id, user_id, None)
        assert cache.get(project_id, user_id) is None

    def test_entry_expires_after_ttl(self, clock):
        cache = AccessCache(ttl_seconds=60, clock=clock)
        project_id, user_id = uuid4(), uuid4()
        cache.set(project_id, user_id, "commenter")

        clock.now += 59
        assert cache.get(project_id, user_id) == "commenter"

        clock.now += 1
        assert cache.get(project_id, user_id) is MISS
        assert cache.size == 0

    def test_invalidate(self, clock):
        cache = AccessCache(clock=clock)
        project_id, user_id = uuid4(), uuid4()
        cache.set(project_id, user_id, "admin")

        cache.invalidate(project_id, user_id)

        assert cache.get(project_id, user_id) is MISS

    def test_sweep_drops_only_expired_entries(self, clock):
        cache = AccessCache(ttl_seconds=10, max_entries=2, clock=clock)
        cache.set(uuid4(), uuid4(), "viewer")
        cache.set(uuid4(), uuid4(), "viewer")
        clock.now += 11

        live_project, live_user = uuid4(), uuid4()
        cache.set(live_project, live_user, "editor")

        assert cache.size == 1
        assert cache.get(live_project, live_user) == "editor"

    def test_live_entries_may_exceed_bound(self, clock):
        cache = AccessCache(ttl_seconds=10, max_entries=2, clock=clock)
        for _ in range(3):
            cache.set(uuid4(), uuid4(), "viewer")

        assert cache.size == 3

    def test_configure_replaces_global(self):
        cache = configure_access_cache(ttl_seconds=5, max_entries=10)

        assert get_access_cache() is cache
        assert cache.ttl_seconds == 5
        assert cache.max_entries == 10


class TestRoleLadder:
    @pytest.mark.parametrize(
        ("role", "minimum", "expected"),
        [
            ("viewer", ProjectRole.commenter, False),
            ("commenter", ProjectRole.commenter, True),
            ("editor", ProjectRole.commenter, True),
            ("editor", ProjectRole.admin, False),
            ("admin", ProjectRole.admin, True),
            (None, ProjectRole.viewer, False),
            ("owner", ProjectRole.viewer, False),
        ],
    )
    def test_role_at_least(self, role, minimum, expected):
        assert role_at_least(role, minimum) is expected


class TestProjectPermissions:
    @pytest.fixture
    def project(self, db_session):
        owner_id = create_test_user(db_session)
        project_id = create_test_project(db_session, owner_id)
        return owner_id, project_id

    def test_owner_is_admin_without_membership(self, db_session, project):
        owner_id, project_id = project

        assert get_project_role(db_session, owner_id, project_id) == "admin"
        assert can_moderate_project(db_session, owner_id, project_id)

    @pytest.mark.parametrize(
        ("role", "read", "write", "moderate"),
        [
            ("viewer", True, False, False),
            ("commenter", True, True, False),
            ("editor", True, True, False),
            ("admin", True, True, True),
        ],
    )
    def test_member_roles(self, db_session, project, role, read, write, moderate):
        _, project_id = project
        user_id = uuid4()
        add_project_member(db_session, project_id, user_id, role)

        assert can_read_project(db_session, user_id, project_id) is read
        assert can_write_project(db_session, user_id, project_id) is write
        assert can_moderate_project(db_session, user_id, project_id) is moderate

    def test_non_member_and_missing_project_are_indistinguishable(self, db_session, project):
        owner_id, project_id = project

        assert get_project_role(db_session, uuid4(), project_id) is None
        assert get_project_role(db_session, owner_id, uuid4()) is None

    def test_lookup_is_cached_until_invalidated(self, db_session, project):
        _, project_id = project
        user_id = uuid4()
        add_project_member(db_session, project_id, user_id, "viewer")
        assert get_project_role(db_session, user_id, project_id) == "viewer"

        member = db_session.get(ProjectMember, (project_id, user_id))
        member.role = "admin"
        db_session.commit()

        assert get_project_role(db_session, user_id, project_id) == "viewer"

        get_access_cache().invalidate(project_id, user_id)
        assert get_project_role(db_session, user_id, project_id) == "admin"
