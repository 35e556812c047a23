"""In-process cache of project access lookups.

Keeps the annotation hot path from re-running the membership query on every
request. Entries are keyed "{project_id}:{user_id}" and expire after a TTL.
When the map grows past max_entries, expired entries are swept on the next
write; live entries are never evicted early, so the cache may briefly exceed
the bound under a burst of distinct keys.

A stale entry costs at most one extra authorization check after expiry.
Role changes call invalidate() for immediate effect.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock
from uuid import UUID

from redline.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TTL_SECONDS = 300.0  # 5 minutes
DEFAULT_MAX_ENTRIES = 1000


class _Miss:
    def __repr__(self) -> str:
        return "MISS"


# Sentinel distinguishing "not cached" from a cached None (= no access).
MISS = _Miss()


@dataclass
class _Entry:
    role: str | None
    expires_at: float


def cache_key(project_id: UUID | str, user_id: UUID | str) -> str:
    return f"{project_id}:{user_id}"


class AccessCache:
    """Thread-safe bounded TTL map of project role lookups."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._lock = Lock()

    def get(self, project_id: UUID | str, user_id: UUID | str) -> "str | None | _Miss":
        """Return the cached role (None = no access), or MISS if absent or expired."""
        key = cache_key(project_id, user_id)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return MISS
            if entry.expires_at <= self._clock():
                del self._entries[key]
                return MISS
            return entry.role

    def set(self, project_id: UUID | str, user_id: UUID | str, role: str | None) -> None:
        key = cache_key(project_id, user_id)
        with self._lock:
            self._entries[key] = _Entry(role=role, expires_at=self._clock() + self.ttl_seconds)
            if len(self._entries) > self.max_entries:
                self._sweep_expired_locked()

    def invalidate(self, project_id: UUID | str, user_id: UUID | str) -> None:
        with self._lock:
            self._entries.pop(cache_key(project_id, user_id), None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def _sweep_expired_locked(self) -> None:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        logger.debug("access_cache_sweep", removed=len(expired), remaining=len(self._entries))


# Global cache instance (re-created by configure_access_cache at startup)
_cache = AccessCache()


def get_access_cache() -> AccessCache:
    """Get the global access cache instance."""
    return _cache


def configure_access_cache(ttl_seconds: float, max_entries: int) -> AccessCache:
    """Replace the global cache with one using the configured limits."""
    global _cache
    _cache = AccessCache(ttl_seconds=ttl_seconds, max_entries=max_entries)
    return _cache
