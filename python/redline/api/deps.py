"""FastAPI dependencies for route handlers.

Common dependencies like database sessions and the shared clients the app
creates at startup.
"""

from fastapi import Request

from redline.db.session import get_db, get_session_factory
from redline.services.broadcast import Broadcaster, get_broadcaster
from redline.storage.client import StorageClientBase

__all__ = ["get_db", "get_event_broadcaster", "get_session_factory", "get_storage"]


def get_storage(request: Request) -> StorageClientBase:
    """Get the shared storage client from app state.

    One instance per app, so the in-memory fake keeps its objects across requests.
    """
    return request.app.state.storage_client


def get_event_broadcaster(request: Request) -> Broadcaster:
    """Get the broadcaster configured at startup, or the global no-op one."""
    broadcaster = getattr(request.app.state, "broadcaster", None)
    return broadcaster or get_broadcaster()
