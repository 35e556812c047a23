"""Per-file broadcast of annotation changes over Redis pub/sub.

Channel: annotations:{file_id}
Envelope: {"event": kind, "payload": {...}, "sender_id": "<user uuid>"}

Fail modes:
- Redis not configured: publish is a logged no-op
- Redis error: logged as broadcast_failed, never raised, never retried

Callers publish only after their transaction commits, so a rolled-back write
is never announced.
"""

from typing import Any
from uuid import UUID

from pydantic import BaseModel

from redline.logging import get_logger
from redline.schemas.events import ChannelEnvelope, EventKind, channel_name

logger = get_logger(__name__)


class Broadcaster:
    """Fire-and-forget publisher.

    Thread-safe for use in FastAPI endpoints (the redis client pools connections).
    """

    def __init__(self, redis_client=None):
        """Initialize broadcaster.

        Args:
            redis_client: Redis client instance (sync). If None, nothing is published.
        """
        self._redis = redis_client

    @property
    def enabled(self) -> bool:
        return self._redis is not None

    def publish(
        self,
        file_id: UUID,
        event: EventKind,
        payload: BaseModel | dict[str, Any],
        sender_id: UUID | None = None,
    ) -> bool:
        """Publish one event. Returns True if Redis accepted it."""
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(mode="json")

        envelope = ChannelEnvelope(
            event=event,
            payload=payload,
            sender_id=str(sender_id) if sender_id is not None else None,
        )
        channel = channel_name(file_id)

        if self._redis is None:
            logger.debug("broadcast_skipped_no_redis", channel=channel, event_kind=event.value)
            return False

        try:
            receivers = self._redis.publish(channel, envelope.model_dump_json())
        except Exception as e:
            logger.warning(
                "broadcast_failed",
                channel=channel,
                event_kind=event.value,
                error=str(e),
            )
            return False

        logger.debug("broadcast_published", channel=channel, event_kind=event.value, receivers=receivers)
        return True


# Global broadcaster instance (initialized by app startup)
_broadcaster: Broadcaster | None = None


def get_broadcaster() -> Broadcaster:
    """Get the global broadcaster instance.

    Returns a no-op broadcaster if not initialized (for testing without Redis).
    """
    global _broadcaster
    if _broadcaster is None:
        _broadcaster = Broadcaster(redis_client=None)
    return _broadcaster


def set_broadcaster(broadcaster: Broadcaster | None) -> None:
    """Set the global broadcaster instance.

    Called by app startup to configure Redis.
    """
    global _broadcaster
    _broadcaster = broadcaster
