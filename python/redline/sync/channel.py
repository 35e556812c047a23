"""Redis pub/sub subscriber feeding an AnnotationState.

Listens on ``annotations:{file_id}`` and applies each envelope in arrival
order. A malformed message is logged and skipped; it never stops the loop.
"""

import json
import threading

from pydantic import ValidationError

from redline.logging import get_logger
from redline.schemas.events import ChannelEnvelope, channel_name
from redline.sync.reconcile import AnnotationState

logger = get_logger(__name__)

DEFAULT_POLL_TIMEOUT_S = 1.0


def decode_envelope(data: bytes | str) -> ChannelEnvelope:
    """Parse a raw pub/sub message body.

    Raises:
        ValueError: If the body is not valid JSON or not a valid envelope.
    """
    if isinstance(data, bytes):
        data = data.decode("utf-8")
    return ChannelEnvelope.model_validate(json.loads(data))


class ChannelSubscriber:
    """Subscribes one AnnotationState to its file's broadcast channel.

    Usage:
        with ChannelSubscriber(redis_client, state) as subscriber:
            subscriber.run(stop_event)
    """

    def __init__(self, redis_client, state: AnnotationState, ignore_sender_id: str | None = None):
        self.redis_client = redis_client
        self.state = state
        self.channel = channel_name(state.file_id)
        # Events this client published itself are already applied optimistically
        self.ignore_sender_id = ignore_sender_id
        self._pubsub = None

    def __enter__(self) -> "ChannelSubscriber":
        self.subscribe()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def subscribe(self) -> None:
        self._pubsub = self.redis_client.pubsub(ignore_subscribe_messages=True)
        self._pubsub.subscribe(self.channel)
        logger.info("channel_subscribed", channel=self.channel)

    def close(self) -> None:
        pubsub, self._pubsub = self._pubsub, None
        if pubsub is None:
            return
        try:
            pubsub.unsubscribe(self.channel)
            pubsub.close()
        except Exception as e:
            logger.warning("channel_close_failed", channel=self.channel, error=str(e))

    def poll(self, timeout: float = DEFAULT_POLL_TIMEOUT_S) -> bool:
        """Handle at most one message. Returns True if state changed."""
        if self._pubsub is None:
            raise RuntimeError("subscriber is not subscribed")
        message = self._pubsub.get_message(timeout=timeout)
        if message is None:
            return False
        return self.handle_message(message)

    def run(self, stop_event: threading.Event, timeout: float = DEFAULT_POLL_TIMEOUT_S) -> None:
        while not stop_event.is_set():
            self.poll(timeout=timeout)

    def handle_message(self, message: dict) -> bool:
        if message.get("type") != "message":
            return False

        try:
            envelope = decode_envelope(message["data"])
        except (ValueError, KeyError) as e:
            logger.warning("channel_message_malformed", channel=self.channel, error=str(e))
            return False

        if self.ignore_sender_id is not None and envelope.sender_id == self.ignore_sender_id:
            return False

        try:
            return self.state.apply(envelope)
        except ValidationError as e:
            logger.warning(
                "channel_payload_malformed",
                channel=self.channel,
                event_kind=envelope.event.value,
                error=str(e),
            )
            return False
