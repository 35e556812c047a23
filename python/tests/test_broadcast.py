"""Tests for the per-file Redis broadcaster."""

import json
from unittest.mock import MagicMock
from uuid import uuid4

from redis.exceptions import ConnectionError as RedisConnectionError

from redline.schemas.annotations import EntityDeleted
from redline.schemas.events import EventKind
from redline.services.broadcast import Broadcaster, get_broadcaster, set_broadcaster


class TestBroadcaster:
    def test_without_redis_is_noop(self):
        broadcaster = Broadcaster()

        assert broadcaster.enabled is False
        assert broadcaster.publish(uuid4(), EventKind.ANNOTATION_DELETED, {"id": str(uuid4())}) is False

    def test_publishes_envelope_on_file_channel(self, redis_mock):
        file_id, sender_id, annotation_id = uuid4(), uuid4(), uuid4()

        ok = Broadcaster(redis_mock).publish(
            file_id,
            EventKind.ANNOTATION_DELETED,
            EntityDeleted(id=annotation_id),
            sender_id=sender_id,
        )

        assert ok is True
        channel, raw = redis_mock.publish.call_args.args
        assert channel == f"annotations:{file_id}"
        assert json.loads(raw) == {
            "event": "annotation-deleted",
            "payload": {"id": str(annotation_id), "annotation_id": None},
            "sender_id": str(sender_id),
        }

    def test_redis_failure_is_swallowed(self):
        redis = MagicMock()
        redis.publish.side_effect = RedisConnectionError("connection refused")

        assert Broadcaster(redis).publish(uuid4(), EventKind.COMMENT_DELETED, {"id": "x"}) is False


class TestGlobalBroadcaster:
    def test_default_is_disabled(self):
        assert get_broadcaster().enabled is False

    def test_set_and_reset(self, broadcaster):
        set_broadcaster(broadcaster)
        assert get_broadcaster() is broadcaster

        set_broadcaster(None)
        assert get_broadcaster() is not broadcaster
