"""Tests for the pending annotation state machine."""

from itertools import count
from uuid import UUID, uuid4

import pytest

from redline.db.models import AnnotationType, FileType, Viewport
from redline.schemas.targets import ImagePointTarget, ImageRegionTarget, WebPointTarget
from redline.sync.pending import Overlay, PendingAnnotationManager, PendingState, PendingStateError
from tests.factories import web_point_target


def sequential_ids():
    counter = count(1)
    return lambda: UUID(int=next(counter))


class RecordingOverlays:
    """Overlay factory that remembers every overlay and the cursor changes."""

    def __init__(self):
        self.created: list[Overlay] = []
        self.changes: list[AnnotationType | None] = []

    def __call__(self, tool: AnnotationType) -> Overlay:
        overlay = Overlay(tool, on_change=self.changes.append)
        self.created.append(overlay)
        return overlay


@pytest.fixture
def overlays() -> RecordingOverlays:
    return RecordingOverlays()


@pytest.fixture
def manager(overlays) -> PendingAnnotationManager:
    return PendingAnnotationManager(
        file_id=uuid4(),
        file_type=FileType.IMAGE,
        overlay_factory=overlays,
        id_factory=sequential_ids(),
    )


POINT = ImagePointTarget(x=0.2, y=0.4)
REGION = ImageRegionTarget(x=0.1, y=0.1, w=0.5, h=0.5)


class TestToolSelection:
    def test_starts_idle(self, manager):
        assert manager.state == PendingState.IDLE
        assert manager.overlay is None

    def test_select_tool_arms_and_holds_overlay(self, manager, overlays):
        manager.select_tool("POINT")

        assert manager.state == PendingState.ARMED
        assert manager.tool == AnnotationType.POINT
        assert manager.overlay.active is True
        assert overlays.changes == [AnnotationType.POINT]

    def test_reselecting_same_tool_is_noop(self, manager, overlays):
        manager.select_tool("POINT")
        manager.place(POINT)

        manager.select_tool("POINT")

        assert manager.state == PendingState.PENDING
        assert len(overlays.created) == 1

    def test_switching_tool_discards_pending_and_swaps_overlay(self, manager, overlays):
        manager.select_tool("POINT")
        manager.place(POINT)

        manager.select_tool("REGION")

        assert manager.state == PendingState.ARMED
        assert manager.pending is None
        assert overlays.created[0].active is False
        assert overlays.created[1].active is True
        assert overlays.changes == [AnnotationType.POINT, None, AnnotationType.REGION]

    def test_deselect_returns_to_idle(self, manager, overlays):
        manager.select_tool("POINT")
        manager.place(POINT)

        manager.select_tool(None)

        assert manager.state == PendingState.IDLE
        assert manager.pending is None
        assert overlays.created[0].active is False

    def test_context_manager_releases_overlay_on_error(self, overlays):
        with pytest.raises(RuntimeError):
            with PendingAnnotationManager(uuid4(), "IMAGE", overlay_factory=overlays) as manager:
                manager.select_tool("REGION")
                raise RuntimeError("viewer closed")

        assert overlays.created[0].active is False
        assert manager.state == PendingState.IDLE


class TestPlacement:
    def test_place_requires_tool(self, manager):
        with pytest.raises(PendingStateError):
            manager.place(POINT)

    def test_place_creates_pending_with_fresh_ids(self, manager):
        manager.select_tool("POINT")

        pending = manager.place(POINT)

        assert manager.state == PendingState.PENDING
        assert pending.id == UUID(int=1)
        assert pending.comment_id == UUID(int=2)
        assert pending.annotation_type == AnnotationType.POINT

    def test_rejected_interaction_leaves_state(self, manager):
        manager.select_tool("REGION")

        assert manager.place(None) is None
        assert manager.state == PendingState.ARMED

    def test_target_must_match_tool(self, manager):
        manager.select_tool("POINT")
        with pytest.raises(PendingStateError):
            manager.place(REGION)

    def test_target_must_match_surface(self, manager):
        manager.select_tool("POINT")
        with pytest.raises(PendingStateError):
            manager.place(WebPointTarget.model_validate(web_point_target()))

    def test_placing_again_replaces_entry(self, manager):
        manager.select_tool("POINT")
        first = manager.place(POINT)

        second = manager.place(ImagePointTarget(x=0.9, y=0.9))

        assert manager.pending is second
        assert second.id != first.id

    def test_cancel_returns_to_armed(self, manager):
        manager.select_tool("POINT")
        manager.place(POINT)

        manager.cancel()

        assert manager.state == PendingState.ARMED
        with pytest.raises(PendingStateError):
            manager.cancel()


class TestSubmission:
    @pytest.fixture
    def placed(self, manager):
        manager.select_tool("POINT")
        manager.place(POINT)
        return manager

    def test_submit_builds_request(self, placed):
        request = placed.submit("  Move this up  ")

        assert placed.state == PendingState.SUBMITTING
        assert request.id == placed.pending.id
        assert request.comment_id == placed.pending.comment_id
        assert request.file_id == placed.file_id
        assert request.comment == "Move this up"
        assert request.target == POINT
        assert request.viewport is None

    def test_empty_comment_needs_images(self, placed):
        with pytest.raises(PendingStateError):
            placed.submit("   ")

        request = placed.submit("", image_count=2)
        assert request.comment == ""

    def test_cannot_cancel_or_place_while_submitting(self, placed):
        placed.submit("hello")

        with pytest.raises(PendingStateError, match="cannot cancel after submit"):
            placed.cancel()
        with pytest.raises(PendingStateError):
            placed.place(POINT)

    def test_failed_submit_retries_with_same_ids(self, placed):
        first = placed.submit("hello")

        placed.mark_failed()
        assert placed.state == PendingState.PENDING
        retry = placed.submit("hello")

        assert (retry.id, retry.comment_id) == (first.id, first.comment_id)

    def test_mark_failed_requires_submission(self, placed):
        with pytest.raises(PendingStateError):
            placed.mark_failed()

    def test_confirmation_clears_matching_entry_only(self, placed):
        pending_id = placed.pending.id
        placed.submit("hello")

        assert placed.on_annotation_created(uuid4()) is False
        assert placed.state == PendingState.SUBMITTING

        assert placed.on_annotation_created(pending_id) is True
        assert placed.state == PendingState.ARMED
        assert placed.pending is None

    def test_website_request_carries_viewport(self):
        manager = PendingAnnotationManager(uuid4(), "WEBSITE", viewport=Viewport.TABLET)
        manager.select_tool("POINT")
        manager.place(WebPointTarget.model_validate(web_point_target()))

        request = manager.submit("Button overlaps the nav")

        assert request.viewport == Viewport.TABLET
        assert request.target.kind == "web_point"
        manager.close()
