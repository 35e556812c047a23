"""Client-side pending annotation state machine.

One manager per open file. States:

    IDLE        no tool selected
    ARMED       tool selected, overlay held, nothing placed yet
    PENDING     one placed annotation awaiting comment text
    SUBMITTING  creation request in flight

Transitions:

    select_tool(t)          IDLE -> ARMED; a different tool discards the entry
    place(target)           ARMED/PENDING -> PENDING (None target: no change)
    cancel()                PENDING -> ARMED
    submit(text, n)         PENDING -> SUBMITTING, returns the request payload
    mark_failed()           SUBMITTING -> PENDING, same ids for the retry
    on_annotation_created   matching id -> ARMED, entry discarded
    select_tool(None)       any -> IDLE, overlay released
    close()                 any -> IDLE, overlay released

The overlay (cursor/hover feedback) is held while a tool is selected. It is a
context manager entered on arming and always exited on deselect or close,
including when the manager is used as a context manager and errors out.
"""

from collections.abc import Callable
from contextlib import ExitStack
from dataclasses import dataclass
from enum import Enum
from uuid import UUID, uuid4

from redline.db.models import AnnotationType, FileType, Viewport
from redline.logging import get_logger
from redline.schemas.annotations import CreateAnnotationWithCommentRequest
from redline.schemas.targets import TARGET_KIND_FOR, AnnotationStyle, Target

logger = get_logger(__name__)


class PendingState(str, Enum):
    IDLE = "idle"
    ARMED = "armed"
    PENDING = "pending"
    SUBMITTING = "submitting"


class PendingStateError(Exception):
    """Raised on a transition the current state does not allow."""


class Overlay:
    """Scoped cursor/hover feedback for the selected tool."""

    def __init__(
        self,
        tool: AnnotationType,
        on_change: Callable[[AnnotationType | None], None] | None = None,
    ):
        self.tool = tool
        self.active = False
        self._on_change = on_change

    def __enter__(self) -> "Overlay":
        self.active = True
        if self._on_change is not None:
            self._on_change(self.tool)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.active = False
        if self._on_change is not None:
            self._on_change(None)


@dataclass
class PendingAnnotation:
    id: UUID
    comment_id: UUID
    annotation_type: AnnotationType
    target: Target
    is_submitting: bool = False
    style: AnnotationStyle | None = None


class PendingAnnotationManager:
    def __init__(
        self,
        file_id: UUID,
        file_type: FileType | str,
        viewport: Viewport | None = None,
        overlay_factory: Callable[[AnnotationType], Overlay] = Overlay,
        id_factory: Callable[[], UUID] = uuid4,
    ):
        self.file_id = file_id
        self.file_type = FileType(file_type)
        self.viewport = viewport
        self._overlay_factory = overlay_factory
        self._id_factory = id_factory
        self._overlay_stack: ExitStack | None = None
        self._overlay: Overlay | None = None
        self._tool: AnnotationType | None = None
        self._pending: PendingAnnotation | None = None

    def __enter__(self) -> "PendingAnnotationManager":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    @property
    def state(self) -> PendingState:
        if self._tool is None:
            return PendingState.IDLE
        if self._pending is None:
            return PendingState.ARMED
        if self._pending.is_submitting:
            return PendingState.SUBMITTING
        return PendingState.PENDING

    @property
    def tool(self) -> AnnotationType | None:
        return self._tool

    @property
    def pending(self) -> PendingAnnotation | None:
        return self._pending

    @property
    def overlay(self) -> Overlay | None:
        return self._overlay

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def select_tool(self, tool: AnnotationType | str | None) -> None:
        if tool is None:
            self._discard("tool_deselected")
            self._release_overlay()
            self._tool = None
            return

        tool = AnnotationType(tool)
        if tool == self._tool:
            return

        self._discard("tool_switched")
        self._release_overlay()
        self._tool = tool
        self._acquire_overlay(tool)

    def place(self, target: Target | None) -> PendingAnnotation | None:
        """Create the pending entry from a resolved target.

        A None target is a rejected interaction and leaves the state unchanged.
        Placing again while PENDING replaces the entry.
        """
        state = self.state
        if state == PendingState.IDLE:
            raise PendingStateError("no tool selected")
        if state == PendingState.SUBMITTING:
            raise PendingStateError("an annotation is already being submitted")
        if target is None:
            return None

        expected_kind = TARGET_KIND_FOR[(self.file_type, self._tool)]
        if target.kind != expected_kind:
            raise PendingStateError(f"{self._tool.value} tool cannot place a {target.kind} target")

        self._pending = PendingAnnotation(
            id=self._id_factory(),
            comment_id=self._id_factory(),
            annotation_type=self._tool,
            target=target,
        )
        return self._pending

    def cancel(self) -> None:
        state = self.state
        if state == PendingState.SUBMITTING:
            raise PendingStateError("cannot cancel after submit")
        if state != PendingState.PENDING:
            raise PendingStateError(f"nothing to cancel in state {state.value}")
        self._discard("cancelled")

    def submit(self, text: str, image_count: int = 0) -> CreateAnnotationWithCommentRequest:
        """Mark the entry as submitting and build the creation request."""
        if self.state != PendingState.PENDING:
            raise PendingStateError(f"cannot submit in state {self.state.value}")
        if not text.strip() and image_count == 0:
            raise PendingStateError("comment text is required when no images are attached")

        pending = self._pending
        payload = CreateAnnotationWithCommentRequest(
            id=pending.id,
            file_id=self.file_id,
            annotation_type=pending.annotation_type,
            target=pending.target,
            style=pending.style,
            viewport=self.viewport,
            comment=text.strip(),
            comment_id=pending.comment_id,
        )
        pending.is_submitting = True
        return payload

    def mark_failed(self) -> None:
        if self.state != PendingState.SUBMITTING:
            raise PendingStateError(f"nothing in flight in state {self.state.value}")
        self._pending.is_submitting = False

    def on_annotation_created(self, annotation_id: UUID) -> bool:
        """Discard the pending entry the broadcast confirms. Returns True on match."""
        if self._pending is None or self._pending.id != annotation_id:
            return False
        self._discard("confirmed")
        return True

    def close(self) -> None:
        self._discard("closed")
        self._release_overlay()
        self._tool = None

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _discard(self, reason: str) -> None:
        if self._pending is not None:
            logger.debug("pending_annotation_discarded", annotation_id=str(self._pending.id), reason=reason)
            self._pending = None

    def _acquire_overlay(self, tool: AnnotationType) -> None:
        stack = ExitStack()
        self._overlay = stack.enter_context(self._overlay_factory(tool))
        self._overlay_stack = stack

    def _release_overlay(self) -> None:
        stack, self._overlay_stack = self._overlay_stack, None
        self._overlay = None
        if stack is not None:
            stack.close()
