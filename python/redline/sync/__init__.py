"""Client-side annotation synchronization.

This module provides:
- The pending annotation state machine (local, not-yet-persisted annotations)
- AnnotationState, merged from broadcast events by entity id
- ChannelSubscriber, feeding AnnotationState from Redis pub/sub
"""

from redline.sync.channel import ChannelSubscriber, decode_envelope
from redline.sync.pending import (
    Overlay,
    PendingAnnotation,
    PendingAnnotationManager,
    PendingState,
    PendingStateError,
)
from redline.sync.reconcile import AnnotationState

__all__ = [
    "AnnotationState",
    "ChannelSubscriber",
    "Overlay",
    "PendingAnnotation",
    "PendingAnnotationManager",
    "PendingState",
    "PendingStateError",
    "decode_envelope",
]
