"""Client-side annotation state for one file, merged from broadcast events.

Rules:
- annotation-created/updated: insert-or-replace by id
- comment-created/updated: insert-or-replace under the owning annotation;
  replies go under their parent. Unknown annotation or parent: ignored
- comment-images-attached: union the new URLs into the comment, keeping order
- annotation-deleted/comment-deleted: remove by id, no-op when absent

Last write wins per entity id, in arrival order. A local optimistic insert
and the broadcast echo of the same entity collapse into one entry.
"""

from uuid import UUID

from redline.db.models import Viewport
from redline.logging import get_logger
from redline.schemas.annotations import AnnotationOut, CommentImagesAttached, EntityDeleted
from redline.schemas.comments import CommentOut
from redline.schemas.events import ChannelEnvelope, EventKind
from redline.sync.pending import PendingAnnotationManager

logger = get_logger(__name__)


class AnnotationState:
    def __init__(
        self,
        file_id: UUID,
        viewport: Viewport | None = None,
        pending_manager: PendingAnnotationManager | None = None,
    ):
        self.file_id = file_id
        self.viewport = viewport
        self.pending_manager = pending_manager
        self._annotations: dict[UUID, AnnotationOut] = {}

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def annotations(self) -> list[AnnotationOut]:
        return sorted(self._annotations.values(), key=lambda a: a.created_at)

    def get(self, annotation_id: UUID) -> AnnotationOut | None:
        return self._annotations.get(annotation_id)

    def find_comment(self, comment_id: UUID) -> CommentOut | None:
        for annotation in self._annotations.values():
            comment = _find_in_tree(annotation.comments, comment_id)
            if comment is not None:
                return comment
        return None

    def __len__(self) -> int:
        return len(self._annotations)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def replace_all(self, annotations: list[AnnotationOut | dict]) -> None:
        """Reset from an authoritative fetch (initial load or reconnect)."""
        self._annotations = {}
        for item in annotations:
            annotation = AnnotationOut.model_validate(item)
            if self._in_view(annotation):
                self._annotations[annotation.id] = annotation

    def upsert_annotation(self, annotation: AnnotationOut) -> bool:
        if annotation.file_id != self.file_id or not self._in_view(annotation):
            return False
        self._annotations[annotation.id] = annotation
        return True

    def apply(self, envelope: ChannelEnvelope | dict) -> bool:
        """Merge one broadcast event. Returns True if local state changed.

        Raises:
            pydantic.ValidationError: If the envelope or payload is malformed.
        """
        envelope = ChannelEnvelope.model_validate(envelope)
        payload = envelope.payload
        kind = envelope.event

        if kind in (EventKind.ANNOTATION_CREATED, EventKind.ANNOTATION_UPDATED):
            annotation = AnnotationOut.model_validate(payload)
            changed = self.upsert_annotation(annotation)
            if kind == EventKind.ANNOTATION_CREATED and self.pending_manager is not None:
                self.pending_manager.on_annotation_created(annotation.id)
            return changed

        if kind in (EventKind.COMMENT_CREATED, EventKind.COMMENT_UPDATED):
            return self._upsert_comment(CommentOut.model_validate(payload))

        if kind == EventKind.COMMENT_IMAGES_ATTACHED:
            return self._merge_images(CommentImagesAttached.model_validate(payload))

        deleted = EntityDeleted.model_validate(payload)
        if kind == EventKind.ANNOTATION_DELETED:
            return self._annotations.pop(deleted.id, None) is not None
        return self._remove_comment(deleted)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _in_view(self, annotation: AnnotationOut) -> bool:
        return self.viewport is None or annotation.viewport in (None, self.viewport)

    def _upsert_comment(self, comment: CommentOut) -> bool:
        annotation = self._annotations.get(comment.annotation_id)
        if annotation is None:
            logger.debug("comment_for_unknown_annotation", comment_id=str(comment.id))
            return False

        if comment.parent_id is None:
            siblings = annotation.comments
        else:
            parent = _find_top_level(annotation.comments, comment.parent_id)
            if parent is None:
                logger.debug("reply_for_unknown_parent", comment_id=str(comment.id))
                return False
            siblings = parent.replies

        for index, existing in enumerate(siblings):
            if existing.id == comment.id:
                if comment.parent_id is None and not comment.replies:
                    comment.replies = existing.replies
                siblings[index] = comment
                return True
        siblings.append(comment)
        return True

    def _merge_images(self, attached: CommentImagesAttached) -> bool:
        annotation = self._annotations.get(attached.annotation_id)
        if annotation is None:
            return False
        comment = _find_in_tree(annotation.comments, attached.comment_id)
        if comment is None:
            return False

        added = [url for url in attached.image_urls if url not in comment.image_urls]
        comment.image_urls.extend(dict.fromkeys(added))
        return bool(added)

    def _remove_comment(self, deleted: EntityDeleted) -> bool:
        if deleted.annotation_id is not None:
            annotation = self._annotations.get(deleted.annotation_id)
            candidates = [annotation] if annotation is not None else []
        else:
            candidates = list(self._annotations.values())

        for annotation in candidates:
            if _remove_from_tree(annotation.comments, deleted.id):
                return True
        return False


def _find_top_level(comments: list[CommentOut], comment_id: UUID) -> CommentOut | None:
    for comment in comments:
        if comment.id == comment_id:
            return comment
    return None


def _find_in_tree(comments: list[CommentOut], comment_id: UUID) -> CommentOut | None:
    for comment in comments:
        if comment.id == comment_id:
            return comment
        for reply in comment.replies:
            if reply.id == comment_id:
                return reply
    return None


def _remove_from_tree(comments: list[CommentOut], comment_id: UUID) -> bool:
    for index, comment in enumerate(comments):
        if comment.id == comment_id:
            del comments[index]
            return True
        for reply_index, reply in enumerate(comment.replies):
            if reply.id == comment_id:
                del comment.replies[reply_index]
                return True
    return False
