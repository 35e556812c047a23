"""Comment service layer.

Replies and additional comments on existing annotations.

Rules:
- Create requires write access (commenter and above) and an unlocked revision
- A reply's parent must be a top-level comment on the same annotation
- Replies never carry images
- Editing text is author-only; changing status needs write access
- Delete is author or project admin; replies cascade, stored images are
  removed best-effort
- Pre-uploaded image_urls must live under the comment's own storage prefix

Creation is idempotent on a client-supplied id, like annotation creation.
"""

from uuid import UUID, uuid4

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from redline.auth.permissions import can_moderate_project
from redline.db.models import Comment
from redline.db.session import insert_ignoring_conflict, transaction
from redline.errors import (
    ApiError,
    ApiErrorCode,
    ConflictError,
    ForbiddenError,
    InvalidRequestError,
    NotFoundError,
)
from redline.logging import get_logger, set_file_context
from redline.schemas.annotations import EntityDeleted
from redline.schemas.comments import (
    CommentImageUploadOut,
    CommentOut,
    CreateCommentRequest,
    UpdateCommentRequest,
)
from redline.schemas.events import EventKind
from redline.services import image_attachments
from redline.services.annotations import (
    comment_to_out,
    get_annotation_for_viewer_or_404,
    get_file_for_viewer_or_404,
    load_comments,
    require_unlocked,
    require_write_access,
)
from redline.services.broadcast import Broadcaster, get_broadcaster
from redline.services.image_attachments import ImageUpload
from redline.storage.client import StorageClientBase, StorageError, get_storage_client

logger = get_logger(__name__)


def get_comment_for_viewer_or_404(db: Session, viewer_id: UUID, comment_id: UUID) -> Comment:
    """Load a comment on a file the viewer can read.

    Raises:
        NotFoundError(E_COMMENT_NOT_FOUND): If missing or not visible.
    """
    comment = db.get(Comment, comment_id, populate_existing=True)
    if comment is None:
        raise NotFoundError(ApiErrorCode.E_COMMENT_NOT_FOUND, "Comment not found")
    try:
        get_annotation_for_viewer_or_404(db, viewer_id, comment.annotation_id)
    except NotFoundError:
        raise NotFoundError(ApiErrorCode.E_COMMENT_NOT_FOUND, "Comment not found") from None
    return comment


def _validate_parent_or_400(db: Session, annotation_id: UUID, parent_id: UUID) -> None:
    parent = db.get(Comment, parent_id)
    if parent is None or parent.annotation_id != annotation_id:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_PARENT, "Parent comment not found on this annotation"
        )
    if parent.parent_id is not None:
        raise InvalidRequestError(ApiErrorCode.E_INVALID_PARENT, "Replies cannot be nested")


def _comment_with_replies(db: Session, comment: Comment) -> CommentOut:
    if comment.parent_id is not None:
        return comment_to_out(comment)
    siblings = load_comments(db, [comment.annotation_id]).get(comment.annotation_id, [])
    replies = [comment_to_out(c) for c in siblings if c.parent_id == comment.id]
    return comment_to_out(comment, replies)


# =============================================================================
# Service Functions (One per Route)
# =============================================================================


def create_comment(
    db: Session,
    viewer_id: UUID,
    req: CreateCommentRequest,
    *,
    storage_client: StorageClientBase | None = None,
    broadcaster: Broadcaster | None = None,
) -> CommentOut:
    """Add a top-level comment or a reply to an existing annotation.

    Raises:
        NotFoundError(E_ANNOTATION_NOT_FOUND): If the annotation is missing or not visible.
        ForbiddenError: E_FORBIDDEN, E_REVISION_LOCKED.
        InvalidRequestError: E_COMMENT_EMPTY, E_INVALID_PARENT, E_REPLY_IMAGES_NOT_ALLOWED,
            E_INVALID_IMAGE_URL.
        ConflictError(E_ID_CONFLICT): If the id belongs to another annotation or author.
    """
    annotation = get_annotation_for_viewer_or_404(db, viewer_id, req.annotation_id)
    file = annotation.file
    set_file_context(str(file.id))
    require_write_access(db, viewer_id, file)
    require_unlocked(file)

    text = req.text.strip()
    if req.parent_id is not None and req.image_urls:
        raise InvalidRequestError(
            ApiErrorCode.E_REPLY_IMAGES_NOT_ALLOWED, "Replies cannot have images"
        )
    if not text and not req.image_urls:
        raise InvalidRequestError(ApiErrorCode.E_COMMENT_EMPTY, "Comment text is required")
    if req.parent_id is not None:
        _validate_parent_or_400(db, annotation.id, req.parent_id)
    if req.image_urls:
        storage_client = storage_client or get_storage_client()
        image_attachments.validate_image_urls(req.id, req.image_urls, storage_client.bucket)

    comment_id = req.id or uuid4()
    with transaction(db):
        created = insert_ignoring_conflict(
            db,
            Comment.__table__,
            {
                "id": comment_id,
                "annotation_id": annotation.id,
                "user_id": viewer_id,
                "parent_id": req.parent_id,
                "text": text,
                "image_urls": list(req.image_urls) if req.image_urls else None,
            },
        )
        if not created:
            existing = db.get(Comment, comment_id, populate_existing=True)
            if existing.annotation_id != annotation.id or existing.user_id != viewer_id:
                raise ConflictError(ApiErrorCode.E_ID_CONFLICT, "Comment id already in use")

    comment = db.get(Comment, comment_id, populate_existing=True)
    comment_out = _comment_with_replies(db, comment)

    if created:
        logger.info(
            "comment_created",
            comment_id=str(comment_id),
            annotation_id=str(annotation.id),
            is_reply=req.parent_id is not None,
        )
        (broadcaster or get_broadcaster()).publish(
            file.id, EventKind.COMMENT_CREATED, comment_out, sender_id=viewer_id
        )
    else:
        logger.info("comment_reused", comment_id=str(comment_id))

    return comment_out


def update_comment(
    db: Session,
    viewer_id: UUID,
    comment_id: UUID,
    req: UpdateCommentRequest,
    *,
    broadcaster: Broadcaster | None = None,
) -> CommentOut:
    """Edit a comment's text (author only) and/or status (any commenter).

    Raises:
        NotFoundError(E_COMMENT_NOT_FOUND): If missing or not visible.
        ForbiddenError: E_NOT_AUTHOR, E_FORBIDDEN, E_REVISION_LOCKED.
    """
    comment = get_comment_for_viewer_or_404(db, viewer_id, comment_id)
    file = comment.annotation.file
    set_file_context(str(file.id))
    require_write_access(db, viewer_id, file)
    require_unlocked(file)

    if req.text is not None and comment.user_id != viewer_id:
        raise ForbiddenError(ApiErrorCode.E_NOT_AUTHOR, "Only the author can edit comment text")

    with transaction(db):
        if req.text is not None:
            text = req.text.strip()
            if not text and not comment.image_urls:
                raise InvalidRequestError(ApiErrorCode.E_COMMENT_EMPTY, "Comment text is required")
            comment.text = text
        if req.status is not None:
            comment.status = req.status.value

    comment_out = _comment_with_replies(db, comment)
    logger.info(
        "comment_updated",
        comment_id=str(comment_id),
        text_changed=req.text is not None,
        status=comment.status,
    )
    (broadcaster or get_broadcaster()).publish(
        file.id, EventKind.COMMENT_UPDATED, comment_out, sender_id=viewer_id
    )
    return comment_out


def delete_comment(
    db: Session,
    viewer_id: UUID,
    comment_id: UUID,
    *,
    storage_client: StorageClientBase | None = None,
    broadcaster: Broadcaster | None = None,
) -> None:
    """Delete a comment and its replies.

    Raises:
        NotFoundError(E_COMMENT_NOT_FOUND): If missing, already deleted, or not visible.
        ForbiddenError: E_REVISION_LOCKED, or E_FORBIDDEN for non-author non-admins.
    """
    comment = get_comment_for_viewer_or_404(db, viewer_id, comment_id)
    annotation_id = comment.annotation_id
    file = comment.annotation.file
    set_file_context(str(file.id))
    require_unlocked(file)
    if comment.user_id != viewer_id and not can_moderate_project(db, viewer_id, file.project_id):
        raise ForbiddenError(ApiErrorCode.E_FORBIDDEN, "Only the author or an admin can delete")

    image_urls = list(comment.image_urls or [])
    reply_ids = (
        db.execute(select(Comment.id).where(Comment.parent_id == comment_id)).scalars().all()
    )

    with transaction(db):
        result = db.execute(delete(Comment).where(Comment.id == comment_id))
        if result.rowcount == 0:
            raise NotFoundError(ApiErrorCode.E_COMMENT_NOT_FOUND, "Comment not found")

    logger.info(
        "comment_deleted",
        comment_id=str(comment_id),
        annotation_id=str(annotation_id),
        reply_count=len(reply_ids),
    )

    if image_urls:
        image_attachments.delete_comment_images(
            comment_id, image_urls, storage_client=storage_client or get_storage_client()
        )
    (broadcaster or get_broadcaster()).publish(
        file.id,
        EventKind.COMMENT_DELETED,
        EntityDeleted(id=comment_id, annotation_id=annotation_id),
        sender_id=viewer_id,
    )


def upload_comment_image(
    db: Session,
    viewer_id: UUID,
    file_id: UUID,
    comment_id: UUID,
    upload: ImageUpload,
    *,
    storage_client: StorageClientBase | None = None,
) -> CommentImageUploadOut:
    """Store one image ahead of creating the comment it belongs to.

    The object lands under comments/{comment_id}/, so the returned URL is
    accepted in image_urls for that comment id and no other.

    Raises:
        NotFoundError(E_FILE_NOT_FOUND): If the file is missing or not visible.
        ForbiddenError: E_FORBIDDEN, E_REVISION_LOCKED.
        InvalidRequestError: E_INVALID_FILE_TYPE, E_FILE_TOO_LARGE.
        ConflictError(E_ID_CONFLICT): If the comment id is taken on another file or by another author.
        ApiError(E_UPLOAD_FAILED): If storage rejects the object.
    """
    file = get_file_for_viewer_or_404(db, viewer_id, file_id)
    set_file_context(str(file.id))
    require_write_access(db, viewer_id, file)
    require_unlocked(file)
    image_attachments.validate_image_files([upload])

    existing = db.get(Comment, comment_id, populate_existing=True)
    if existing is not None and (
        existing.user_id != viewer_id or existing.annotation.file_id != file.id
    ):
        raise ConflictError(ApiErrorCode.E_ID_CONFLICT, "Comment id already in use")

    try:
        stored = image_attachments.upload_comment_image(
            comment_id, upload, storage_client=storage_client or get_storage_client()
        )
    except StorageError as e:
        logger.warning("comment_image_upload_failed", comment_id=str(comment_id), error=str(e))
        raise ApiError(ApiErrorCode.E_UPLOAD_FAILED, "Failed to upload image") from e

    logger.info("comment_image_uploaded", comment_id=str(comment_id), path=stored.path)
    return CommentImageUploadOut(comment_id=comment_id, path=stored.path, url=stored.url)
