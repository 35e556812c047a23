"""Annotation service layer.

Implements the atomic annotation + first comment create, plus list/get/delete.

All operations:
- Use E_FILE_NOT_FOUND / E_ANNOTATION_NOT_FOUND for both "missing" and
  "not a project member" (no existence probing)
- Require write access (commenter and above) and an unlocked revision for mutations
- Broadcast on annotations:{file_id} only after the transaction commits

Creation is idempotent on the client-generated ids: the rows are inserted with
ON CONFLICT (id) DO NOTHING and an existing row is reused, never duplicated.
A reused id that belongs to another file or author is a 409.

Service functions correspond 1:1 with route handlers.
Routes are transport-only and call exactly one service function.
"""

from collections import defaultdict
from uuid import UUID, uuid4

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from redline.auth.permissions import can_moderate_project, can_read_project, can_write_project
from redline.db.models import Annotation, Comment, File, FileType, Viewport
from redline.db.session import insert_ignoring_conflict, transaction
from redline.errors import (
    ApiErrorCode,
    ConflictError,
    ForbiddenError,
    InvalidRequestError,
    NotFoundError,
)
from redline.logging import get_logger, set_file_context
from redline.schemas.annotations import (
    MAX_IMAGES_PER_COMMENT,
    AnnotationOut,
    CreateAnnotationWithCommentOut,
    CreateAnnotationWithCommentRequest,
    EntityDeleted,
)
from redline.schemas.comments import CommentOut, UserOut
from redline.schemas.events import EventKind
from redline.schemas.targets import TARGET_ADAPTER, TARGET_KIND_FOR
from redline.services import image_attachments
from redline.services.broadcast import Broadcaster, get_broadcaster
from redline.services.image_attachments import ImageUpload
from redline.storage.client import StorageClientBase, get_storage_client

logger = get_logger(__name__)


# =============================================================================
# Shared Helpers
# =============================================================================


def get_file_for_viewer_or_404(db: Session, viewer_id: UUID, file_id: UUID) -> File:
    """Load a file the viewer can read.

    Raises:
        NotFoundError(E_FILE_NOT_FOUND): If the file doesn't exist OR the viewer
            is not a member of its project.
    """
    file = db.get(File, file_id)
    if file is None or not can_read_project(db, viewer_id, file.project_id):
        raise NotFoundError(ApiErrorCode.E_FILE_NOT_FOUND, "File not found")
    return file


def get_annotation_for_viewer_or_404(db: Session, viewer_id: UUID, annotation_id: UUID) -> Annotation:
    """Load an annotation on a file the viewer can read.

    Raises:
        NotFoundError(E_ANNOTATION_NOT_FOUND): If missing or not visible.
    """
    annotation = db.get(Annotation, annotation_id, populate_existing=True)
    if annotation is None or not can_read_project(db, viewer_id, annotation.file.project_id):
        raise NotFoundError(ApiErrorCode.E_ANNOTATION_NOT_FOUND, "Annotation not found")
    return annotation


def require_write_access(db: Session, viewer_id: UUID, file: File) -> None:
    """Raise 403 if the viewer may read but not annotate."""
    if not can_write_project(db, viewer_id, file.project_id):
        raise ForbiddenError(ApiErrorCode.E_FORBIDDEN, "Comment access required")


def require_unlocked(file: File) -> None:
    """Raise 403 if the file's revision has been signed off."""
    if file.is_signed_off:
        raise ForbiddenError(ApiErrorCode.E_REVISION_LOCKED, "File revision is signed off")


def validate_viewport_or_400(file: File, viewport: Viewport | None) -> None:
    """Website annotations carry a viewport; image annotations never do."""
    if file.is_website and viewport is None:
        raise InvalidRequestError(
            ApiErrorCode.E_VIEWPORT_REQUIRED, "viewport is required for website files"
        )
    if not file.is_website and viewport is not None:
        raise InvalidRequestError(
            ApiErrorCode.E_VIEWPORT_NOT_ALLOWED, "viewport is only allowed for website files"
        )


def validate_target_or_400(file: File, req: CreateAnnotationWithCommentRequest) -> None:
    expected = TARGET_KIND_FOR[(FileType(file.file_type), req.annotation_type)]
    if req.target.kind != expected:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_TARGET,
            f"{req.annotation_type.value} annotations on {file.file_type.lower()} files "
            f"require a {expected} target",
        )


# =============================================================================
# Serialization
# =============================================================================


def comment_to_out(comment: Comment, replies: list[CommentOut] | None = None) -> CommentOut:
    return CommentOut(
        id=comment.id,
        annotation_id=comment.annotation_id,
        author=UserOut.model_validate(comment.author),
        text=comment.text,
        status=comment.status,
        image_urls=list(comment.image_urls or []),
        parent_id=comment.parent_id,
        created_at=comment.created_at,
        updated_at=comment.updated_at,
        replies=replies or [],
    )


def build_comment_tree(comments: list[Comment]) -> list[CommentOut]:
    """Nest flat comment rows one level deep.

    Input order is preserved among siblings. Replies whose parent is not in
    the list are dropped.
    """
    replies_by_parent: dict[UUID, list[CommentOut]] = defaultdict(list)
    for comment in comments:
        if comment.parent_id is not None:
            replies_by_parent[comment.parent_id].append(comment_to_out(comment))

    return [
        comment_to_out(comment, replies_by_parent.get(comment.id, []))
        for comment in comments
        if comment.parent_id is None
    ]


def annotation_to_out(annotation: Annotation, comments: list[Comment]) -> AnnotationOut:
    return AnnotationOut(
        id=annotation.id,
        file_id=annotation.file_id,
        author=UserOut.model_validate(annotation.author),
        annotation_type=annotation.annotation_type,
        target=TARGET_ADAPTER.validate_python(annotation.target),
        style=annotation.style,
        viewport=annotation.viewport,
        created_at=annotation.created_at,
        updated_at=annotation.updated_at,
        comments=build_comment_tree(comments),
    )


def load_comments(db: Session, annotation_ids: list[UUID]) -> dict[UUID, list[Comment]]:
    """Fresh comment rows per annotation, oldest first."""
    grouped: dict[UUID, list[Comment]] = defaultdict(list)
    if not annotation_ids:
        return grouped
    rows = (
        db.execute(
            select(Comment)
            .where(Comment.annotation_id.in_(annotation_ids))
            .order_by(Comment.created_at, Comment.id)
            .execution_options(populate_existing=True)
        )
        .scalars()
        .all()
    )
    for comment in rows:
        grouped[comment.annotation_id].append(comment)
    return grouped


# =============================================================================
# Service Functions (One per Route)
# =============================================================================


def create_annotation_with_comment(
    db: Session,
    viewer_id: UUID,
    req: CreateAnnotationWithCommentRequest,
    image_files: list[ImageUpload] | None = None,
    *,
    storage_client: StorageClientBase | None = None,
    broadcaster: Broadcaster | None = None,
) -> CreateAnnotationWithCommentOut:
    """Create an annotation and its first comment in one transaction.

    Attached image files are uploaded after commit; the returned comment
    carries whichever uploads succeeded.

    Raises:
        NotFoundError: E_FILE_NOT_FOUND.
        ForbiddenError: E_FORBIDDEN, E_REVISION_LOCKED.
        InvalidRequestError: viewport, target, empty comment, attachment problems.
        ConflictError: E_ID_CONFLICT if an id is already owned by another file/author.
    """
    image_files = image_files or []
    broadcaster = broadcaster or get_broadcaster()
    set_file_context(str(req.file_id))

    # Preconditions, in order: visibility, write access, lock, shape, content
    file = get_file_for_viewer_or_404(db, viewer_id, req.file_id)
    require_write_access(db, viewer_id, file)
    require_unlocked(file)
    validate_viewport_or_400(file, req.viewport)
    validate_target_or_400(file, req)

    text = req.comment.strip()
    has_images = bool(image_files) or bool(req.image_urls)
    if not text and not has_images:
        raise InvalidRequestError(ApiErrorCode.E_COMMENT_EMPTY, "Comment text is required")
    if len(image_files) + len(req.image_urls or []) > MAX_IMAGES_PER_COMMENT:
        raise InvalidRequestError(
            ApiErrorCode.E_TOO_MANY_IMAGES, f"At most {MAX_IMAGES_PER_COMMENT} images per comment"
        )
    if image_files:
        image_attachments.validate_image_files(image_files)
    if req.image_urls:
        storage_client = storage_client or get_storage_client()
        image_attachments.validate_image_urls(req.comment_id, req.image_urls, storage_client.bucket)

    with transaction(db):
        annotation_created = insert_ignoring_conflict(
            db,
            Annotation.__table__,
            {
                "id": req.id,
                "file_id": req.file_id,
                "user_id": viewer_id,
                "annotation_type": req.annotation_type.value,
                "target": req.target.model_dump(mode="json"),
                "style": req.style.model_dump(mode="json", exclude_none=True) if req.style else None,
                "viewport": req.viewport.value if req.viewport else None,
            },
        )
        if not annotation_created:
            existing = db.get(Annotation, req.id, populate_existing=True)
            if existing.file_id != req.file_id or existing.user_id != viewer_id:
                raise ConflictError(ApiErrorCode.E_ID_CONFLICT, "Annotation id already in use")

        comment_id = req.comment_id
        if comment_id is None and not annotation_created:
            # Retry without a client comment id: reuse the first comment
            comment_id = db.execute(
                select(Comment.id)
                .where(Comment.annotation_id == req.id, Comment.parent_id.is_(None))
                .order_by(Comment.created_at, Comment.id)
                .limit(1)
            ).scalar_one_or_none()
        if comment_id is None:
            comment_id = uuid4()

        comment_created = insert_ignoring_conflict(
            db,
            Comment.__table__,
            {
                "id": comment_id,
                "annotation_id": req.id,
                "user_id": viewer_id,
                "text": text,
                "image_urls": list(req.image_urls) if req.image_urls else None,
            },
        )
        if not comment_created:
            existing_comment = db.get(Comment, comment_id, populate_existing=True)
            if existing_comment.annotation_id != req.id or existing_comment.user_id != viewer_id:
                raise ConflictError(ApiErrorCode.E_ID_CONFLICT, "Comment id already in use")

    annotation = db.get(Annotation, req.id, populate_existing=True)
    comments = load_comments(db, [annotation.id])[annotation.id]
    annotation_out = annotation_to_out(annotation, comments)
    comment = next(c for c in comments if c.id == comment_id)
    comment_out = comment_to_out(comment)

    if annotation_created:
        logger.info(
            "annotation_created",
            annotation_id=str(annotation.id),
            comment_id=str(comment_id),
            annotation_type=annotation.annotation_type,
            image_count=len(image_files),
        )
        broadcaster.publish(
            file.id, EventKind.ANNOTATION_CREATED, annotation_out, sender_id=viewer_id
        )
    else:
        logger.info(
            "annotation_reused",
            annotation_id=str(annotation.id),
            comment_id=str(comment_id),
            comment_created=comment_created,
        )
        if comment_created:
            broadcaster.publish(file.id, EventKind.COMMENT_CREATED, comment_out, sender_id=viewer_id)

    if image_files and not comment_created and comment.image_urls:
        # Retry of a create whose images already landed
        logger.info(
            "comment_images_already_attached",
            comment_id=str(comment_id),
            image_count=len(comment.image_urls),
        )
        image_files = []

    if image_files:
        urls = image_attachments.attach_images_to_comment(
            db,
            comment_id,
            image_files,
            storage_client=storage_client or get_storage_client(),
            broadcaster=broadcaster,
            sender_id=viewer_id,
        )
        comment_out.image_urls.extend(urls)
        for top_level in annotation_out.comments:
            if top_level.id == comment_id:
                top_level.image_urls.extend(urls)

    return CreateAnnotationWithCommentOut(annotation=annotation_out, comment=comment_out)


def list_annotations_for_file(
    db: Session, viewer_id: UUID, file_id: UUID, viewport: Viewport | None = None
) -> list[AnnotationOut]:
    """List a file's annotations, oldest first, each with its comment tree.

    The viewport filter applies to website files only; image annotations have
    no viewport and are always returned.
    """
    file = get_file_for_viewer_or_404(db, viewer_id, file_id)

    query = select(Annotation).where(Annotation.file_id == file.id)
    if viewport is not None and file.is_website:
        query = query.where(Annotation.viewport == viewport.value)
    annotations = (
        db.execute(query.order_by(Annotation.created_at, Annotation.id)).scalars().unique().all()
    )

    comments = load_comments(db, [a.id for a in annotations])
    return [annotation_to_out(a, comments.get(a.id, [])) for a in annotations]


def get_annotation(db: Session, viewer_id: UUID, annotation_id: UUID) -> AnnotationOut:
    annotation = get_annotation_for_viewer_or_404(db, viewer_id, annotation_id)
    comments = load_comments(db, [annotation.id])
    return annotation_to_out(annotation, comments.get(annotation.id, []))


def delete_annotation(
    db: Session,
    viewer_id: UUID,
    annotation_id: UUID,
    *,
    storage_client: StorageClientBase | None = None,
    broadcaster: Broadcaster | None = None,
) -> None:
    """Delete an annotation and (by cascade) its comments.

    The author or a project admin may delete. Stored comment images are
    removed best-effort after commit.

    Raises:
        NotFoundError(E_ANNOTATION_NOT_FOUND): If missing, already deleted, or not visible.
        ForbiddenError: E_REVISION_LOCKED, or E_FORBIDDEN for non-author non-admins.
    """
    annotation = get_annotation_for_viewer_or_404(db, viewer_id, annotation_id)
    file = annotation.file
    set_file_context(str(file.id))
    require_unlocked(file)
    if annotation.user_id != viewer_id and not can_moderate_project(db, viewer_id, file.project_id):
        raise ForbiddenError(ApiErrorCode.E_FORBIDDEN, "Only the author or an admin can delete")

    image_urls = {
        comment.id: list(comment.image_urls)
        for comment in load_comments(db, [annotation.id]).get(annotation.id, [])
        if comment.image_urls
    }

    with transaction(db):
        result = db.execute(delete(Annotation).where(Annotation.id == annotation_id))
        if result.rowcount == 0:
            raise NotFoundError(ApiErrorCode.E_ANNOTATION_NOT_FOUND, "Annotation not found")

    logger.info(
        "annotation_deleted",
        annotation_id=str(annotation_id),
        image_count=sum(len(urls) for urls in image_urls.values()),
    )

    if image_urls:
        storage_client = storage_client or get_storage_client()
        for comment_id, urls in image_urls.items():
            image_attachments.delete_comment_images(comment_id, urls, storage_client=storage_client)
    (broadcaster or get_broadcaster()).publish(
        file.id, EventKind.ANNOTATION_DELETED, EntityDeleted(id=annotation_id), sender_id=viewer_id
    )
