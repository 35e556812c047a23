"""Comment image attachment pipeline.

Runs strictly after the annotation/comment transaction has committed:

1. validate_image_files()  - before the transaction; 400s on bad input
2. upload_comment_images() - compress, upload and sign each file in parallel,
                             each racing IMAGE_UPLOAD_TIMEOUT_S
3. attach_images_to_comment() - patch image_urls with the successes and
                             broadcast comment-images-attached

A failed or timed-out file is logged and skipped. It never fails the other
files, the request, or the already-created comment.

Clients may instead upload ahead of time (upload_comment_image) and pass the
signed URLs on create; validate_image_urls accepts only URLs under the
comment's own prefix, and delete_comment_images never reaches outside it.

Storage paths: comments/{comment_id}/{epoch_ms}-{index}-{random}.{ext}
"""

import io
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from time import monotonic
from uuid import UUID

from PIL import Image, ImageOps, UnidentifiedImageError
from sqlalchemy.orm import Session

from redline.config import get_settings
from redline.db.models import Comment
from redline.db.session import transaction
from redline.errors import ApiErrorCode, InvalidRequestError
from redline.logging import get_logger
from redline.schemas.annotations import MAX_IMAGES_PER_COMMENT, CommentImagesAttached
from redline.schemas.events import EventKind
from redline.services.broadcast import Broadcaster, get_broadcaster
from redline.storage.client import StorageClientBase
from redline.storage.paths import (
    build_comment_image_path,
    get_image_extension,
    is_comment_image_path,
    path_from_signed_url,
)

logger = get_logger(__name__)

# =============================================================================
# Constants
# =============================================================================

REJECTED_CONTENT_TYPES: set[str] = {"image/svg+xml"}

COMPRESS_MAX_WIDTH = 1920
COMPRESS_MAX_HEIGHT = 1920
COMPRESS_QUALITY = 0.8
COMPRESS_MIN_QUALITY = 0.2
COMPRESS_QUALITY_STEP = 0.2
COMPRESS_MAX_BYTES = 2 * 1024 * 1024


@dataclass(frozen=True)
class ImageUpload:
    """One attached file as received from the multipart request."""

    filename: str | None
    content_type: str | None
    data: bytes


@dataclass(frozen=True)
class CompressedImage:
    data: bytes
    content_type: str | None
    compressed: bool


@dataclass(frozen=True)
class StoredImage:
    """An uploaded attachment: its object path and signed download URL."""

    path: str
    url: str


# =============================================================================
# Validation
# =============================================================================


def _base_content_type(content_type: str | None) -> str:
    return (content_type or "").split(";")[0].strip().lower()


def validate_image_files(files: list[ImageUpload], max_bytes: int | None = None) -> None:
    """Reject attachment sets the pipeline must not accept.

    Raises:
        InvalidRequestError: E_TOO_MANY_IMAGES, E_INVALID_FILE_TYPE or E_FILE_TOO_LARGE.
    """
    if max_bytes is None:
        max_bytes = get_settings().max_comment_image_bytes

    if len(files) > MAX_IMAGES_PER_COMMENT:
        raise InvalidRequestError(
            ApiErrorCode.E_TOO_MANY_IMAGES,
            f"At most {MAX_IMAGES_PER_COMMENT} images per comment",
        )

    for upload in files:
        content_type = _base_content_type(upload.content_type)
        if not content_type.startswith("image/") or content_type in REJECTED_CONTENT_TYPES:
            raise InvalidRequestError(
                ApiErrorCode.E_INVALID_FILE_TYPE,
                f"Unsupported file type: {content_type or 'unknown'}",
            )
        if not upload.data:
            raise InvalidRequestError(ApiErrorCode.E_INVALID_FILE_TYPE, "Empty image file")
        if len(upload.data) > max_bytes:
            raise InvalidRequestError(
                ApiErrorCode.E_FILE_TOO_LARGE,
                f"Image exceeds {max_bytes // (1024 * 1024)}MB limit",
            )


def validate_image_urls(comment_id: UUID | None, urls: list[str] | None, bucket: str) -> None:
    """Accept pre-uploaded URLs only if they point at this comment's own objects.

    Raises:
        InvalidRequestError: E_INVALID_IMAGE_URL.
    """
    if not urls:
        return
    if comment_id is None:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_IMAGE_URL, "comment_id is required with image_urls"
        )
    for url in urls:
        if not is_comment_image_path(path_from_signed_url(url, bucket), comment_id):
            raise InvalidRequestError(
                ApiErrorCode.E_INVALID_IMAGE_URL, "Image URL does not belong to this comment"
            )


# =============================================================================
# Compression
# =============================================================================


def _has_alpha(image: Image.Image) -> bool:
    if image.mode in ("RGBA", "LA", "PA"):
        return True
    return image.mode == "P" and "transparency" in image.info


def compress_image(
    data: bytes,
    max_width: int = COMPRESS_MAX_WIDTH,
    max_height: int = COMPRESS_MAX_HEIGHT,
    quality: float = COMPRESS_QUALITY,
    max_bytes: int = COMPRESS_MAX_BYTES,
) -> CompressedImage:
    """Downscale and re-encode an image to fit the size limits.

    Aspect ratio is preserved. Images with an alpha channel stay PNG, all
    others become JPEG; JPEG quality drops in 0.2 steps (to 0.2) until the
    output fits max_bytes. Input Pillow cannot decode, and images already
    within bounds and under max_bytes, are returned unchanged.
    """
    try:
        with Image.open(io.BytesIO(data)) as source:
            source.load()
            width, height = source.size
            if width <= max_width and height <= max_height and len(data) <= max_bytes:
                return CompressedImage(data=data, content_type=None, compressed=False)

            image = ImageOps.exif_transpose(source)
            if image.width > max_width or image.height > max_height:
                image = ImageOps.contain(image, (max_width, max_height), Image.Resampling.LANCZOS)

            if _has_alpha(image):
                buffer = io.BytesIO()
                image.convert("RGBA").save(buffer, format="PNG", optimize=True)
                return CompressedImage(data=buffer.getvalue(), content_type="image/png", compressed=True)

            rgb = image.convert("RGB")
            encoded = b""
            step = int(round(COMPRESS_QUALITY_STEP * 100))
            floor = int(round(COMPRESS_MIN_QUALITY * 100))
            for percent in range(int(round(quality * 100)), floor - 1, -step):
                buffer = io.BytesIO()
                rgb.save(buffer, format="JPEG", quality=percent, optimize=True)
                encoded = buffer.getvalue()
                if len(encoded) <= max_bytes:
                    break
            return CompressedImage(data=encoded, content_type="image/jpeg", compressed=True)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        logger.info("image_compress_skipped", reason=str(e))
        return CompressedImage(data=data, content_type=None, compressed=False)


# =============================================================================
# Upload
# =============================================================================


def _upload_one(
    storage_client: StorageClientBase,
    comment_id: UUID,
    index: int,
    upload: ImageUpload,
    timeout: float,
    url_expiry: int,
) -> StoredImage:
    compressed = compress_image(upload.data)
    content_type = compressed.content_type or _base_content_type(upload.content_type)
    path = build_comment_image_path(
        comment_id, index, get_image_extension(content_type, upload.filename)
    )
    storage_client.upload_object(path, compressed.data, content_type=content_type, timeout=timeout)
    try:
        url = storage_client.sign_download(path, expires_in=url_expiry)
    except Exception:
        storage_client.delete_object(path)
        raise
    return StoredImage(path=path, url=url)


def _discard_late_upload(storage_client: StorageClientBase, comment_id: UUID, index: int):
    """Done-callback removing an object whose upload finished past the deadline."""

    def callback(future: Future) -> None:
        if future.cancelled() or future.exception() is not None:
            return
        stored = future.result()
        logger.info(
            "late_image_upload_discarded",
            comment_id=str(comment_id),
            index=index,
            path=stored.path,
        )
        storage_client.delete_object(stored.path)

    return callback


def upload_comment_images(
    comment_id: UUID,
    files: list[ImageUpload],
    *,
    storage_client: StorageClientBase,
    timeout: float | None = None,
    url_expiry: int | None = None,
) -> list[str]:
    """Upload all files concurrently and return signed URLs of the successes.

    URLs are in completion order. Every file shares one deadline measured
    from the start of the batch, so each races the same fixed timeout.
    Uploads still running at the deadline are not attached; if they land
    later, their objects are deleted.
    """
    if not files:
        return []

    settings = get_settings()
    timeout = settings.image_upload_timeout_s if timeout is None else timeout
    url_expiry = settings.comment_image_url_expiry_s if url_expiry is None else url_expiry

    executor = ThreadPoolExecutor(
        max_workers=min(len(files), MAX_IMAGES_PER_COMMENT),
        thread_name_prefix="comment-image-upload",
    )
    futures = {
        executor.submit(_upload_one, storage_client, comment_id, index, upload, timeout, url_expiry): index
        for index, upload in enumerate(files)
    }

    urls: list[str] = []
    deadline = monotonic() + timeout
    pending = set(futures)
    try:
        while pending:
            remaining = deadline - monotonic()
            if remaining <= 0:
                break
            done, pending = wait(pending, timeout=remaining, return_when=FIRST_COMPLETED)
            for future in done:
                index = futures[future]
                try:
                    urls.append(future.result().url)
                except Exception as e:
                    logger.warning(
                        "image_upload_failed",
                        comment_id=str(comment_id),
                        index=index,
                        error=str(e),
                    )
        for future in pending:
            logger.warning(
                "image_upload_timeout",
                comment_id=str(comment_id),
                index=futures[future],
                timeout_s=timeout,
            )
            future.add_done_callback(_discard_late_upload(storage_client, comment_id, futures[future]))
    finally:
        # Hung uploads keep running in the background; nobody waits on them
        executor.shutdown(wait=False, cancel_futures=True)

    return urls


def upload_comment_image(
    comment_id: UUID,
    upload: ImageUpload,
    *,
    storage_client: StorageClientBase,
    index: int = 0,
) -> StoredImage:
    """Compress, upload and sign one file ahead of attaching it to a comment.

    Raises:
        StorageError: If the upload or signing fails.
    """
    settings = get_settings()
    return _upload_one(
        storage_client,
        comment_id,
        index,
        upload,
        settings.image_upload_timeout_s,
        settings.comment_image_url_expiry_s,
    )


def attach_images_to_comment(
    db: Session,
    comment_id: UUID,
    files: list[ImageUpload],
    *,
    storage_client: StorageClientBase,
    broadcaster: Broadcaster | None = None,
    sender_id: UUID | None = None,
) -> list[str]:
    """Upload files for a committed comment and record the successful URLs.

    Returns the new URLs (possibly empty). The comment row is only touched,
    and comment-images-attached only broadcast, when at least one succeeded.
    """
    urls = upload_comment_images(comment_id, files, storage_client=storage_client)
    if not urls:
        logger.warning("comment_images_all_failed", comment_id=str(comment_id), attempted=len(files))
        return []

    with transaction(db):
        comment = db.get(Comment, comment_id)
        if comment is None:
            # Deleted while uploading; remove the objects instead of attaching them
            logger.warning("comment_gone_before_attach", comment_id=str(comment_id))
            delete_comment_images(comment_id, urls, storage_client=storage_client)
            return []
        comment.image_urls = list(comment.image_urls or []) + urls
        annotation_id = comment.annotation_id
        file_id = comment.annotation.file_id

    logger.info(
        "comment_images_attached",
        comment_id=str(comment_id),
        attached=len(urls),
        attempted=len(files),
    )

    (broadcaster or get_broadcaster()).publish(
        file_id,
        EventKind.COMMENT_IMAGES_ATTACHED,
        CommentImagesAttached(annotation_id=annotation_id, comment_id=comment_id, image_urls=urls),
        sender_id=sender_id,
    )
    return urls


def delete_comment_images(
    comment_id: UUID, urls: list[str], *, storage_client: StorageClientBase
) -> None:
    """Best-effort removal of a comment's stored attachments.

    Only objects under the comment's own prefix are deleted; any other URL
    is left alone.
    """
    for url in urls:
        path = path_from_signed_url(url, storage_client.bucket)
        if path is None:
            logger.debug("comment_image_path_unrecognized", url=url[:80])
            continue
        if not is_comment_image_path(path, comment_id):
            logger.warning("comment_image_out_of_scope", comment_id=str(comment_id), path=path)
            continue
        storage_client.delete_object(path)
