"""Comment API routes.

Replies and additional comments on existing annotations.
Routes are transport-only: each calls exactly one service function.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Response, UploadFile
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from redline.api.deps import get_db, get_event_broadcaster, get_storage
from redline.auth.middleware import Viewer, get_viewer
from redline.responses import success_response
from redline.schemas.comments import CreateCommentRequest, UpdateCommentRequest
from redline.services import comments as comments_service
from redline.services.broadcast import Broadcaster
from redline.services.image_attachments import ImageUpload
from redline.storage.client import StorageClientBase

router = APIRouter(tags=["comments"])


@router.post("/comments", status_code=201)
def create_comment(
    request: CreateCommentRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    storage: Annotated[StorageClientBase, Depends(get_storage)],
    broadcaster: Annotated[Broadcaster, Depends(get_event_broadcaster)],
) -> dict:
    """Add a comment or reply to an annotation.

    Errors:
        E_ANNOTATION_NOT_FOUND (404): Annotation doesn't exist or is not visible.
        E_FORBIDDEN / E_REVISION_LOCKED (403)
        E_COMMENT_EMPTY / E_INVALID_PARENT / E_REPLY_IMAGES_NOT_ALLOWED (400)
        E_INVALID_IMAGE_URL (400): An image URL outside this comment's storage prefix.
        E_ID_CONFLICT (409): Id already used by another annotation or author.
    """
    result = comments_service.create_comment(
        db=db,
        viewer_id=viewer.user_id,
        req=request,
        storage_client=storage,
        broadcaster=broadcaster,
    )
    return success_response(result.model_dump(mode="json"))


@router.patch("/comments/{comment_id}")
def update_comment(
    comment_id: UUID,
    request: UpdateCommentRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    broadcaster: Annotated[Broadcaster, Depends(get_event_broadcaster)],
) -> dict:
    """Edit comment text (author only) and/or status.

    Errors:
        E_COMMENT_NOT_FOUND (404)
        E_NOT_AUTHOR / E_FORBIDDEN / E_REVISION_LOCKED (403)
    """
    result = comments_service.update_comment(
        db=db,
        viewer_id=viewer.user_id,
        comment_id=comment_id,
        req=request,
        broadcaster=broadcaster,
    )
    return success_response(result.model_dump(mode="json"))


@router.delete("/comments/{comment_id}", status_code=204)
def delete_comment(
    comment_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    storage: Annotated[StorageClientBase, Depends(get_storage)],
    broadcaster: Annotated[Broadcaster, Depends(get_event_broadcaster)],
) -> Response:
    """Delete a comment, its replies, and its stored images.

    Errors:
        E_COMMENT_NOT_FOUND (404)
        E_FORBIDDEN / E_REVISION_LOCKED (403)
    """
    comments_service.delete_comment(
        db=db,
        viewer_id=viewer.user_id,
        comment_id=comment_id,
        storage_client=storage,
        broadcaster=broadcaster,
    )
    return Response(status_code=204)


@router.post("/comments/images", status_code=201)
async def upload_comment_image(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    storage: Annotated[StorageClientBase, Depends(get_storage)],
    file_id: Annotated[UUID, Form()],
    comment_id: Annotated[UUID, Form()],
    file: Annotated[UploadFile, File()],
) -> dict:
    """Upload one image for a comment that is about to be created.

    The returned url goes into image_urls of the create request carrying
    the same comment id.

    Errors:
        E_FILE_NOT_FOUND (404)
        E_FORBIDDEN / E_REVISION_LOCKED (403)
        E_INVALID_FILE_TYPE / E_FILE_TOO_LARGE (400)
        E_ID_CONFLICT (409): Comment id owned by another author or file.
        E_UPLOAD_FAILED (500)
    """
    upload = ImageUpload(filename=file.filename, content_type=file.content_type, data=await file.read())
    result = await run_in_threadpool(
        comments_service.upload_comment_image,
        db,
        viewer.user_id,
        file_id,
        comment_id,
        upload,
        storage_client=storage,
    )
    return success_response(result.model_dump(mode="json"))
