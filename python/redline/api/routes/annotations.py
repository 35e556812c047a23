"""Annotation API routes.

Route handlers for annotation create/list/get/delete.
Routes are transport-only: each calls exactly one service function.

- POST /annotations/with-comment accepts either a JSON body or multipart form
  data with a "data" JSON field plus image0..imageN file parts
- All routes require authentication
- Response envelope: {"data": ...}
- Error envelope: {"error": {"code": "...", "message": "...", "request_id": "..."}}
"""

import re
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile

from redline.api.deps import get_db, get_event_broadcaster, get_storage
from redline.auth.middleware import Viewer, get_viewer
from redline.db.models import Viewport
from redline.errors import ApiErrorCode, InvalidRequestError
from redline.responses import success_response
from redline.schemas.annotations import MAX_IMAGES_PER_COMMENT, CreateAnnotationWithCommentRequest
from redline.services import annotations as annotations_service
from redline.services.broadcast import Broadcaster
from redline.services.image_attachments import ImageUpload
from redline.storage.client import StorageClientBase

router = APIRouter(tags=["annotations"])

_IMAGE_PART_RE = re.compile(r"^image(\d+)$")

# Parts beyond this are rejected by the service; the cap only bounds parsing
_MAX_FORM_FILES = MAX_IMAGES_PER_COMMENT * 4


async def _parse_create_request(
    request: Request,
) -> tuple[CreateAnnotationWithCommentRequest, list[ImageUpload]]:
    """Read a JSON or multipart creation request.

    Raises:
        InvalidRequestError: If the multipart body has no "data" field.
        pydantic.ValidationError: If the JSON payload is malformed.
    """
    content_type = request.headers.get("content-type", "")
    if not content_type.startswith("multipart/form-data"):
        body = await request.body()
        return CreateAnnotationWithCommentRequest.model_validate_json(body or b"{}"), []

    form = await request.form(max_files=_MAX_FORM_FILES)
    data = form.get("data")
    if not isinstance(data, str):
        raise InvalidRequestError(ApiErrorCode.E_INVALID_REQUEST, "Missing data field")
    req = CreateAnnotationWithCommentRequest.model_validate_json(data)

    parts: list[tuple[int, UploadFile]] = []
    for key, value in form.multi_items():
        match = _IMAGE_PART_RE.match(key)
        if match and isinstance(value, UploadFile):
            parts.append((int(match.group(1)), value))
    parts.sort(key=lambda part: part[0])

    images = [
        ImageUpload(
            filename=upload.filename,
            content_type=upload.content_type,
            data=await upload.read(),
        )
        for _, upload in parts
    ]
    return req, images


@router.post("/annotations/with-comment", status_code=201)
async def create_annotation_with_comment(
    request: Request,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    storage: Annotated[StorageClientBase, Depends(get_storage)],
    broadcaster: Annotated[Broadcaster, Depends(get_event_broadcaster)],
) -> dict:
    """Atomically create an annotation and its first comment.

    Retrying with the same annotation id (and comment_id) returns the
    original rows instead of duplicating them. Attached images are uploaded
    after commit; failed uploads are skipped.

    Returns 201 Created with {annotation, comment}.

    Errors:
        E_FILE_NOT_FOUND (404): File doesn't exist or viewer is not a member.
        E_FORBIDDEN (403): Viewer has read-only access.
        E_REVISION_LOCKED (403): File revision is signed off.
        E_VIEWPORT_REQUIRED / E_VIEWPORT_NOT_ALLOWED (400): Viewport/file type mismatch.
        E_INVALID_TARGET (400): Target kind doesn't match annotation type and surface.
        E_COMMENT_EMPTY (400): No text and no images.
        E_TOO_MANY_IMAGES / E_INVALID_FILE_TYPE / E_FILE_TOO_LARGE (400): Bad attachments.
        E_ID_CONFLICT (409): Id already used by another file or author.
    """
    req, image_files = await _parse_create_request(request)
    result = await run_in_threadpool(
        annotations_service.create_annotation_with_comment,
        db,
        viewer.user_id,
        req,
        image_files,
        storage_client=storage,
        broadcaster=broadcaster,
    )
    return success_response(result.model_dump(mode="json"))


@router.get("/files/{file_id}/annotations")
def list_file_annotations(
    file_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    viewport: Viewport | None = None,
) -> dict:
    """List a file's annotations, oldest first, with nested comments.

    Errors:
        E_FILE_NOT_FOUND (404): File doesn't exist or viewer is not a member.
    """
    result = annotations_service.list_annotations_for_file(
        db=db,
        viewer_id=viewer.user_id,
        file_id=file_id,
        viewport=viewport,
    )
    return success_response([a.model_dump(mode="json") for a in result])


@router.get("/annotations/{annotation_id}")
def get_annotation(
    annotation_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Get a single annotation with its comment tree.

    Errors:
        E_ANNOTATION_NOT_FOUND (404): Annotation doesn't exist or is not visible.
    """
    result = annotations_service.get_annotation(
        db=db,
        viewer_id=viewer.user_id,
        annotation_id=annotation_id,
    )
    return success_response(result.model_dump(mode="json"))


@router.delete("/annotations/{annotation_id}", status_code=204)
def delete_annotation(
    annotation_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    storage: Annotated[StorageClientBase, Depends(get_storage)],
    broadcaster: Annotated[Broadcaster, Depends(get_event_broadcaster)],
) -> Response:
    """Delete an annotation and its comments.

    Errors:
        E_ANNOTATION_NOT_FOUND (404): Annotation doesn't exist or is not visible.
        E_FORBIDDEN (403): Viewer is neither the author nor a project admin.
        E_REVISION_LOCKED (403): File revision is signed off.
    """
    annotations_service.delete_annotation(
        db=db,
        viewer_id=viewer.user_id,
        annotation_id=annotation_id,
        storage_client=storage,
        broadcaster=broadcaster,
    )
    return Response(status_code=204)
