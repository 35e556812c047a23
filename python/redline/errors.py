"""API error definitions.

All API errors are defined here with their corresponding HTTP status codes.
"""

from enum import Enum


class ApiErrorCode(str, Enum):
    """Standardized error codes for the API.

    Format: E_CATEGORY_NAME
    """

    # Authentication errors (401)
    E_UNAUTHENTICATED = "E_UNAUTHENTICATED"

    # Authorization errors (403)
    E_FORBIDDEN = "E_FORBIDDEN"
    E_REVISION_LOCKED = "E_REVISION_LOCKED"
    E_NOT_AUTHOR = "E_NOT_AUTHOR"

    # Not found errors (404)
    E_NOT_FOUND = "E_NOT_FOUND"
    E_FILE_NOT_FOUND = "E_FILE_NOT_FOUND"
    E_ANNOTATION_NOT_FOUND = "E_ANNOTATION_NOT_FOUND"
    E_COMMENT_NOT_FOUND = "E_COMMENT_NOT_FOUND"

    # Conflict errors (409)
    E_ID_CONFLICT = "E_ID_CONFLICT"

    # Validation errors (400)
    E_INVALID_REQUEST = "E_INVALID_REQUEST"
    E_INVALID_TARGET = "E_INVALID_TARGET"
    E_VIEWPORT_REQUIRED = "E_VIEWPORT_REQUIRED"
    E_VIEWPORT_NOT_ALLOWED = "E_VIEWPORT_NOT_ALLOWED"
    E_COMMENT_EMPTY = "E_COMMENT_EMPTY"
    E_INVALID_PARENT = "E_INVALID_PARENT"
    E_REPLY_IMAGES_NOT_ALLOWED = "E_REPLY_IMAGES_NOT_ALLOWED"
    E_TOO_MANY_IMAGES = "E_TOO_MANY_IMAGES"
    E_INVALID_FILE_TYPE = "E_INVALID_FILE_TYPE"
    E_FILE_TOO_LARGE = "E_FILE_TOO_LARGE"
    E_INVALID_IMAGE_URL = "E_INVALID_IMAGE_URL"

    # Server errors
    E_AUTH_UNAVAILABLE = "E_AUTH_UNAVAILABLE"  # 503
    E_INTERNAL = "E_INTERNAL"  # 500
    E_UPLOAD_FAILED = "E_UPLOAD_FAILED"  # 500
    E_SIGN_DOWNLOAD_FAILED = "E_SIGN_DOWNLOAD_FAILED"  # 500
    E_STORAGE_ERROR = "E_STORAGE_ERROR"  # 500


# Error code to HTTP status mapping
ERROR_CODE_TO_STATUS: dict[ApiErrorCode, int] = {
    ApiErrorCode.E_UNAUTHENTICATED: 401,
    ApiErrorCode.E_FORBIDDEN: 403,
    ApiErrorCode.E_REVISION_LOCKED: 403,
    ApiErrorCode.E_NOT_AUTHOR: 403,
    ApiErrorCode.E_NOT_FOUND: 404,
    ApiErrorCode.E_FILE_NOT_FOUND: 404,
    ApiErrorCode.E_ANNOTATION_NOT_FOUND: 404,
    ApiErrorCode.E_COMMENT_NOT_FOUND: 404,
    ApiErrorCode.E_ID_CONFLICT: 409,
    ApiErrorCode.E_INVALID_REQUEST: 400,
    ApiErrorCode.E_INVALID_TARGET: 400,
    ApiErrorCode.E_VIEWPORT_REQUIRED: 400,
    ApiErrorCode.E_VIEWPORT_NOT_ALLOWED: 400,
    ApiErrorCode.E_COMMENT_EMPTY: 400,
    ApiErrorCode.E_INVALID_PARENT: 400,
    ApiErrorCode.E_REPLY_IMAGES_NOT_ALLOWED: 400,
    ApiErrorCode.E_TOO_MANY_IMAGES: 400,
    ApiErrorCode.E_INVALID_FILE_TYPE: 400,
    ApiErrorCode.E_FILE_TOO_LARGE: 400,
    ApiErrorCode.E_INVALID_IMAGE_URL: 400,
    ApiErrorCode.E_AUTH_UNAVAILABLE: 503,
    ApiErrorCode.E_INTERNAL: 500,
    ApiErrorCode.E_UPLOAD_FAILED: 500,
    ApiErrorCode.E_SIGN_DOWNLOAD_FAILED: 500,
    ApiErrorCode.E_STORAGE_ERROR: 500,
}


class ApiError(Exception):
    """Base exception for API errors.

    Attributes:
        code: The error code enum value
        message: Human-readable error message
        status_code: HTTP status code (derived from code)
    """

    def __init__(self, code: ApiErrorCode, message: str):
        self.code = code
        self.message = message
        self.status_code = ERROR_CODE_TO_STATUS.get(code, 500)
        super().__init__(message)


class NotFoundError(ApiError):
    """Resource not found error."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_NOT_FOUND, message: str = "Not found"):
        super().__init__(code, message)


class ForbiddenError(ApiError):
    """Authorization failure error."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_FORBIDDEN, message: str = "Forbidden"):
        super().__init__(code, message)


class InvalidRequestError(ApiError):
    """Invalid request error."""

    def __init__(
        self, code: ApiErrorCode = ApiErrorCode.E_INVALID_REQUEST, message: str = "Invalid request"
    ):
        super().__init__(code, message)


class ConflictError(ApiError):
    """Client-supplied id already belongs to another resource."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_ID_CONFLICT, message: str = "Conflict"):
        super().__init__(code, message)
