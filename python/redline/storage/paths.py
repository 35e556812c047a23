"""Storage path building utilities.

This module is the single point of logic for comment attachment paths.
All path construction must go through build_comment_image_path() so the
test-run prefix is applied exactly once.

Path Invariant:
    - Production: comments/{comment_id}/{epoch_ms}-{index}-{random}.{ext}
    - Test: test_runs/{run_id}/comments/{comment_id}/{epoch_ms}-{index}-{random}.{ext}

Rules:
    - No leading slash
    - No user identifiers in paths
    - The comment id scopes the path; URLs attached to or deleted for a
      comment must resolve under that comment's prefix
"""

import os
import secrets
import time
from urllib.parse import unquote, urlparse
from uuid import UUID

# Environment variable for test run prefix
TEST_PREFIX_ENV_VAR = "STORAGE_TEST_PREFIX"

CONTENT_TYPE_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/bmp": "bmp",
}


def _get_test_prefix() -> str:
    prefix = os.environ.get(TEST_PREFIX_ENV_VAR, "")
    if prefix and not prefix.endswith("/"):
        prefix = f"{prefix}/"
    return prefix


def get_image_extension(content_type: str | None, filename: str | None = None) -> str:
    """Pick a file extension for an uploaded image.

    Prefers the declared content type, then the filename suffix, then "jpg".
    """
    if content_type:
        ext = CONTENT_TYPE_EXTENSIONS.get(content_type.split(";")[0].strip().lower())
        if ext:
            return ext
    if filename and "." in filename:
        suffix = filename.rsplit(".", 1)[1].lower()
        if suffix.isalnum() and len(suffix) <= 5:
            return suffix
    return "jpg"


def comment_image_prefix(comment_id: UUID | str) -> str:
    return f"{_get_test_prefix()}comments/{comment_id}/"


def build_comment_image_path(comment_id: UUID | str, index: int, ext: str) -> str:
    """Build a unique storage path for one attachment of a comment.

    Example:
        >>> build_comment_image_path(uuid4(), 0, "png")
        'comments/5b1c.../1718000000000-0-k3j9x2a1q.png'
    """
    unique = f"{int(time.time() * 1000)}-{index}-{secrets.token_hex(5)}"
    return f"{comment_image_prefix(comment_id)}{unique}.{ext}"


def is_comment_image_path(path: str | None, comment_id: UUID | str) -> bool:
    """True if path is a single object directly under the comment's prefix."""
    if not path:
        return False
    prefix = comment_image_prefix(comment_id)
    if not path.startswith(prefix):
        return False
    name = path[len(prefix) :]
    return bool(name) and "/" not in name and name not in (".", "..")


def path_from_signed_url(url: str, bucket: str) -> str | None:
    """Recover the object path from a signed download URL.

    Signed URLs look like .../object/sign/{bucket}/{path}?token=...
    Returns None for URLs that do not point into bucket.
    """
    parsed = urlparse(url)
    marker = f"/object/sign/{bucket}/"
    idx = parsed.path.find(marker)
    if idx == -1:
        return None
    path = unquote(parsed.path[idx + len(marker) :])
    return path or None
