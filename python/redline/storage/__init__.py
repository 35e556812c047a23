"""Storage module for comment image attachments.

Provides:
- StorageClient for interacting with Supabase Storage
- FakeStorageClient for tests and local development
- Path building utilities for consistent storage paths
"""

from redline.storage.client import (
    FakeStorageClient,
    StorageClient,
    StorageClientBase,
    StorageError,
    get_storage_client,
)
from redline.storage.paths import (
    build_comment_image_path,
    get_image_extension,
    path_from_signed_url,
)

__all__ = [
    "StorageClient",
    "StorageClientBase",
    "FakeStorageClient",
    "StorageError",
    "get_storage_client",
    "build_comment_image_path",
    "get_image_extension",
    "path_from_signed_url",
]
