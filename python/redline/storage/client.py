"""Supabase Storage client abstraction.

Provides a clean interface for the storage operations comment attachments need:
- Server-side object upload
- Signed download URLs (long-lived, embedded in comments)
- Object deletion (best-effort cleanup)

All methods receive the full storage_path directly - no prefix manipulation.
"""

import threading
from abc import ABC, abstractmethod
from uuid import uuid4

import httpx

from redline.config import get_settings
from redline.logging import get_logger

logger = get_logger(__name__)


class StorageError(Exception):
    """Storage operation error."""

    def __init__(self, message: str, code: str = "E_STORAGE_ERROR"):
        super().__init__(message)
        self.message = message
        self.code = code


class StorageClientBase(ABC):
    """Abstract base class for storage client implementations."""

    bucket: str

    @abstractmethod
    def upload_object(
        self,
        path: str,
        content: bytes,
        *,
        content_type: str,
        timeout: float = 30.0,
    ) -> str:
        """Upload bytes to path.

        Returns:
            The stored object path.

        Raises:
            StorageError: If the upload fails.
            httpx.TimeoutException: If the upload exceeds timeout.
        """
        ...

    @abstractmethod
    def sign_download(self, path: str, *, expires_in: int = 300) -> str:
        """Create a signed download URL.

        Raises:
            StorageError: If signing fails.
        """
        ...

    @abstractmethod
    def delete_object(self, path: str) -> None:
        """Delete an object from storage.

        Best-effort operation - logs errors but doesn't raise.
        """
        ...


class StorageClient(StorageClientBase):
    """Production Supabase Storage client.

    Uses httpx for HTTP operations against the Supabase Storage API.
    """

    def __init__(
        self,
        supabase_url: str,
        service_key: str,
        bucket: str = "comment-images",
    ):
        self._base_url = supabase_url.rstrip("/")
        self.bucket = bucket
        self._storage_url = f"{self._base_url}/storage/v1"
        self._headers = {
            "Authorization": f"Bearer {service_key}",
            "apikey": service_key,
        }

    def upload_object(
        self,
        path: str,
        content: bytes,
        *,
        content_type: str,
        timeout: float = 30.0,
    ) -> str:
        """Upload via POST /object/{bucket}/{path}."""
        url = f"{self._storage_url}/object/{self.bucket}/{path}"

        with httpx.Client() as client:
            response = client.post(
                url,
                headers={**self._headers, "Content-Type": content_type, "x-upsert": "false"},
                content=content,
                timeout=timeout,
            )

        if response.status_code not in (200, 201):
            raise StorageError(
                f"Failed to upload object: {response.status_code} {response.text}",
                code="E_UPLOAD_FAILED",
            )
        return path

    def sign_download(self, path: str, *, expires_in: int = 300) -> str:
        """Create signed download URL via POST /object/sign/{bucket}/{path}."""
        url = f"{self._storage_url}/object/sign/{self.bucket}/{path}"

        with httpx.Client() as client:
            response = client.post(
                url,
                headers=self._headers,
                json={"expiresIn": expires_in},
                timeout=30.0,
            )

        if response.status_code != 200:
            raise StorageError(
                f"Failed to sign download: {response.status_code} {response.text}",
                code="E_SIGN_DOWNLOAD_FAILED",
            )

        data = response.json()
        signed_path = data.get("signedURL") or data.get("signedUrl") or ""
        if not signed_path:
            raise StorageError(
                "Failed to sign download: missing signed URL",
                code="E_SIGN_DOWNLOAD_FAILED",
            )
        return self._absolute_url(signed_path)

    def _absolute_url(self, signed_path: str) -> str:
        # Supabase returns relative paths, with or without the /storage/v1 prefix.
        if signed_path.startswith(("http://", "https://")):
            return signed_path
        bare = signed_path.lstrip("/")
        if bare.startswith("storage/"):
            return f"{self._base_url}/{bare}"
        return f"{self._storage_url}/{bare}"

    def delete_object(self, path: str) -> None:
        """Delete object from storage (best-effort)."""
        url = f"{self._storage_url}/object/{self.bucket}/{path}"

        try:
            with httpx.Client() as client:
                response = client.delete(url, headers=self._headers, timeout=30.0)
            if response.status_code not in (200, 204, 404):
                logger.warning(
                    "storage_delete_failed",
                    path=path,
                    status_code=response.status_code,
                    body=response.text[:200],
                )
        except httpx.HTTPError as e:
            logger.warning("storage_delete_error", path=path, error=str(e))


class FakeStorageClient(StorageClientBase):
    """Fake storage client for testing without real Supabase.

    Stores files in memory and provides deterministic behavior for unit tests.
    Safe to call from the attachment pipeline's worker threads.
    """

    def __init__(self, bucket: str = "comment-images"):
        self.bucket = bucket
        self._objects: dict[str, tuple[bytes, str]] = {}  # path -> (content, content_type)
        self._lock = threading.Lock()

    def upload_object(
        self,
        path: str,
        content: bytes,
        *,
        content_type: str,
        timeout: float = 30.0,
    ) -> str:
        with self._lock:
            if path in self._objects:
                raise StorageError(f"Object already exists: {path}", code="E_UPLOAD_FAILED")
            self._objects[path] = (content, content_type)
        return path

    def sign_download(self, path: str, *, expires_in: int = 300) -> str:
        return (
            f"https://fake-storage.test/storage/v1/object/sign/{self.bucket}/{path}"
            f"?token=fake-{uuid4()}"
        )

    def delete_object(self, path: str) -> None:
        with self._lock:
            self._objects.pop(path, None)

    # Test helper methods

    def put_object(self, path: str, content: bytes, content_type: str = "image/png") -> None:
        """Store an object directly (test helper)."""
        with self._lock:
            self._objects[path] = (content, content_type)

    def get_object(self, path: str) -> bytes | None:
        """Get object content directly (test helper)."""
        with self._lock:
            entry = self._objects.get(path)
        return entry[0] if entry else None

    def list_paths(self) -> list[str]:
        """All stored paths (test helper)."""
        with self._lock:
            return sorted(self._objects)

    def clear(self) -> None:
        """Clear all stored objects (test helper)."""
        with self._lock:
            self._objects.clear()


def get_storage_client() -> StorageClientBase:
    """Get the configured storage client.

    Returns:
        StorageClient if SUPABASE_URL and SUPABASE_SERVICE_KEY are set,
        FakeStorageClient otherwise.
    """
    settings = get_settings()

    if settings.supabase_url and settings.supabase_service_key:
        return StorageClient(
            supabase_url=settings.supabase_url,
            service_key=settings.supabase_service_key,
            bucket=settings.comment_images_bucket,
        )

    return FakeStorageClient(bucket=settings.comment_images_bucket)
