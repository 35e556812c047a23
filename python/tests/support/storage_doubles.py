"""Storage client doubles with controllable upload behavior."""

import threading

from redline.storage.client import FakeStorageClient, StorageError


class SlowStorageClient(FakeStorageClient):
    """Blocks uploads of one payload until released; records deletes."""

    def __init__(self, slow_content: bytes):
        super().__init__()
        self.slow_content = slow_content
        self.release = threading.Event()
        self.deleted = threading.Event()
        self.deleted_paths: list[str] = []

    def upload_object(self, path, content, *, content_type, timeout=30.0):
        if content == self.slow_content:
            self.release.wait(timeout=10)
        return super().upload_object(path, content, content_type=content_type, timeout=timeout)

    def delete_object(self, path):
        super().delete_object(path)
        self.deleted_paths.append(path)
        self.deleted.set()


class FailingStorageClient(FakeStorageClient):
    """Rejects uploads of one payload."""

    def __init__(self, bad_content: bytes):
        super().__init__()
        self.bad_content = bad_content

    def upload_object(self, path, content, *, content_type, timeout=30.0):
        if content == self.bad_content:
            raise StorageError("bucket rejected object", code="E_UPLOAD_FAILED")
        return super().upload_object(path, content, content_type=content_type, timeout=timeout)
