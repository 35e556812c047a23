"""Tests for the Supabase storage client and attachment path helpers."""

from uuid import uuid4

import httpx
import pytest
import respx

from redline.storage.client import FakeStorageClient, StorageClient, StorageError
from redline.storage.paths import build_comment_image_path, get_image_extension, path_from_signed_url

SUPABASE_URL = "https://project.supabase.co"
STORAGE_URL = f"{SUPABASE_URL}/storage/v1"
PATH = "comments/abc/1718000000000-0-deadbeef01.png"


@pytest.fixture
def client() -> StorageClient:
    return StorageClient(SUPABASE_URL + "/", "service-key", bucket="comment-images")


class TestUpload:
    @respx.mock
    def test_upload_sends_content_and_auth(self, client):
        route = respx.post(f"{STORAGE_URL}/object/comment-images/{PATH}").respond(200, json={"Key": PATH})

        assert client.upload_object(PATH, b"png-bytes", content_type="image/png") == PATH

        request = route.calls.last.request
        assert request.content == b"png-bytes"
        assert request.headers["Authorization"] == "Bearer service-key"
        assert request.headers["apikey"] == "service-key"
        assert request.headers["Content-Type"] == "image/png"

    @respx.mock
    def test_upload_failure_raises(self, client):
        respx.post(f"{STORAGE_URL}/object/comment-images/{PATH}").respond(409, text="Duplicate")

        with pytest.raises(StorageError) as exc:
            client.upload_object(PATH, b"x", content_type="image/png")

        assert exc.value.code == "E_UPLOAD_FAILED"


class TestSignDownload:
    @pytest.mark.parametrize(
        ("signed", "expected"),
        [
            (f"/object/sign/comment-images/{PATH}?token=t", f"{STORAGE_URL}/object/sign/comment-images/{PATH}?token=t"),
            (
                f"/storage/v1/object/sign/comment-images/{PATH}?token=t",
                f"{STORAGE_URL}/object/sign/comment-images/{PATH}?token=t",
            ),
            ("https://cdn.example/signed?token=t", "https://cdn.example/signed?token=t"),
        ],
    )
    @respx.mock
    def test_signed_url_is_absolute(self, client, signed, expected):
        respx.post(f"{STORAGE_URL}/object/sign/comment-images/{PATH}").respond(200, json={"signedURL": signed})

        assert client.sign_download(PATH, expires_in=60) == expected

    @respx.mock
    def test_accepts_camel_case_key(self, client):
        respx.post(f"{STORAGE_URL}/object/sign/comment-images/{PATH}").respond(
            200, json={"signedUrl": "/object/sign/x?token=t"}
        )

        assert client.sign_download(PATH) == f"{STORAGE_URL}/object/sign/x?token=t"

    @respx.mock
    def test_missing_signed_url_raises(self, client):
        respx.post(f"{STORAGE_URL}/object/sign/comment-images/{PATH}").respond(200, json={})

        with pytest.raises(StorageError) as exc:
            client.sign_download(PATH)

        assert exc.value.code == "E_SIGN_DOWNLOAD_FAILED"

    @respx.mock
    def test_error_status_raises(self, client):
        respx.post(f"{STORAGE_URL}/object/sign/comment-images/{PATH}").respond(400, json={"error": "nope"})

        with pytest.raises(StorageError):
            client.sign_download(PATH)


class TestDelete:
    @respx.mock
    def test_missing_object_is_fine(self, client):
        route = respx.delete(f"{STORAGE_URL}/object/comment-images/{PATH}").respond(404)

        client.delete_object(PATH)

        assert route.called

    @respx.mock
    def test_network_error_is_swallowed(self, client):
        respx.delete(f"{STORAGE_URL}/object/comment-images/{PATH}").mock(
            side_effect=httpx.ConnectError("unreachable")
        )

        client.delete_object(PATH)


class TestFakeStorage:
    def test_duplicate_upload_raises(self):
        storage = FakeStorageClient()
        storage.upload_object(PATH, b"a", content_type="image/png")

        with pytest.raises(StorageError):
            storage.upload_object(PATH, b"b", content_type="image/png")

    def test_signed_url_maps_back_to_path(self):
        storage = FakeStorageClient()
        assert path_from_signed_url(storage.sign_download(PATH), storage.bucket) == PATH


class TestPaths:
    def test_comment_image_path_layout(self, monkeypatch):
        monkeypatch.delenv("STORAGE_TEST_PREFIX", raising=False)
        comment_id = uuid4()

        path = build_comment_image_path(comment_id, 2, "webp")

        prefix, name = path.rsplit("/", 1)
        assert prefix == f"comments/{comment_id}"
        stamp, index, random_part = name.removesuffix(".webp").split("-")
        assert stamp.isdigit() and index == "2" and len(random_part) == 10

    def test_test_run_prefix(self, monkeypatch):
        monkeypatch.setenv("STORAGE_TEST_PREFIX", "test_runs/run-1")

        assert build_comment_image_path(uuid4(), 0, "png").startswith("test_runs/run-1/comments/")

    @pytest.mark.parametrize(
        ("content_type", "filename", "expected"),
        [
            ("image/png", "x.jpg", "png"),
            ("image/jpeg; charset=binary", None, "jpg"),
            ("application/octet-stream", "photo.HEIC", "heic"),
            (None, "no-suffix", "jpg"),
            (None, "weird.tar.gz!", "jpg"),
        ],
    )
    def test_image_extension(self, content_type, filename, expected):
        assert get_image_extension(content_type, filename) == expected

    def test_path_from_foreign_url(self):
        assert path_from_signed_url("https://elsewhere.test/a.png", "comment-images") is None
        assert (
            path_from_signed_url(
                f"{STORAGE_URL}/object/sign/comment-images/comments%2Fa%20b.png?token=t", "comment-images"
            )
            == "comments/a b.png"
        )
