"""Tests for the comment image attachment pipeline."""

import io
from uuid import uuid4

import pytest
from PIL import Image

from redline.db.models import Comment
from redline.errors import ApiErrorCode, InvalidRequestError
from redline.services.image_attachments import (
    ImageUpload,
    attach_images_to_comment,
    compress_image,
    delete_comment_images,
    upload_comment_images,
    validate_image_files,
    validate_image_urls,
)
from tests.factories import create_project_with_file, create_test_annotation
from tests.helpers import published_envelopes
from tests.image_fixtures import SVG_CONTENT, TINY_GIF, TINY_JPEG, TINY_PNG, make_image
from tests.support.storage_doubles import FailingStorageClient, SlowStorageClient


def png(data: bytes = TINY_PNG, name: str = "shot.png") -> ImageUpload:
    return ImageUpload(filename=name, content_type="image/png", data=data)


class TestValidateImageFiles:
    def test_accepts_common_formats(self):
        validate_image_files(
            [
                png(),
                ImageUpload("a.jpg", "image/jpeg", TINY_JPEG),
                ImageUpload("a.gif", "image/gif; charset=binary", TINY_GIF),
            ]
        )

    def test_too_many_images(self):
        with pytest.raises(InvalidRequestError) as exc:
            validate_image_files([png() for _ in range(6)])
        assert exc.value.code == ApiErrorCode.E_TOO_MANY_IMAGES

    @pytest.mark.parametrize(
        ("content_type", "data"),
        [
            ("image/svg+xml", SVG_CONTENT),
            ("application/pdf", b"%PDF-1.4"),
            (None, TINY_PNG),
            ("image/png", b""),
        ],
    )
    def test_rejected_types(self, content_type, data):
        with pytest.raises(InvalidRequestError) as exc:
            validate_image_files([ImageUpload("f", content_type, data)])
        assert exc.value.code == ApiErrorCode.E_INVALID_FILE_TYPE
        assert exc.value.status_code == 400

    def test_too_large(self):
        with pytest.raises(InvalidRequestError) as exc:
            validate_image_files([png()], max_bytes=10)
        assert exc.value.code == ApiErrorCode.E_FILE_TOO_LARGE


class TestCompressImage:
    def test_small_image_unchanged(self):
        result = compress_image(TINY_PNG)

        assert result.compressed is False
        assert result.data == TINY_PNG
        assert result.content_type is None

    def test_large_image_downscaled_to_jpeg(self):
        result = compress_image(make_image((3000, 1500)))

        assert result.compressed is True
        assert result.content_type == "image/jpeg"
        with Image.open(io.BytesIO(result.data)) as image:
            assert image.format == "JPEG"
            assert image.size == (1920, 960)

    def test_alpha_stays_png(self):
        result = compress_image(make_image((2400, 800), mode="RGBA", color=(255, 0, 0, 128)))

        assert result.content_type == "image/png"
        with Image.open(io.BytesIO(result.data)) as image:
            assert image.mode == "RGBA"
            assert max(image.size) == 1920

    def test_undecodable_input_passes_through(self):
        result = compress_image(b"definitely not an image")

        assert result.compressed is False
        assert result.data == b"definitely not an image"


class TestUploadCommentImages:
    def test_uploads_every_file(self, storage):
        comment_id = uuid4()
        files = [png(make_image(color=c)) for c in ("red", "green", "blue")]

        urls = upload_comment_images(comment_id, files, storage_client=storage)

        assert len(urls) == 3
        assert len(storage.list_paths()) == 3
        assert all(p.startswith(f"comments/{comment_id}/") for p in storage.list_paths())
        assert all(p.endswith(".png") for p in storage.list_paths())

    def test_empty_batch(self, storage):
        assert upload_comment_images(uuid4(), [], storage_client=storage) == []

    def test_slow_upload_is_skipped_at_deadline(self):
        slow = make_image(color="black")
        storage = SlowStorageClient(slow_content=slow)
        files = [png(make_image(color="red")), png(slow), png(make_image(color="blue"))]

        try:
            urls = upload_comment_images(uuid4(), files, storage_client=storage, timeout=0.5)
        finally:
            storage.release.set()

        assert len(urls) == 2

    def test_failed_upload_does_not_fail_others(self):
        bad = make_image(color="black")
        storage = FailingStorageClient(bad_content=bad)
        files = [png(bad), png(make_image(color="red"))]

        urls = upload_comment_images(uuid4(), files, storage_client=storage)

        assert len(urls) == 1
        assert len(storage.list_paths()) == 1


class TestAttachImagesToComment:
    @pytest.fixture
    def comment(self, db_session):
        owner_id = uuid4()
        _, file_id = create_project_with_file(db_session, owner_id)
        annotation_id, comment_id = create_test_annotation(db_session, file_id, owner_id)
        return file_id, annotation_id, comment_id, owner_id

    def test_records_urls_and_broadcasts(self, db_session, storage, broadcaster, redis_mock, comment):
        file_id, annotation_id, comment_id, owner_id = comment

        urls = attach_images_to_comment(
            db_session,
            comment_id,
            [png(), png(make_image(color="red"))],
            storage_client=storage,
            broadcaster=broadcaster,
            sender_id=owner_id,
        )

        assert len(urls) == 2
        assert db_session.get(Comment, comment_id).image_urls == urls

        [(channel, envelope)] = published_envelopes(redis_mock)
        assert channel == f"annotations:{file_id}"
        assert envelope["event"] == "comment-images-attached"
        assert envelope["payload"] == {
            "annotation_id": str(annotation_id),
            "comment_id": str(comment_id),
            "image_urls": urls,
        }

    def test_appends_to_existing_urls(self, db_session, storage, broadcaster, redis_mock, comment):
        _, _, comment_id, _ = comment
        first = attach_images_to_comment(
            db_session, comment_id, [png()], storage_client=storage, broadcaster=broadcaster
        )

        second = attach_images_to_comment(
            db_session, comment_id, [png()], storage_client=storage, broadcaster=broadcaster
        )

        assert db_session.get(Comment, comment_id).image_urls == first + second
        assert published_envelopes(redis_mock)[1][1]["payload"]["image_urls"] == second

    def test_all_failed_leaves_comment_untouched(self, db_session, broadcaster, redis_mock, comment):
        _, _, comment_id, _ = comment
        storage = FailingStorageClient(bad_content=TINY_PNG)

        urls = attach_images_to_comment(
            db_session, comment_id, [png()], storage_client=storage, broadcaster=broadcaster
        )

        assert urls == []
        assert db_session.get(Comment, comment_id).image_urls is None
        redis_mock.publish.assert_not_called()


class TestValidateImageUrls:
    def test_own_prefix_is_accepted(self, storage):
        comment_id = uuid4()
        url = storage.sign_download(f"comments/{comment_id}/1-0-abc.png")

        validate_image_urls(comment_id, [url], storage.bucket)

    @pytest.mark.parametrize(
        "path",
        [
            "comments/{other}/1-0-abc.png",
            "comments/{comment_id}/nested/1-0-abc.png",
            "comments/{comment_id}/",
            "avatars/{comment_id}/1-0-abc.png",
        ],
    )
    def test_foreign_paths_are_rejected(self, storage, path):
        comment_id = uuid4()
        url = storage.sign_download(path.format(comment_id=comment_id, other=uuid4()))

        with pytest.raises(InvalidRequestError) as exc:
            validate_image_urls(comment_id, [url], storage.bucket)
        assert exc.value.code == ApiErrorCode.E_INVALID_IMAGE_URL

    def test_url_outside_bucket_is_rejected(self, storage):
        with pytest.raises(InvalidRequestError):
            validate_image_urls(uuid4(), ["https://img.test/a.png"], storage.bucket)

    def test_comment_id_is_required(self, storage):
        url = storage.sign_download(f"comments/{uuid4()}/1-0-abc.png")

        with pytest.raises(InvalidRequestError) as exc:
            validate_image_urls(None, [url], storage.bucket)
        assert exc.value.code == ApiErrorCode.E_INVALID_IMAGE_URL


class TestDeleteCommentImages:
    def test_deletes_objects_behind_signed_urls(self, storage):
        comment_id = uuid4()
        urls = upload_comment_images(comment_id, [png()], storage_client=storage)

        delete_comment_images(
            comment_id, urls + ["https://elsewhere.test/x.png"], storage_client=storage
        )

        assert storage.list_paths() == []

    def test_objects_of_other_comments_are_kept(self, storage):
        victim = f"comments/{uuid4()}/1-0-abc.png"
        storage.put_object(victim, b"png")

        delete_comment_images(uuid4(), [storage.sign_download(victim)], storage_client=storage)

        assert storage.list_paths() == [victim]


class TestLateUploads:
    def test_upload_landing_after_deadline_is_removed(self):
        slow = make_image(color="black")
        storage = SlowStorageClient(slow_content=slow)
        comment_id = uuid4()

        urls = upload_comment_images(
            comment_id, [png(make_image(color="red")), png(slow)], storage_client=storage, timeout=0.3
        )
        storage.release.set()

        assert len(urls) == 1
        assert storage.deleted.wait(timeout=5)
        [deleted] = storage.deleted_paths
        assert deleted.startswith(f"comments/{comment_id}/")
        assert len(storage.list_paths()) == 1
