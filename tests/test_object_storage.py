"""Object storage tests (boto3 client mocked)."""

from unittest.mock import MagicMock

import pytest

from convoflow.storage.object_storage import ObjectStorageError, S3StorageService, get_s3_storage


@pytest.fixture
def s3():
    return MagicMock()


class TestUpload:
    def test_put_object_and_public_url(self, s3):
        storage = S3StorageService("media", public_base_url="https://media.example.com/", client=s3)

        url = storage.upload("ws/image/1.jpg", b"data", "image/jpeg")

        assert url == "https://media.example.com/ws/image/1.jpg"
        s3.put_object.assert_called_once_with(
            Bucket="media", Key="ws/image/1.jpg", Body=b"data", ContentType="image/jpeg"
        )

    def test_no_content_type(self, s3):
        storage = S3StorageService("media", client=s3)
        storage.upload("k", b"x", None)
        assert "ContentType" not in s3.put_object.call_args.kwargs

    def test_failure_wrapped(self, s3):
        s3.put_object.side_effect = RuntimeError("denied")
        storage = S3StorageService("media", client=s3)
        with pytest.raises(ObjectStorageError):
            storage.upload("k", b"x", None)


class TestPublicUrl:
    def test_endpoint_path_style(self, s3):
        storage = S3StorageService("media", endpoint_url="http://minio:9000/", client=s3)
        assert storage.public_url("a/b.ogg") == "http://minio:9000/media/a/b.ogg"

    def test_aws_default(self, s3):
        storage = S3StorageService("media", client=s3)
        assert storage.public_url("a/b.ogg") == "https://media.s3.amazonaws.com/a/b.ogg"


def test_unconfigured_storage_is_none(monkeypatch):
    monkeypatch.delenv("MEDIA_BUCKET", raising=False)
    get_s3_storage.cache_clear()
    try:
        assert get_s3_storage() is None
    finally:
        get_s3_storage.cache_clear()
