"""
Tests for local and MinIO asset storage backends.
"""
from unittest.mock import Mock

import pytest
from minio.error import S3Error

from assetflow.core.storage.storage_service import LocalAssetStorage, MinioAssetStorage, StorageError


class TestLocalAssetStorage:
    def test_put_then_get(self, tmp_path):
        storage = LocalAssetStorage(tmp_path)

        path = storage.put_bytes("tenants/t/assets/a/thumbnails/thumb.jpg", b"jpeg", "image/jpeg")

        assert path == "tenants/t/assets/a/thumbnails/thumb.jpg"
        assert storage.get_bytes(path) == b"jpeg"
        assert not list(tmp_path.rglob("*.tmp"))

    def test_overwrite(self, tmp_path):
        storage = LocalAssetStorage(tmp_path)
        storage.put_bytes("a/b.jpg", b"one", "image/jpeg")

        storage.put_bytes("a/b.jpg", b"two", "image/jpeg")

        assert storage.get_bytes("a/b.jpg") == b"two"

    def test_missing_object(self, tmp_path):
        with pytest.raises(StorageError):
            LocalAssetStorage(tmp_path).get_bytes("nope.jpg")

    def test_path_escape_rejected(self, tmp_path):
        with pytest.raises(StorageError):
            LocalAssetStorage(tmp_path / "root").put_bytes("../outside.jpg", b"x", "image/jpeg")


def _s3_error(code="NoSuchKey"):
    return S3Error(
        code=code,
        message="error",
        resource="/bucket/key",
        request_id="req",
        host_id="host",
        response=Mock(),
    )


class TestMinioAssetStorage:
    @pytest.fixture
    def storage(self):
        storage = MinioAssetStorage("minio:9000", "key", "secret", "assets")
        storage._client = Mock()
        return storage

    def test_get_bytes_releases_connection(self, storage):
        response = Mock()
        response.read.return_value = b"data"
        storage._client.get_object.return_value = response

        assert storage.get_bytes("a.jpg") == b"data"
        storage._client.get_object.assert_called_once_with(bucket_name="assets", object_name="a.jpg")
        response.close.assert_called_once()
        response.release_conn.assert_called_once()

    def test_put_bytes_creates_bucket_once(self, storage):
        storage._client.bucket_exists.return_value = False

        storage.put_bytes("a.jpg", b"12345", "image/jpeg")
        storage.put_bytes("b.jpg", b"1", "image/jpeg")

        storage._client.make_bucket.assert_called_once_with(bucket_name="assets")
        kwargs = storage._client.put_object.call_args_list[0].kwargs
        assert kwargs["object_name"] == "a.jpg"
        assert kwargs["length"] == 5
        assert kwargs["content_type"] == "image/jpeg"

    def test_get_error_wrapped(self, storage):
        storage._client.get_object.side_effect = _s3_error()

        with pytest.raises(StorageError, match="NoSuchKey"):
            storage.get_bytes("missing.jpg")
