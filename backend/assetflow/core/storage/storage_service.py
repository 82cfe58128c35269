"""
Asset file storage.

Two backends with the same two-call surface used by the pipeline:

    get_bytes(path) -> bytes
    put_bytes(path, data, content_type) -> path

LocalAssetStorage keeps files under settings.files_root; MinioAssetStorage
keeps them in the assets bucket of an S3-compatible MinIO server. Paths are
object keys relative to that root, e.g.
"tenants/<tenant>/assets/<asset>/thumbnails/medium.jpg".
"""

import logging
from functools import lru_cache
from io import BytesIO
from pathlib import Path
from typing import Optional

from minio import Minio
from minio.error import S3Error

from assetflow.config import settings

logger = logging.getLogger("assetflow.storage")


class StorageError(Exception):
    """Object could not be read or written."""


class LocalAssetStorage:
    def __init__(self, root: Path):
        self.root = Path(root)

    def _resolve(self, path: str) -> Path:
        resolved = (self.root / path.lstrip("/")).resolve()
        if self.root.resolve() not in resolved.parents:
            raise StorageError(f"Path escapes storage root: {path}")
        return resolved

    def get_bytes(self, path: str) -> bytes:
        target = self._resolve(path)
        if not target.is_file():
            raise StorageError(f"Object not found: {path}")
        return target.read_bytes()

    def put_bytes(self, path: str, data: bytes, content_type: str) -> str:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_suffix(target.suffix + ".tmp")
        tmp.write_bytes(data)
        tmp.replace(target)
        logger.debug(f"Stored {path} ({len(data)} bytes, {content_type})")
        return path


class MinioAssetStorage:
    def __init__(
        self,
        endpoint: str,
        access_key: str,
        secret_key: str,
        bucket: str,
        secure: bool = False,
    ):
        self.endpoint = endpoint
        self.access_key = access_key
        self.secret_key = secret_key
        self.bucket = bucket
        self.secure = secure
        self._client: Optional[Minio] = None
        self._bucket_checked = False

    @property
    def client(self) -> Minio:
        """Get or create MinIO client (lazy initialization)."""
        if self._client is None:
            self._client = Minio(
                endpoint=self.endpoint,
                access_key=self.access_key,
                secret_key=self.secret_key,
                secure=self.secure,
            )
            logger.info(f"MinIO client initialized (endpoint={self.endpoint}, secure={self.secure})")
        return self._client

    def ensure_bucket(self) -> None:
        if self._bucket_checked:
            return
        if not self.client.bucket_exists(bucket_name=self.bucket):
            self.client.make_bucket(bucket_name=self.bucket)
            logger.info(f"Created bucket: {self.bucket}")
        self._bucket_checked = True

    def get_bytes(self, path: str) -> bytes:
        response = None
        try:
            response = self.client.get_object(bucket_name=self.bucket, object_name=path)
            return response.read()
        except S3Error as e:
            raise StorageError(f"Failed to read {self.bucket}/{path}: {e.code}") from e
        finally:
            if response:
                response.close()
                response.release_conn()

    def put_bytes(self, path: str, data: bytes, content_type: str) -> str:
        self.ensure_bucket()
        try:
            self.client.put_object(
                bucket_name=self.bucket,
                object_name=path,
                data=BytesIO(data),
                length=len(data),
                content_type=content_type,
            )
        except S3Error as e:
            raise StorageError(f"Failed to write {self.bucket}/{path}: {e.code}") from e
        logger.info(f"Uploaded object {self.bucket}/{path} ({len(data)} bytes)")
        return path


@lru_cache()
def get_storage():
    """Storage backend selected by settings.storage_backend."""
    backend = settings.storage_backend.lower()
    if backend == "minio":
        return MinioAssetStorage(
            endpoint=settings.minio_endpoint,
            access_key=settings.minio_access_key,
            secret_key=settings.minio_secret_key,
            bucket=settings.minio_bucket_assets,
            secure=settings.minio_secure,
        )
    if backend == "local":
        return LocalAssetStorage(settings.files_root_path)
    raise ValueError(f"Unknown storage backend: {settings.storage_backend}")
