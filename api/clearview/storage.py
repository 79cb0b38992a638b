import io
import logging
from datetime import timedelta
from typing import Optional

from minio import Minio
from minio.error import S3Error
from urllib3.exceptions import HTTPError

from .config import (
    MINIO_ACCESS_KEY,
    MINIO_ENDPOINT,
    MINIO_SECRET_KEY,
    MINIO_SECURE,
    SIGNATURE_BUCKET,
    STORAGE_PUBLIC_BASE_URL,
)

logger = logging.getLogger(__name__)


class ObjectStore:
    """Bucket-scoped uploads with public (or presigned) URLs."""

    def __init__(self, client: Minio, bucket: str = SIGNATURE_BUCKET, public_base_url: Optional[str] = STORAGE_PUBLIC_BASE_URL):
        self.client = client
        self.bucket = bucket
        self.public_base_url = (public_base_url or "").rstrip("/") or None

    def ensure_bucket(self):
        if not self.client.bucket_exists(self.bucket):
            self.client.make_bucket(self.bucket)

    def put_bytes(self, key: str, data: bytes, content_type: str = "application/octet-stream"):
        self.ensure_bucket()
        self.client.put_object(self.bucket, key, io.BytesIO(data), length=len(data), content_type=content_type)

    def public_url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{self.bucket}/{key}"
        return self.client.presigned_get_object(self.bucket, key, expires=timedelta(days=7))

    def upload_public(self, key: str, data: bytes, content_type: str) -> Optional[str]:
        """Upload and return a URL, or None when storage rejects the object or cannot be reached."""
        try:
            self.put_bytes(key, data, content_type=content_type)
            return self.public_url(key)
        except (S3Error, HTTPError, OSError) as exc:
            logger.warning("Upload of %s to bucket %s failed: %s", key, self.bucket, exc)
            return None


_store: Optional[ObjectStore] = None

def get_object_store() -> ObjectStore:
    global _store
    if _store is None:
        client = Minio(
            MINIO_ENDPOINT,
            access_key=MINIO_ACCESS_KEY,
            secret_key=MINIO_SECRET_KEY,
            secure=MINIO_SECURE,
        )
        _store = ObjectStore(client)
    return _store
