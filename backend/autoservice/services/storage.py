import asyncio
import threading
import uuid

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from autoservice.config import settings
from autoservice.lifecycle.errors import UploadFailed

logger = structlog.get_logger()

MOCK_STORAGE_URL = "https://storage.autoservice.dev"
ALLOWED_PHOTO_FOLDERS = {"service-photos", "progress-photos"}

# Magic bytes for photo type detection
MAGIC_BYTES = {
    "image/jpeg": [b"\xff\xd8\xff"],
    "image/png": [b"\x89PNG"],
}
EXTENSIONS = {"image/jpeg": "jpg", "image/png": "png"}


def _validate_magic_bytes(content: bytes, content_type: str) -> bool:
    """Validate file content matches declared content type via magic bytes."""
    signatures = MAGIC_BYTES.get(content_type, [])
    for sig in signatures:
        if content[:len(sig)] == sig:
            return True
    return False


def detect_content_type(content: bytes) -> str | None:
    for content_type in MAGIC_BYTES:
        if _validate_magic_bytes(content, content_type):
            return content_type
    return None


# Cached client; creation is guarded by a lock (double-checked).
_s3_client = None
_s3_lock = threading.Lock()


def get_s3_client():
    """Get or create a cached S3-compatible client for R2/S3.

    The boto3 low-level client is safe for concurrent use once created; only
    creation needs synchronization.
    """
    global _s3_client
    if _s3_client is None:
        with _s3_lock:
            if _s3_client is None:  # double-check
                kwargs = {
                    "service_name": "s3",
                    "aws_access_key_id": settings.R2_ACCESS_KEY_ID,
                    "aws_secret_access_key": settings.R2_SECRET_ACCESS_KEY,
                }
                if settings.R2_ENDPOINT_URL:
                    kwargs["endpoint_url"] = settings.R2_ENDPOINT_URL
                _s3_client = boto3.client(**kwargs)
    return _s3_client


async def upload_file_bytes(content: bytes, key: str, content_type: str) -> str:
    """Upload raw bytes to R2/S3 and return the public URL.

    Without ``R2_ENDPOINT_URL`` (development) nothing is sent and a mock URL
    is returned.
    """
    if not settings.R2_ENDPOINT_URL:
        mock_url = f"{MOCK_STORAGE_URL}/{key}"
        logger.info("file_upload_mock", key=key, url=mock_url)
        return mock_url

    client = get_s3_client()
    await asyncio.to_thread(
        client.put_object,
        Bucket=settings.R2_BUCKET_NAME,
        Key=key,
        Body=content,
        ContentType=content_type,
    )

    url = f"{settings.R2_PUBLIC_URL}/{key}"
    logger.info("file_uploaded", key=key, url=url)
    return url


class ObjectStorageUploader:
    """``PhotoUploader`` backed by R2/S3.

    Rejects empty, oversized and non-JPEG/PNG content, and reports every
    failure as ``UploadFailed``.
    """

    def __init__(self, folder: str = "service-photos", max_size: int | None = None):
        if folder not in ALLOWED_PHOTO_FOLDERS:
            raise ValueError(f"Upload folder '{folder}' is not allowed.")
        self.folder = folder
        self.max_size = max_size or settings.MAX_PHOTO_SIZE_BYTES

    async def upload(self, content: bytes) -> str:
        if not content:
            raise UploadFailed("Photo is empty")
        if len(content) > self.max_size:
            raise UploadFailed(f"Photo too large. Maximum size is {self.max_size // (1024 * 1024)} MB.")

        content_type = detect_content_type(content)
        if content_type is None:
            raise UploadFailed("Photo must be a JPEG or PNG image")

        key = f"{self.folder}/{uuid.uuid4()}.{EXTENSIONS[content_type]}"
        try:
            return await upload_file_bytes(content, key, content_type)
        except (BotoCoreError, ClientError) as exc:
            logger.error("photo_upload_failed", key=key, error=str(exc))
            raise UploadFailed(f"Photo upload failed: {exc}") from exc
