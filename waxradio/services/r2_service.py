import asyncio
import io
import unicodedata
from typing import Optional

import boto3

from waxradio.config import Settings, get_settings
from waxradio.crud import run_in_thread
from waxradio.exceptions import ConfigurationError, FileUploadError, classify_error
from waxradio.logger import get_logger
from waxradio.ports import ObjectStore, ProgressCallback
from waxradio.schemas import UploadProgress

logger = get_logger("r2_service")


def create_r2_client(settings: Settings):
    """Create an S3 client for Cloudflare R2."""
    if not all([settings.r2_access_key, settings.r2_secret_key, settings.r2_endpoint]):
        raise ConfigurationError("Cloudflare R2 credentials are missing! Check your .env file.")
    try:
        client = boto3.client(
            "s3",
            endpoint_url=settings.r2_endpoint,
            aws_access_key_id=settings.r2_access_key,
            aws_secret_access_key=settings.r2_secret_key,
            config=boto3.session.Config(signature_version="s3v4")
        )
        logger.info("Successfully initialized R2 client")
        return client
    except Exception as e:
        logger.error(f"Failed to initialize R2 client: {e}")
        raise ConfigurationError(f"Failed to initialize R2 client: {e}")


def to_ascii(s: str) -> str:
    """Sanitize a string to ASCII for S3 metadata."""
    return unicodedata.normalize('NFKD', s).encode('ascii', 'ignore').decode('ascii')


class R2ObjectStore(ObjectStore):
    """Uploads audio and images to R2 buckets, reporting progress."""

    def __init__(self, client=None, settings: Optional[Settings] = None):
        self._settings = settings or get_settings()
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = create_r2_client(self._settings)
        return self._client

    def bucket_for(self, content_type: str) -> str:
        if content_type.startswith("image/"):
            return self._settings.r2_image_bucket
        return self._settings.r2_audio_bucket

    def public_url(self, bucket: str, key: str) -> str:
        return f"{self._settings.r2_endpoint}/{bucket}/{key}"

    async def put(
        self,
        path: str,
        data: bytes,
        content_type: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        """
        Upload ``data`` under ``path``.

        Args:
            path: Object key inside the bucket
            data: File contents
            content_type: MIME type; images go to the image bucket
            on_progress: Called on the event loop as bytes are sent

        Returns:
            The URL of the uploaded object
        """
        if not path:
            raise FileUploadError("Object path is required")

        bucket = self.bucket_for(content_type)
        loop = asyncio.get_running_loop()
        total = len(data)
        transferred = 0

        def report(bytes_amount: int) -> None:
            nonlocal transferred
            transferred += bytes_amount
            if on_progress is not None:
                progress = UploadProgress(
                    progress=min(100.0, transferred / total * 100) if total else 100.0,
                    bytes_transferred=transferred,
                    total_bytes=total,
                )
                loop.call_soon_threadsafe(on_progress, progress)

        logger.info(f"Uploading {total} bytes to {bucket}/{path}")
        try:
            await run_in_thread(self.client.upload_fileobj)(
                io.BytesIO(data),
                bucket,
                path,
                ExtraArgs={
                    'ContentType': content_type or 'application/octet-stream',
                    'Metadata': {'original_filename': to_ascii(path.rsplit('/', 1)[-1])},
                },
                Callback=report,
            )
        except ConfigurationError:
            raise
        except Exception as e:
            logger.error(f"Error uploading file to R2: {e}")
            raise FileUploadError(f"Failed to upload file: {str(e)}", str(e), kind=classify_error(e)) from e

        file_url = self.public_url(bucket, path)
        logger.info(f"Successfully uploaded file to: {file_url}")
        return file_url
