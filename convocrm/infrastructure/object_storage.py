"""Attachment storage in Google Cloud Storage."""

import asyncio
import logging

from google.auth.exceptions import DefaultCredentialsError
from google.cloud import storage
from google.cloud.exceptions import GoogleCloudError

from convocrm.core.errors import ConfigurationError, TransientUpstreamError
from convocrm.settings import settings

logger = logging.getLogger(__name__)


class ObjectStorage:
    """Public-read bucket for message attachments."""

    def __init__(self, bucket_name: str | None = None, client: storage.Client | None = None):
        """Initialize the storage wrapper."""
        self._bucket_name = bucket_name or settings.gcs_attachments_bucket
        self._client = client
        self._bucket: storage.Bucket | None = None

    @property
    def client(self) -> storage.Client:
        """Lazy-load the GCS client."""
        if self._client is None:
            try:
                self._client = storage.Client(project=settings.gcp_project_id)
            except DefaultCredentialsError as e:
                raise ConfigurationError(f"GCS credentials are not configured: {e}") from e
        return self._client

    @property
    def bucket(self) -> storage.Bucket:
        """Get the configured bucket."""
        if self._bucket is None:
            if not self._bucket_name:
                raise ConfigurationError("GCS_ATTACHMENTS_BUCKET is not configured")
            self._bucket = self.client.bucket(self._bucket_name)
        return self._bucket

    def public_url(self, path: str) -> str:
        return f"https://storage.googleapis.com/{self._bucket_name}/{path}"

    def upload(self, path: str, data: bytes, content_type: str) -> None:
        """Blocking upload of a public-read blob."""
        blob = self.bucket.blob(path)
        blob.cache_control = "public, max-age=31536000"
        blob.upload_from_string(data, content_type=content_type)
        blob.make_public()

    async def put(self, path: str, data: bytes, content_type: str) -> str:
        """Upload bytes and return the public URL.

        The GCS client is synchronous, so the upload runs in the default
        executor.

        Args:
            path: Blob path inside the bucket
            data: File contents
            content_type: MIME type stored on the blob

        Returns:
            Public URL of the uploaded object

        Raises:
            ConfigurationError: Bucket not configured
            TransientUpstreamError: Upload failed
        """
        if len(data) > settings.attachment_max_bytes:
            raise TransientUpstreamError(
                f"Attachment of {len(data)} bytes exceeds {settings.attachment_max_bytes} bytes"
            )
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self.upload, path, data, content_type)
        except GoogleCloudError as e:
            logger.error(f"GCS upload failed for {path}: {e}")
            raise TransientUpstreamError(f"Failed to upload attachment: {e}") from e

        logger.info(f"Uploaded attachment {path}: size={len(data)}, type={content_type}")
        return self.public_url(path)
