from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
import logging

from google.api_core import exceptions as gcs_exceptions
from google.cloud import storage
from google.oauth2 import service_account

from compliancesync.core.errors import BlobStoreError, ProviderConfigError
from compliancesync.providers.blob.base import SignedUrl


logger = logging.getLogger(__name__)


class GcsBlobStore:
    def __init__(self, *, bucket: str, credentials_file: str | None = None) -> None:
        if not bucket:
            raise ProviderConfigError("BLOB_BUCKET is required for the gcs blob provider")
        if credentials_file:
            credentials = service_account.Credentials.from_service_account_file(credentials_file)
            self._client = storage.Client(credentials=credentials, project=credentials.project_id)
        else:
            # Application default credentials on GCP runtimes.
            self._client = storage.Client()
        self._bucket = self._client.bucket(bucket)

    async def check(self) -> None:
        # Verify the bucket is reachable before serving traffic.
        loop = asyncio.get_running_loop()
        try:
            exists = await loop.run_in_executor(None, self._bucket.exists)
        except gcs_exceptions.GoogleAPIError as exc:
            raise BlobStoreError("Blob store unreachable") from exc
        if not exists:
            raise ProviderConfigError(f"Bucket {self._bucket.name} does not exist")

    async def _sign(self, locator: str, *, method: str, ttl_seconds: int, content_type: str | None) -> SignedUrl:
        blob = self._bucket.blob(locator)
        loop = asyncio.get_running_loop()
        kwargs = {
            "version": "v4",
            "expiration": timedelta(seconds=ttl_seconds),
            "method": method,
        }
        if content_type:
            # Bind the upload to the declared content type.
            kwargs["content_type"] = content_type
        try:
            url = await loop.run_in_executor(None, lambda: blob.generate_signed_url(**kwargs))
        except (gcs_exceptions.GoogleAPIError, ValueError) as exc:
            logger.error("blob_sign_failed method=%s locator=%s", method, locator, exc_info=exc)
            raise BlobStoreError("Failed to generate signed URL") from exc
        return SignedUrl(
            url=url,
            method=method,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds),
        )

    async def signed_upload_url(self, locator: str, *, content_type: str, ttl_seconds: int) -> SignedUrl:
        return await self._sign(locator, method="PUT", ttl_seconds=ttl_seconds, content_type=content_type)

    async def signed_download_url(self, locator: str, *, ttl_seconds: int) -> SignedUrl:
        return await self._sign(locator, method="GET", ttl_seconds=ttl_seconds, content_type=None)
