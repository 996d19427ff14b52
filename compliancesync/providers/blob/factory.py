from __future__ import annotations

from functools import lru_cache

from compliancesync.core.config import get_settings
from compliancesync.core.errors import ProviderConfigError
from compliancesync.providers.blob.base import BlobStore
from compliancesync.providers.blob.local import LocalBlobStore


@lru_cache
def get_blob_store() -> BlobStore:
    settings = get_settings()
    provider = (settings.blob_provider or "").lower()

    if provider == "local":
        return LocalBlobStore(
            base_url=settings.blob_local_base_url,
            signing_key=settings.blob_local_signing_key,
        )
    if provider == "gcs":
        # Import lazily so local/dev environments do not load the GCS client.
        from compliancesync.providers.blob.gcs import GcsBlobStore

        return GcsBlobStore(bucket=settings.blob_bucket, credentials_file=settings.gcs_credentials_file)

    raise ProviderConfigError(f"Unsupported blob provider: {provider}")
