from __future__ import annotations

from functools import lru_cache

from compliancesync.core.config import get_settings
from compliancesync.core.errors import ProviderConfigError
from compliancesync.providers.identity.base import IdentityProvider
from compliancesync.providers.identity.local import LocalIdentityProvider


@lru_cache
def get_identity_provider() -> IdentityProvider:
    settings = get_settings()
    provider = (settings.identity_provider or "").lower()

    if provider == "local":
        return LocalIdentityProvider()
    if provider == "identity_toolkit":
        from compliancesync.providers.identity.identity_toolkit import IdentityToolkitProvider

        return IdentityToolkitProvider(
            project_id=settings.identity_project_id,
            api_key=settings.identity_api_key,
            timeout_s=settings.ext_call_timeout_ms / 1000,
        )

    raise ProviderConfigError(f"Unsupported identity provider: {provider}")
