from __future__ import annotations

from datetime import datetime, timedelta, timezone
import hashlib
import hmac
from urllib.parse import quote, urlencode

from compliancesync.providers.blob.base import SignedUrl


def sign_local_url(signing_key: str, *, method: str, locator: str, expires: int, content_type: str = "") -> str:
    # Signature covers direction, object, expiry and content type so URLs cannot be repurposed.
    message = "\n".join([method, locator, str(expires), content_type]).encode("utf-8")
    return hmac.new(signing_key.encode("utf-8"), message, hashlib.sha256).hexdigest()


class LocalBlobStore:
    """HMAC-signed URLs against a local blob endpoint for development and tests."""

    def __init__(self, *, base_url: str, signing_key: str) -> None:
        self._base_url = base_url.rstrip("/")
        self._signing_key = signing_key

    async def check(self) -> None:
        return None

    def _sign(self, locator: str, *, method: str, ttl_seconds: int, content_type: str = "") -> SignedUrl:
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)
        expires = int(expires_at.timestamp())
        signature = sign_local_url(
            self._signing_key,
            method=method,
            locator=locator,
            expires=expires,
            content_type=content_type,
        )
        query = urlencode({"method": method, "expires": expires, "signature": signature})
        url = f"{self._base_url}/{quote(locator)}?{query}"
        return SignedUrl(url=url, method=method, expires_at=expires_at)

    async def signed_upload_url(self, locator: str, *, content_type: str, ttl_seconds: int) -> SignedUrl:
        return self._sign(locator, method="PUT", ttl_seconds=ttl_seconds, content_type=content_type)

    async def signed_download_url(self, locator: str, *, ttl_seconds: int) -> SignedUrl:
        return self._sign(locator, method="GET", ttl_seconds=ttl_seconds)
