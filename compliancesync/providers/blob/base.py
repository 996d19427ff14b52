from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol


@dataclass(frozen=True)
class SignedUrl:
    url: str
    method: str
    expires_at: datetime


class BlobStore(Protocol):
    async def check(self) -> None:
        ...

    async def signed_upload_url(self, locator: str, *, content_type: str, ttl_seconds: int) -> SignedUrl:
        ...

    async def signed_download_url(self, locator: str, *, ttl_seconds: int) -> SignedUrl:
        ...
