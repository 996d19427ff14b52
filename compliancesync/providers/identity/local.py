from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import hashlib
import logging
import secrets
from typing import Any
from uuid import uuid4

from compliancesync.core.errors import ConflictError, IdentityProviderError


logger = logging.getLogger(__name__)


@dataclass
class LocalAccount:
    account_id: str
    email: str
    display_name: str
    password_hash: str
    salt: str
    claims: dict[str, Any] = field(default_factory=dict)


def _hash_password(password: str, salt: str) -> str:
    return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), 100_000).hex()


class LocalIdentityProvider:
    """In-process account store for development and tests."""

    def __init__(self) -> None:
        self._accounts: dict[str, LocalAccount] = {}
        self._lock = asyncio.Lock()
        self.password_reset_requests: list[str] = []

    async def check(self) -> None:
        return None

    async def create_account(self, *, email: str, password: str, display_name: str) -> str:
        normalized = email.strip().lower()
        async with self._lock:
            if any(account.email == normalized for account in self._accounts.values()):
                raise ConflictError("Email already registered", field="email")
            salt = secrets.token_hex(8)
            account = LocalAccount(
                account_id=uuid4().hex,
                email=normalized,
                display_name=display_name,
                password_hash=_hash_password(password, salt),
                salt=salt,
            )
            self._accounts[account.account_id] = account
        return account.account_id

    async def set_claims(self, account_id: str, claims: dict[str, Any]) -> None:
        async with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                raise IdentityProviderError("Identity account not found")
            account.claims = dict(claims)

    async def delete_account(self, account_id: str) -> None:
        async with self._lock:
            self._accounts.pop(account_id, None)

    async def send_password_reset(self, email: str) -> None:
        # Record the request; delivery is handled by the real provider in production.
        normalized = email.strip().lower()
        if any(account.email == normalized for account in self._accounts.values()):
            self.password_reset_requests.append(normalized)
        logger.info("password_reset_requested provider=local")

    def get_account(self, account_id: str) -> LocalAccount | None:
        return self._accounts.get(account_id)
