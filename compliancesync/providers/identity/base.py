from __future__ import annotations

from typing import Any, Protocol


class IdentityProvider(Protocol):
    async def check(self) -> None:
        ...

    async def create_account(self, *, email: str, password: str, display_name: str) -> str:
        ...

    async def set_claims(self, account_id: str, claims: dict[str, Any]) -> None:
        ...

    async def delete_account(self, account_id: str) -> None:
        ...

    async def send_password_reset(self, email: str) -> None:
        ...
