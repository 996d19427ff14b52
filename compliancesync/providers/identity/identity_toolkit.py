from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import google.auth
from google.auth.transport.requests import Request as GoogleAuthRequest
import httpx

from compliancesync.core.errors import ConflictError, IdentityProviderError, ProviderConfigError


logger = logging.getLogger(__name__)

_BASE_URL = "https://identitytoolkit.googleapis.com/v1"
_SCOPES = ["https://www.googleapis.com/auth/cloud-platform"]


class IdentityToolkitProvider:
    """Google Identity Platform accounts via the Identity Toolkit REST API."""

    def __init__(self, *, project_id: str | None, api_key: str | None, timeout_s: float) -> None:
        if not project_id or not api_key:
            raise ProviderConfigError("IDENTITY_PROJECT_ID and IDENTITY_API_KEY are required")
        self._project_id = project_id
        self._api_key = api_key
        self._timeout_s = timeout_s
        self._credentials, _ = google.auth.default(scopes=_SCOPES)

    async def _admin_token(self) -> str:
        # Refresh service credentials off the event loop; google-auth is synchronous.
        if not self._credentials.valid:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._credentials.refresh, GoogleAuthRequest())
        return self._credentials.token

    async def _post(self, path: str, payload: dict[str, Any], *, admin: bool) -> dict[str, Any]:
        headers: dict[str, str] = {}
        params: dict[str, str] = {}
        if admin:
            headers["Authorization"] = f"Bearer {await self._admin_token()}"
        else:
            params["key"] = self._api_key
        try:
            async with httpx.AsyncClient(timeout=self._timeout_s) as client:
                response = await client.post(f"{_BASE_URL}/{path}", json=payload, headers=headers, params=params)
        except httpx.HTTPError as exc:
            raise IdentityProviderError("Identity provider unreachable") from exc
        if response.status_code >= 400:
            message = ""
            try:
                message = response.json().get("error", {}).get("message", "")
            except ValueError:
                message = ""
            if message.startswith("EMAIL_EXISTS"):
                raise ConflictError("Email already registered", field="email")
            logger.warning("identity_call_failed path=%s status=%s", path, response.status_code)
            raise IdentityProviderError("Identity provider request failed")
        return response.json()

    async def check(self) -> None:
        await self._admin_token()

    async def create_account(self, *, email: str, password: str, display_name: str) -> str:
        payload = {"email": email, "password": password, "displayName": display_name, "returnSecureToken": False}
        body = await self._post("accounts:signUp", payload, admin=False)
        return str(body["localId"])

    async def set_claims(self, account_id: str, claims: dict[str, Any]) -> None:
        payload = {"localId": account_id, "customAttributes": json.dumps(claims)}
        await self._post(f"projects/{self._project_id}/accounts:update", payload, admin=True)

    async def delete_account(self, account_id: str) -> None:
        await self._post(f"projects/{self._project_id}/accounts:delete", {"localId": account_id}, admin=True)

    async def send_password_reset(self, email: str) -> None:
        try:
            await self._post("accounts:sendOobCode", {"requestType": "PASSWORD_RESET", "email": email}, admin=False)
        except IdentityProviderError:
            # Unknown emails fail upstream; callers always return a generic message.
            logger.info("password_reset_not_sent")
