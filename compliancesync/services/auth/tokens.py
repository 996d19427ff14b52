from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from functools import lru_cache
import json
import logging
import time
from typing import Any

import httpx
import jwt

from compliancesync.core.config import Settings, get_settings
from compliancesync.core.errors import ProviderConfigError, TokenVerificationError


logger = logging.getLogger(__name__)

_ASYMMETRIC_ALGS = {"RS256", "RS384", "RS512", "ES256", "ES384", "ES512"}


def _select_jwk(jwks: dict[str, Any], kid: str | None) -> dict[str, Any]:
    # Select the appropriate JWK based on kid header.
    keys = jwks.get("keys") or []
    if kid:
        for key in keys:
            if key.get("kid") == kid:
                return key
    if len(keys) == 1:
        return keys[0]
    raise TokenVerificationError("No matching signing key for token")


def _jwk_to_key(jwk: dict[str, Any], alg: str) -> Any:
    # Convert a JWK payload into a cryptography key for PyJWT.
    payload = json.dumps(jwk)
    if alg.startswith("RS"):
        return jwt.algorithms.RSAAlgorithm.from_jwk(payload)
    if alg.startswith("ES"):
        return jwt.algorithms.ECAlgorithm.from_jwk(payload)
    raise TokenVerificationError("Unsupported token algorithm")


class TokenVerifier:
    """Verify identity-provider tokens and return their claims.

    ``hs256`` mode checks a shared secret; ``jwks`` mode fetches the
    provider's signing keys over HTTP and caches them for
    ``auth_jwks_cache_ttl_s`` seconds.
    """

    def __init__(self, settings: Settings) -> None:
        self._mode = (settings.auth_token_mode or "").lower()
        if self._mode not in {"hs256", "jwks"}:
            raise ProviderConfigError(f"Unsupported AUTH_TOKEN_MODE: {settings.auth_token_mode}")
        if self._mode == "jwks" and not settings.auth_jwks_url:
            raise ProviderConfigError("AUTH_JWKS_URL is required when AUTH_TOKEN_MODE=jwks")
        if self._mode == "hs256" and not settings.auth_jwt_secret:
            raise ProviderConfigError("AUTH_JWT_SECRET is required when AUTH_TOKEN_MODE=hs256")
        self._secret = settings.auth_jwt_secret
        self._jwks_url = settings.auth_jwks_url
        self._audience = settings.auth_jwt_audience
        self._issuer = settings.auth_jwt_issuer
        self._leeway = settings.auth_clock_skew_seconds
        self._jwks_ttl_s = settings.auth_jwks_cache_ttl_s
        self._timeout_s = settings.ext_call_timeout_ms / 1000
        self._jwks: dict[str, Any] | None = None
        self._jwks_fetched_at = 0.0
        self._lock = asyncio.Lock()

    async def _fetch_jwks(self, *, force: bool = False) -> dict[str, Any]:
        async with self._lock:
            fresh = self._jwks is not None and (time.monotonic() - self._jwks_fetched_at) < self._jwks_ttl_s
            if fresh and not force:
                return self._jwks  # type: ignore[return-value]
            async with httpx.AsyncClient(timeout=self._timeout_s) as client:
                response = await client.get(self._jwks_url)  # type: ignore[arg-type]
            response.raise_for_status()
            self._jwks = response.json()
            self._jwks_fetched_at = time.monotonic()
            return self._jwks

    async def check(self) -> None:
        # Startup probe: jwks mode must be able to reach the key endpoint.
        if self._mode == "jwks":
            try:
                await self._fetch_jwks(force=True)
            except httpx.HTTPError as exc:
                raise ProviderConfigError("Unable to fetch identity provider signing keys") from exc

    async def verify(self, token: str) -> dict[str, Any]:
        try:
            header = jwt.get_unverified_header(token)
        except jwt.PyJWTError as exc:
            raise TokenVerificationError("Malformed bearer token") from exc
        alg = header.get("alg")
        options = {"require": ["exp", "sub"]}
        decode_kwargs: dict[str, Any] = {"leeway": self._leeway, "options": options}
        if self._audience:
            decode_kwargs["audience"] = self._audience
        else:
            options["verify_aud"] = False
        if self._issuer:
            decode_kwargs["issuer"] = self._issuer

        if self._mode == "hs256":
            if alg != "HS256":
                raise TokenVerificationError("Unsupported token algorithm")
            key: Any = self._secret
        else:
            if not alg or alg not in _ASYMMETRIC_ALGS:
                raise TokenVerificationError("Unsupported token algorithm")
            try:
                jwks = await self._fetch_jwks()
            except httpx.HTTPError as exc:
                logger.warning("jwks_fetch_failed url=%s", self._jwks_url, exc_info=exc)
                raise TokenVerificationError("Unable to verify token") from exc
            key = _jwk_to_key(_select_jwk(jwks, header.get("kid")), alg)

        try:
            return jwt.decode(token, key, algorithms=[alg], **decode_kwargs)
        except jwt.ExpiredSignatureError as exc:
            raise TokenVerificationError("Token expired") from exc
        except jwt.PyJWTError as exc:
            raise TokenVerificationError("Invalid bearer token") from exc


@lru_cache
def get_token_verifier() -> TokenVerifier:
    return TokenVerifier(get_settings())


def mint_token(
    *,
    subject: str,
    email: str,
    tenant_id: str | None,
    role: str | None,
    ttl: timedelta | None = None,
    settings: Settings | None = None,
) -> str:
    # Issue HS256 tokens with the same claim layout the identity provider uses; dev/test only.
    resolved = settings or get_settings()
    now = datetime.now(timezone.utc)
    claims: dict[str, Any] = {
        "sub": subject,
        "email": email,
        "iat": now,
        "exp": now + (ttl or timedelta(minutes=resolved.auth_dev_token_ttl_minutes)),
    }
    if tenant_id is not None:
        claims[resolved.auth_tenant_claim] = tenant_id
    if role is not None:
        claims[resolved.auth_role_claim] = role
    if resolved.auth_jwt_audience:
        claims["aud"] = resolved.auth_jwt_audience
    if resolved.auth_jwt_issuer:
        claims["iss"] = resolved.auth_jwt_issuer
    return jwt.encode(claims, resolved.auth_jwt_secret, algorithm="HS256")
