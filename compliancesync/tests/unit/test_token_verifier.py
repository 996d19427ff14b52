from __future__ import annotations

from datetime import timedelta

import jwt
import pytest

from compliancesync.core.config import get_settings
from compliancesync.core.errors import ProviderConfigError, TokenVerificationError
from compliancesync.services.auth.tokens import TokenVerifier, _select_jwk, mint_token


@pytest.mark.asyncio
async def test_minted_token_round_trips_claims() -> None:
    settings = get_settings()
    verifier = TokenVerifier(settings)
    token = mint_token(subject="u1", email="u1@example.com", tenant_id="t1", role="viewer")
    claims = await verifier.verify(token)
    assert claims["sub"] == "u1"
    assert claims[settings.auth_tenant_claim] == "t1"
    assert claims[settings.auth_role_claim] == "viewer"


@pytest.mark.asyncio
async def test_expired_token_is_rejected() -> None:
    verifier = TokenVerifier(get_settings())
    token = mint_token(
        subject="u1",
        email="u1@example.com",
        tenant_id="t1",
        role="admin",
        ttl=timedelta(minutes=-10),
    )
    with pytest.raises(TokenVerificationError) as excinfo:
        await verifier.verify(token)
    assert excinfo.value.status_code == 401


@pytest.mark.asyncio
async def test_wrong_secret_and_garbage_are_rejected() -> None:
    verifier = TokenVerifier(get_settings())
    forged = jwt.encode({"sub": "u1", "exp": 9999999999}, "another-secret-0123456789abcdef0123", algorithm="HS256")
    with pytest.raises(TokenVerificationError):
        await verifier.verify(forged)
    with pytest.raises(TokenVerificationError):
        await verifier.verify("not-a-jwt")


@pytest.mark.asyncio
async def test_subject_is_required() -> None:
    settings = get_settings()
    verifier = TokenVerifier(settings)
    token = jwt.encode({"exp": 9999999999}, settings.auth_jwt_secret, algorithm="HS256")
    with pytest.raises(TokenVerificationError):
        await verifier.verify(token)


def test_jwks_mode_requires_url() -> None:
    settings = get_settings().model_copy(update={"auth_token_mode": "jwks", "auth_jwks_url": None})
    with pytest.raises(ProviderConfigError):
        TokenVerifier(settings)


def test_select_jwk_by_kid() -> None:
    jwks = {"keys": [{"kid": "a", "kty": "RSA"}, {"kid": "b", "kty": "RSA"}]}
    assert _select_jwk(jwks, "b")["kid"] == "b"
    with pytest.raises(TokenVerificationError):
        _select_jwk(jwks, "missing")
