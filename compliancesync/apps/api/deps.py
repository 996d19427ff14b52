from __future__ import annotations

import logging
from typing import AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from compliancesync.core.config import get_settings
from compliancesync.core.logging import tenant_id_ctx
from compliancesync.persistence.db import get_session
from compliancesync.services.access_control import Capability, Role, can_perform, normalize_role
from compliancesync.services.audit import Actor, get_request_context
from compliancesync.services.auth.tokens import TokenVerifier, get_token_verifier


logger = logging.getLogger(__name__)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


class Principal(BaseModel):
    # Identity derived from verified token claims; tenant and role are never client-supplied.
    user_id: str
    email: str | None
    tenant_id: str
    role: Role


def _auth_error(message: str) -> HTTPException:
    # Normalize auth errors for clients without leaking internal details.
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_UNAUTHORIZED", "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _forbidden_error(message: str) -> HTTPException:
    # Use 403 for authenticated principals lacking permissions or tenant claims.
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"code": "AUTH_FORBIDDEN", "message": message},
    )


def _parse_bearer_token(header_value: str | None) -> str:
    # Enforce Bearer token format.
    if not header_value:
        raise _auth_error("Missing bearer token")
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise _auth_error("Missing or invalid bearer token")
    return parts[1]


async def get_current_principal(
    request: Request,
    verifier: TokenVerifier = Depends(get_token_verifier),
) -> Principal:
    settings = get_settings()
    token = _parse_bearer_token(request.headers.get("Authorization"))
    # TokenVerificationError propagates as a 401 through the domain error handler.
    claims = await verifier.verify(token)

    tenant_id = claims.get(settings.auth_tenant_claim)
    raw_role = claims.get(settings.auth_role_claim)
    # Fail closed: tenant-scoped routes need both claims.
    if not tenant_id or not raw_role:
        logger.warning("auth_claims_missing subject=%s path=%s", claims.get("sub"), request.url.path)
        raise _forbidden_error("Token is missing organization or role claims")
    try:
        role = normalize_role(str(raw_role))
    except ValueError as exc:
        raise _forbidden_error("Token carries an unsupported role") from exc

    principal = Principal(
        user_id=str(claims["sub"]),
        email=claims.get("email"),
        tenant_id=str(tenant_id),
        role=role,
    )
    request.state.principal = principal
    tenant_id_ctx.set(principal.tenant_id)
    return principal


def require_capability(capability: Capability):
    # Dependency factory to enforce role capabilities at the route level.
    async def _dependency(
        request: Request,
        principal: Principal = Depends(get_current_principal),
    ) -> Principal:
        if not can_perform(principal.role, capability):
            # Denials are logged, never audited; nothing was mutated.
            logger.warning(
                "rbac_forbidden tenant_id=%s user_id=%s role=%s capability=%s path=%s",
                principal.tenant_id,
                principal.user_id,
                principal.role.value,
                capability.value,
                request.url.path,
            )
            raise _forbidden_error("Insufficient role for this operation")
        return principal

    return _dependency


def actor_for(principal: Principal, request: Request) -> Actor:
    # Bundle the principal with request hints for audit entries.
    ctx = get_request_context(request)
    return Actor(
        user_id=principal.user_id,
        email=principal.email,
        ip_address=ctx["ip_address"],
        user_agent=ctx["user_agent"],
        request_id=ctx["request_id"],
    )
