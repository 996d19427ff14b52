from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from compliancesync.apps.api.deps import Principal, actor_for, get_db, require_capability
from compliancesync.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from compliancesync.apps.api.schemas import EMAIL_PATTERN, UserResponse, iso, user_response
from compliancesync.domain.models import Invitation
from compliancesync.providers.identity.base import IdentityProvider
from compliancesync.providers.identity.factory import get_identity_provider
from compliancesync.services import tenants as tenants_service
from compliancesync.services.access_control import Capability


router = APIRouter(prefix="/users", tags=["users"], responses=DEFAULT_ERROR_RESPONSES)

RoleName = Literal["admin", "compliance_officer", "viewer"]


class InviteRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: str = Field(max_length=320, pattern=EMAIL_PATTERN)
    role: RoleName
    message: str | None = Field(default=None, max_length=2000)


class RoleUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    role: RoleName


class InvitationResponse(BaseModel):
    id: str
    email: str
    role: str
    status: str
    invited_by: str
    created_at: str | None
    expires_at: str | None


class InviteResponse(InvitationResponse):
    # Returned once; delivery of the acceptance link is left to the caller.
    token: str


def _invitation_response(invitation: Invitation) -> InvitationResponse:
    return InvitationResponse(
        id=invitation.id,
        email=invitation.email,
        role=invitation.role,
        status=invitation.status,
        invited_by=invitation.invited_by,
        created_at=iso(invitation.created_at),
        expires_at=iso(invitation.expires_at),
    )


@router.get("")
async def list_users(
    principal: Principal = Depends(require_capability(Capability.VIEW_DASHBOARD)),
    db: AsyncSession = Depends(get_db),
) -> list[UserResponse]:
    try:
        users = await tenants_service.list_users(db, principal.tenant_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while listing users") from exc
    return [user_response(user) for user in users]


@router.post("/invite", status_code=status.HTTP_201_CREATED)
async def invite_user(
    payload: InviteRequest,
    request: Request,
    principal: Principal = Depends(require_capability(Capability.MANAGE_USERS)),
    db: AsyncSession = Depends(get_db),
) -> InviteResponse:
    invitation, token = await tenants_service.invite_user(
        db,
        tenant_id=principal.tenant_id,
        actor=actor_for(principal, request),
        email=payload.email,
        role=payload.role,
        message=payload.message,
    )
    base = _invitation_response(invitation)
    return InviteResponse(**base.model_dump(), token=token)


@router.get("/invitations")
async def list_invitations(
    principal: Principal = Depends(require_capability(Capability.MANAGE_USERS)),
    db: AsyncSession = Depends(get_db),
) -> list[InvitationResponse]:
    invitations = await tenants_service.list_invitations(db, principal.tenant_id)
    return [_invitation_response(item) for item in invitations]


@router.delete("/invitations/{invitation_id}")
async def revoke_invitation(
    invitation_id: str,
    request: Request,
    principal: Principal = Depends(require_capability(Capability.MANAGE_USERS)),
    db: AsyncSession = Depends(get_db),
) -> InvitationResponse:
    invitation = await tenants_service.revoke_invitation(
        db,
        tenant_id=principal.tenant_id,
        actor=actor_for(principal, request),
        invitation_id=invitation_id,
    )
    return _invitation_response(invitation)


@router.put("/{user_id}/role")
async def update_user_role(
    user_id: str,
    payload: RoleUpdateRequest,
    request: Request,
    principal: Principal = Depends(require_capability(Capability.MANAGE_USERS)),
    db: AsyncSession = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> UserResponse:
    user = await tenants_service.update_user_role(
        db,
        identity,
        tenant_id=principal.tenant_id,
        actor=actor_for(principal, request),
        user_id=user_id,
        role=payload.role,
    )
    return user_response(user)


@router.delete("/{user_id}")
async def delete_user(
    user_id: str,
    request: Request,
    principal: Principal = Depends(require_capability(Capability.MANAGE_USERS)),
    db: AsyncSession = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> UserResponse:
    user = await tenants_service.delete_user(
        db,
        identity,
        tenant_id=principal.tenant_id,
        actor=actor_for(principal, request),
        user_id=user_id,
    )
    return user_response(user)
