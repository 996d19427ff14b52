from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from compliancesync.apps.api.deps import Principal, actor_for, get_current_principal, get_db
from compliancesync.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from compliancesync.apps.api.schemas import UserResponse, user_response
from compliancesync.services import tenants as tenants_service


router = APIRouter(prefix="/profile", tags=["profile"], responses=DEFAULT_ERROR_RESPONSES)


class ProfileUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    full_name: str = Field(min_length=1, max_length=200)


@router.get("")
async def get_profile(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    user = await tenants_service.get_user(db, principal.tenant_id, principal.user_id)
    return user_response(user)


@router.put("")
async def update_profile(
    payload: ProfileUpdateRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    user = await tenants_service.update_profile(
        db,
        tenant_id=principal.tenant_id,
        actor=actor_for(principal, request),
        full_name=payload.full_name,
    )
    return user_response(user)
