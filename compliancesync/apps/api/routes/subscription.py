from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from compliancesync.apps.api.deps import Principal, actor_for, get_db, require_capability
from compliancesync.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from compliancesync.apps.api.schemas import SubscriptionResponse, subscription_response
from compliancesync.domain.constants import SubscriptionTier
from compliancesync.services import tenants as tenants_service
from compliancesync.services.access_control import Capability


router = APIRouter(prefix="/subscription", tags=["subscription"], responses=DEFAULT_ERROR_RESPONSES)


class TierRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    tier: SubscriptionTier


class CancelRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    confirmation: str = Field(min_length=1, max_length=200)


@router.get("")
async def get_subscription(
    principal: Principal = Depends(require_capability(Capability.VIEW_DASHBOARD)),
    db: AsyncSession = Depends(get_db),
) -> SubscriptionResponse:
    org = await tenants_service.get_subscription(db, principal.tenant_id)
    return subscription_response(org)


async def _change_tier(db: AsyncSession, principal: Principal, request: Request, tier: str) -> SubscriptionResponse:
    org = await tenants_service.change_subscription_tier(
        db,
        tenant_id=principal.tenant_id,
        actor=actor_for(principal, request),
        tier=tier,
    )
    return subscription_response(org)


@router.post("")
async def create_subscription(
    payload: TierRequest,
    request: Request,
    principal: Principal = Depends(require_capability(Capability.MANAGE_BILLING)),
    db: AsyncSession = Depends(get_db),
) -> SubscriptionResponse:
    # Converts a trial into a paid plan; no payment provider is contacted.
    return await _change_tier(db, principal, request, payload.tier)


@router.put("")
async def update_subscription(
    payload: TierRequest,
    request: Request,
    principal: Principal = Depends(require_capability(Capability.MANAGE_BILLING)),
    db: AsyncSession = Depends(get_db),
) -> SubscriptionResponse:
    return await _change_tier(db, principal, request, payload.tier)


@router.post("/cancel")
async def cancel_subscription(
    payload: CancelRequest,
    request: Request,
    principal: Principal = Depends(require_capability(Capability.MANAGE_BILLING)),
    db: AsyncSession = Depends(get_db),
) -> SubscriptionResponse:
    org = await tenants_service.cancel_subscription(
        db,
        tenant_id=principal.tenant_id,
        actor=actor_for(principal, request),
        confirmation=payload.confirmation,
    )
    return subscription_response(org)
