from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from compliancesync.apps.api.deps import Principal, actor_for, get_db, require_capability
from compliancesync.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from compliancesync.apps.api.schemas import (
    OrganizationResponse,
    RequirementResponse,
    organization_response,
    requirement_response,
)
from compliancesync.core.errors import ValidationError
from compliancesync.domain.constants import EmployeeBand, Industry
from compliancesync.services import dashboard as dashboard_service
from compliancesync.services import tenants as tenants_service
from compliancesync.services.access_control import Capability


router = APIRouter(prefix="/organization", tags=["organization"], responses=DEFAULT_ERROR_RESPONSES)


class OrganizationUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1, max_length=200)
    industry: Industry | None = None
    employee_count: EmployeeBand | None = None
    website: str | None = Field(default=None, max_length=500)
    address: str | None = Field(default=None, max_length=500)
    phone: str | None = Field(default=None, max_length=50)


class DashboardResponse(BaseModel):
    total_requirements: int
    compliant_requirements: int
    at_risk_requirements: int
    non_compliant_requirements: int
    not_started_requirements: int
    total_evidence: int
    upcoming_deadlines: list[RequirementResponse]


@router.get("")
async def get_organization(
    principal: Principal = Depends(require_capability(Capability.VIEW_DASHBOARD)),
    db: AsyncSession = Depends(get_db),
) -> OrganizationResponse:
    org = await tenants_service.get_subscription(db, principal.tenant_id)
    return organization_response(org)


@router.put("")
async def update_organization(
    payload: OrganizationUpdateRequest,
    request: Request,
    principal: Principal = Depends(require_capability(Capability.MANAGE_ORGANIZATION)),
    db: AsyncSession = Depends(get_db),
) -> OrganizationResponse:
    updates = payload.model_dump(exclude_unset=True)
    # Name is mandatory on the record; only the optional contact fields may be cleared.
    for key in ("name", "industry", "employee_count"):
        if key in updates and updates[key] is None:
            raise ValidationError(f"{key} cannot be cleared", field=key)
    if not updates:
        raise ValidationError("No fields to update")
    org = await tenants_service.update_organization(
        db,
        tenant_id=principal.tenant_id,
        actor=actor_for(principal, request),
        updates=updates,
    )
    return organization_response(org)


@router.get("/dashboard")
async def get_dashboard(
    principal: Principal = Depends(require_capability(Capability.VIEW_DASHBOARD)),
    db: AsyncSession = Depends(get_db),
) -> DashboardResponse:
    try:
        metrics = await dashboard_service.build_dashboard(db, principal.tenant_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while building dashboard") from exc
    return DashboardResponse(
        total_requirements=metrics.total_requirements,
        compliant_requirements=metrics.compliant_requirements,
        at_risk_requirements=metrics.at_risk_requirements,
        non_compliant_requirements=metrics.non_compliant_requirements,
        not_started_requirements=metrics.not_started_requirements,
        total_evidence=metrics.total_evidence,
        upcoming_deadlines=[requirement_response(item) for item in metrics.upcoming_deadlines],
    )
