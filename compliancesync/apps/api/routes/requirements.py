from __future__ import annotations

from datetime import date
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from compliancesync.apps.api.deps import Principal, actor_for, get_db, require_capability
from compliancesync.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from compliancesync.apps.api.schemas import (
    EvidenceResponse,
    RequirementResponse,
    evidence_response,
    requirement_response,
)
from compliancesync.core.errors import ValidationError
from compliancesync.domain.models import RequirementTemplate
from compliancesync.services import requirements as requirements_service
from compliancesync.services.access_control import Capability


router = APIRouter(prefix="/requirements", tags=["requirements"], responses=DEFAULT_ERROR_RESPONSES)

StatusFilter = Literal["not_started", "in_progress", "compliant", "at_risk", "non_compliant"]


class ActivateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    template_id: str = Field(min_length=1, max_length=100)
    notes: str | None = Field(default=None, max_length=5000)
    next_due_date: date | None = None


class RequirementUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    # Omitted fields are left alone; explicit nulls clear the value.
    notes: str | None = Field(default=None, max_length=5000)
    next_due_date: date | None = None
    last_completed_date: date | None = None


class TemplateResponse(BaseModel):
    id: str
    title: str
    description: str
    category: str
    regulatory_framework: str
    authority: str
    evidence_types: list[str]
    frequency: str


def _template_response(template: RequirementTemplate) -> TemplateResponse:
    return TemplateResponse(
        id=template.id,
        title=template.title,
        description=template.description,
        category=template.category,
        regulatory_framework=template.regulatory_framework,
        authority=template.authority,
        evidence_types=list(template.evidence_types or []),
        frequency=template.frequency,
    )


@router.get("")
async def list_requirements(
    include_inactive: bool = False,
    category: str | None = None,
    status_filter: StatusFilter | None = Query(default=None, alias="status"),
    principal: Principal = Depends(require_capability(Capability.VIEW_REQUIREMENTS)),
    db: AsyncSession = Depends(get_db),
) -> list[RequirementResponse]:
    try:
        requirements = await requirements_service.list_requirements(
            db,
            principal.tenant_id,
            include_inactive=include_inactive,
            category=category,
            status=status_filter,
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while listing requirements") from exc
    return [requirement_response(item) for item in requirements]


# Declared before /{requirement_id} so the literal path wins.
@router.get("/templates")
async def list_templates(
    category: str | None = None,
    principal: Principal = Depends(require_capability(Capability.VIEW_REQUIREMENTS)),
    db: AsyncSession = Depends(get_db),
) -> list[TemplateResponse]:
    templates = await requirements_service.list_templates(db, principal.tenant_id, category=category)
    return [_template_response(item) for item in templates]


@router.get("/{requirement_id}")
async def get_requirement(
    requirement_id: str,
    principal: Principal = Depends(require_capability(Capability.VIEW_REQUIREMENTS)),
    db: AsyncSession = Depends(get_db),
) -> RequirementResponse:
    requirement = await requirements_service.get_requirement(db, principal.tenant_id, requirement_id)
    return requirement_response(requirement)


@router.get("/{requirement_id}/evidence")
async def list_requirement_evidence(
    requirement_id: str,
    principal: Principal = Depends(require_capability(Capability.VIEW_REQUIREMENTS)),
    db: AsyncSession = Depends(get_db),
) -> list[EvidenceResponse]:
    evidence = await requirements_service.list_evidence_for_requirement(db, principal.tenant_id, requirement_id)
    return [evidence_response(item) for item in evidence]


@router.post("", status_code=status.HTTP_201_CREATED)
async def activate_requirement(
    payload: ActivateRequest,
    request: Request,
    principal: Principal = Depends(require_capability(Capability.MANAGE_REQUIREMENTS)),
    db: AsyncSession = Depends(get_db),
) -> RequirementResponse:
    requirement = await requirements_service.activate(
        db,
        tenant_id=principal.tenant_id,
        actor=actor_for(principal, request),
        template_id=payload.template_id,
        notes=payload.notes,
        next_due_date=payload.next_due_date,
    )
    return requirement_response(requirement)


@router.put("/{requirement_id}")
async def update_requirement(
    requirement_id: str,
    payload: RequirementUpdateRequest,
    request: Request,
    principal: Principal = Depends(require_capability(Capability.MANAGE_REQUIREMENTS)),
    db: AsyncSession = Depends(get_db),
) -> RequirementResponse:
    provided = payload.model_fields_set
    if not provided:
        raise ValidationError("No fields to update")
    fields = {
        name: getattr(payload, name) if name in provided else requirements_service.UNSET
        for name in ("notes", "next_due_date", "last_completed_date")
    }
    requirement = await requirements_service.update(
        db,
        tenant_id=principal.tenant_id,
        actor=actor_for(principal, request),
        requirement_id=requirement_id,
        **fields,
    )
    return requirement_response(requirement)


@router.delete("/{requirement_id}")
async def deactivate_requirement(
    requirement_id: str,
    request: Request,
    principal: Principal = Depends(require_capability(Capability.MANAGE_REQUIREMENTS)),
    db: AsyncSession = Depends(get_db),
) -> RequirementResponse:
    requirement = await requirements_service.deactivate(
        db,
        tenant_id=principal.tenant_id,
        actor=actor_for(principal, request),
        requirement_id=requirement_id,
    )
    return requirement_response(requirement)
