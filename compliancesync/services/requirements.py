from __future__ import annotations

from datetime import date, datetime, timezone
import logging
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from compliancesync.core.config import get_settings
from compliancesync.core.errors import ConflictError, NotFoundError, ValidationError
from compliancesync.domain.constants import REQUIREMENT_CATEGORIES, AuditAction, ResourceType
from compliancesync.domain.models import Evidence, Requirement, RequirementTemplate
from compliancesync.domain.status import ComplianceStatus, derive_status
from compliancesync.persistence.repos import evidence as evidence_repo
from compliancesync.persistence.repos import organizations as organizations_repo
from compliancesync.persistence.repos import requirements as requirements_repo
from compliancesync.persistence.repos import templates as templates_repo
from compliancesync.services.audit import Actor, diff, record_event


logger = logging.getLogger(__name__)

# Sentinel distinguishing "not provided" from an explicit null that clears a date.
UNSET = object()


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def status_for(requirement: Requirement, now: datetime | None = None) -> ComplianceStatus:
    # Status is always recomputed from the counter and due date; the stored snapshot is ignored.
    return derive_status(
        requirement.evidence_count,
        requirement.next_due_date,
        now or _utc_now(),
        at_risk_window_days=get_settings().at_risk_window_days,
    )


def _check_category(category: str | None) -> None:
    if category is not None and category not in REQUIREMENT_CATEGORIES:
        raise ValidationError(f"Unknown requirement category: {category}", field="category")


async def _tenant_framework(session: AsyncSession, tenant_id: str) -> str:
    org = await organizations_repo.get_organization(session, tenant_id)
    if org is None:
        raise NotFoundError("Organization not found")
    return org.regulatory_framework


async def list_templates(
    session: AsyncSession, tenant_id: str, *, category: str | None = None
) -> list[RequirementTemplate]:
    _check_category(category)
    framework = await _tenant_framework(session, tenant_id)
    return await templates_repo.list_templates(session, framework=framework, category=category)


async def get_requirement(session: AsyncSession, tenant_id: str, requirement_id: str) -> Requirement:
    requirement = await requirements_repo.get_requirement_for_tenant(session, tenant_id, requirement_id)
    if requirement is None:
        raise NotFoundError("Requirement not found")
    return requirement


async def list_requirements(
    session: AsyncSession,
    tenant_id: str,
    *,
    include_inactive: bool = False,
    category: str | None = None,
    status: str | None = None,
) -> list[Requirement]:
    _check_category(category)
    requirements = await requirements_repo.list_requirements(
        session, tenant_id, include_inactive=include_inactive, category=category
    )
    if status:
        now = _utc_now()
        requirements = [item for item in requirements if status_for(item, now).value == status]
    return requirements


async def activate(
    session: AsyncSession,
    *,
    tenant_id: str,
    actor: Actor,
    template_id: str,
    notes: str | None = None,
    next_due_date: date | None = None,
) -> Requirement:
    """Activate a catalog template for the tenant.

    Template fields are copied onto the new requirement. Only templates of
    the tenant's regulatory framework resolve; others are reported as not
    found. A template may have at most one active requirement per tenant.
    """
    framework = await _tenant_framework(session, tenant_id)
    template = await templates_repo.get_template(session, template_id)
    if template is None or not template.is_active or template.regulatory_framework != framework:
        raise NotFoundError("Requirement template not found")
    if await requirements_repo.get_active_for_template(session, tenant_id, template_id) is not None:
        raise ConflictError("Requirement is already active for this template", template_id=template_id)

    now = _utc_now()
    requirement = Requirement(
        id=uuid4().hex,
        tenant_id=tenant_id,
        template_id=template.id,
        title=template.title,
        description=template.description,
        category=template.category,
        authority=template.authority,
        evidence_types=list(template.evidence_types or []),
        frequency=template.frequency,
        next_due_date=next_due_date,
        evidence_count=0,
        notes=notes,
        is_active=True,
        activated_at=now,
        activated_by=actor.user_id or "",
        updated_at=now,
        updated_by=actor.user_id,
    )
    requirement.status = status_for(requirement, now).value
    session.add(requirement)
    await session.flush()
    await record_event(
        session=session,
        tenant_id=tenant_id,
        actor=actor,
        action=AuditAction.REQUIREMENT_ACTIVATED,
        resource_type=ResourceType.REQUIREMENT,
        resource_id=requirement.id,
        description=f"Activated requirement '{requirement.title}'",
        metadata={"template_id": template.id},
    )
    await session.commit()
    return requirement


async def update(
    session: AsyncSession,
    *,
    tenant_id: str,
    actor: Actor,
    requirement_id: str,
    notes: object = UNSET,
    next_due_date: object = UNSET,
    last_completed_date: object = UNSET,
) -> Requirement:
    # Only notes and dates are mutable; template-derived fields stay as activated.
    requirement = await get_requirement(session, tenant_id, requirement_id)
    if not requirement.is_active:
        raise ConflictError("Requirement is inactive")
    updates: dict[str, object] = {}
    if notes is not UNSET:
        updates["notes"] = notes
    if next_due_date is not UNSET:
        updates["next_due_date"] = next_due_date
    if last_completed_date is not UNSET:
        updates["last_completed_date"] = last_completed_date
    before = {key: getattr(requirement, key) for key in updates}
    for key, value in updates.items():
        setattr(requirement, key, value)
    requirement.updated_by = actor.user_id
    requirement.status = status_for(requirement).value
    changes = diff(_jsonable(before), _jsonable(updates))
    await record_event(
        session=session,
        tenant_id=tenant_id,
        actor=actor,
        action=AuditAction.REQUIREMENT_UPDATED,
        resource_type=ResourceType.REQUIREMENT,
        resource_id=requirement.id,
        description=f"Updated requirement '{requirement.title}'",
        changes=changes or None,
    )
    await session.commit()
    return requirement


async def deactivate(
    session: AsyncSession, *, tenant_id: str, actor: Actor, requirement_id: str
) -> Requirement:
    # Associated evidence is left untouched; re-activation creates a new requirement.
    requirement = await get_requirement(session, tenant_id, requirement_id)
    if not requirement.is_active:
        raise ConflictError("Requirement is already inactive")
    requirement.is_active = False
    requirement.updated_by = actor.user_id
    await record_event(
        session=session,
        tenant_id=tenant_id,
        actor=actor,
        action=AuditAction.REQUIREMENT_DEACTIVATED,
        resource_type=ResourceType.REQUIREMENT,
        resource_id=requirement.id,
        description=f"Deactivated requirement '{requirement.title}'",
        changes={"is_active": {"from": True, "to": False}},
    )
    await session.commit()
    return requirement


async def list_evidence_for_requirement(
    session: AsyncSession, tenant_id: str, requirement_id: str
) -> list[Evidence]:
    await get_requirement(session, tenant_id, requirement_id)
    return await evidence_repo.list_evidence(session, tenant_id, requirement_id=requirement_id)


def _jsonable(values: dict[str, object]) -> dict[str, object]:
    # Dates are stored in audit diffs as ISO strings.
    return {
        key: value.isoformat() if isinstance(value, (date, datetime)) else value
        for key, value in values.items()
    }
