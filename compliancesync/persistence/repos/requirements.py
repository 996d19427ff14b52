from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from compliancesync.domain.models import Requirement
from compliancesync.persistence.guards import tenant_predicate


async def get_requirement_for_tenant(
    session: AsyncSession, tenant_id: str, requirement_id: str
) -> Requirement | None:
    # Ensure tenant scoping to prevent cross-tenant requirement access.
    result = await session.execute(
        select(Requirement).where(Requirement.id == requirement_id, tenant_predicate(Requirement, tenant_id))
    )
    return result.scalar_one_or_none()


async def get_active_for_template(
    session: AsyncSession, tenant_id: str, template_id: str
) -> Requirement | None:
    result = await session.execute(
        select(Requirement).where(
            tenant_predicate(Requirement, tenant_id),
            Requirement.template_id == template_id,
            Requirement.is_active.is_(True),
        )
    )
    return result.scalars().first()


async def list_requirements(
    session: AsyncSession,
    tenant_id: str,
    *,
    include_inactive: bool = False,
    category: str | None = None,
) -> list[Requirement]:
    stmt = select(Requirement).where(tenant_predicate(Requirement, tenant_id))
    if not include_inactive:
        stmt = stmt.where(Requirement.is_active.is_(True))
    if category:
        stmt = stmt.where(Requirement.category == category)
    # Stable ordering avoids non-deterministic API responses for the same tenant.
    stmt = stmt.order_by(Requirement.activated_at, Requirement.id)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_active_ids(session: AsyncSession, tenant_id: str, requirement_ids: list[str]) -> set[str]:
    # Resolve which of the given ids are active requirements owned by the tenant.
    if not requirement_ids:
        return set()
    result = await session.execute(
        select(Requirement.id).where(
            tenant_predicate(Requirement, tenant_id),
            Requirement.id.in_(requirement_ids),
            Requirement.is_active.is_(True),
        )
    )
    return set(result.scalars().all())


async def adjust_evidence_count(
    session: AsyncSession,
    tenant_id: str,
    requirement_id: str,
    delta: int,
    *,
    actor_id: str | None = None,
) -> bool:
    # Atomic counter update in SQL; never read-modify-write in Python.
    result = await session.execute(
        update(Requirement)
        .where(Requirement.id == requirement_id, tenant_predicate(Requirement, tenant_id))
        .values(
            evidence_count=Requirement.evidence_count + delta,
            updated_at=datetime.now(timezone.utc),
            updated_by=actor_id,
        )
        .execution_options(synchronize_session=False)
    )
    return (result.rowcount or 0) > 0


async def set_evidence_count(
    session: AsyncSession, tenant_id: str, requirement_id: str, count: int
) -> None:
    # Used only by reconciliation to overwrite drifted counters.
    await session.execute(
        update(Requirement)
        .where(Requirement.id == requirement_id, tenant_predicate(Requirement, tenant_id))
        .values(evidence_count=count, updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
