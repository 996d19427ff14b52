from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from compliancesync.domain.models import Evidence
from compliancesync.persistence.guards import tenant_predicate


async def get_evidence_for_tenant(session: AsyncSession, tenant_id: str, evidence_id: str) -> Evidence | None:
    # Ensure tenant scoping to prevent cross-tenant evidence access.
    result = await session.execute(
        select(Evidence).where(Evidence.id == evidence_id, tenant_predicate(Evidence, tenant_id))
    )
    return result.scalar_one_or_none()


async def list_evidence(
    session: AsyncSession,
    tenant_id: str,
    *,
    status: str = "active",
    source: str | None = None,
    requirement_id: str | None = None,
) -> list[Evidence]:
    stmt = select(Evidence).where(tenant_predicate(Evidence, tenant_id), Evidence.status == status)
    if source:
        stmt = stmt.where(Evidence.source == source)
    stmt = stmt.order_by(Evidence.evidence_date.desc(), Evidence.created_at.desc(), Evidence.id)
    result = await session.execute(stmt)
    items = list(result.scalars().all())
    if requirement_id:
        # Association lists are JSON; filter in Python so sqlite and Postgres behave alike.
        items = [item for item in items if requirement_id in (item.requirement_ids or [])]
    return items


async def count_evidence(session: AsyncSession, tenant_id: str, *, status: str = "active") -> int:
    result = await session.execute(
        select(func.count())
        .select_from(Evidence)
        .where(tenant_predicate(Evidence, tenant_id), Evidence.status == status)
    )
    return int(result.scalar() or 0)


async def claim_transition(
    session: AsyncSession,
    tenant_id: str,
    evidence: Evidence,
    *,
    status: str,
) -> bool:
    # Compare-and-set on (status, revision): a concurrent writer that got there first leaves zero rows matched.
    expected_revision = evidence.revision or 0
    now = datetime.now(timezone.utc)
    result = await session.execute(
        update(Evidence)
        .where(
            Evidence.id == evidence.id,
            tenant_predicate(Evidence, tenant_id),
            Evidence.status == evidence.status,
            Evidence.revision == expected_revision,
        )
        .values(status=status, revision=expected_revision + 1, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        return False
    set_committed_value(evidence, "status", status)
    set_committed_value(evidence, "revision", expected_revision + 1)
    set_committed_value(evidence, "updated_at", now)
    return True
