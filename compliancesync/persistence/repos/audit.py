from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from compliancesync.domain.models import AuditLogEntry
from compliancesync.persistence.guards import tenant_predicate


@dataclass(frozen=True)
class AuditFilters:
    user_id: str | None = None
    action: str | None = None
    resource_type: str | None = None
    resource_id: str | None = None
    occurred_from: datetime | None = None
    occurred_to: datetime | None = None


def _filtered(stmt, tenant_id: str, filters: AuditFilters):
    # Scope all audit queries to a tenant to prevent cross-tenant leakage.
    stmt = stmt.where(tenant_predicate(AuditLogEntry, tenant_id))
    if filters.user_id:
        stmt = stmt.where(AuditLogEntry.user_id == filters.user_id)
    if filters.action:
        stmt = stmt.where(AuditLogEntry.action == filters.action)
    if filters.resource_type:
        stmt = stmt.where(AuditLogEntry.resource_type == filters.resource_type)
    if filters.resource_id:
        stmt = stmt.where(AuditLogEntry.resource_id == filters.resource_id)
    if filters.occurred_from:
        stmt = stmt.where(AuditLogEntry.timestamp >= filters.occurred_from)
    if filters.occurred_to:
        stmt = stmt.where(AuditLogEntry.timestamp <= filters.occurred_to)
    return stmt


async def list_entries(
    session: AsyncSession,
    *,
    tenant_id: str,
    filters: AuditFilters | None = None,
    offset: int = 0,
    limit: int = 100,
) -> list[AuditLogEntry]:
    stmt = _filtered(select(AuditLogEntry), tenant_id, filters or AuditFilters())
    # Newest first; id breaks ties for entries sharing a timestamp.
    stmt = stmt.order_by(AuditLogEntry.timestamp.desc(), AuditLogEntry.id.desc())
    stmt = stmt.offset(offset).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def count_entries(
    session: AsyncSession,
    *,
    tenant_id: str,
    filters: AuditFilters | None = None,
) -> int:
    stmt = _filtered(select(func.count()).select_from(AuditLogEntry), tenant_id, filters or AuditFilters())
    result = await session.execute(stmt)
    return int(result.scalar() or 0)
