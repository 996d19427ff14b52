from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from compliancesync.domain.models import Report
from compliancesync.persistence.guards import tenant_predicate


async def get_report_for_tenant(session: AsyncSession, tenant_id: str, report_id: str) -> Report | None:
    result = await session.execute(
        select(Report).where(Report.id == report_id, tenant_predicate(Report, tenant_id))
    )
    return result.scalar_one_or_none()


async def list_reports(session: AsyncSession, tenant_id: str, *, limit: int = 50) -> list[Report]:
    result = await session.execute(
        select(Report)
        .where(tenant_predicate(Report, tenant_id))
        .order_by(Report.created_at.desc(), Report.id)
        .limit(limit)
    )
    return list(result.scalars().all())
