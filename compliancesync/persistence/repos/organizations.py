from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from compliancesync.domain.models import Organization


async def get_organization(session: AsyncSession, tenant_id: str) -> Organization | None:
    result = await session.execute(select(Organization).where(Organization.id == tenant_id))
    return result.scalar_one_or_none()


async def get_organization_for_update(session: AsyncSession, tenant_id: str) -> Organization | None:
    # Lock the tenant row on Postgres so concurrent seat checks serialize.
    result = await session.execute(
        select(Organization).where(Organization.id == tenant_id).with_for_update()
    )
    return result.scalar_one_or_none()


async def adjust_active_user_count(session: AsyncSession, tenant_id: str, delta: int) -> None:
    # Single-statement increment so concurrent membership changes never lose updates.
    await session.execute(
        update(Organization)
        .where(Organization.id == tenant_id)
        .values(active_user_count=Organization.active_user_count + delta)
        .execution_options(synchronize_session=False)
    )
