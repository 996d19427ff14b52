from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from compliancesync.domain.models import RequirementTemplate


async def list_templates(
    session: AsyncSession,
    *,
    framework: str,
    category: str | None = None,
) -> list[RequirementTemplate]:
    # Tenants only browse the active catalog for their own framework.
    stmt = select(RequirementTemplate).where(
        RequirementTemplate.regulatory_framework == framework,
        RequirementTemplate.is_active.is_(True),
    )
    if category:
        stmt = stmt.where(RequirementTemplate.category == category)
    stmt = stmt.order_by(RequirementTemplate.category, RequirementTemplate.id)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_template(session: AsyncSession, template_id: str) -> RequirementTemplate | None:
    result = await session.execute(
        select(RequirementTemplate).where(RequirementTemplate.id == template_id)
    )
    return result.scalar_one_or_none()
