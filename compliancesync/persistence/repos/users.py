from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from compliancesync.domain.models import User
from compliancesync.persistence.guards import tenant_predicate


async def get_user(session: AsyncSession, user_id: str) -> User | None:
    result = await session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_email(session: AsyncSession, email: str) -> User | None:
    # Emails are stored lowercased; normalize lookups the same way.
    result = await session.execute(select(User).where(User.email == email.strip().lower()))
    return result.scalar_one_or_none()


async def get_user_for_tenant(session: AsyncSession, tenant_id: str, user_id: str) -> User | None:
    # Users from other tenants resolve to None, identical to a missing id.
    result = await session.execute(
        select(User).where(User.id == user_id, tenant_predicate(User, tenant_id))
    )
    return result.scalar_one_or_none()


async def list_users(session: AsyncSession, tenant_id: str) -> list[User]:
    result = await session.execute(
        select(User)
        .where(tenant_predicate(User, tenant_id))
        .order_by(User.created_at, User.id)
    )
    return list(result.scalars().all())


async def count_active_users(session: AsyncSession, tenant_id: str) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(User)
        .where(tenant_predicate(User, tenant_id), User.status == "active")
    )
    return int(result.scalar() or 0)
