from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from compliancesync.domain.models import Invitation
from compliancesync.persistence.guards import tenant_predicate


async def get_invitation_by_token_hash(session: AsyncSession, token_hash: str) -> Invitation | None:
    # Acceptance is unauthenticated, so lookup is by token hash rather than tenant.
    result = await session.execute(select(Invitation).where(Invitation.token_hash == token_hash))
    return result.scalar_one_or_none()


async def get_invitation_for_tenant(
    session: AsyncSession, tenant_id: str, invitation_id: str
) -> Invitation | None:
    result = await session.execute(
        select(Invitation).where(Invitation.id == invitation_id, tenant_predicate(Invitation, tenant_id))
    )
    return result.scalar_one_or_none()


async def get_pending_for_email(session: AsyncSession, tenant_id: str, email: str) -> Invitation | None:
    result = await session.execute(
        select(Invitation).where(
            tenant_predicate(Invitation, tenant_id),
            Invitation.email == email,
            Invitation.status == "pending",
        )
    )
    return result.scalars().first()


async def list_invitations(
    session: AsyncSession, tenant_id: str, *, status: str | None = None
) -> list[Invitation]:
    stmt = select(Invitation).where(tenant_predicate(Invitation, tenant_id))
    if status:
        stmt = stmt.where(Invitation.status == status)
    stmt = stmt.order_by(Invitation.created_at.desc(), Invitation.id)
    result = await session.execute(stmt)
    return list(result.scalars().all())
