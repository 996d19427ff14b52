from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import hashlib
import logging
import re
import secrets
from typing import Any
from uuid import uuid4

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from compliancesync.core.config import get_settings
from compliancesync.core.errors import (
    CapacityError,
    ConflictError,
    IdentityProviderError,
    NotFoundError,
    ValidationError,
)
from compliancesync.domain.constants import (
    DEFAULT_TIER,
    AuditAction,
    ResourceType,
    TIER_PLANS,
    plan_for_tier,
)
from compliancesync.domain.models import Invitation, Organization, User
from compliancesync.domain.status import as_utc
from compliancesync.persistence.repos import invitations as invitations_repo
from compliancesync.persistence.repos import organizations as organizations_repo
from compliancesync.persistence.repos import users as users_repo
from compliancesync.providers.identity.base import IdentityProvider
from compliancesync.services.access_control import Role, normalize_role
from compliancesync.services.audit import Actor, diff, record_event


logger = logging.getLogger(__name__)

PASSWORD_RESET_MESSAGE = (
    "If an account exists with this email, you will receive password reset instructions."
)
_SPECIAL_CHARS = re.compile(r"[^A-Za-z0-9]")


@dataclass(frozen=True)
class OrganizationProfile:
    name: str
    industry: str
    employee_count: str
    regulatory_framework: str
    website: str | None = None
    address: str | None = None
    phone: str | None = None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _identity_claims(tenant_id: str, role: Role) -> dict[str, str]:
    # Claim names match what the token verifier reads back.
    settings = get_settings()
    return {settings.auth_tenant_claim: tenant_id, settings.auth_role_claim: role.value}


def hash_invitation_token(raw_token: str) -> str:
    # Use SHA-256 for deterministic, non-reversible token storage.
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def validate_password(password: str) -> None:
    # At least 8 characters with an uppercase letter, a digit and a special character.
    problems = []
    if len(password) < 8:
        problems.append("at least 8 characters")
    if not any(ch.isupper() for ch in password):
        problems.append("an uppercase letter")
    if not any(ch.isdigit() for ch in password):
        problems.append("a number")
    if not _SPECIAL_CHARS.search(password):
        problems.append("a special character")
    if problems:
        raise ValidationError("Password must contain " + ", ".join(problems), field="password")


def _seat_limit_error(org: Organization) -> CapacityError:
    return CapacityError(
        f"Seat limit reached for the {org.subscription_tier} plan",
        code="SEAT_LIMIT_REACHED",
        limit=org.max_users,
    )


async def _require_organization(session: AsyncSession, tenant_id: str, *, for_update: bool = False) -> Organization:
    if for_update:
        org = await organizations_repo.get_organization_for_update(session, tenant_id)
    else:
        org = await organizations_repo.get_organization(session, tenant_id)
    if org is None:
        raise NotFoundError("Organization not found")
    return org


async def _ensure_seat_available(session: AsyncSession, org: Organization) -> None:
    # Only active users occupy seats; pending invitations never count.
    active = await users_repo.count_active_users(session, org.id)
    if active >= org.max_users:
        raise _seat_limit_error(org)


async def _rollback_account(identity: IdentityProvider, account_id: str) -> None:
    # Compensate for an identity account whose database rows were never committed.
    try:
        await identity.delete_account(account_id)
    except IdentityProviderError as exc:
        logger.error("identity_rollback_failed account_id=%s", account_id, exc_info=exc)


async def create_organization(
    session: AsyncSession,
    profile: OrganizationProfile,
    *,
    created_by: str | None = None,
) -> Organization:
    # New tenants start on the lowest tier in trial with the founding user counted.
    plan = plan_for_tier(DEFAULT_TIER)
    now = _utc_now()
    org = Organization(
        id=uuid4().hex,
        name=profile.name,
        industry=profile.industry,
        employee_count=profile.employee_count,
        regulatory_framework=profile.regulatory_framework,
        website=profile.website,
        address=profile.address,
        phone=profile.phone,
        subscription_tier=plan.tier,
        subscription_status="trial",
        max_users=plan.max_users,
        monthly_price=plan.monthly_price,
        current_period_start=now,
        current_period_end=now + timedelta(days=get_settings().trial_period_days),
        cancel_at_period_end=False,
        active_user_count=1,
        created_at=now,
        updated_at=now,
        updated_by=created_by,
    )
    session.add(org)
    await session.flush()
    return org


async def create_user(
    session: AsyncSession,
    *,
    tenant_id: str,
    user_id: str,
    email: str,
    full_name: str,
    role: Role,
    status: str = "active",
    email_verified: bool = False,
) -> User:
    # Users always belong to an existing tenant and active users must fit the seat limit.
    org = await _require_organization(session, tenant_id, for_update=True)
    if status == "active":
        await _ensure_seat_available(session, org)
    user = User(
        id=user_id,
        email=email.strip().lower(),
        full_name=full_name,
        tenant_id=tenant_id,
        role=role.value,
        status=status,
        email_verified=email_verified,
    )
    session.add(user)
    if status == "active":
        await organizations_repo.adjust_active_user_count(session, tenant_id, 1)
    await session.flush()
    return user


async def list_users(session: AsyncSession, tenant_id: str) -> list[User]:
    return await users_repo.list_users(session, tenant_id)


async def get_user(session: AsyncSession, tenant_id: str, user_id: str) -> User:
    user = await users_repo.get_user_for_tenant(session, tenant_id, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


async def register(
    session: AsyncSession,
    identity: IdentityProvider,
    *,
    email: str,
    password: str,
    full_name: str,
    profile: OrganizationProfile,
    request_ctx: dict[str, str | None],
) -> tuple[Organization, User]:
    """Create a tenant with its first Admin user.

    The identity account is created first because it issues the user id;
    if any database step fails afterwards the account is removed again.
    """
    validate_password(password)
    normalized_email = email.strip().lower()
    if await users_repo.get_user_by_email(session, normalized_email) is not None:
        raise ConflictError("Email already registered", field="email")

    account_id = await identity.create_account(
        email=normalized_email, password=password, display_name=full_name
    )
    try:
        org = await create_organization(session, profile, created_by=account_id)
        # The founding admin is already counted by create_organization.
        user = User(
            id=account_id,
            email=normalized_email,
            full_name=full_name,
            tenant_id=org.id,
            role=Role.ADMIN.value,
            status="active",
            email_verified=False,
        )
        session.add(user)
        await session.flush()
        await record_event(
            session=session,
            tenant_id=org.id,
            actor=Actor(
                user_id=user.id,
                email=user.email,
                ip_address=request_ctx.get("ip_address"),
                user_agent=request_ctx.get("user_agent"),
                request_id=request_ctx.get("request_id"),
            ),
            action=AuditAction.ORGANIZATION_CREATED,
            resource_type=ResourceType.ORGANIZATION,
            resource_id=org.id,
            description=f"Organization '{org.name}' created",
            metadata={"regulatory_framework": org.regulatory_framework, "tier": org.subscription_tier},
        )
        await identity.set_claims(account_id, _identity_claims(org.id, Role.ADMIN))
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        await _rollback_account(identity, account_id)
        raise ConflictError("Email already registered", field="email") from exc
    except (SQLAlchemyError, IdentityProviderError):
        await session.rollback()
        await _rollback_account(identity, account_id)
        raise
    logger.info("organization_registered tenant_id=%s", org.id)
    return org, user


async def request_password_reset(identity: IdentityProvider, email: str) -> str:
    # Always answer the same way so callers cannot probe which emails exist.
    try:
        await identity.send_password_reset(email.strip().lower())
    except IdentityProviderError as exc:
        logger.warning("password_reset_dispatch_failed", exc_info=exc)
    return PASSWORD_RESET_MESSAGE


async def record_login(session: AsyncSession, *, tenant_id: str, actor: Actor) -> User:
    user = await get_user(session, tenant_id, actor.user_id or "")
    if user.status != "active":
        raise NotFoundError("User not found")
    user.last_login_at = _utc_now()
    await record_event(
        session=session,
        tenant_id=tenant_id,
        actor=actor,
        action=AuditAction.LOGIN,
        resource_type=ResourceType.USER,
        resource_id=user.id,
        description=f"User {user.email} logged in",
    )
    await session.commit()
    return user


async def update_profile(
    session: AsyncSession, *, tenant_id: str, actor: Actor, full_name: str
) -> User:
    user = await get_user(session, tenant_id, actor.user_id or "")
    changes = diff({"full_name": user.full_name}, {"full_name": full_name})
    user.full_name = full_name
    await record_event(
        session=session,
        tenant_id=tenant_id,
        actor=actor,
        action=AuditAction.USER_UPDATED,
        resource_type=ResourceType.USER,
        resource_id=user.id,
        description="Profile updated",
        changes=changes or None,
    )
    await session.commit()
    return user


async def update_organization(
    session: AsyncSession,
    *,
    tenant_id: str,
    actor: Actor,
    updates: dict[str, Any],
) -> Organization:
    org = await _require_organization(session, tenant_id)
    before = {key: getattr(org, key) for key in updates}
    for key, value in updates.items():
        setattr(org, key, value)
    org.updated_by = actor.user_id
    await record_event(
        session=session,
        tenant_id=tenant_id,
        actor=actor,
        action=AuditAction.ORGANIZATION_UPDATED,
        resource_type=ResourceType.ORGANIZATION,
        resource_id=org.id,
        description="Organization profile updated",
        changes=diff(before, updates) or None,
    )
    await session.commit()
    return org


async def invite_user(
    session: AsyncSession,
    *,
    tenant_id: str,
    actor: Actor,
    email: str,
    role: str,
    message: str | None = None,
) -> tuple[Invitation, str]:
    # Returns the invitation and the raw acceptance token; only its hash is stored.
    resolved_role = normalize_role(role)
    normalized_email = email.strip().lower()
    org = await _require_organization(session, tenant_id, for_update=True)
    if await users_repo.get_user_by_email(session, normalized_email) is not None:
        raise ConflictError("A user with this email already exists", field="email")
    if await invitations_repo.get_pending_for_email(session, tenant_id, normalized_email) is not None:
        raise ConflictError("An invitation is already pending for this email", field="email")
    await _ensure_seat_available(session, org)

    raw_token = secrets.token_urlsafe(32)
    now = _utc_now()
    invitation = Invitation(
        id=uuid4().hex,
        tenant_id=tenant_id,
        email=normalized_email,
        role=resolved_role.value,
        invited_by=actor.user_id or "",
        message=message,
        token_hash=hash_invitation_token(raw_token),
        status="pending",
        created_at=now,
        expires_at=now + timedelta(days=get_settings().invitation_ttl_days),
    )
    session.add(invitation)
    await session.flush()
    await record_event(
        session=session,
        tenant_id=tenant_id,
        actor=actor,
        action=AuditAction.USER_INVITED,
        resource_type=ResourceType.INVITATION,
        resource_id=invitation.id,
        description=f"Invited {normalized_email} as {resolved_role.value}",
        metadata={"email": normalized_email, "role": resolved_role.value},
    )
    await session.commit()
    return invitation, raw_token


async def list_invitations(session: AsyncSession, tenant_id: str) -> list[Invitation]:
    return await invitations_repo.list_invitations(session, tenant_id, status="pending")


async def revoke_invitation(
    session: AsyncSession, *, tenant_id: str, actor: Actor, invitation_id: str
) -> Invitation:
    invitation = await invitations_repo.get_invitation_for_tenant(session, tenant_id, invitation_id)
    if invitation is None:
        raise NotFoundError("Invitation not found")
    if invitation.status != "pending":
        raise ConflictError(f"Invitation is already {invitation.status}")
    invitation.status = "revoked"
    await record_event(
        session=session,
        tenant_id=tenant_id,
        actor=actor,
        action=AuditAction.INVITATION_REVOKED,
        resource_type=ResourceType.INVITATION,
        resource_id=invitation.id,
        description=f"Invitation for {invitation.email} revoked",
    )
    await session.commit()
    return invitation


async def accept_invitation(
    session: AsyncSession,
    identity: IdentityProvider,
    *,
    token: str,
    full_name: str,
    password: str,
    request_ctx: dict[str, str | None],
) -> User:
    validate_password(password)
    invitation = await invitations_repo.get_invitation_by_token_hash(session, hash_invitation_token(token))
    if invitation is None or invitation.status != "pending":
        raise NotFoundError("Invitation not found")
    if as_utc(invitation.expires_at) <= _utc_now():
        invitation.status = "expired"
        await record_event(
            session=session,
            tenant_id=invitation.tenant_id,
            actor=Actor(
                user_id=None,
                email=invitation.email,
                ip_address=request_ctx.get("ip_address"),
                user_agent=request_ctx.get("user_agent"),
                request_id=request_ctx.get("request_id"),
            ),
            action=AuditAction.INVITATION_EXPIRED,
            resource_type=ResourceType.INVITATION,
            resource_id=invitation.id,
            description=f"Invitation for {invitation.email} expired before acceptance",
            changes={"status": {"from": "pending", "to": "expired"}},
        )
        await session.commit()
        raise ConflictError("Invitation has expired", code="INVITATION_EXPIRED")

    tenant_id = invitation.tenant_id
    # Seats may have filled up since the invitation was issued.
    org = await _require_organization(session, tenant_id, for_update=True)
    await _ensure_seat_available(session, org)

    role = normalize_role(invitation.role)
    account_id = await identity.create_account(
        email=invitation.email, password=password, display_name=full_name
    )
    try:
        user = await create_user(
            session,
            tenant_id=tenant_id,
            user_id=account_id,
            email=invitation.email,
            full_name=full_name,
            role=role,
            status="active",
            email_verified=True,
        )
        invitation.status = "accepted"
        invitation.accepted_at = _utc_now()
        await record_event(
            session=session,
            tenant_id=tenant_id,
            actor=Actor(
                user_id=user.id,
                email=user.email,
                ip_address=request_ctx.get("ip_address"),
                user_agent=request_ctx.get("user_agent"),
                request_id=request_ctx.get("request_id"),
            ),
            action=AuditAction.USER_CREATED,
            resource_type=ResourceType.USER,
            resource_id=user.id,
            description=f"User {user.email} joined as {role.value}",
            metadata={"invitation_id": invitation.id, "invited_by": invitation.invited_by},
        )
        await identity.set_claims(account_id, _identity_claims(tenant_id, role))
        await session.commit()
    except (SQLAlchemyError, IdentityProviderError, CapacityError):
        await session.rollback()
        await _rollback_account(identity, account_id)
        raise
    return user


async def _count_active_admins(session: AsyncSession, tenant_id: str) -> int:
    users = await users_repo.list_users(session, tenant_id)
    return sum(1 for user in users if user.status == "active" and user.role == Role.ADMIN.value)


async def update_user_role(
    session: AsyncSession,
    identity: IdentityProvider,
    *,
    tenant_id: str,
    actor: Actor,
    user_id: str,
    role: str,
) -> User:
    resolved_role = normalize_role(role)
    user = await get_user(session, tenant_id, user_id)
    if user.status == "inactive":
        raise NotFoundError("User not found")
    if user.role == resolved_role.value:
        return user
    # A tenant must always keep at least one active admin.
    if user.role == Role.ADMIN.value and await _count_active_admins(session, tenant_id) <= 1:
        raise ConflictError("Cannot demote the last admin; promote another admin first")
    changes = diff({"role": user.role}, {"role": resolved_role.value})
    user.role = resolved_role.value
    await record_event(
        session=session,
        tenant_id=tenant_id,
        actor=actor,
        action=AuditAction.USER_UPDATED,
        resource_type=ResourceType.USER,
        resource_id=user.id,
        description=f"Role for {user.email} changed to {resolved_role.value}",
        changes=changes,
    )
    await identity.set_claims(user.id, _identity_claims(tenant_id, resolved_role))
    await session.commit()
    return user


async def delete_user(
    session: AsyncSession,
    identity: IdentityProvider,
    *,
    tenant_id: str,
    actor: Actor,
    user_id: str,
) -> User:
    # Soft delete: the row stays for audit history, the seat and the identity account are released.
    if user_id == actor.user_id:
        raise ValidationError("You cannot delete your own account", code="SELF_DELETION_FORBIDDEN")
    user = await get_user(session, tenant_id, user_id)
    if user.status == "inactive":
        raise NotFoundError("User not found")
    was_active = user.status == "active"
    user.status = "inactive"
    if was_active:
        await organizations_repo.adjust_active_user_count(session, tenant_id, -1)
    await record_event(
        session=session,
        tenant_id=tenant_id,
        actor=actor,
        action=AuditAction.USER_DELETED,
        resource_type=ResourceType.USER,
        resource_id=user.id,
        description=f"User {user.email} removed",
        changes={"status": {"from": "active" if was_active else "pending", "to": "inactive"}},
    )
    await session.commit()
    try:
        await identity.delete_account(user.id)
    except IdentityProviderError as exc:
        # The user is already inactive and cannot pass tenant checks; log for follow-up.
        logger.error("identity_delete_failed user_id=%s", user.id, exc_info=exc)
    return user


async def get_subscription(session: AsyncSession, tenant_id: str) -> Organization:
    return await _require_organization(session, tenant_id)


async def change_subscription_tier(
    session: AsyncSession, *, tenant_id: str, actor: Actor, tier: str
) -> Organization:
    if tier not in TIER_PLANS:
        raise ValidationError(f"Unsupported subscription tier: {tier}", field="tier")
    plan = plan_for_tier(tier)
    org = await _require_organization(session, tenant_id, for_update=True)
    active = await users_repo.count_active_users(session, tenant_id)
    if active > plan.max_users:
        raise CapacityError(
            f"The {tier} plan allows {plan.max_users} users but {active} are active",
            code="SEAT_LIMIT_REACHED",
            limit=plan.max_users,
        )
    before = {
        "tier": org.subscription_tier,
        "status": org.subscription_status,
        "max_users": org.max_users,
        "cancel_at_period_end": org.cancel_at_period_end,
    }
    now = _utc_now()
    org.subscription_tier = plan.tier
    org.max_users = plan.max_users
    org.monthly_price = plan.monthly_price
    org.subscription_status = "active"
    org.cancel_at_period_end = False
    org.current_period_start = now
    org.current_period_end = now + timedelta(days=30)
    org.updated_by = actor.user_id
    after = {
        "tier": org.subscription_tier,
        "status": org.subscription_status,
        "max_users": org.max_users,
        "cancel_at_period_end": org.cancel_at_period_end,
    }
    await record_event(
        session=session,
        tenant_id=tenant_id,
        actor=actor,
        action=AuditAction.SUBSCRIPTION_UPDATED,
        resource_type=ResourceType.SUBSCRIPTION,
        resource_id=org.id,
        description=f"Subscription changed to {plan.tier}",
        changes=diff(before, after),
    )
    await session.commit()
    return org


async def cancel_subscription(
    session: AsyncSession, *, tenant_id: str, actor: Actor, confirmation: str
) -> Organization:
    org = await _require_organization(session, tenant_id)
    # Require the exact organization name to guard against accidental cancellation.
    if confirmation.strip() != org.name:
        raise ValidationError("Confirmation must match the organization name", field="confirmation")
    if org.cancel_at_period_end:
        raise ConflictError("Subscription is already scheduled for cancellation")
    org.cancel_at_period_end = True
    org.updated_by = actor.user_id
    await record_event(
        session=session,
        tenant_id=tenant_id,
        actor=actor,
        action=AuditAction.SUBSCRIPTION_UPDATED,
        resource_type=ResourceType.SUBSCRIPTION,
        resource_id=org.id,
        description="Subscription set to cancel at period end",
        changes={"cancel_at_period_end": {"from": False, "to": True}},
    )
    await session.commit()
    return org
