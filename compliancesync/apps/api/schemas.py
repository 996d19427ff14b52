from __future__ import annotations

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel

from compliancesync.domain.models import Evidence, Organization, Requirement, User
from compliancesync.domain.status import as_utc
from compliancesync.providers.blob.base import SignedUrl
from compliancesync.services.requirements import status_for


def iso(value: datetime | None) -> str | None:
    # Serialize datetimes as ISO 8601 UTC for API clients.
    return as_utc(value).isoformat() if value is not None else None


def iso_date(value: date | None) -> str | None:
    return value.isoformat() if value is not None else None


class SubscriptionResponse(BaseModel):
    tier: str
    status: str
    max_users: int
    active_users: int
    monthly_price: float
    current_period_start: str | None
    current_period_end: str | None
    cancel_at_period_end: bool


class OrganizationResponse(BaseModel):
    id: str
    name: str
    industry: str
    employee_count: str
    regulatory_framework: str
    website: str | None
    address: str | None
    phone: str | None
    subscription: SubscriptionResponse
    created_at: str | None
    updated_at: str | None


class UserResponse(BaseModel):
    id: str
    email: str
    full_name: str
    organization_id: str
    role: str
    status: str
    email_verified: bool
    last_login_at: str | None
    created_at: str | None


class RequirementResponse(BaseModel):
    id: str
    template_id: str
    title: str
    description: str
    category: str
    authority: str
    evidence_types: list[str]
    frequency: str
    status: str
    next_due_date: str | None
    last_completed_date: str | None
    evidence_count: int
    notes: str | None
    is_active: bool
    activated_at: str | None
    activated_by: str
    updated_at: str | None
    updated_by: str | None


class SignedUrlResponse(BaseModel):
    url: str
    method: str
    expires_at: str | None


class EvidenceResponse(BaseModel):
    id: str
    title: str | None
    description: str | None
    source: str
    evidence_date: str | None
    file_name: str | None
    file_size: int | None
    file_type: str | None
    external_link: str | None
    metadata: dict[str, Any]
    requirement_ids: list[str]
    uploaded_by: str
    status: str
    created_at: str | None
    updated_at: str | None


def signed_url_response(signed: SignedUrl) -> SignedUrlResponse:
    return SignedUrlResponse(url=signed.url, method=signed.method, expires_at=iso(signed.expires_at))


def subscription_response(org: Organization) -> SubscriptionResponse:
    return SubscriptionResponse(
        tier=org.subscription_tier,
        status=org.subscription_status,
        max_users=org.max_users,
        active_users=org.active_user_count,
        monthly_price=float(org.monthly_price),
        current_period_start=iso(org.current_period_start),
        current_period_end=iso(org.current_period_end),
        cancel_at_period_end=org.cancel_at_period_end,
    )


def organization_response(org: Organization) -> OrganizationResponse:
    return OrganizationResponse(
        id=org.id,
        name=org.name,
        industry=org.industry,
        employee_count=org.employee_count,
        regulatory_framework=org.regulatory_framework,
        website=org.website,
        address=org.address,
        phone=org.phone,
        subscription=subscription_response(org),
        created_at=iso(org.created_at),
        updated_at=iso(org.updated_at),
    )


def user_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        full_name=user.full_name,
        organization_id=user.tenant_id,
        role=user.role,
        status=user.status,
        email_verified=user.email_verified,
        last_login_at=iso(user.last_login_at),
        created_at=iso(user.created_at),
    )


def requirement_response(requirement: Requirement, now: datetime | None = None) -> RequirementResponse:
    # Status is derived at read time, never taken from the stored snapshot.
    return RequirementResponse(
        id=requirement.id,
        template_id=requirement.template_id,
        title=requirement.title,
        description=requirement.description,
        category=requirement.category,
        authority=requirement.authority,
        evidence_types=list(requirement.evidence_types or []),
        frequency=requirement.frequency,
        status=status_for(requirement, now).value,
        next_due_date=iso_date(requirement.next_due_date),
        last_completed_date=iso_date(requirement.last_completed_date),
        evidence_count=requirement.evidence_count,
        notes=requirement.notes,
        is_active=requirement.is_active,
        activated_at=iso(requirement.activated_at),
        activated_by=requirement.activated_by,
        updated_at=iso(requirement.updated_at),
        updated_by=requirement.updated_by,
    )


def evidence_response(evidence: Evidence) -> EvidenceResponse:
    # The blob locator stays internal; clients fetch bytes through signed URLs.
    return EvidenceResponse(
        id=evidence.id,
        title=evidence.title,
        description=evidence.description,
        source=evidence.source,
        evidence_date=iso_date(evidence.evidence_date),
        file_name=evidence.file_name,
        file_size=evidence.file_size,
        file_type=evidence.file_type,
        external_link=evidence.external_link,
        metadata=dict(evidence.metadata_json or {}),
        requirement_ids=list(evidence.requirement_ids or []),
        uploaded_by=evidence.uploaded_by,
        status=evidence.status,
        created_at=iso(evidence.created_at),
        updated_at=iso(evidence.updated_at),
    )


# Shape check only; the identity provider is the authority on deliverability.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
