from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


Industry = Literal["financial_services", "insurance", "healthcare", "other"]
EmployeeBand = Literal["1-10", "11-25", "26-50", "51+"]
RegulatoryFramework = Literal["sec_ria", "finra", "state_insurance", "hipaa"]
EvidenceSource = Literal[
    "manual_upload",
    "gmail",
    "google_drive",
    "google_calendar",
    "exchange",
    "onedrive",
    "slack",
]
ReportType = Literal["requirement_detail", "comprehensive"]
SubscriptionTier = Literal["starter", "professional", "business"]

REQUIREMENT_CATEGORIES = frozenset(
    {
        "employee_training",
        "policy_management",
        "access_controls",
        "recordkeeping",
        "licensing",
        "consumer_protection",
        "business_practices",
        "privacy_security",
        "risk_management",
        "business_associates",
        "patient_rights",
    }
)


@dataclass(frozen=True)
class TierPlan:
    tier: str
    max_users: int
    monthly_price: float


# Seat limits and list prices per subscription tier.
TIER_PLANS: dict[str, TierPlan] = {
    "starter": TierPlan(tier="starter", max_users=10, monthly_price=149.0),
    "professional": TierPlan(tier="professional", max_users=25, monthly_price=349.0),
    "business": TierPlan(tier="business", max_users=50, monthly_price=699.0),
}
DEFAULT_TIER = "starter"


def plan_for_tier(tier: str) -> TierPlan:
    plan = TIER_PLANS.get(tier)
    if plan is None:
        raise ValueError(f"Unsupported subscription tier: {tier}")
    return plan


class AuditAction:
    # Closed vocabulary of audit verbs; entries never carry free-form actions.
    LOGIN = "login"
    LOGOUT = "logout"
    USER_CREATED = "user_created"
    USER_INVITED = "user_invited"
    USER_UPDATED = "user_updated"
    USER_DELETED = "user_deleted"
    INVITATION_REVOKED = "invitation_revoked"
    INVITATION_EXPIRED = "invitation_expired"
    ORGANIZATION_CREATED = "organization_created"
    ORGANIZATION_UPDATED = "organization_updated"
    REQUIREMENT_ACTIVATED = "requirement_activated"
    REQUIREMENT_UPDATED = "requirement_updated"
    REQUIREMENT_DEACTIVATED = "requirement_deactivated"
    EVIDENCE_CREATED = "evidence_created"
    EVIDENCE_UPDATED = "evidence_updated"
    EVIDENCE_DELETED = "evidence_deleted"
    EVIDENCE_VIEWED = "evidence_viewed"
    EVIDENCE_DOWNLOADED = "evidence_downloaded"
    REPORT_GENERATED = "report_generated"
    REPORT_UPDATED = "report_updated"
    INTEGRATION_CONNECTED = "integration_connected"
    INTEGRATION_DISCONNECTED = "integration_disconnected"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    PAYMENT_METHOD_UPDATED = "payment_method_updated"


AUDIT_ACTIONS = frozenset(
    value for key, value in vars(AuditAction).items() if key.isupper()
)


class ResourceType:
    ORGANIZATION = "organization"
    USER = "user"
    INVITATION = "invitation"
    REQUIREMENT = "requirement"
    EVIDENCE = "evidence"
    REPORT = "report"
    SUBSCRIPTION = "subscription"
