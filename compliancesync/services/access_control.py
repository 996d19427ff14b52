from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    ADMIN = "admin"
    COMPLIANCE_OFFICER = "compliance_officer"
    VIEWER = "viewer"


class Capability(str, Enum):
    VIEW_DASHBOARD = "view_dashboard"
    VIEW_REQUIREMENTS = "view_requirements"
    VIEW_EVIDENCE = "view_evidence"
    VIEW_AUDIT_LOG = "view_audit_log"
    GENERATE_REPORTS = "generate_reports"
    MANAGE_REQUIREMENTS = "manage_requirements"
    MANAGE_EVIDENCE = "manage_evidence"
    MANAGE_ORGANIZATION = "manage_organization"
    MANAGE_USERS = "manage_users"
    MANAGE_BILLING = "manage_billing"
    MANAGE_INTEGRATIONS = "manage_integrations"


_READ_CAPABILITIES = frozenset(
    {
        Capability.VIEW_DASHBOARD,
        Capability.VIEW_REQUIREMENTS,
        Capability.VIEW_EVIDENCE,
        Capability.VIEW_AUDIT_LOG,
        Capability.GENERATE_REPORTS,
    }
)

ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.ADMIN: frozenset(Capability),
    Role.COMPLIANCE_OFFICER: frozenset(Capability)
    - {Capability.MANAGE_USERS, Capability.MANAGE_BILLING, Capability.MANAGE_INTEGRATIONS},
    Role.VIEWER: _READ_CAPABILITIES,
}


def normalize_role(role: str) -> Role:
    # Map claim values onto the closed role set; unknown roles are rejected.
    try:
        return Role(role.strip().lower())
    except (AttributeError, ValueError) as exc:
        raise ValueError(f"Unsupported role: {role}") from exc


def can_perform(role: Role | str, capability: Capability) -> bool:
    # Pure lookup: no I/O, no audit side effects.
    try:
        resolved = role if isinstance(role, Role) else normalize_role(role)
    except ValueError:
        return False
    return capability in ROLE_CAPABILITIES[resolved]
