from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from compliancesync.core.config import get_settings
from compliancesync.domain.models import Requirement
from compliancesync.domain.status import ComplianceStatus
from compliancesync.persistence.repos import evidence as evidence_repo
from compliancesync.persistence.repos import requirements as requirements_repo
from compliancesync.services.requirements import status_for


@dataclass
class DashboardMetrics:
    total_requirements: int = 0
    compliant_requirements: int = 0
    at_risk_requirements: int = 0
    non_compliant_requirements: int = 0
    not_started_requirements: int = 0
    total_evidence: int = 0
    upcoming_deadlines: list[Requirement] = field(default_factory=list)


async def build_dashboard(session: AsyncSession, tenant_id: str, *, now: datetime | None = None) -> DashboardMetrics:
    # Aggregate active requirements by derived status plus near-term deadlines.
    current = now or datetime.now(timezone.utc)
    horizon = (current + timedelta(days=get_settings().upcoming_deadline_window_days)).date()
    metrics = DashboardMetrics()
    requirements = await requirements_repo.list_requirements(session, tenant_id)
    for requirement in requirements:
        metrics.total_requirements += 1
        status = status_for(requirement, current)
        if status is ComplianceStatus.COMPLIANT:
            metrics.compliant_requirements += 1
        elif status is ComplianceStatus.AT_RISK:
            metrics.at_risk_requirements += 1
        elif status is ComplianceStatus.NON_COMPLIANT:
            metrics.non_compliant_requirements += 1
        elif status is ComplianceStatus.NOT_STARTED:
            metrics.not_started_requirements += 1
        due = requirement.next_due_date
        if due is not None and current.date() <= due <= horizon:
            metrics.upcoming_deadlines.append(requirement)
    metrics.upcoming_deadlines.sort(key=lambda item: (item.next_due_date, item.id))
    metrics.total_evidence = await evidence_repo.count_evidence(session, tenant_id)
    return metrics
