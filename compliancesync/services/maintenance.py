from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from compliancesync.domain.constants import AuditAction, ResourceType
from compliancesync.domain.evidence_state import EvidenceStatus
from compliancesync.persistence.repos import evidence as evidence_repo
from compliancesync.persistence.repos import requirements as requirements_repo
from compliancesync.services.audit import SYSTEM_ACTOR, Actor, record_event


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CountCorrection:
    requirement_id: str
    stored: int
    actual: int


async def reconcile_evidence_counts(
    session: AsyncSession,
    tenant_id: str,
    *,
    dry_run: bool = False,
    actor: Actor = SYSTEM_ACTOR,
) -> list[CountCorrection]:
    """Recompute requirement evidence counters from live evidence.

    Counts every active evidence item referencing each requirement and
    overwrites drifted counters unless ``dry_run`` is set. Each rewrite is
    audited as ``requirement_updated`` with the counter diff.
    """
    live = await evidence_repo.list_evidence(session, tenant_id, status=EvidenceStatus.ACTIVE.value)
    actual: Counter[str] = Counter()
    for item in live:
        for requirement_id in set(item.requirement_ids or []):
            actual[requirement_id] += 1

    corrections: list[CountCorrection] = []
    requirements = await requirements_repo.list_requirements(session, tenant_id, include_inactive=True)
    for requirement in requirements:
        expected = actual.get(requirement.id, 0)
        if requirement.evidence_count != expected:
            corrections.append(
                CountCorrection(requirement_id=requirement.id, stored=requirement.evidence_count, actual=expected)
            )
    if corrections and not dry_run:
        for correction in corrections:
            await requirements_repo.set_evidence_count(
                session, tenant_id, correction.requirement_id, correction.actual
            )
            await record_event(
                session=session,
                tenant_id=tenant_id,
                actor=actor,
                action=AuditAction.REQUIREMENT_UPDATED,
                resource_type=ResourceType.REQUIREMENT,
                resource_id=correction.requirement_id,
                description="Reconciled requirement evidence count",
                changes={"evidence_count": {"from": correction.stored, "to": correction.actual}},
                metadata={"reason": "evidence_count_reconciliation"},
            )
        await session.commit()
    for correction in corrections:
        logger.info(
            "evidence_count_drift tenant_id=%s requirement_id=%s stored=%s actual=%s dry_run=%s",
            tenant_id,
            correction.requirement_id,
            correction.stored,
            correction.actual,
            dry_run,
        )
    return corrections
