from __future__ import annotations

from datetime import datetime, timezone
import logging
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from compliancesync.core.config import get_settings
from compliancesync.core.errors import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from compliancesync.domain.constants import AuditAction, ResourceType
from compliancesync.domain.models import Report
from compliancesync.persistence.repos import reports as reports_repo
from compliancesync.persistence.repos import requirements as requirements_repo
from compliancesync.providers.blob.base import BlobStore, SignedUrl
from compliancesync.services.audit import SYSTEM_ACTOR, Actor, record_event


logger = logging.getLogger(__name__)

REPORT_TYPES = frozenset({"requirement_detail", "comprehensive"})

# Forward-only lifecycle driven by the external generator.
_REPORT_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"generating", "failed"}),
    "generating": frozenset({"completed", "failed"}),
    "completed": frozenset(),
    "failed": frozenset(),
}


async def create_report(
    session: AsyncSession,
    *,
    tenant_id: str,
    actor: Actor,
    title: str,
    report_type: str,
    requirement_ids: list[str],
    description: str | None = None,
) -> Report:
    # Records intent only; rendering happens outside this service.
    if report_type not in REPORT_TYPES:
        raise ValidationError(
            "Invalid report type. Must be 'requirement_detail' or 'comprehensive'",
            field="type",
        )
    ids = list(dict.fromkeys(requirement_ids))
    if report_type == "requirement_detail" and not ids:
        raise ValidationError("requirement_detail reports need at least one requirement", field="requirement_ids")
    for requirement_id in ids:
        if await requirements_repo.get_requirement_for_tenant(session, tenant_id, requirement_id) is None:
            raise ValidationError(
                "Unknown requirement id",
                field="requirement_ids",
                requirement_ids=[requirement_id],
            )
    report = Report(
        id=uuid4().hex,
        tenant_id=tenant_id,
        title=title,
        description=description,
        type=report_type,
        requirement_ids=ids,
        status="pending",
        generated_by=actor.user_id or "",
        created_at=datetime.now(timezone.utc),
    )
    session.add(report)
    await session.flush()
    await record_event(
        session=session,
        tenant_id=tenant_id,
        actor=actor,
        action=AuditAction.REPORT_GENERATED,
        resource_type=ResourceType.REPORT,
        resource_id=report.id,
        description=f"Requested {report_type} report '{title}'",
        metadata={"type": report_type, "requirement_ids": ids},
    )
    await session.commit()
    return report


async def get_report(session: AsyncSession, tenant_id: str, report_id: str) -> Report:
    report = await reports_repo.get_report_for_tenant(session, tenant_id, report_id)
    if report is None:
        raise NotFoundError("Report not found")
    return report


async def list_reports(session: AsyncSession, tenant_id: str) -> list[Report]:
    return await reports_repo.list_reports(session, tenant_id)


async def advance_report(
    session: AsyncSession,
    *,
    tenant_id: str,
    report_id: str,
    status: str,
    file_url: str | None = None,
    error_message: str | None = None,
    actor: Actor = SYSTEM_ACTOR,
) -> Report:
    """Move a report forward in its lifecycle on behalf of the generator.

    Completed reports must carry an output locator; failed ones an error.
    Every transition is audited as ``report_updated``.
    """
    report = await get_report(session, tenant_id, report_id)
    allowed = _REPORT_TRANSITIONS.get(report.status, frozenset())
    if status not in allowed:
        raise InvalidTransitionError(
            f"Cannot move report from {report.status} to {status}",
            current_status=report.status,
        )
    if status == "completed":
        if not file_url:
            raise ValidationError("Completed reports need a file locator", field="file_url")
        report.file_url = file_url
        report.completed_at = datetime.now(timezone.utc)
    if status == "failed":
        report.error_message = error_message or "Report generation failed"
        report.completed_at = datetime.now(timezone.utc)
    previous_status = report.status
    report.status = status
    metadata: dict[str, str] = {}
    if status == "completed":
        metadata["file_url"] = report.file_url
    if status == "failed":
        metadata["error_message"] = report.error_message
    await record_event(
        session=session,
        tenant_id=tenant_id,
        actor=actor,
        action=AuditAction.REPORT_UPDATED,
        resource_type=ResourceType.REPORT,
        resource_id=report.id,
        description=f"Report {report.id} moved to {status}",
        changes={"status": {"from": previous_status, "to": status}},
        metadata=metadata or None,
    )
    await session.commit()
    logger.info("report_status_changed report_id=%s status=%s", report.id, status)
    return report


async def request_report_download(
    session: AsyncSession, blob_store: BlobStore, *, tenant_id: str, report_id: str
) -> SignedUrl:
    report = await get_report(session, tenant_id, report_id)
    if report.status != "completed" or not report.file_url:
        raise ConflictError("Report is not ready for download", status=report.status)
    return await blob_store.signed_download_url(
        report.file_url,
        ttl_seconds=get_settings().download_url_ttl_minutes * 60,
    )
