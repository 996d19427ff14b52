from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
import logging
import re
from typing import Any
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from compliancesync.core.config import ALLOWED_UPLOAD_TYPES, MAX_UPLOAD_BYTES, get_settings
from compliancesync.core.errors import ConflictError, NotFoundError, ValidationError
from compliancesync.domain.constants import AuditAction, ResourceType
from compliancesync.domain.evidence_state import (
    EvidenceOperation,
    EvidenceStatus,
    counts_toward_requirements,
    transition,
)
from compliancesync.domain.models import Evidence
from compliancesync.persistence.repos import evidence as evidence_repo
from compliancesync.persistence.repos import requirements as requirements_repo
from compliancesync.providers.blob.base import BlobStore, SignedUrl
from compliancesync.services.audit import Actor, record_event


logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True)
class UploadTicket:
    evidence: Evidence
    upload: SignedUrl


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def blob_locator(tenant_id: str, evidence_id: str, file_name: str) -> str:
    # Objects live under the tenant's namespace so locators never collide across tenants.
    return f"{tenant_id}/evidence/{evidence_id}-{file_name}"


def safe_file_name(file_name: str) -> str:
    # Drop any client-supplied path and collapse characters unsafe in object names.
    base = file_name.replace("\\", "/").rsplit("/", 1)[-1].strip()
    cleaned = _UNSAFE_FILENAME_CHARS.sub("_", base).strip("._")
    if not cleaned:
        raise ValidationError("file_name is required", field="file_name")
    return cleaned[:200]


def validate_upload(file_type: str, file_size: int) -> None:
    if file_size <= 0:
        raise ValidationError("file_size must be positive", field="file_size")
    if file_size > MAX_UPLOAD_BYTES:
        raise ValidationError(
            "File exceeds the maximum upload size",
            field="file_size",
            limit=MAX_UPLOAD_BYTES,
        )
    if file_type not in ALLOWED_UPLOAD_TYPES:
        raise ValidationError(
            f"File type {file_type} is not allowed",
            field="file_type",
            allowed=sorted(ALLOWED_UPLOAD_TYPES),
        )


def _unique(ids: list[str]) -> list[str]:
    # Preserve caller order while dropping duplicates so each id counts once.
    seen: set[str] = set()
    ordered: list[str] = []
    for item in ids:
        if item not in seen:
            seen.add(item)
            ordered.append(item)
    return ordered


async def _validate_associations(session: AsyncSession, tenant_id: str, requirement_ids: list[str]) -> None:
    # New associations must point at active requirements of the same tenant.
    known = await requirements_repo.list_active_ids(session, tenant_id, requirement_ids)
    missing = [item for item in requirement_ids if item not in known]
    if missing:
        raise ValidationError(
            "Unknown or inactive requirement ids",
            field="requirement_ids",
            requirement_ids=missing,
        )


async def _claim(session: AsyncSession, tenant_id: str, evidence: Evidence, next_status: EvidenceStatus) -> None:
    # Must run before any counter or audit write so a losing writer changes nothing.
    previous_status = evidence.status
    if not await evidence_repo.claim_transition(session, tenant_id, evidence, status=next_status.value):
        logger.warning(
            "evidence_write_conflict tenant_id=%s evidence_id=%s status=%s",
            tenant_id,
            evidence.id,
            previous_status,
        )
        raise ConflictError(
            "Evidence was modified by another request",
            code="EVIDENCE_CONFLICT",
            evidence_id=evidence.id,
        )


async def _adjust_counts(
    session: AsyncSession,
    tenant_id: str,
    requirement_ids: list[str],
    delta: int,
    *,
    actor_id: str | None,
) -> None:
    # Atomic per-requirement increments in the same transaction as the evidence write.
    for requirement_id in requirement_ids:
        updated = await requirements_repo.adjust_evidence_count(
            session, tenant_id, requirement_id, delta, actor_id=actor_id
        )
        if not updated:
            logger.warning(
                "evidence_count_target_missing tenant_id=%s requirement_id=%s delta=%s",
                tenant_id,
                requirement_id,
                delta,
            )


async def get_live_evidence(session: AsyncSession, tenant_id: str, evidence_id: str) -> Evidence:
    # Deleted and foreign evidence are indistinguishable from missing evidence.
    evidence = await evidence_repo.get_evidence_for_tenant(session, tenant_id, evidence_id)
    if evidence is None or evidence.status == EvidenceStatus.DELETED.value:
        raise NotFoundError("Evidence not found")
    return evidence


async def request_upload(
    session: AsyncSession,
    blob_store: BlobStore,
    *,
    tenant_id: str,
    actor: Actor,
    file_name: str,
    file_type: str,
    file_size: int,
) -> UploadTicket:
    """Reserve an evidence record and issue a write-only upload URL.

    The record starts in ``uploading`` with no title or date; it only
    becomes visible in listings once ``complete_upload`` succeeds.
    """
    validate_upload(file_type, file_size)
    name = safe_file_name(file_name)
    evidence_id = uuid4().hex
    locator = blob_locator(tenant_id, evidence_id, name)
    upload = await blob_store.signed_upload_url(
        locator,
        content_type=file_type,
        ttl_seconds=get_settings().upload_url_ttl_minutes * 60,
    )
    now = _utc_now()
    evidence = Evidence(
        id=evidence_id,
        tenant_id=tenant_id,
        source="manual_upload",
        file_url=locator,
        file_name=name,
        file_size=file_size,
        file_type=file_type,
        metadata_json={},
        requirement_ids=[],
        uploaded_by=actor.user_id or "",
        status=EvidenceStatus.UPLOADING.value,
        revision=0,
        created_at=now,
        updated_at=now,
    )
    session.add(evidence)
    await session.commit()
    logger.info("evidence_upload_reserved tenant_id=%s evidence_id=%s", tenant_id, evidence_id)
    return UploadTicket(evidence=evidence, upload=upload)


async def complete_upload(
    session: AsyncSession,
    *,
    tenant_id: str,
    actor: Actor,
    evidence_id: str,
    title: str,
    description: str | None,
    evidence_date: date,
    requirement_ids: list[str],
    external_link: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> Evidence:
    evidence = await get_live_evidence(session, tenant_id, evidence_id)
    next_status = transition(evidence.status, EvidenceOperation.COMPLETE_UPLOAD)
    ids = _unique(requirement_ids)
    await _validate_associations(session, tenant_id, ids)
    await _claim(session, tenant_id, evidence, next_status)

    evidence.title = title
    evidence.description = description
    evidence.evidence_date = evidence_date
    evidence.source = "manual_upload"
    evidence.requirement_ids = ids
    evidence.external_link = external_link
    evidence.metadata_json = metadata or {}
    await _adjust_counts(session, tenant_id, ids, 1, actor_id=actor.user_id)
    await record_event(
        session=session,
        tenant_id=tenant_id,
        actor=actor,
        action=AuditAction.EVIDENCE_CREATED,
        resource_type=ResourceType.EVIDENCE,
        resource_id=evidence.id,
        description=f"Uploaded evidence '{title}'",
        metadata={
            "file_name": evidence.file_name,
            "file_size": evidence.file_size,
            "requirement_ids": ids,
        },
    )
    await session.commit()
    return evidence


async def update(
    session: AsyncSession,
    *,
    tenant_id: str,
    actor: Actor,
    evidence_id: str,
    title: str | None = None,
    description: str | None = None,
    requirement_ids: list[str] | None = None,
) -> Evidence:
    evidence = await get_live_evidence(session, tenant_id, evidence_id)
    next_status = transition(evidence.status, EvidenceOperation.UPDATE)
    previous = list(evidence.requirement_ids or [])
    ids = _unique(requirement_ids) if requirement_ids is not None else previous
    # Links kept from before stay valid even if their requirement was deactivated since.
    await _validate_associations(session, tenant_id, [item for item in ids if item not in previous])
    await _claim(session, tenant_id, evidence, next_status)

    changes: dict[str, Any] = {}
    if title is not None and title != evidence.title:
        changes["title"] = {"from": evidence.title, "to": title}
        evidence.title = title
    if description is not None and description != evidence.description:
        changes["description"] = {"from": evidence.description, "to": description}
        evidence.description = description
    if ids != previous:
        changes["requirement_ids"] = {"from": previous, "to": ids}
        evidence.requirement_ids = ids
        if get_settings().evidence_rebalance_on_update:
            added = [item for item in ids if item not in previous]
            removed = [item for item in previous if item not in ids]
            await _adjust_counts(session, tenant_id, added, 1, actor_id=actor.user_id)
            await _adjust_counts(session, tenant_id, removed, -1, actor_id=actor.user_id)
    await record_event(
        session=session,
        tenant_id=tenant_id,
        actor=actor,
        action=AuditAction.EVIDENCE_UPDATED,
        resource_type=ResourceType.EVIDENCE,
        resource_id=evidence.id,
        description=f"Updated evidence '{evidence.title}'",
        changes=changes or None,
    )
    await session.commit()
    return evidence


async def delete(session: AsyncSession, *, tenant_id: str, actor: Actor, evidence_id: str) -> Evidence:
    # Soft delete: the record and its blob locator are retained.
    evidence = await get_live_evidence(session, tenant_id, evidence_id)
    previous_status = evidence.status
    await _claim(session, tenant_id, evidence, transition(previous_status, EvidenceOperation.DELETE))
    ids = list(evidence.requirement_ids or [])
    if counts_toward_requirements(previous_status):
        await _adjust_counts(session, tenant_id, ids, -1, actor_id=actor.user_id)
    await record_event(
        session=session,
        tenant_id=tenant_id,
        actor=actor,
        action=AuditAction.EVIDENCE_DELETED,
        resource_type=ResourceType.EVIDENCE,
        resource_id=evidence.id,
        description=f"Deleted evidence '{evidence.title or evidence.file_name}'",
        metadata={"requirement_ids": ids, "previous_status": previous_status},
    )
    await session.commit()
    return evidence


async def get(session: AsyncSession, *, tenant_id: str, actor: Actor, evidence_id: str) -> Evidence:
    evidence = await get_live_evidence(session, tenant_id, evidence_id)
    await record_event(
        session=session,
        tenant_id=tenant_id,
        actor=actor,
        action=AuditAction.EVIDENCE_VIEWED,
        resource_type=ResourceType.EVIDENCE,
        resource_id=evidence.id,
        description=f"Viewed evidence '{evidence.title or evidence.file_name}'",
    )
    await session.commit()
    return evidence


async def request_download(
    session: AsyncSession,
    blob_store: BlobStore,
    *,
    tenant_id: str,
    actor: Actor,
    evidence_id: str,
) -> SignedUrl:
    evidence = await get_live_evidence(session, tenant_id, evidence_id)
    if evidence.status != EvidenceStatus.ACTIVE.value or not evidence.file_url:
        raise NotFoundError("Evidence file not available")
    download = await blob_store.signed_download_url(
        evidence.file_url,
        ttl_seconds=get_settings().download_url_ttl_minutes * 60,
    )
    await record_event(
        session=session,
        tenant_id=tenant_id,
        actor=actor,
        action=AuditAction.EVIDENCE_DOWNLOADED,
        resource_type=ResourceType.EVIDENCE,
        resource_id=evidence.id,
        description=f"Downloaded evidence '{evidence.title or evidence.file_name}'",
    )
    await session.commit()
    return download


async def list_evidence(
    session: AsyncSession,
    tenant_id: str,
    *,
    source: str | None = None,
    requirement_id: str | None = None,
) -> list[Evidence]:
    # Listings only ever return active evidence.
    return await evidence_repo.list_evidence(
        session,
        tenant_id,
        status=EvidenceStatus.ACTIVE.value,
        source=source,
        requirement_id=requirement_id,
    )
