from __future__ import annotations

import asyncio
from datetime import date, datetime, timezone

import pytest
from sqlalchemy import func, select

from compliancesync.core.errors import ConflictError, NotFoundError
from compliancesync.domain.constants import AuditAction
from compliancesync.domain.models import AuditLogEntry, Evidence, Requirement
from compliancesync.persistence.db import SessionLocal
from compliancesync.persistence.repos import evidence as evidence_repo
from compliancesync.services import evidence as evidence_service
from compliancesync.services.audit import Actor


ACTOR = Actor(user_id="u1", email="u1@acme-ria.example")


def _requirement(requirement_id: str, count: int) -> Requirement:
    return Requirement(
        id=requirement_id,
        tenant_id="t1",
        template_id=f"tpl-{requirement_id}",
        title="Requirement",
        description="",
        category="recordkeeping",
        authority="Rule",
        evidence_types=[],
        frequency="annual",
        evidence_count=count,
        is_active=True,
        activated_at=datetime.now(timezone.utc),
        activated_by="u1",
    )


async def _seed(status: str, count: int) -> None:
    linked = ["r1"] if status == "active" else []
    async with SessionLocal() as session:
        session.add_all(
            [
                _requirement("r1", count),
                Evidence(
                    id="e1",
                    tenant_id="t1",
                    title="Code of Ethics Ack 2025",
                    source="manual_upload",
                    file_name="ack.pdf",
                    requirement_ids=linked,
                    uploaded_by="u1",
                    status=status,
                ),
            ]
        )
        await session.commit()


async def _evidence_count() -> int:
    async with SessionLocal() as session:
        requirement = (await session.execute(select(Requirement).where(Requirement.id == "r1"))).scalar_one()
    return requirement.evidence_count


async def _audit_count(action: str) -> int:
    async with SessionLocal() as session:
        result = await session.execute(
            select(func.count()).select_from(AuditLogEntry).where(AuditLogEntry.action == action)
        )
    return int(result.scalar() or 0)


def _split(results: list) -> tuple[list, list]:
    succeeded = [item for item in results if isinstance(item, Evidence)]
    failed = [item for item in results if not isinstance(item, Evidence)]
    return succeeded, failed


@pytest.mark.asyncio
async def test_concurrent_deletes_decrement_once() -> None:
    await _seed("active", 1)

    async def _delete() -> Evidence:
        async with SessionLocal() as session:
            return await evidence_service.delete(session, tenant_id="t1", actor=ACTOR, evidence_id="e1")

    results = await asyncio.gather(_delete(), _delete(), return_exceptions=True)
    succeeded, failed = _split(results)
    assert len(succeeded) == 1
    assert len(failed) == 1
    assert isinstance(failed[0], (ConflictError, NotFoundError))

    assert await _evidence_count() == 0
    assert await _audit_count(AuditAction.EVIDENCE_DELETED) == 1


@pytest.mark.asyncio
async def test_concurrent_completes_increment_once() -> None:
    await _seed("uploading", 0)

    async def _complete() -> Evidence:
        async with SessionLocal() as session:
            return await evidence_service.complete_upload(
                session,
                tenant_id="t1",
                actor=ACTOR,
                evidence_id="e1",
                title="Code of Ethics Ack 2025",
                description=None,
                evidence_date=date(2025, 1, 15),
                requirement_ids=["r1"],
            )

    results = await asyncio.gather(_complete(), _complete(), return_exceptions=True)
    succeeded, failed = _split(results)
    assert len(succeeded) == 1
    assert len(failed) == 1
    assert isinstance(failed[0], ConflictError)

    assert await _evidence_count() == 1
    assert await _audit_count(AuditAction.EVIDENCE_CREATED) == 1


@pytest.mark.asyncio
async def test_stale_writer_loses_and_changes_nothing() -> None:
    await _seed("active", 1)

    async with SessionLocal() as stale:
        snapshot = await evidence_repo.get_evidence_for_tenant(stale, "t1", "e1")
        assert snapshot is not None
        assert snapshot.revision == 0

        async with SessionLocal() as session:
            updated = await evidence_service.update(
                session, tenant_id="t1", actor=ACTOR, evidence_id="e1", title="Renamed"
            )
        assert updated.revision == 1

        claimed = await evidence_repo.claim_transition(stale, "t1", snapshot, status="deleted")
        assert claimed is False
        await stale.rollback()

    async with SessionLocal() as session:
        current = await evidence_repo.get_evidence_for_tenant(session, "t1", "e1")
    assert current is not None
    assert current.status == "active"
    assert current.title == "Renamed"
    assert await _evidence_count() == 1


@pytest.mark.asyncio
async def test_conflict_is_reported_before_any_write(monkeypatch) -> None:
    await _seed("active", 1)

    async def _lost_race(*args, **kwargs) -> bool:
        return False

    monkeypatch.setattr(evidence_repo, "claim_transition", _lost_race)
    async with SessionLocal() as session:
        with pytest.raises(ConflictError) as excinfo:
            await evidence_service.delete(session, tenant_id="t1", actor=ACTOR, evidence_id="e1")
        await session.rollback()
    assert excinfo.value.code == "EVIDENCE_CONFLICT"

    assert await _evidence_count() == 1
    assert await _audit_count(AuditAction.EVIDENCE_DELETED) == 0
