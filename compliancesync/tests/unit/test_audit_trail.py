from __future__ import annotations

import pytest
from sqlalchemy import delete, select, update

from compliancesync.core.errors import AuditImmutableError
from compliancesync.domain.constants import AuditAction, ResourceType
from compliancesync.domain.models import AuditLogEntry
from compliancesync.persistence.db import SessionLocal
from compliancesync.services.audit import Actor, diff, record_event, sanitize_metadata


def test_audit_redacts_credentials() -> None:
    sanitized = sanitize_metadata(
        {"password": "hunter2", "nested": {"access_token": "abc"}, "items": [{"api_key": "k"}], "safe": 1}
    )
    assert sanitized["password"] == "[REDACTED]"
    assert sanitized["nested"]["access_token"] == "[REDACTED]"
    assert sanitized["items"][0]["api_key"] == "[REDACTED]"
    assert sanitized["safe"] == 1


def test_diff_reports_only_changed_fields() -> None:
    assert diff({"a": 1, "b": 2}, {"a": 1, "b": 3}) == {"b": {"from": 2, "to": 3}}


async def _write_entry(tenant_id: str) -> int:
    async with SessionLocal() as session:
        entry = await record_event(
            session=session,
            tenant_id=tenant_id,
            actor=Actor(user_id="u1", email="u1@example.com"),
            action=AuditAction.LOGIN,
            resource_type=ResourceType.USER,
            resource_id="u1",
            description="User u1@example.com logged in",
            metadata={"token": "should-not-persist"},
        )
        await session.commit()
        return entry.id


@pytest.mark.asyncio
async def test_record_event_assigns_server_timestamp_and_sanitizes() -> None:
    entry_id = await _write_entry("tenant-a")
    async with SessionLocal() as session:
        entry = (await session.execute(select(AuditLogEntry).where(AuditLogEntry.id == entry_id))).scalar_one()
    assert entry.timestamp is not None
    assert entry.metadata_json == {"token": "[REDACTED]"}


@pytest.mark.asyncio
async def test_unknown_actions_are_rejected() -> None:
    async with SessionLocal() as session:
        with pytest.raises(ValueError):
            await record_event(
                session=session,
                tenant_id="tenant-a",
                actor=Actor(user_id=None, email=None),
                action="something_else",
                resource_type=ResourceType.USER,
                resource_id=None,
                description="nope",
            )


@pytest.mark.asyncio
async def test_audit_rows_cannot_be_modified_or_deleted() -> None:
    entry_id = await _write_entry("tenant-a")
    async with SessionLocal() as session:
        entry = (await session.execute(select(AuditLogEntry).where(AuditLogEntry.id == entry_id))).scalar_one()
        entry.description = "rewritten"
        with pytest.raises(AuditImmutableError):
            await session.flush()
        await session.rollback()

    async with SessionLocal() as session:
        entry = (await session.execute(select(AuditLogEntry).where(AuditLogEntry.id == entry_id))).scalar_one()
        await session.delete(entry)
        with pytest.raises(AuditImmutableError):
            await session.flush()
        await session.rollback()

    async with SessionLocal() as session:
        with pytest.raises(AuditImmutableError):
            await session.execute(update(AuditLogEntry).values(description="bulk"))
        with pytest.raises(AuditImmutableError):
            await session.execute(delete(AuditLogEntry))

    async with SessionLocal() as session:
        entry = (await session.execute(select(AuditLogEntry).where(AuditLogEntry.id == entry_id))).scalar_one()
    assert entry.description == "User u1@example.com logged in"
