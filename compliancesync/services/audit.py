from __future__ import annotations

import csv
from dataclasses import dataclass
from datetime import datetime, timezone
import io
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from compliancesync.core.config import get_settings
from compliancesync.core.errors import CapacityError, ValidationError
from compliancesync.domain.constants import AUDIT_ACTIONS
from compliancesync.domain.models import AuditLogEntry
from compliancesync.domain.status import as_utc
from compliancesync.persistence.repos import audit as audit_repo
from compliancesync.persistence.repos.audit import AuditFilters


logger = logging.getLogger(__name__)

_SENSITIVE_KEY_PATTERNS = ["api_key", "authorization", "token", "secret", "password"]
_REDACTED_VALUE = "[REDACTED]"

EXPORT_COLUMNS = [
    "Timestamp",
    "User Email",
    "User ID",
    "Action",
    "Resource Type",
    "Resource ID",
    "Description",
    "IP Address",
]


@dataclass(frozen=True)
class Actor:
    # Who performed the action plus the request hints recorded alongside it.
    user_id: str | None
    email: str | None
    ip_address: str | None = None
    user_agent: str | None = None
    request_id: str | None = None


# Attributed to scheduled jobs and the report generator, which act without a user.
SYSTEM_ACTOR = Actor(user_id=None, email=None)


def _is_sensitive_key(key: str) -> bool:
    # Match sensitive key fragments case-insensitively to enforce redaction policy.
    lowered = key.lower()
    return any(pattern in lowered for pattern in _SENSITIVE_KEY_PATTERNS)


def sanitize_metadata(value: Any) -> Any:
    # Recursively scrub sensitive fields while preserving safe structure.
    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            key = str(raw_key)
            if _is_sensitive_key(key):
                sanitized[key] = _REDACTED_VALUE
            else:
                sanitized[key] = sanitize_metadata(raw_value)
        return sanitized
    if isinstance(value, list):
        return [sanitize_metadata(item) for item in value]
    return value


def get_request_context(request: Request | None) -> dict[str, str | None]:
    # Extract request identifiers and client hints without persisting credentials.
    if request is None:
        return {"request_id": None, "ip_address": None, "user_agent": None}
    request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-Id")
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip_address = forwarded.split(",")[0].strip()
    else:
        ip_address = request.client.host if request.client else None
    user_agent = request.headers.get("user-agent")
    return {"request_id": request_id, "ip_address": ip_address, "user_agent": user_agent}


def diff(before: dict[str, Any], after: dict[str, Any]) -> dict[str, dict[str, Any]]:
    # Build a {"field": {"from": old, "to": new}} map for fields that changed.
    changes: dict[str, dict[str, Any]] = {}
    for key, new_value in after.items():
        old_value = before.get(key)
        if old_value != new_value:
            changes[key] = {"from": old_value, "to": new_value}
    return changes


async def record_event(
    *,
    session: AsyncSession,
    tenant_id: str,
    actor: Actor,
    action: str,
    resource_type: str,
    resource_id: str | None,
    description: str,
    changes: dict[str, Any] | None = None,
    metadata: dict[str, Any] | None = None,
) -> AuditLogEntry:
    """Append one audit entry to the caller's transaction.

    The entry is flushed with the triggering write and committed by the
    caller, so the mutation and its audit row land together or not at all.
    The timestamp is always assigned here.
    """
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action}")
    entry = AuditLogEntry(
        tenant_id=tenant_id,
        timestamp=datetime.now(timezone.utc),
        user_id=actor.user_id,
        user_email=actor.email,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        description=description,
        changes=sanitize_metadata(changes) if changes else None,
        ip_address=actor.ip_address,
        user_agent=actor.user_agent,
        request_id=actor.request_id,
        metadata_json=sanitize_metadata(metadata) if metadata else None,
    )
    session.add(entry)
    await session.flush()
    logger.info(
        "audit_event_recorded action=%s resource_type=%s resource_id=%s",
        action,
        resource_type,
        resource_id,
    )
    return entry


async def list_entries(
    session: AsyncSession,
    *,
    tenant_id: str,
    filters: AuditFilters,
    limit: int | None = None,
    offset: int = 0,
) -> list[AuditLogEntry]:
    settings = get_settings()
    resolved_limit = limit or settings.audit_list_default_limit
    if resolved_limit < 1 or resolved_limit > settings.audit_list_max_limit:
        raise ValidationError(
            f"limit must be between 1 and {settings.audit_list_max_limit}",
            field="limit",
        )
    return await audit_repo.list_entries(
        session,
        tenant_id=tenant_id,
        filters=filters,
        offset=offset,
        limit=resolved_limit,
    )


def _csv_row(entry: AuditLogEntry) -> list[str]:
    return [
        as_utc(entry.timestamp).isoformat(),
        entry.user_email or "",
        entry.user_id or "",
        entry.action,
        entry.resource_type,
        entry.resource_id or "",
        entry.description,
        entry.ip_address or "",
    ]


async def export_csv(session: AsyncSession, *, tenant_id: str, filters: AuditFilters) -> str:
    # Refuse oversized exports so callers narrow their filters instead of paging silently.
    max_rows = get_settings().audit_export_max_rows
    total = await audit_repo.count_entries(session, tenant_id=tenant_id, filters=filters)
    if total >= max_rows:
        raise CapacityError(
            "Export exceeds the row limit; narrow the date range or filters",
            code="AUDIT_EXPORT_TOO_LARGE",
            status_code=400,
            limit=max_rows,
            matched=total,
        )
    entries = await audit_repo.list_entries(
        session,
        tenant_id=tenant_id,
        filters=filters,
        offset=0,
        limit=max_rows,
    )
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(EXPORT_COLUMNS)
    for entry in entries:
        writer.writerow(_csv_row(entry))
    return buffer.getvalue()
