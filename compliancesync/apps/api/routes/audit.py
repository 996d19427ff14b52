from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from compliancesync.apps.api.deps import Principal, get_db, require_capability
from compliancesync.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from compliancesync.apps.api.schemas import iso
from compliancesync.domain.models import AuditLogEntry
from compliancesync.persistence.repos.audit import AuditFilters
from compliancesync.services import audit as audit_service
from compliancesync.services.access_control import Capability


router = APIRouter(prefix="/audit-logs", tags=["audit"], responses=DEFAULT_ERROR_RESPONSES)


class AuditLogResponse(BaseModel):
    id: int
    timestamp: str | None
    user_id: str | None
    user_email: str | None
    action: str
    resource_type: str
    resource_id: str | None
    description: str
    changes: dict[str, Any] | None
    ip_address: str | None
    user_agent: str | None
    request_id: str | None
    metadata: dict[str, Any] | None


def _to_response(entry: AuditLogEntry) -> AuditLogResponse:
    return AuditLogResponse(
        id=entry.id,
        timestamp=iso(entry.timestamp),
        user_id=entry.user_id,
        user_email=entry.user_email,
        action=entry.action,
        resource_type=entry.resource_type,
        resource_id=entry.resource_id,
        description=entry.description,
        changes=entry.changes,
        ip_address=entry.ip_address,
        user_agent=entry.user_agent,
        request_id=entry.request_id,
        metadata=entry.metadata_json,
    )


def _filters(
    user_id: str | None = None,
    action: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    occurred_from: datetime | None = Query(default=None, alias="from"),
    occurred_to: datetime | None = Query(default=None, alias="to"),
) -> AuditFilters:
    return AuditFilters(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        occurred_from=occurred_from,
        occurred_to=occurred_to,
    )


@router.get("")
async def list_audit_logs(
    filters: AuditFilters = Depends(_filters),
    limit: int | None = None,
    offset: int = Query(default=0, ge=0),
    principal: Principal = Depends(require_capability(Capability.VIEW_AUDIT_LOG)),
    db: AsyncSession = Depends(get_db),
) -> list[AuditLogResponse]:
    # Tenant scope always comes from the principal, never from the query.
    try:
        entries = await audit_service.list_entries(
            db,
            tenant_id=principal.tenant_id,
            filters=filters,
            limit=limit,
            offset=offset,
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while fetching audit logs") from exc
    return [_to_response(entry) for entry in entries]


@router.get("/export")
async def export_audit_logs(
    filters: AuditFilters = Depends(_filters),
    principal: Principal = Depends(require_capability(Capability.VIEW_AUDIT_LOG)),
    db: AsyncSession = Depends(get_db),
) -> Response:
    body = await audit_service.export_csv(db, tenant_id=principal.tenant_id, filters=filters)
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return Response(
        content=body,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="audit-log-{stamp}.csv"'},
    )
