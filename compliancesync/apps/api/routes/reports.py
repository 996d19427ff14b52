from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from compliancesync.apps.api.deps import Principal, actor_for, get_db, require_capability
from compliancesync.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from compliancesync.apps.api.schemas import SignedUrlResponse, iso, signed_url_response
from compliancesync.domain.constants import ReportType
from compliancesync.domain.models import Report
from compliancesync.providers.blob.base import BlobStore
from compliancesync.providers.blob.factory import get_blob_store
from compliancesync.services import reports as reports_service
from compliancesync.services.access_control import Capability


router = APIRouter(prefix="/reports", tags=["reports"], responses=DEFAULT_ERROR_RESPONSES)


class ReportRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str = Field(min_length=1, max_length=300)
    description: str | None = Field(default=None, max_length=5000)
    type: ReportType
    requirement_ids: list[str] = Field(default_factory=list, max_length=200)


class ReportResponse(BaseModel):
    id: str
    title: str
    description: str | None
    type: str
    requirement_ids: list[str]
    status: str
    generated_by: str
    created_at: str | None
    completed_at: str | None
    error_message: str | None


def _to_response(report: Report) -> ReportResponse:
    # file_url is a blob locator; clients use the download-url endpoint instead.
    return ReportResponse(
        id=report.id,
        title=report.title,
        description=report.description,
        type=report.type,
        requirement_ids=list(report.requirement_ids or []),
        status=report.status,
        generated_by=report.generated_by,
        created_at=iso(report.created_at),
        completed_at=iso(report.completed_at),
        error_message=report.error_message,
    )


@router.get("")
async def list_reports(
    principal: Principal = Depends(require_capability(Capability.GENERATE_REPORTS)),
    db: AsyncSession = Depends(get_db),
) -> list[ReportResponse]:
    try:
        reports = await reports_service.list_reports(db, principal.tenant_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while listing reports") from exc
    return [_to_response(item) for item in reports]


@router.post("", status_code=status.HTTP_202_ACCEPTED)
async def create_report(
    payload: ReportRequest,
    request: Request,
    principal: Principal = Depends(require_capability(Capability.GENERATE_REPORTS)),
    db: AsyncSession = Depends(get_db),
) -> ReportResponse:
    # Accepted, not rendered: the record stays pending until a renderer advances it.
    report = await reports_service.create_report(
        db,
        tenant_id=principal.tenant_id,
        actor=actor_for(principal, request),
        title=payload.title,
        report_type=payload.type,
        requirement_ids=payload.requirement_ids,
        description=payload.description,
    )
    return _to_response(report)


@router.get("/{report_id}")
async def get_report(
    report_id: str,
    principal: Principal = Depends(require_capability(Capability.GENERATE_REPORTS)),
    db: AsyncSession = Depends(get_db),
) -> ReportResponse:
    report = await reports_service.get_report(db, principal.tenant_id, report_id)
    return _to_response(report)


@router.get("/{report_id}/download-url")
async def get_report_download_url(
    report_id: str,
    principal: Principal = Depends(require_capability(Capability.GENERATE_REPORTS)),
    db: AsyncSession = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
) -> SignedUrlResponse:
    signed = await reports_service.request_report_download(
        db, blob_store, tenant_id=principal.tenant_id, report_id=report_id
    )
    return signed_url_response(signed)
