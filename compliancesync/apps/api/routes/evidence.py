from __future__ import annotations

from datetime import date
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from compliancesync.apps.api.deps import Principal, actor_for, get_db, require_capability
from compliancesync.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from compliancesync.apps.api.schemas import (
    EvidenceResponse,
    SignedUrlResponse,
    evidence_response,
    signed_url_response,
)
from compliancesync.core.errors import ValidationError
from compliancesync.domain.constants import EvidenceSource
from compliancesync.providers.blob.base import BlobStore
from compliancesync.providers.blob.factory import get_blob_store
from compliancesync.services import evidence as evidence_service
from compliancesync.services.access_control import Capability


router = APIRouter(prefix="/evidence", tags=["evidence"], responses=DEFAULT_ERROR_RESPONSES)

class UploadUrlRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    file_name: str = Field(min_length=1, max_length=255)
    file_type: str = Field(min_length=1, max_length=200)
    file_size: int


class UploadUrlResponse(BaseModel):
    evidence_id: str
    upload: SignedUrlResponse


class CompleteUploadRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    evidence_id: str = Field(min_length=1, max_length=100)
    title: str = Field(min_length=1, max_length=300)
    description: str | None = Field(default=None, max_length=5000)
    evidence_date: date
    requirement_ids: list[str] = Field(default_factory=list, max_length=200)
    external_link: str | None = Field(default=None, max_length=2000)
    metadata: dict[str, Any] | None = None


class EvidenceUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str | None = Field(default=None, min_length=1, max_length=300)
    description: str | None = Field(default=None, max_length=5000)
    requirement_ids: list[str] | None = Field(default=None, max_length=200)


@router.post("/upload-url", status_code=status.HTTP_201_CREATED)
async def request_upload_url(
    payload: UploadUrlRequest,
    request: Request,
    principal: Principal = Depends(require_capability(Capability.MANAGE_EVIDENCE)),
    db: AsyncSession = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
) -> UploadUrlResponse:
    ticket = await evidence_service.request_upload(
        db,
        blob_store,
        tenant_id=principal.tenant_id,
        actor=actor_for(principal, request),
        file_name=payload.file_name,
        file_type=payload.file_type,
        file_size=payload.file_size,
    )
    return UploadUrlResponse(evidence_id=ticket.evidence.id, upload=signed_url_response(ticket.upload))


@router.post("")
async def complete_upload(
    payload: CompleteUploadRequest,
    request: Request,
    principal: Principal = Depends(require_capability(Capability.MANAGE_EVIDENCE)),
    db: AsyncSession = Depends(get_db),
) -> EvidenceResponse:
    evidence = await evidence_service.complete_upload(
        db,
        tenant_id=principal.tenant_id,
        actor=actor_for(principal, request),
        evidence_id=payload.evidence_id,
        title=payload.title,
        description=payload.description,
        evidence_date=payload.evidence_date,
        requirement_ids=payload.requirement_ids,
        external_link=payload.external_link,
        metadata=payload.metadata,
    )
    return evidence_response(evidence)


@router.get("")
async def list_evidence(
    source: EvidenceSource | None = None,
    requirement_id: str | None = None,
    principal: Principal = Depends(require_capability(Capability.VIEW_EVIDENCE)),
    db: AsyncSession = Depends(get_db),
) -> list[EvidenceResponse]:
    try:
        items = await evidence_service.list_evidence(
            db, principal.tenant_id, source=source, requirement_id=requirement_id
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while listing evidence") from exc
    return [evidence_response(item) for item in items]


@router.get("/{evidence_id}")
async def get_evidence(
    evidence_id: str,
    request: Request,
    principal: Principal = Depends(require_capability(Capability.VIEW_EVIDENCE)),
    db: AsyncSession = Depends(get_db),
) -> EvidenceResponse:
    evidence = await evidence_service.get(
        db,
        tenant_id=principal.tenant_id,
        actor=actor_for(principal, request),
        evidence_id=evidence_id,
    )
    return evidence_response(evidence)


@router.put("/{evidence_id}")
async def update_evidence(
    evidence_id: str,
    payload: EvidenceUpdateRequest,
    request: Request,
    principal: Principal = Depends(require_capability(Capability.MANAGE_EVIDENCE)),
    db: AsyncSession = Depends(get_db),
) -> EvidenceResponse:
    if not payload.model_fields_set:
        raise ValidationError("No fields to update")
    evidence = await evidence_service.update(
        db,
        tenant_id=principal.tenant_id,
        actor=actor_for(principal, request),
        evidence_id=evidence_id,
        title=payload.title,
        description=payload.description,
        requirement_ids=payload.requirement_ids,
    )
    return evidence_response(evidence)


@router.delete("/{evidence_id}")
async def delete_evidence(
    evidence_id: str,
    request: Request,
    principal: Principal = Depends(require_capability(Capability.MANAGE_EVIDENCE)),
    db: AsyncSession = Depends(get_db),
) -> EvidenceResponse:
    evidence = await evidence_service.delete(
        db,
        tenant_id=principal.tenant_id,
        actor=actor_for(principal, request),
        evidence_id=evidence_id,
    )
    return evidence_response(evidence)


@router.get("/{evidence_id}/download-url")
async def request_download_url(
    evidence_id: str,
    request: Request,
    principal: Principal = Depends(require_capability(Capability.VIEW_EVIDENCE)),
    db: AsyncSession = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
) -> SignedUrlResponse:
    signed = await evidence_service.request_download(
        db,
        blob_store,
        tenant_id=principal.tenant_id,
        actor=actor_for(principal, request),
        evidence_id=evidence_id,
    )
    return signed_url_response(signed)
