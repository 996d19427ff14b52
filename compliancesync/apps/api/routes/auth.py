from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from compliancesync.apps.api.deps import Principal, actor_for, get_current_principal, get_db
from compliancesync.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from compliancesync.apps.api.schemas import (
    EMAIL_PATTERN,
    OrganizationResponse,
    UserResponse,
    organization_response,
    user_response,
)
from compliancesync.domain.constants import EmployeeBand, Industry, RegulatoryFramework
from compliancesync.providers.identity.base import IdentityProvider
from compliancesync.providers.identity.factory import get_identity_provider
from compliancesync.services import tenants as tenants_service
from compliancesync.services.audit import get_request_context
from compliancesync.services.tenants import OrganizationProfile


router = APIRouter(prefix="/auth", tags=["auth"], responses=DEFAULT_ERROR_RESPONSES)


class RegisterRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: str = Field(max_length=320, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=1, max_length=256)
    full_name: str = Field(min_length=1, max_length=200)
    organization_name: str = Field(min_length=1, max_length=200)
    industry: Industry
    employee_count: EmployeeBand
    regulatory_framework: RegulatoryFramework
    website: str | None = Field(default=None, max_length=500)
    address: str | None = Field(default=None, max_length=500)
    phone: str | None = Field(default=None, max_length=50)


class RegisterResponse(BaseModel):
    organization: OrganizationResponse
    user: UserResponse


class PasswordResetRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: str = Field(max_length=320, pattern=EMAIL_PATTERN)


class MessageResponse(BaseModel):
    message: str


class AcceptInvitationRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    token: str = Field(min_length=1, max_length=256)
    full_name: str = Field(min_length=1, max_length=200)
    password: str = Field(min_length=1, max_length=256)


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    payload: RegisterRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> RegisterResponse:
    # Public: creates the tenant and its first admin.
    org, user = await tenants_service.register(
        db,
        identity,
        email=payload.email,
        password=payload.password,
        full_name=payload.full_name,
        profile=OrganizationProfile(
            name=payload.organization_name,
            industry=payload.industry,
            employee_count=payload.employee_count,
            regulatory_framework=payload.regulatory_framework,
            website=payload.website,
            address=payload.address,
            phone=payload.phone,
        ),
        request_ctx=get_request_context(request),
    )
    return RegisterResponse(organization=organization_response(org), user=user_response(user))


@router.post("/password-reset")
async def password_reset(
    payload: PasswordResetRequest,
    identity: IdentityProvider = Depends(get_identity_provider),
) -> MessageResponse:
    # Same response whether or not the email exists.
    message = await tenants_service.request_password_reset(identity, payload.email)
    return MessageResponse(message=message)


@router.post("/accept-invitation", status_code=status.HTTP_201_CREATED)
async def accept_invitation(
    payload: AcceptInvitationRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> UserResponse:
    user = await tenants_service.accept_invitation(
        db,
        identity,
        token=payload.token,
        full_name=payload.full_name,
        password=payload.password,
        request_ctx=get_request_context(request),
    )
    return user_response(user)


@router.post("/login")
async def login(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    # Called by clients after the identity provider signs the user in.
    user = await tenants_service.record_login(
        db, tenant_id=principal.tenant_id, actor=actor_for(principal, request)
    )
    return user_response(user)
