from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
import logging
import time
from typing import AsyncIterator
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from compliancesync.apps.api.errors import (
    domain_exception_handler,
    http_exception_handler,
    starlette_http_exception_handler,
    tenant_predicate_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from compliancesync.apps.api.response import API_VERSION, error_response
from compliancesync.apps.api.routes.audit import router as audit_router
from compliancesync.apps.api.routes.auth import router as auth_router
from compliancesync.apps.api.routes.evidence import router as evidence_router
from compliancesync.apps.api.routes.health import router as health_router
from compliancesync.apps.api.routes.organization import router as organization_router
from compliancesync.apps.api.routes.profile import router as profile_router
from compliancesync.apps.api.routes.reports import router as reports_router
from compliancesync.apps.api.routes.requirements import router as requirements_router
from compliancesync.apps.api.routes.subscription import router as subscription_router
from compliancesync.apps.api.routes.users import router as users_router
from compliancesync.core.config import get_settings
from compliancesync.core.errors import ComplianceSyncError
from compliancesync.core.logging import configure_logging, request_id_ctx, tenant_id_ctx
from compliancesync.persistence.db import check_connection
from compliancesync.persistence.guards import TenantPredicateError
from compliancesync.providers.blob.factory import get_blob_store
from compliancesync.providers.identity.factory import get_identity_provider
from compliancesync.services.auth.tokens import get_token_verifier


logger = logging.getLogger(__name__)

_PUBLIC_PATHS = {
    "/health",
    f"/{API_VERSION}/health",
    f"/{API_VERSION}/auth/register",
    f"/{API_VERSION}/auth/password-reset",
    f"/{API_VERSION}/auth/accept-invitation",
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # Refuse to serve traffic when a required dependency is unreachable or misconfigured.
    await check_connection()
    await get_blob_store().check()
    await get_identity_provider().check()
    await get_token_verifier().check()
    logger.info("startup_checks_passed app=%s", get_settings().app_name)
    yield


def create_app() -> FastAPI:
    configure_logging()
    settings = get_settings()
    app = FastAPI(title="ComplianceSync API", lifespan=lifespan)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        request_token = request_id_ctx.set(request_id)
        tenant_token = tenant_id_ctx.set(None)
        start = time.monotonic()
        try:
            try:
                response = await asyncio.wait_for(call_next(request), timeout=settings.request_timeout_s)
            except asyncio.TimeoutError:
                logger.warning(
                    "request_timeout method=%s path=%s timeout_s=%s",
                    request.method,
                    request.url.path,
                    settings.request_timeout_s,
                )
                response = JSONResponse(
                    content=error_response(
                        request=request,
                        code="REQUEST_TIMEOUT",
                        message="Request exceeded the server deadline",
                    ),
                    status_code=504,
                )
            latency_ms = (time.monotonic() - start) * 1000.0
            logger.info(
                "request_completed method=%s path=%s status=%s latency_ms=%.1f",
                request.method,
                request.url.path,
                response.status_code,
                latency_ms,
            )
        finally:
            tenant_id_ctx.reset(tenant_token)
            request_id_ctx.reset(request_token)
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(ComplianceSyncError)
    async def _domain_exception_handler(request: Request, exc: ComplianceSyncError):
        return await domain_exception_handler(request, exc)

    @app.exception_handler(TenantPredicateError)
    async def _tenant_predicate_exception_handler(request: Request, exc: TenantPredicateError):
        return await tenant_predicate_exception_handler(request, exc)

    # Liveness stays reachable at the root for load balancers.
    app.include_router(health_router)
    app.include_router(health_router, prefix=f"/{API_VERSION}", include_in_schema=False)
    app.include_router(auth_router, prefix=f"/{API_VERSION}")
    app.include_router(profile_router, prefix=f"/{API_VERSION}")
    app.include_router(organization_router, prefix=f"/{API_VERSION}")
    app.include_router(users_router, prefix=f"/{API_VERSION}")
    app.include_router(requirements_router, prefix=f"/{API_VERSION}")
    app.include_router(evidence_router, prefix=f"/{API_VERSION}")
    app.include_router(audit_router, prefix=f"/{API_VERSION}")
    app.include_router(reports_router, prefix=f"/{API_VERSION}")
    app.include_router(subscription_router, prefix=f"/{API_VERSION}")

    def custom_openapi() -> dict:
        # Inject bearer auth into every non-public operation.
        if app.openapi_schema:
            return app.openapi_schema
        schema = get_openapi(title="ComplianceSync API", version=API_VERSION, routes=app.routes)
        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes["BearerAuth"] = {"type": "http", "scheme": "bearer"}
        for path, operations in schema.get("paths", {}).items():
            if path in _PUBLIC_PATHS:
                continue
            for operation in operations.values():
                operation.setdefault("security", [{"BearerAuth": []}])
        app.openapi_schema = schema
        return app.openapi_schema

    app.openapi = custom_openapi  # type: ignore[method-assign]

    return app


app = create_app()
