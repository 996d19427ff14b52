from __future__ import annotations

import pytest
from sqlalchemy import func, select

from compliancesync.domain.models import Evidence, Requirement
from compliancesync.persistence.db import SessionLocal
from compliancesync.services.access_control import Role
from compliancesync.tests.utils.auth import add_member, auth_headers, register_tenant


@pytest.mark.asyncio
async def test_missing_or_invalid_token_is_unauthorized(client) -> None:
    missing = await client.get("/v1/requirements")
    assert missing.status_code == 401
    assert missing.json()["code"] == "AUTH_UNAUTHORIZED"
    assert missing.headers["WWW-Authenticate"] == "Bearer"
    assert missing.json()["request_id"] == missing.headers["X-Request-Id"]

    garbage = await client.get("/v1/requirements", headers={"Authorization": "Bearer not-a-jwt"})
    assert garbage.status_code == 401
    assert garbage.headers["WWW-Authenticate"] == "Bearer"

    wrong_scheme = await client.get("/v1/requirements", headers={"Authorization": "Basic abc"})
    assert wrong_scheme.status_code == 401


@pytest.mark.asyncio
async def test_token_without_tenant_claim_is_forbidden(client) -> None:
    headers = auth_headers("user-1", "user@example.com", None, "admin")
    response = await client.get("/v1/requirements", headers=headers)
    assert response.status_code == 403
    assert response.json()["code"] == "AUTH_FORBIDDEN"


@pytest.mark.asyncio
async def test_request_id_is_echoed(client) -> None:
    response = await client.get("/health", headers={"X-Request-Id": "req-123"})
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert response.headers["X-Request-Id"] == "req-123"


@pytest.mark.asyncio
async def test_viewer_cannot_write(client, templates) -> None:
    acme = await register_tenant(client, email="cco@acme-ria.example", organization_name="Acme RIA")
    viewer = await add_member(acme.tenant_id, role=Role.VIEWER)

    writes = [
        ("POST", "/v1/requirements", {"template_id": "sec-ria-001"}),
        ("POST", "/v1/evidence/upload-url", {"file_name": "a.pdf", "file_type": "application/pdf", "file_size": 1}),
        ("PUT", "/v1/subscription", {"tier": "business"}),
        ("POST", "/v1/users/invite", {"email": "x@acme-ria.example", "role": "viewer"}),
        ("PUT", "/v1/organization", {"name": "Viewer Inc"}),
        ("PUT", "/v1/requirements/any-id", {"notes": "n"}),
        ("DELETE", "/v1/requirements/any-id", None),
        ("PUT", "/v1/evidence/any-id", {"title": "t"}),
        ("DELETE", "/v1/evidence/any-id", None),
        ("PUT", f"/v1/users/{acme.user_id}/role", {"role": "viewer"}),
        ("DELETE", f"/v1/users/{acme.user_id}", None),
    ]
    for method, path, body in writes:
        response = await client.request(method, path, headers=viewer.headers, json=body)
        assert response.status_code == 403, (method, path, response.text)

    async with SessionLocal() as session:
        requirements = (await session.execute(select(func.count()).select_from(Requirement))).scalar()
        evidence = (await session.execute(select(func.count()).select_from(Evidence))).scalar()
    assert requirements == 0
    assert evidence == 0

    # Reads stay available to viewers.
    assert (await client.get("/v1/requirements", headers=viewer.headers)).status_code == 200
    assert (await client.get("/v1/organization/dashboard", headers=viewer.headers)).status_code == 200
    assert (await client.get("/v1/users", headers=viewer.headers)).status_code == 200

    # Denials are not audited.
    audit = await client.get("/v1/audit-logs", headers=acme.headers)
    assert [entry["action"] for entry in audit.json()] == ["organization_created"]


@pytest.mark.asyncio
async def test_compliance_officer_scope(client, templates) -> None:
    acme = await register_tenant(client, email="cco@acme-ria.example", organization_name="Acme RIA")
    officer = await add_member(acme.tenant_id, role=Role.COMPLIANCE_OFFICER)

    activated = await client.post("/v1/requirements", headers=officer.headers, json={"template_id": "sec-ria-001"})
    assert activated.status_code == 201
    assert (await client.get("/v1/audit-logs", headers=officer.headers)).status_code == 200

    billing = await client.put("/v1/subscription", headers=officer.headers, json={"tier": "business"})
    assert billing.status_code == 403
    users = await client.post(
        "/v1/users/invite", headers=officer.headers, json={"email": "x@acme-ria.example", "role": "viewer"}
    )
    assert users.status_code == 403
