from __future__ import annotations

import pytest

from compliancesync.services.access_control import Role
from compliancesync.tests.utils.auth import add_member, register_tenant


@pytest.mark.asyncio
async def test_foreign_records_are_indistinguishable_from_missing(client, templates) -> None:
    acme = await register_tenant(client, email="cco@acme-ria.example", organization_name="Acme RIA")
    other = await register_tenant(client, email="admin@other.example", organization_name="Other RIA")

    requirement = (
        await client.post("/v1/requirements", headers=acme.headers, json={"template_id": "sec-ria-001"})
    ).json()
    reserved = await client.post(
        "/v1/evidence/upload-url",
        headers=acme.headers,
        json={"file_name": "policy.pdf", "file_type": "application/pdf", "file_size": 512},
    )
    evidence_id = reserved.json()["evidence_id"]
    await client.post(
        "/v1/evidence",
        headers=acme.headers,
        json={
            "evidence_id": evidence_id,
            "title": "Policy",
            "evidence_date": "2026-02-01",
            "requirement_ids": [requirement["id"]],
        },
    )
    report = await client.post(
        "/v1/reports",
        headers=acme.headers,
        json={"title": "Q1", "type": "comprehensive"},
    )
    member = await add_member(acme.tenant_id, role=Role.VIEWER)
    invitation = await client.post(
        "/v1/users/invite", headers=acme.headers, json={"email": "new@acme-ria.example", "role": "viewer"}
    )

    probes = [
        ("GET", f"/v1/requirements/{requirement['id']}", None),
        ("GET", f"/v1/requirements/{requirement['id']}/evidence", None),
        ("PUT", f"/v1/requirements/{requirement['id']}", {"notes": "mine now"}),
        ("DELETE", f"/v1/requirements/{requirement['id']}", None),
        ("GET", f"/v1/evidence/{evidence_id}", None),
        ("GET", f"/v1/evidence/{evidence_id}/download-url", None),
        ("PUT", f"/v1/evidence/{evidence_id}", {"title": "mine now"}),
        ("DELETE", f"/v1/evidence/{evidence_id}", None),
        ("GET", f"/v1/reports/{report.json()['id']}", None),
        ("PUT", f"/v1/users/{member.user_id}/role", {"role": "admin"}),
        ("DELETE", f"/v1/users/{member.user_id}", None),
        ("DELETE", f"/v1/users/invitations/{invitation.json()['id']}", None),
    ]
    for method, path, body in probes:
        response = await client.request(method, path, headers=other.headers, json=body)
        assert response.status_code == 404, (method, path, response.text)

    # The other tenant cannot link Acme's requirement to its own evidence either.
    foreign_upload = await client.post(
        "/v1/evidence/upload-url",
        headers=other.headers,
        json={"file_name": "x.pdf", "file_type": "application/pdf", "file_size": 10},
    )
    linked = await client.post(
        "/v1/evidence",
        headers=other.headers,
        json={
            "evidence_id": foreign_upload.json()["evidence_id"],
            "title": "Sneaky",
            "evidence_date": "2026-02-01",
            "requirement_ids": [requirement["id"]],
        },
    )
    assert linked.status_code == 400

    # Acme's data is untouched.
    fetched = await client.get(f"/v1/requirements/{requirement['id']}", headers=acme.headers)
    assert fetched.json()["evidence_count"] == 1
    assert fetched.json()["notes"] is None
    assert (await client.get("/v1/requirements", headers=other.headers)).json() == []
    assert (await client.get("/v1/evidence", headers=other.headers)).json() == []
    assert (await client.get("/v1/reports", headers=other.headers)).json() == []
    other_users = (await client.get("/v1/users", headers=other.headers)).json()
    assert [item["email"] for item in other_users] == ["admin@other.example"]


@pytest.mark.asyncio
async def test_spoofed_tenant_in_body_is_rejected(client) -> None:
    acme = await register_tenant(client, email="cco@acme-ria.example", organization_name="Acme RIA")
    response = await client.put(
        "/v1/organization",
        headers=acme.headers,
        json={"name": "Renamed", "organization_id": "someone-else"},
    )
    assert response.status_code == 400
