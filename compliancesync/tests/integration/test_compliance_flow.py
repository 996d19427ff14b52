from __future__ import annotations

from datetime import date, timedelta

import pytest
from sqlalchemy import select

from compliancesync.core.config import get_settings
from compliancesync.domain.models import Requirement
from compliancesync.persistence.db import SessionLocal
from compliancesync.tests.utils.auth import register_tenant


async def _upload(client, headers: dict[str, str], requirement_ids: list[str], title: str = "Signed code of ethics") -> str:
    # Two-step upload: reserve a signed URL, then complete with metadata.
    reserved = await client.post(
        "/v1/evidence/upload-url",
        headers=headers,
        json={"file_name": "code-of-ethics.pdf", "file_type": "application/pdf", "file_size": 2048},
    )
    assert reserved.status_code == 201, reserved.text
    evidence_id = reserved.json()["evidence_id"]
    completed = await client.post(
        "/v1/evidence",
        headers=headers,
        json={
            "evidence_id": evidence_id,
            "title": title,
            "evidence_date": "2026-01-15",
            "requirement_ids": requirement_ids,
        },
    )
    assert completed.status_code == 200, completed.text
    return evidence_id


@pytest.mark.asyncio
async def test_requirement_evidence_lifecycle_and_audit_trail(client, templates) -> None:
    acme = await register_tenant(client, email="cco@acme-ria.example", organization_name="Acme RIA")

    activated = await client.post("/v1/requirements", headers=acme.headers, json={"template_id": "sec-ria-001"})
    assert activated.status_code == 201, activated.text
    requirement = activated.json()
    assert requirement["title"] == "Code of Ethics"
    assert requirement["status"] == "not_started"
    assert requirement["evidence_count"] == 0

    reserved = await client.post(
        "/v1/evidence/upload-url",
        headers=acme.headers,
        json={"file_name": "code-of-ethics.pdf", "file_type": "application/pdf", "file_size": 2048},
    )
    assert reserved.status_code == 201
    upload = reserved.json()["upload"]
    assert upload["method"] == "PUT"
    assert f"{acme.tenant_id}/evidence/" in upload["url"]
    evidence_id = reserved.json()["evidence_id"]

    # Reserved uploads stay out of listings until completed.
    listed = await client.get("/v1/evidence", headers=acme.headers)
    assert listed.json() == []

    completed = await client.post(
        "/v1/evidence",
        headers=acme.headers,
        json={
            "evidence_id": evidence_id,
            "title": "Signed code of ethics",
            "evidence_date": "2026-01-15",
            "requirement_ids": [requirement["id"]],
        },
    )
    assert completed.status_code == 200, completed.text
    assert completed.json()["status"] == "active"

    fetched = await client.get(f"/v1/requirements/{requirement['id']}", headers=acme.headers)
    assert fetched.json()["evidence_count"] == 1
    assert fetched.json()["status"] == "compliant"

    linked = await client.get(f"/v1/requirements/{requirement['id']}/evidence", headers=acme.headers)
    assert [item["id"] for item in linked.json()] == [evidence_id]

    # Completing twice is an illegal transition.
    again = await client.post(
        "/v1/evidence",
        headers=acme.headers,
        json={
            "evidence_id": evidence_id,
            "title": "Again",
            "evidence_date": "2026-01-15",
            "requirement_ids": [requirement["id"]],
        },
    )
    assert again.status_code == 409

    deleted = await client.delete(f"/v1/evidence/{evidence_id}", headers=acme.headers)
    assert deleted.status_code == 200
    assert deleted.json()["status"] == "deleted"

    fetched = await client.get(f"/v1/requirements/{requirement['id']}", headers=acme.headers)
    assert fetched.json()["evidence_count"] == 0
    assert fetched.json()["status"] == "not_started"
    gone = await client.get(f"/v1/evidence/{evidence_id}", headers=acme.headers)
    assert gone.status_code == 404

    audit = await client.get("/v1/audit-logs", headers=acme.headers)
    assert audit.status_code == 200
    actions = [entry["action"] for entry in audit.json()]
    assert actions == [
        "evidence_deleted",
        "evidence_created",
        "requirement_activated",
        "organization_created",
    ]
    assert all(entry["user_id"] == acme.user_id for entry in audit.json())

    # Another tenant sees none of Acme's history.
    other = await register_tenant(client, email="admin@other.example", organization_name="Other RIA")
    other_audit = await client.get("/v1/audit-logs", headers=other.headers)
    assert [entry["action"] for entry in other_audit.json()] == ["organization_created"]
    assert all(entry["resource_id"] != requirement["id"] for entry in other_audit.json())


@pytest.mark.asyncio
async def test_activation_rules(client, templates) -> None:
    acme = await register_tenant(client, email="cco@acme-ria.example", organization_name="Acme RIA")

    templates_response = await client.get("/v1/requirements/templates", headers=acme.headers)
    assert templates_response.status_code == 200
    ids = {item["id"] for item in templates_response.json()}
    assert "sec-ria-001" in ids
    assert all(item["regulatory_framework"] == "sec_ria" for item in templates_response.json())

    # Templates from another framework do not resolve.
    foreign = await client.post("/v1/requirements", headers=acme.headers, json={"template_id": "finra-001"})
    assert foreign.status_code == 404

    first = await client.post("/v1/requirements", headers=acme.headers, json={"template_id": "sec-ria-002"})
    assert first.status_code == 201
    duplicate = await client.post("/v1/requirements", headers=acme.headers, json={"template_id": "sec-ria-002"})
    assert duplicate.status_code == 409

    deactivated = await client.delete(f"/v1/requirements/{first.json()['id']}", headers=acme.headers)
    assert deactivated.status_code == 200
    assert deactivated.json()["is_active"] is False
    twice = await client.delete(f"/v1/requirements/{first.json()['id']}", headers=acme.headers)
    assert twice.status_code == 409

    # Re-activation creates a fresh record.
    again = await client.post("/v1/requirements", headers=acme.headers, json={"template_id": "sec-ria-002"})
    assert again.status_code == 201
    assert again.json()["id"] != first.json()["id"]

    listed = await client.get("/v1/requirements", headers=acme.headers)
    assert [item["id"] for item in listed.json()] == [again.json()["id"]]
    with_inactive = await client.get("/v1/requirements?include_inactive=true", headers=acme.headers)
    assert len(with_inactive.json()) == 2

    bad_category = await client.get("/v1/requirements?category=astrology", headers=acme.headers)
    assert bad_category.status_code == 400


@pytest.mark.asyncio
async def test_requirement_update_sets_and_clears_due_date(client, templates) -> None:
    acme = await register_tenant(client, email="cco@acme-ria.example", organization_name="Acme RIA")
    requirement = (
        await client.post("/v1/requirements", headers=acme.headers, json={"template_id": "sec-ria-001"})
    ).json()
    await _upload(client, acme.headers, [requirement["id"]])

    overdue = await client.put(
        f"/v1/requirements/{requirement['id']}",
        headers=acme.headers,
        json={"next_due_date": "2020-01-01", "notes": "Annual attestation"},
    )
    assert overdue.status_code == 200, overdue.text
    assert overdue.json()["status"] == "non_compliant"
    assert overdue.json()["notes"] == "Annual attestation"

    cleared = await client.put(
        f"/v1/requirements/{requirement['id']}",
        headers=acme.headers,
        json={"next_due_date": None},
    )
    assert cleared.json()["next_due_date"] is None
    assert cleared.json()["notes"] == "Annual attestation"
    assert cleared.json()["status"] == "compliant"

    audit = await client.get("/v1/audit-logs?action=requirement_updated", headers=acme.headers)
    changes = [entry["changes"] for entry in audit.json()]
    assert changes[0] == {"next_due_date": {"from": "2020-01-01", "to": None}}

    empty = await client.put(f"/v1/requirements/{requirement['id']}", headers=acme.headers, json={})
    assert empty.status_code == 400


@pytest.mark.asyncio
async def test_evidence_update_rebalances_counts(client, templates) -> None:
    acme = await register_tenant(client, email="cco@acme-ria.example", organization_name="Acme RIA")
    first = (await client.post("/v1/requirements", headers=acme.headers, json={"template_id": "sec-ria-001"})).json()
    second = (await client.post("/v1/requirements", headers=acme.headers, json={"template_id": "sec-ria-002"})).json()
    evidence_id = await _upload(client, acme.headers, [first["id"]])

    moved = await client.put(
        f"/v1/evidence/{evidence_id}",
        headers=acme.headers,
        json={"requirement_ids": [second["id"]], "title": "Renamed"},
    )
    assert moved.status_code == 200, moved.text
    assert moved.json()["requirement_ids"] == [second["id"]]

    async with SessionLocal() as session:
        rows = (await session.execute(select(Requirement))).scalars().all()
    counts = {row.id: row.evidence_count for row in rows}
    assert counts == {first["id"]: 0, second["id"]: 1}

    by_requirement = await client.get(f"/v1/evidence?requirement_id={second['id']}", headers=acme.headers)
    assert [item["id"] for item in by_requirement.json()] == [evidence_id]


@pytest.mark.asyncio
async def test_evidence_associations_must_be_active_tenant_requirements(client, templates) -> None:
    acme = await register_tenant(client, email="cco@acme-ria.example", organization_name="Acme RIA")
    reserved = await client.post(
        "/v1/evidence/upload-url",
        headers=acme.headers,
        json={"file_name": "x.pdf", "file_type": "application/pdf", "file_size": 10},
    )
    response = await client.post(
        "/v1/evidence",
        headers=acme.headers,
        json={
            "evidence_id": reserved.json()["evidence_id"],
            "title": "Orphan",
            "evidence_date": "2026-01-15",
            "requirement_ids": ["does-not-exist"],
        },
    )
    assert response.status_code == 400
    assert response.json()["requirement_ids"] == ["does-not-exist"]


@pytest.mark.asyncio
async def test_evidence_update_keeps_links_to_since_deactivated_requirements(client, templates) -> None:
    acme = await register_tenant(client, email="cco@acme-ria.example", organization_name="Acme RIA")
    first = (await client.post("/v1/requirements", headers=acme.headers, json={"template_id": "sec-ria-001"})).json()
    second = (await client.post("/v1/requirements", headers=acme.headers, json={"template_id": "sec-ria-002"})).json()
    third = (await client.post("/v1/requirements", headers=acme.headers, json={"template_id": "sec-ria-003"})).json()
    evidence_id = await _upload(client, acme.headers, [first["id"]])
    assert (await client.delete(f"/v1/requirements/{first['id']}", headers=acme.headers)).status_code == 200

    # Re-sending the existing link alongside a title edit is accepted.
    renamed = await client.put(
        f"/v1/evidence/{evidence_id}",
        headers=acme.headers,
        json={"title": "Renamed", "requirement_ids": [first["id"]]},
    )
    assert renamed.status_code == 200, renamed.text
    assert renamed.json()["title"] == "Renamed"
    assert renamed.json()["requirement_ids"] == [first["id"]]

    extended = await client.put(
        f"/v1/evidence/{evidence_id}",
        headers=acme.headers,
        json={"requirement_ids": [first["id"], second["id"]]},
    )
    assert extended.status_code == 200, extended.text
    assert extended.json()["requirement_ids"] == [first["id"], second["id"]]

    # Newly added links must still be active.
    assert (await client.delete(f"/v1/requirements/{third['id']}", headers=acme.headers)).status_code == 200
    rejected = await client.put(
        f"/v1/evidence/{evidence_id}",
        headers=acme.headers,
        json={"requirement_ids": [first["id"], third["id"]]},
    )
    assert rejected.status_code == 400
    assert rejected.json()["requirement_ids"] == [third["id"]]

    async with SessionLocal() as session:
        rows = (await session.execute(select(Requirement))).scalars().all()
    counts = {row.id: row.evidence_count for row in rows}
    assert counts == {first["id"]: 1, second["id"]: 1, third["id"]: 0}


@pytest.mark.asyncio
async def test_upload_validation(client, templates) -> None:
    acme = await register_tenant(client, email="cco@acme-ria.example", organization_name="Acme RIA")
    too_big = await client.post(
        "/v1/evidence/upload-url",
        headers=acme.headers,
        json={"file_name": "big.pdf", "file_type": "application/pdf", "file_size": 26 * 1024 * 1024},
    )
    assert too_big.status_code == 400
    assert too_big.json()["code"] == "VALIDATION_ERROR"
    wrong_type = await client.post(
        "/v1/evidence/upload-url",
        headers=acme.headers,
        json={"file_name": "a.exe", "file_type": "application/x-msdownload", "file_size": 10},
    )
    assert wrong_type.status_code == 400


@pytest.mark.asyncio
async def test_download_url_is_audited(client, templates) -> None:
    acme = await register_tenant(client, email="cco@acme-ria.example", organization_name="Acme RIA")
    requirement = (
        await client.post("/v1/requirements", headers=acme.headers, json={"template_id": "sec-ria-001"})
    ).json()
    evidence_id = await _upload(client, acme.headers, [requirement["id"]])

    download = await client.get(f"/v1/evidence/{evidence_id}/download-url", headers=acme.headers)
    assert download.status_code == 200
    assert download.json()["method"] == "GET"
    viewed = await client.get(f"/v1/evidence/{evidence_id}", headers=acme.headers)
    assert viewed.status_code == 200

    audit = await client.get("/v1/audit-logs?resource_type=evidence", headers=acme.headers)
    assert [entry["action"] for entry in audit.json()][:2] == ["evidence_viewed", "evidence_downloaded"]


@pytest.mark.asyncio
async def test_dashboard_aggregates(client, templates) -> None:
    acme = await register_tenant(client, email="cco@acme-ria.example", organization_name="Acme RIA")
    first = (await client.post("/v1/requirements", headers=acme.headers, json={"template_id": "sec-ria-001"})).json()
    await client.post("/v1/requirements", headers=acme.headers, json={"template_id": "sec-ria-002"})
    await _upload(client, acme.headers, [first["id"]])

    dashboard = await client.get("/v1/organization/dashboard", headers=acme.headers)
    assert dashboard.status_code == 200
    body = dashboard.json()
    assert body["total_requirements"] == 2
    assert body["compliant_requirements"] == 1
    assert body["not_started_requirements"] == 1
    assert body["total_evidence"] == 1
    assert body["upcoming_deadlines"] == []


@pytest.mark.asyncio
async def test_evidence_update_without_rebalancing_keeps_counts(client, templates, monkeypatch) -> None:
    monkeypatch.setattr(get_settings(), "evidence_rebalance_on_update", False)
    acme = await register_tenant(client, email="cco@acme-ria.example", organization_name="Acme RIA")
    first = (await client.post("/v1/requirements", headers=acme.headers, json={"template_id": "sec-ria-001"})).json()
    second = (await client.post("/v1/requirements", headers=acme.headers, json={"template_id": "sec-ria-002"})).json()
    evidence_id = await _upload(client, acme.headers, [first["id"]])

    moved = await client.put(
        f"/v1/evidence/{evidence_id}", headers=acme.headers, json={"requirement_ids": [second["id"]]}
    )
    assert moved.status_code == 200
    assert moved.json()["requirement_ids"] == [second["id"]]

    first_now = await client.get(f"/v1/requirements/{first['id']}", headers=acme.headers)
    second_now = await client.get(f"/v1/requirements/{second['id']}", headers=acme.headers)
    assert first_now.json()["evidence_count"] == 1
    assert second_now.json()["evidence_count"] == 0


@pytest.mark.asyncio
async def test_due_soon_requirement_is_at_risk_and_listed_as_upcoming(client, templates) -> None:
    acme = await register_tenant(client, email="cco@acme-ria.example", organization_name="Acme RIA")
    requirement = (
        await client.post("/v1/requirements", headers=acme.headers, json={"template_id": "sec-ria-001"})
    ).json()
    await _upload(client, acme.headers, [requirement["id"]])

    due = (date.today() + timedelta(days=3)).isoformat()
    updated = await client.put(
        f"/v1/requirements/{requirement['id']}", headers=acme.headers, json={"next_due_date": due}
    )
    assert updated.json()["status"] == "at_risk"

    filtered = await client.get("/v1/requirements?status=at_risk", headers=acme.headers)
    assert [item["id"] for item in filtered.json()] == [requirement["id"]]

    dashboard = (await client.get("/v1/organization/dashboard", headers=acme.headers)).json()
    assert dashboard["at_risk_requirements"] == 1
    assert [item["id"] for item in dashboard["upcoming_deadlines"]] == [requirement["id"]]
