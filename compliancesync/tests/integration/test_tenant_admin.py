from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select, update

from compliancesync.domain.models import Invitation
from compliancesync.persistence.db import SessionLocal
from compliancesync.providers.identity.factory import get_identity_provider
from compliancesync.services.access_control import Role
from compliancesync.tests.utils.auth import STRONG_PASSWORD, add_member, auth_headers, register_tenant


@pytest.mark.asyncio
async def test_register_creates_trial_tenant_with_admin(client) -> None:
    acme = await register_tenant(client, email="CCO@Acme-RIA.example", organization_name="Acme RIA")
    assert acme.tenant_id

    organization = await client.get("/v1/organization", headers=acme.headers)
    assert organization.status_code == 200
    body = organization.json()
    assert body["name"] == "Acme RIA"
    assert body["subscription"]["tier"] == "starter"
    assert body["subscription"]["status"] == "trial"
    assert body["subscription"]["max_users"] == 10
    assert body["subscription"]["active_users"] == 1

    profile = await client.get("/v1/profile", headers=acme.headers)
    assert profile.json()["email"] == "cco@acme-ria.example"
    assert profile.json()["role"] == "admin"

    account = get_identity_provider().get_account(acme.user_id)
    assert account is not None
    assert account.claims["organization_id"] == acme.tenant_id
    assert account.claims["role"] == "admin"


@pytest.mark.asyncio
async def test_register_rejects_duplicates_and_weak_passwords(client) -> None:
    await register_tenant(client, email="cco@acme-ria.example", organization_name="Acme RIA")
    payload = {
        "email": "cco@acme-ria.example",
        "password": STRONG_PASSWORD,
        "full_name": "Someone Else",
        "organization_name": "Copycat RIA",
        "industry": "financial_services",
        "employee_count": "1-10",
        "regulatory_framework": "sec_ria",
    }
    duplicate = await client.post("/v1/auth/register", json=payload)
    assert duplicate.status_code == 409

    weak = await client.post("/v1/auth/register", json={**payload, "email": "new@copycat.example", "password": "password"})
    assert weak.status_code == 400
    assert weak.json()["code"] == "VALIDATION_ERROR"
    assert weak.json()["field"] == "password"

    bad_email = await client.post("/v1/auth/register", json={**payload, "email": "not-an-email"})
    assert bad_email.status_code == 400


@pytest.mark.asyncio
async def test_password_reset_does_not_reveal_accounts(client) -> None:
    await register_tenant(client, email="cco@acme-ria.example", organization_name="Acme RIA")
    known = await client.post("/v1/auth/password-reset", json={"email": "cco@acme-ria.example"})
    unknown = await client.post("/v1/auth/password-reset", json={"email": "nobody@nowhere.example"})
    assert known.status_code == unknown.status_code == 200
    assert known.json() == unknown.json()
    assert get_identity_provider().password_reset_requests == ["cco@acme-ria.example"]


@pytest.mark.asyncio
async def test_invitation_flow(client) -> None:
    acme = await register_tenant(client, email="cco@acme-ria.example", organization_name="Acme RIA")

    invited = await client.post(
        "/v1/users/invite",
        headers=acme.headers,
        json={"email": "analyst@acme-ria.example", "role": "compliance_officer"},
    )
    assert invited.status_code == 201, invited.text
    invitation = invited.json()
    assert invitation["status"] == "pending"
    token = invitation["token"]

    pending = await client.get("/v1/users/invitations", headers=acme.headers)
    assert [item["id"] for item in pending.json()] == [invitation["id"]]
    assert "token" not in pending.json()[0]

    again = await client.post(
        "/v1/users/invite",
        headers=acme.headers,
        json={"email": "analyst@acme-ria.example", "role": "viewer"},
    )
    assert again.status_code == 409

    weak = await client.post(
        "/v1/auth/accept-invitation",
        json={"token": token, "full_name": "Analyst", "password": "weak"},
    )
    assert weak.status_code == 400

    accepted = await client.post(
        "/v1/auth/accept-invitation",
        json={"token": token, "full_name": "Analyst", "password": STRONG_PASSWORD},
    )
    assert accepted.status_code == 201, accepted.text
    member = accepted.json()
    assert member["organization_id"] == acme.tenant_id
    assert member["role"] == "compliance_officer"

    reused = await client.post(
        "/v1/auth/accept-invitation",
        json={"token": token, "full_name": "Analyst", "password": STRONG_PASSWORD},
    )
    assert reused.status_code == 404

    member_headers = auth_headers(member["id"], member["email"], acme.tenant_id, member["role"])
    login = await client.post("/v1/auth/login", headers=member_headers)
    assert login.status_code == 200
    assert login.json()["last_login_at"] is not None

    users = await client.get("/v1/users", headers=acme.headers)
    assert {item["email"] for item in users.json()} == {"cco@acme-ria.example", "analyst@acme-ria.example"}

    subscription = await client.get("/v1/subscription", headers=acme.headers)
    assert subscription.json()["active_users"] == 2


@pytest.mark.asyncio
async def test_revoked_invitation_cannot_be_accepted(client) -> None:
    acme = await register_tenant(client, email="cco@acme-ria.example", organization_name="Acme RIA")
    invited = await client.post(
        "/v1/users/invite",
        headers=acme.headers,
        json={"email": "temp@acme-ria.example", "role": "viewer"},
    )
    revoked = await client.delete(f"/v1/users/invitations/{invited.json()['id']}", headers=acme.headers)
    assert revoked.status_code == 200
    assert revoked.json()["status"] == "revoked"

    accepted = await client.post(
        "/v1/auth/accept-invitation",
        json={"token": invited.json()["token"], "full_name": "Temp", "password": STRONG_PASSWORD},
    )
    assert accepted.status_code == 404


@pytest.mark.asyncio
async def test_seat_limit_counts_only_active_users(client) -> None:
    acme = await register_tenant(client, email="cco@acme-ria.example", organization_name="Acme RIA")
    for index in range(8):
        await add_member(acme.tenant_id, role=Role.VIEWER, email=f"member{index}@acme-ria.example")

    # Nine active users; pending invitations never hold a seat.
    first = await client.post(
        "/v1/users/invite", headers=acme.headers, json={"email": "tenth@acme-ria.example", "role": "viewer"}
    )
    assert first.status_code == 201
    second = await client.post(
        "/v1/users/invite", headers=acme.headers, json={"email": "eleventh@acme-ria.example", "role": "viewer"}
    )
    assert second.status_code == 201

    await add_member(acme.tenant_id, role=Role.VIEWER, email="member8@acme-ria.example")
    blocked = await client.post(
        "/v1/users/invite", headers=acme.headers, json={"email": "twelfth@acme-ria.example", "role": "viewer"}
    )
    assert blocked.status_code == 409
    assert blocked.json()["code"] == "SEAT_LIMIT_REACHED"
    assert blocked.json()["limit"] == 10

    # Accepting a pending invitation re-checks the seat limit.
    accept = await client.post(
        "/v1/auth/accept-invitation",
        json={"token": first.json()["token"], "full_name": "Tenth", "password": STRONG_PASSWORD},
    )
    assert accept.status_code == 409
    assert accept.json()["code"] == "SEAT_LIMIT_REACHED"


@pytest.mark.asyncio
async def test_user_management_rules(client) -> None:
    acme = await register_tenant(client, email="cco@acme-ria.example", organization_name="Acme RIA")
    member = await add_member(acme.tenant_id, role=Role.VIEWER)

    self_delete = await client.delete(f"/v1/users/{acme.user_id}", headers=acme.headers)
    assert self_delete.status_code == 400
    assert self_delete.json()["code"] == "SELF_DELETION_FORBIDDEN"

    demote = await client.put(f"/v1/users/{acme.user_id}/role", headers=acme.headers, json={"role": "viewer"})
    assert demote.status_code == 409

    promoted = await client.put(
        f"/v1/users/{member.user_id}/role", headers=acme.headers, json={"role": "compliance_officer"}
    )
    assert promoted.status_code == 200
    assert promoted.json()["role"] == "compliance_officer"

    removed = await client.delete(f"/v1/users/{member.user_id}", headers=acme.headers)
    assert removed.status_code == 200
    assert removed.json()["status"] == "inactive"

    subscription = await client.get("/v1/subscription", headers=acme.headers)
    assert subscription.json()["active_users"] == 1

    audit = await client.get("/v1/audit-logs?resource_type=user", headers=acme.headers)
    assert [entry["action"] for entry in audit.json()] == ["user_deleted", "user_updated"]
    assert audit.json()[1]["changes"] == {"role": {"from": "viewer", "to": "compliance_officer"}}


@pytest.mark.asyncio
async def test_subscription_changes(client) -> None:
    acme = await register_tenant(client, email="cco@acme-ria.example", organization_name="Acme RIA")

    upgraded = await client.put("/v1/subscription", headers=acme.headers, json={"tier": "professional"})
    assert upgraded.status_code == 200, upgraded.text
    assert upgraded.json()["tier"] == "professional"
    assert upgraded.json()["status"] == "active"
    assert upgraded.json()["max_users"] == 25

    unknown = await client.put("/v1/subscription", headers=acme.headers, json={"tier": "platinum"})
    assert unknown.status_code == 400

    wrong_name = await client.post("/v1/subscription/cancel", headers=acme.headers, json={"confirmation": "Acme"})
    assert wrong_name.status_code == 400

    cancelled = await client.post(
        "/v1/subscription/cancel", headers=acme.headers, json={"confirmation": "Acme RIA"}
    )
    assert cancelled.status_code == 200
    assert cancelled.json()["cancel_at_period_end"] is True

    repeated = await client.post(
        "/v1/subscription/cancel", headers=acme.headers, json={"confirmation": "Acme RIA"}
    )
    assert repeated.status_code == 409


@pytest.mark.asyncio
async def test_organization_update(client) -> None:
    acme = await register_tenant(client, email="cco@acme-ria.example", organization_name="Acme RIA")

    updated = await client.put(
        "/v1/organization",
        headers=acme.headers,
        json={"name": "Acme Wealth", "phone": "+1 555 0100"},
    )
    assert updated.status_code == 200, updated.text
    assert updated.json()["name"] == "Acme Wealth"
    assert updated.json()["phone"] == "+1 555 0100"

    empty = await client.put("/v1/organization", headers=acme.headers, json={})
    assert empty.status_code == 400
    null_name = await client.put("/v1/organization", headers=acme.headers, json={"name": None})
    assert null_name.status_code == 400


@pytest.mark.asyncio
async def test_expired_invitation_is_marked_and_audited(client) -> None:
    acme = await register_tenant(client, email="cco@acme-ria.example", organization_name="Acme RIA")
    invited = await client.post(
        "/v1/users/invite",
        headers=acme.headers,
        json={"email": "late@acme-ria.example", "role": "viewer"},
    )
    invitation = invited.json()
    async with SessionLocal() as session:
        await session.execute(
            update(Invitation)
            .where(Invitation.id == invitation["id"])
            .values(expires_at=datetime.now(timezone.utc) - timedelta(days=1))
        )
        await session.commit()

    accepted = await client.post(
        "/v1/auth/accept-invitation",
        json={"token": invitation["token"], "full_name": "Late", "password": STRONG_PASSWORD},
    )
    assert accepted.status_code == 409
    assert accepted.json()["code"] == "INVITATION_EXPIRED"

    async with SessionLocal() as session:
        stored = (await session.execute(select(Invitation).where(Invitation.id == invitation["id"]))).scalar_one()
    assert stored.status == "expired"

    audit = await client.get("/v1/audit-logs?action=invitation_expired", headers=acme.headers)
    [entry] = audit.json()
    assert entry["resource_type"] == "invitation"
    assert entry["resource_id"] == invitation["id"]
    assert entry["user_email"] == "late@acme-ria.example"
    assert entry["changes"] == {"status": {"from": "pending", "to": "expired"}}

    # A second attempt finds nothing pending and writes no further entry.
    again = await client.post(
        "/v1/auth/accept-invitation",
        json={"token": invitation["token"], "full_name": "Late", "password": STRONG_PASSWORD},
    )
    assert again.status_code == 404
    audit = await client.get("/v1/audit-logs?action=invitation_expired", headers=acme.headers)
    assert len(audit.json()) == 1
