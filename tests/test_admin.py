"""
tests/test_admin.py
Tests for admin-only endpoints: application and verification review,
payment bookkeeping, audit log.
"""

import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import AdminAuditLog, DomainEvent, EventType, User
from tests.conftest import auth_headers, make_user

APPLICATION = {
    "date_of_birth": "1995-05-17",
    "government_id_number": "ID-99887766",
    "phone": "+44 20 7946 0101",
    "address_line": "1 Abbey Road",
    "city": "London",
    "state": "Greater London",
    "country": "UK",
    "postal_code": "NW8 9AY",
    "bio": "Museum nerd, good listener.",
    "services_offered": ["Museum Visit", "Coffee Date"],
    "languages": ["English", "French"],
    "hourly_rate": "45.00",
}

ADDRESS = {
    "address_line": "742 Evergreen Terrace",
    "city": "Springfield",
    "state": "Oregon",
    "country": "US",
    "postal_code": "97403",
}


async def submit_application(client: AsyncClient, user: User) -> str:
    response = await client.post(
        "/verification/companion", headers=auth_headers(user), json=APPLICATION
    )
    assert response.status_code == 201
    return response.json()["id"]


async def submit_verification(client: AsyncClient, user: User) -> None:
    response = await client.post("/verification/client", headers=auth_headers(user), json=ADDRESS)
    assert response.status_code == 201


# ── Access Control ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_client_cannot_access_admin_endpoints(client: AsyncClient, client_user: User):
    """Regular users get 403 on all admin endpoints."""
    response = await client.get("/admin/applications/pending", headers=auth_headers(client_user))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_companion_cannot_access_admin_endpoints(client: AsyncClient, companion_user: User):
    response = await client.get("/admin/audit-log", headers=auth_headers(companion_user))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_unauthenticated_cannot_access_admin(client: AsyncClient):
    response = await client.get("/admin/applications/pending")
    assert response.status_code == 401


# ── Companion Application Queue ────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_pending_applications_empty(client: AsyncClient, admin_user: User):
    response = await client.get("/admin/applications/pending", headers=auth_headers(admin_user))
    assert response.status_code == 200
    data = response.json()
    assert data["items"] == []
    assert data["total"] == 0


@pytest.mark.asyncio
async def test_approve_application_grants_companion_role(
    client: AsyncClient, db: AsyncSession, admin_user: User, published_events
):
    """Approval grants the role but leaves the active role alone."""
    applicant = await make_user(db, "applicant@example.com", name="Avery Applicant")
    application_id = await submit_application(client, applicant)

    queue = await client.get("/admin/applications/pending", headers=auth_headers(admin_user))
    assert queue.json()["total"] == 1
    assert queue.json()["items"][0]["application_id"] == application_id

    response = await client.post(
        f"/admin/applications/{application_id}/approve", headers=auth_headers(admin_user)
    )
    assert response.status_code == 200
    assert response.json()["status"] == "approved"

    me = await client.get("/auth/me", headers=auth_headers(applicant))
    assert me.json()["roles"] == ["client", "companion"]
    assert me.json()["active_role"] == "client"

    reviewed = [e for e in published_events if e["type"] == "ApplicationReviewed"]
    assert reviewed[0]["recipient_id"] == str(applicant.id)
    assert reviewed[0]["payload"]["status"] == "approved"

    log = await db.scalar(select(AdminAuditLog).where(AdminAuditLog.action == "APPROVE_APPLICATION"))
    assert log.entity_id == application_id
    assert log.admin_id == admin_user.id


@pytest.mark.asyncio
async def test_approved_companion_can_publish_availability(
    client: AsyncClient, db: AsyncSession, admin_user: User
):
    applicant = await make_user(db, "new.companion@example.com")
    application_id = await submit_application(client, applicant)
    await client.post(
        f"/admin/applications/{application_id}/approve", headers=auth_headers(admin_user)
    )

    switched = await client.post(
        "/auth/switch-role", headers=auth_headers(applicant), json={"role": "companion"}
    )
    assert switched.status_code == 200

    response = await client.post(
        "/availability/me",
        headers=auth_headers(applicant),
        json={
            "day_of_week": "saturday",
            "start_time": "10:00",
            "end_time": "16:00",
            "services": ["Museum Visit"],
        },
    )
    assert response.status_code == 201


@pytest.mark.asyncio
async def test_reject_application_records_reason(
    client: AsyncClient, db: AsyncSession, admin_user: User
):
    applicant = await make_user(db, "rejected@example.com")
    application_id = await submit_application(client, applicant)

    response = await client.post(
        f"/admin/applications/{application_id}/reject",
        headers=auth_headers(admin_user),
        json={"reason": "ID document is unreadable"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "rejected"
    assert data["rejection_reason"] == "ID document is unreadable"

    me = await client.get("/auth/me", headers=auth_headers(applicant))
    assert me.json()["roles"] == ["client"]


@pytest.mark.asyncio
async def test_reject_requires_reason(client: AsyncClient, db: AsyncSession, admin_user: User):
    applicant = await make_user(db, "no.reason@example.com")
    application_id = await submit_application(client, applicant)

    response = await client.post(
        f"/admin/applications/{application_id}/reject",
        headers=auth_headers(admin_user),
        json={"reason": ""},
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_cannot_approve_twice(client: AsyncClient, db: AsyncSession, admin_user: User):
    """Approved is terminal."""
    applicant = await make_user(db, "twice@example.com")
    application_id = await submit_application(client, applicant)
    url = f"/admin/applications/{application_id}/approve"

    assert (await client.post(url, headers=auth_headers(admin_user))).status_code == 200
    response = await client.post(url, headers=auth_headers(admin_user))
    assert response.status_code == 409
    assert response.json()["code"] == "INVALID_TRANSITION"


@pytest.mark.asyncio
async def test_approve_unknown_application(client: AsyncClient, admin_user: User):
    response = await client.post(
        f"/admin/applications/{uuid.uuid4()}/approve", headers=auth_headers(admin_user)
    )
    assert response.status_code == 404


# ── Client Verification Queue ──────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_approve_verification_unlocks_catalog(
    client: AsyncClient, admin_user: User, unverified_client: User, companion_user: User
):
    await submit_verification(client, unverified_client)

    blocked = await client.get("/companions", headers=auth_headers(unverified_client))
    assert blocked.status_code == 403

    queue = await client.get("/admin/verifications/pending", headers=auth_headers(admin_user))
    assert queue.json()["total"] == 1
    verification_id = queue.json()["items"][0]["verification_id"]

    response = await client.post(
        f"/admin/verifications/{verification_id}/approve", headers=auth_headers(admin_user)
    )
    assert response.status_code == 200

    catalog = await client.get("/companions", headers=auth_headers(unverified_client))
    assert catalog.status_code == 200
    assert catalog.json()["total"] == 1


@pytest.mark.asyncio
async def test_reject_verification(
    client: AsyncClient, admin_user: User, unverified_client: User, published_events
):
    await submit_verification(client, unverified_client)
    queue = await client.get("/admin/verifications/pending", headers=auth_headers(admin_user))
    verification_id = queue.json()["items"][0]["verification_id"]

    response = await client.post(
        f"/admin/verifications/{verification_id}/reject",
        headers=auth_headers(admin_user),
        json={"reason": "Address could not be confirmed"},
    )
    assert response.status_code == 200

    mine = await client.get("/verification/client", headers=auth_headers(unverified_client))
    assert mine.json()["status"] == "rejected"
    assert mine.json()["rejection_reason"] == "Address could not be confirmed"
    assert mine.json()["can_browse_or_book"] is False

    reviewed = [e for e in published_events if e["type"] == "VerificationReviewed"]
    assert reviewed[0]["recipient_id"] == str(unverified_client.id)


# ── Payment Bookkeeping ────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_update_payment_status(
    client: AsyncClient, admin_user: User, client_user: User, companion_user: User, slot
):
    created = await client.post(
        "/bookings",
        headers=auth_headers(client_user),
        json={
            "companion_id": str(companion_user.id),
            "booking_date": "2024-06-03",
            "start_time": "10:00",
            "end_time": "11:00",
        },
    )
    booking_id = created.json()["id"]

    response = await client.patch(
        f"/admin/bookings/{booking_id}/payment-status",
        headers=auth_headers(admin_user),
        json={"payment_status": "paid", "payment_method": "card"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["payment_status"] == "paid"
    assert data["payment_method"] == "card"
    assert data["status"] == "pending"


@pytest.mark.asyncio
async def test_update_payment_status_unknown_booking(client: AsyncClient, admin_user: User):
    response = await client.patch(
        f"/admin/bookings/{uuid.uuid4()}/payment-status",
        headers=auth_headers(admin_user),
        json={"payment_status": "refunded"},
    )
    assert response.status_code == 404


# ── Audit Log ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_audit_log_filters_by_action(
    client: AsyncClient, db: AsyncSession, admin_user: User
):
    approved = await make_user(db, "audit.one@example.com")
    rejected = await make_user(db, "audit.two@example.com")
    first = await submit_application(client, approved)
    second = await submit_application(client, rejected)
    headers = auth_headers(admin_user)
    await client.post(f"/admin/applications/{first}/approve", headers=headers)
    await client.post(
        f"/admin/applications/{second}/reject", headers=headers, json={"reason": "Incomplete"}
    )

    everything = await client.get("/admin/audit-log", headers=headers)
    assert everything.status_code == 200
    assert everything.json()["total"] == 2

    only_rejections = await client.get(
        "/admin/audit-log", headers=headers, params={"action": "reject_application"}
    )
    items = only_rejections.json()["items"]
    assert len(items) == 1
    assert items[0]["entity_id"] == second
    assert items[0]["payload"] == {"reason": "Incomplete"}


@pytest.mark.asyncio
async def test_review_events_are_kept_in_outbox(
    client: AsyncClient, db: AsyncSession, admin_user: User
):
    """Every emitted event is persisted alongside the state change."""
    applicant = await make_user(db, "outbox@example.com")
    application_id = await submit_application(client, applicant)
    await client.post(
        f"/admin/applications/{application_id}/approve", headers=auth_headers(admin_user)
    )

    event = await db.scalar(
        select(DomainEvent).where(DomainEvent.event_type == EventType.APPLICATION_REVIEWED)
    )
    assert event.recipient_id == applicant.id
    assert event.published is True
