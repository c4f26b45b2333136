"""
tests/test_availability.py
Tests for the availability ledger: weekly slots, overlap rules, derived views.
"""

import uuid
from datetime import time

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from config.policy import BookingPolicy
from config.redis_client import RedisCache
from services.availability.ledger import AvailabilityLedger
from shared.models.models import ApplicationStatus, DayOfWeek, User
from shared.utils.exceptions import OverlapError
from tests.conftest import auth_headers, make_user


def slot_body(day="monday", start="09:00", end="12:00", services=("Coffee Date",), **extra) -> dict:
    body = {"day_of_week": day, "start_time": start, "end_time": end, "services": list(services)}
    body.update(extra)
    return body


async def add(client: AsyncClient, user: User, **kwargs):
    return await client.post("/availability/me", headers=auth_headers(user), json=slot_body(**kwargs))


# ── Adding slots ──────────────────────────────────────────────

@pytest.mark.asyncio
async def test_add_slot(client: AsyncClient, companion_user: User):
    response = await add(client, companion_user)
    assert response.status_code == 201
    data = response.json()
    assert data["day_of_week"] == "monday"
    assert data["start_time"] == "09:00:00"
    assert data["end_time"] == "12:00:00"
    assert data["services"] == ["Coffee Date"]
    assert data["is_available"] is True


@pytest.mark.asyncio
async def test_overlapping_slot_rejected(client: AsyncClient, companion_user: User):
    """Two windows on the same day cannot overlap."""
    await add(client, companion_user, start="09:00", end="12:00")
    response = await add(client, companion_user, start="11:00", end="13:00")
    assert response.status_code == 409
    body = response.json()
    assert body["code"] == "SLOT_OVERLAP"
    assert "09:00 - 12:00" in body["detail"]
    assert body["conflicting_slot"]["start_time"] == "09:00"
    assert body["conflicting_slot"]["end_time"] == "12:00"


@pytest.mark.asyncio
async def test_touching_slots_allowed(client: AsyncClient, companion_user: User):
    await add(client, companion_user, start="09:00", end="12:00")
    response = await add(client, companion_user, start="12:00", end="15:00")
    assert response.status_code == 201


@pytest.mark.asyncio
async def test_same_hours_on_different_days(client: AsyncClient, companion_user: User):
    await add(client, companion_user, day="monday")
    response = await add(client, companion_user, day="tuesday")
    assert response.status_code == 201


@pytest.mark.asyncio
async def test_start_must_precede_end(client: AsyncClient, companion_user: User):
    response = await add(client, companion_user, start="15:00", end="15:00")
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_RANGE"


@pytest.mark.asyncio
async def test_slot_service_must_be_registered(client: AsyncClient, companion_user: User):
    """Only services from the approved application may be attached."""
    response = await add(client, companion_user, services=["Coffee Date", "Wine Tasting"])
    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "INVALID_SERVICE"
    assert body["invalid_services"] == ["Wine Tasting"]


@pytest.mark.asyncio
async def test_unknown_service_tag_rejected(client: AsyncClient, companion_user: User):
    response = await add(client, companion_user, services=["Skydiving"])
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_unapproved_companion_cannot_publish(
    client: AsyncClient, db: AsyncSession, companion_user: User
):
    from services.verification.gate import get_approved_application

    application = await get_approved_application(db, companion_user.id)
    application.status = ApplicationStatus.REJECTED
    await db.commit()

    response = await add(client, companion_user)
    assert response.status_code == 403
    assert response.json()["code"] == "COMPANION_NOT_APPROVED"


@pytest.mark.asyncio
async def test_client_cannot_publish(client: AsyncClient, client_user: User):
    response = await add(client, client_user)
    assert response.status_code == 403
    assert response.json()["code"] == "ROLE_NOT_GRANTED"


@pytest.mark.asyncio
async def test_day_lock_contention(client: AsyncClient, redis, companion_user: User):
    """A concurrent edit holding the day lock makes this edit fail as an overlap."""
    await redis.set(RedisCache.slot_lock_key(companion_user.id, "monday"), "another-writer")
    response = await add(client, companion_user)
    assert response.status_code == 409
    assert response.json()["code"] == "SLOT_OVERLAP"


# ── Updating and removing ─────────────────────────────────────

@pytest.mark.asyncio
async def test_update_slot_times(client: AsyncClient, companion_user: User):
    slot_id = (await add(client, companion_user)).json()["id"]
    response = await client.patch(
        f"/availability/me/{slot_id}",
        headers=auth_headers(companion_user),
        json={"end_time": "13:30", "services": ["City Tour", "Coffee Date"]},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["start_time"] == "09:00:00"
    assert data["end_time"] == "13:30:00"
    assert data["services"] == ["City Tour", "Coffee Date"]


@pytest.mark.asyncio
async def test_update_slot_ignores_itself(client: AsyncClient, companion_user: User):
    """Shrinking a slot does not collide with its own old range."""
    slot_id = (await add(client, companion_user, start="09:00", end="12:00")).json()["id"]
    response = await client.patch(
        f"/availability/me/{slot_id}",
        headers=auth_headers(companion_user),
        json={"start_time": "10:00"},
    )
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_update_into_neighbour_rejected(client: AsyncClient, companion_user: User):
    await add(client, companion_user, start="09:00", end="12:00")
    later = (await add(client, companion_user, start="13:00", end="15:00")).json()["id"]

    response = await client.patch(
        f"/availability/me/{later}",
        headers=auth_headers(companion_user),
        json={"start_time": "11:30"},
    )
    assert response.status_code == 409
    assert response.json()["code"] == "SLOT_OVERLAP"


@pytest.mark.asyncio
async def test_toggle_availability(client: AsyncClient, companion_user: User):
    slot_id = (await add(client, companion_user)).json()["id"]
    response = await client.patch(
        f"/availability/me/{slot_id}",
        headers=auth_headers(companion_user),
        json={"is_available": False},
    )
    assert response.status_code == 200
    assert response.json()["is_available"] is False


@pytest.mark.asyncio
async def test_cannot_edit_someone_elses_slot(
    client: AsyncClient, db: AsyncSession, companion_user: User
):
    from shared.models.models import Role
    from tests.conftest import approve_companion

    rival = await make_user(
        db, "rival@example.com", roles=(Role.COMPANION,), active_role=Role.COMPANION
    )
    await approve_companion(db, rival)
    slot_id = (await add(client, companion_user)).json()["id"]

    response = await client.delete(f"/availability/me/{slot_id}", headers=auth_headers(rival))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_remove_slot(client: AsyncClient, companion_user: User):
    slot_id = (await add(client, companion_user)).json()["id"]
    headers = auth_headers(companion_user)

    response = await client.delete(f"/availability/me/{slot_id}", headers=headers)
    assert response.status_code == 200

    remaining = await client.get("/availability/me", headers=headers)
    assert remaining.json() == []

    again = await client.delete(f"/availability/me/{uuid.uuid4()}", headers=headers)
    assert again.status_code == 404


@pytest.mark.asyncio
async def test_list_own_slots_by_day(client: AsyncClient, companion_user: User):
    await add(client, companion_user, day="friday", start="18:00", end="22:00")
    await add(client, companion_user, day="monday", start="13:00", end="15:00")
    await add(client, companion_user, day="monday", start="09:00", end="11:00")
    headers = auth_headers(companion_user)

    everything = await client.get("/availability/me", headers=headers)
    order = [(s["day_of_week"], s["start_time"]) for s in everything.json()]
    assert order == [("monday", "09:00:00"), ("monday", "13:00:00"), ("friday", "18:00:00")]

    monday = await client.get("/availability/me", headers=headers, params={"day": "Monday"})
    assert len(monday.json()) == 2

    bad = await client.get("/availability/me", headers=headers, params={"day": "funday"})
    assert bad.status_code == 400


# ── Replacing the week ────────────────────────────────────────

@pytest.mark.asyncio
async def test_replace_week(client: AsyncClient, companion_user: User):
    await add(client, companion_user, day="sunday")
    response = await client.put(
        "/availability/me",
        headers=auth_headers(companion_user),
        json={
            "slots": [
                slot_body(day="wednesday", start="10:00", end="12:00"),
                slot_body(day="wednesday", start="12:00", end="14:00"),
                slot_body(day="thursday", start="17:00", end="20:00", services=[]),
            ]
        },
    )
    assert response.status_code == 200
    days = [s["day_of_week"] for s in response.json()]
    assert days == ["wednesday", "wednesday", "thursday"]


@pytest.mark.asyncio
async def test_replace_week_is_all_or_nothing(client: AsyncClient, companion_user: User):
    """An overlap anywhere in the new week leaves the old week untouched."""
    await add(client, companion_user, day="sunday")
    headers = auth_headers(companion_user)

    response = await client.put(
        "/availability/me",
        headers=headers,
        json={
            "slots": [
                slot_body(day="wednesday", start="10:00", end="12:00"),
                slot_body(day="wednesday", start="11:00", end="13:00"),
            ]
        },
    )
    assert response.status_code == 409
    assert response.json()["code"] == "SLOT_OVERLAP"
    conflict = response.json()["conflicting_slot"]
    assert (conflict["day_of_week"], conflict["start_time"]) == ("wednesday", "10:00")
    assert conflict["id"] is None

    current = await client.get("/availability/me", headers=headers)
    assert [s["day_of_week"] for s in current.json()] == ["sunday"]


@pytest.mark.asyncio
async def test_update_slot_only_ignores_itself(
    db: AsyncSession, companion_user: User, redis, policy: BookingPolicy
):
    """An edit skips the slot being edited and nothing else."""
    ledger = AvailabilityLedger(db, RedisCache(redis), policy)
    morning = await ledger.add_slot(companion_user, DayOfWeek.FRIDAY, time(9, 0), time(12, 0))
    await ledger.add_slot(companion_user, DayOfWeek.FRIDAY, time(13, 0), time(15, 0))

    with pytest.raises(OverlapError):
        await ledger.update_slot(companion_user, morning.id, end=time(13, 30))

    widened = await ledger.update_slot(companion_user, morning.id, start=time(8, 0))
    assert widened.start_time == time(8, 0)


# ── Derived views ─────────────────────────────────────────────

@pytest.mark.asyncio
async def test_weekly_pattern(client: AsyncClient, client_user: User, companion_user: User):
    await add(client, companion_user, day="monday", start="09:00", end="12:00")
    await add(client, companion_user, day="monday", start="14:00", end="18:00")
    await add(client, companion_user, day="saturday", start="10:00", end="16:00")
    off = (await add(client, companion_user, day="sunday")).json()["id"]
    await client.patch(
        f"/availability/me/{off}", headers=auth_headers(companion_user), json={"is_available": False}
    )

    response = await client.get(
        f"/companions/{companion_user.id}/availability/weekly", headers=auth_headers(client_user)
    )
    assert response.status_code == 200
    data = response.json()
    assert len(data["days"]["monday"]) == 2
    assert data["days"]["sunday"] == []
    assert data["summary"] == {
        "total_slots_per_week": 3,
        "days_available": 2,
        "available_days": ["monday", "saturday"],
    }


@pytest.mark.asyncio
async def test_open_windows_exclude_bookings(
    client: AsyncClient, client_user: User, companion_user: User, slot
):
    """Open windows for a date are the slot minus its live bookings."""
    booked = await client.post(
        "/bookings",
        headers=auth_headers(client_user),
        json={
            "companion_id": str(companion_user.id),
            "booking_date": "2024-06-03",
            "start_time": "12:00",
            "end_time": "14:00",
        },
    )
    assert booked.status_code == 201

    response = await client.get(
        f"/companions/{companion_user.id}/open-windows",
        headers=auth_headers(client_user),
        params={"date": "2024-06-03"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["day_of_week"] == "monday"
    assert [(w["start_time"], w["end_time"]) for w in data["windows"]] == [
        ("09:00:00", "12:00:00"),
        ("14:00:00", "17:00:00"),
    ]


@pytest.mark.asyncio
async def test_removing_slot_keeps_existing_bookings(
    client: AsyncClient, client_user: User, companion_user: User, slot
):
    """Bookings are snapshots; deleting the slot does not cancel them."""
    booked = await client.post(
        "/bookings",
        headers=auth_headers(client_user),
        json={
            "companion_id": str(companion_user.id),
            "booking_date": "2024-06-03",
            "start_time": "10:00",
            "end_time": "11:00",
        },
    )
    booking_id = booked.json()["id"]

    await client.delete(f"/availability/me/{slot.id}", headers=auth_headers(companion_user))

    response = await client.get(f"/bookings/{booking_id}", headers=auth_headers(client_user))
    assert response.json()["status"] == "pending"
