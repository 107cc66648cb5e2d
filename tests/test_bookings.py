"""
tests/test_bookings.py
Tests for the booking lifecycle:
create → accept/reject → complete, plus the read paths and status history.
"""

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

import services.booking.router as booking_router
from services.booking.state_machine import (
    InvalidTransitionError,
    TransitionNotPermittedError,
    allowed_targets,
    assert_transition,
)
from shared.models.models import (
    Booking,
    BookingStatus,
    BookingStatusLog,
    Client,
    ServiceGiver,
    ServiceType,
    UserRole,
)
from tests.conftest import auth_headers, make_booking


def booking_payload(giver: ServiceGiver, service: ServiceType, **overrides) -> dict:
    payload = {
        "giver_id": giver.giver_id,
        "service_id": service.service_id,
        "start_date": "2025-01-10",
        "end_date": "2025-01-10",
        "total_price_RWF": 20000,
    }
    payload.update(overrides)
    return payload


# ── State machine ──────────────────────────────────────────────────────────────

def test_allowed_targets():
    assert set(allowed_targets(BookingStatus.PENDING)) == {BookingStatus.ACCEPTED, BookingStatus.REJECTED}
    assert allowed_targets(BookingStatus.ACCEPTED) == [BookingStatus.COMPLETED]
    for terminal in (BookingStatus.REJECTED, BookingStatus.COMPLETED, BookingStatus.CANCELLED):
        assert allowed_targets(terminal) == []


def test_nothing_transitions_into_cancelled():
    booking = Booking(client_id=1, giver_id=2, status=BookingStatus.PENDING)
    with pytest.raises(InvalidTransitionError):
        assert_transition(booking, BookingStatus.CANCELLED, UserRole.GIVER, 2)


def test_completed_cannot_go_back_to_accepted():
    booking = Booking(client_id=1, giver_id=2, status=BookingStatus.COMPLETED)
    with pytest.raises(InvalidTransitionError):
        assert_transition(booking, BookingStatus.ACCEPTED, UserRole.GIVER, 2)


def test_client_cannot_accept():
    booking = Booking(client_id=1, giver_id=2, status=BookingStatus.PENDING)
    with pytest.raises(TransitionNotPermittedError):
        assert_transition(booking, BookingStatus.ACCEPTED, UserRole.CLIENT, 1)


def test_other_giver_cannot_accept():
    booking = Booking(client_id=1, giver_id=2, status=BookingStatus.PENDING)
    with pytest.raises(TransitionNotPermittedError):
        assert_transition(booking, BookingStatus.ACCEPTED, UserRole.GIVER, 3)


def test_client_can_complete_own_accepted_booking():
    booking = Booking(client_id=1, giver_id=2, status=BookingStatus.ACCEPTED)
    assert assert_transition(booking, BookingStatus.COMPLETED, UserRole.CLIENT, 1) == BookingStatus.ACCEPTED


def test_non_party_is_refused_before_status_check():
    booking = Booking(client_id=1, giver_id=2, status=BookingStatus.COMPLETED)
    with pytest.raises(TransitionNotPermittedError):
        assert_transition(booking, BookingStatus.ACCEPTED, UserRole.GIVER, 3)


# ── Booking Creation ───────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_booking_success(
    client: AsyncClient,
    db: AsyncSession,
    client_user: Client,
    giver_user: ServiceGiver,
    service_type: ServiceType,
):
    """Client books a giver for one day at 20000 RWF → Pending, unpaid."""
    response = await client.post(
        "/api/bookings",
        headers=auth_headers(client_user, UserRole.CLIENT),
        json=booking_payload(giver_user, service_type, notes="Wedding in Nyamirambo"),
    )
    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "Pending"
    assert data["is_paid"] is False
    assert data["client_id"] == client_user.client_id
    assert data["total_price_RWF"] == 20000
    assert data["service_name"] == "Photography"
    assert data["giver_name"] == "Eric Habimana"

    logs = (await db.execute(select(BookingStatusLog))).scalars().all()
    assert [(l.from_status, l.to_status) for l in logs] == [(None, "Pending")]


@pytest.mark.asyncio
async def test_create_booking_past_date_allowed(
    client: AsyncClient, client_user: Client, giver_user: ServiceGiver, service_type: ServiceType
):
    response = await client.post(
        "/api/bookings",
        headers=auth_headers(client_user, UserRole.CLIENT),
        json=booking_payload(giver_user, service_type, start_date="2020-03-01", end_date="2020-03-02"),
    )
    assert response.status_code == 201


@pytest.mark.asyncio
async def test_create_booking_end_before_start_rejected(
    client: AsyncClient, client_user: Client, giver_user: ServiceGiver, service_type: ServiceType
):
    response = await client.post(
        "/api/bookings",
        headers=auth_headers(client_user, UserRole.CLIENT),
        json=booking_payload(giver_user, service_type, start_date="2025-01-10", end_date="2025-01-09"),
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_create_booking_negative_price_rejected(
    client: AsyncClient, client_user: Client, giver_user: ServiceGiver, service_type: ServiceType
):
    response = await client.post(
        "/api/bookings",
        headers=auth_headers(client_user, UserRole.CLIENT),
        json=booking_payload(giver_user, service_type, total_price_RWF=-1),
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_create_booking_unknown_giver_returns_404(
    client: AsyncClient, client_user: Client, service_type: ServiceType
):
    payload = {
        "giver_id": 4242,
        "service_id": service_type.service_id,
        "start_date": "2025-01-10",
        "end_date": "2025-01-10",
        "total_price_RWF": 20000,
    }
    response = await client.post(
        "/api/bookings", headers=auth_headers(client_user, UserRole.CLIENT), json=payload
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_create_booking_requires_token(
    client: AsyncClient, giver_user: ServiceGiver, service_type: ServiceType
):
    response = await client.post("/api/bookings", json=booking_payload(giver_user, service_type))
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_giver_cannot_create_booking(
    client: AsyncClient, giver_user: ServiceGiver, service_type: ServiceType
):
    response = await client.post(
        "/api/bookings",
        headers=auth_headers(giver_user, UserRole.GIVER),
        json=booking_payload(giver_user, service_type),
    )
    assert response.status_code == 403


# ── Status transitions ─────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_giver_accepts_then_completes(
    client: AsyncClient,
    db: AsyncSession,
    client_user: Client,
    giver_user: ServiceGiver,
    service_type: ServiceType,
):
    booking = await make_booking(db, client_user, giver_user, service_type)
    headers = auth_headers(giver_user, UserRole.GIVER)

    response = await client.put(
        f"/api/bookings/{booking.booking_id}/status", headers=headers, json={"status": "Accepted"}
    )
    assert response.status_code == 200
    assert response.json()["booking"]["status"] == "Accepted"

    response = await client.put(
        f"/api/bookings/{booking.booking_id}/status", headers=headers, json={"status": "Completed"}
    )
    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Booking status updated to Completed"
    assert body["booking"]["status"] == "Completed"

    history = await client.get(f"/api/bookings/{booking.booking_id}/history", headers=headers)
    assert [(h["from_status"], h["to_status"]) for h in history.json()] == [
        ("Pending", "Accepted"),
        ("Accepted", "Completed"),
    ]


@pytest.mark.asyncio
async def test_giver_rejects_pending_booking(
    client: AsyncClient,
    db: AsyncSession,
    client_user: Client,
    giver_user: ServiceGiver,
    service_type: ServiceType,
):
    booking = await make_booking(db, client_user, giver_user, service_type)
    response = await client.put(
        f"/api/bookings/{booking.booking_id}/status",
        headers=auth_headers(giver_user, UserRole.GIVER),
        json={"status": "Rejected"},
    )
    assert response.status_code == 200
    assert response.json()["booking"]["status"] == "Rejected"


@pytest.mark.asyncio
async def test_client_completes_accepted_booking(
    client: AsyncClient,
    db: AsyncSession,
    client_user: Client,
    giver_user: ServiceGiver,
    service_type: ServiceType,
):
    booking = await make_booking(db, client_user, giver_user, service_type, status=BookingStatus.ACCEPTED)
    response = await client.put(
        f"/api/bookings/{booking.booking_id}/status",
        headers=auth_headers(client_user, UserRole.CLIENT),
        json={"status": "Completed"},
    )
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_completed_to_accepted_is_409(
    client: AsyncClient,
    db: AsyncSession,
    client_user: Client,
    giver_user: ServiceGiver,
    service_type: ServiceType,
):
    booking = await make_booking(db, client_user, giver_user, service_type, status=BookingStatus.COMPLETED)
    response = await client.put(
        f"/api/bookings/{booking.booking_id}/status",
        headers=auth_headers(giver_user, UserRole.GIVER),
        json={"status": "Accepted"},
    )
    assert response.status_code == 409

    await db.refresh(booking)
    assert booking.status == BookingStatus.COMPLETED


@pytest.mark.asyncio
async def test_unknown_status_value_is_422(
    client: AsyncClient,
    db: AsyncSession,
    client_user: Client,
    giver_user: ServiceGiver,
    service_type: ServiceType,
):
    booking = await make_booking(db, client_user, giver_user, service_type)
    response = await client.put(
        f"/api/bookings/{booking.booking_id}/status",
        headers=auth_headers(giver_user, UserRole.GIVER),
        json={"status": "Archived"},
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_client_cannot_accept_own_booking(
    client: AsyncClient,
    db: AsyncSession,
    client_user: Client,
    giver_user: ServiceGiver,
    service_type: ServiceType,
):
    booking = await make_booking(db, client_user, giver_user, service_type)
    response = await client.put(
        f"/api/bookings/{booking.booking_id}/status",
        headers=auth_headers(client_user, UserRole.CLIENT),
        json={"status": "Accepted"},
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_other_giver_cannot_accept(
    client: AsyncClient,
    db: AsyncSession,
    client_user: Client,
    giver_user: ServiceGiver,
    other_giver: ServiceGiver,
    service_type: ServiceType,
):
    booking = await make_booking(db, client_user, giver_user, service_type)
    response = await client.put(
        f"/api/bookings/{booking.booking_id}/status",
        headers=auth_headers(other_giver, UserRole.GIVER),
        json={"status": "Accepted"},
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_status_update_unknown_booking_returns_404(client: AsyncClient, giver_user: ServiceGiver):
    response = await client.put(
        "/api/bookings/999/status",
        headers=auth_headers(giver_user, UserRole.GIVER),
        json={"status": "Accepted"},
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_other_giver_gets_403_on_terminal_booking(
    client: AsyncClient,
    db: AsyncSession,
    client_user: Client,
    giver_user: ServiceGiver,
    other_giver: ServiceGiver,
    service_type: ServiceType,
):
    booking = await make_booking(db, client_user, giver_user, service_type, status=BookingStatus.COMPLETED)
    response = await client.put(
        f"/api/bookings/{booking.booking_id}/status",
        headers=auth_headers(other_giver, UserRole.GIVER),
        json={"status": "Accepted"},
    )
    assert response.status_code == 403
    assert "Completed" not in response.json()["detail"]


@pytest.mark.asyncio
async def test_status_update_losing_race_is_409(
    client: AsyncClient,
    db: AsyncSession,
    client_user: Client,
    giver_user: ServiceGiver,
    service_type: ServiceType,
    monkeypatch,
):
    booking = await make_booking(db, client_user, giver_user, service_type)
    load = booking_router.get_booking_or_404

    async def load_then_reject_elsewhere(session, booking_id):
        # Snapshot is still Pending; a competing writer rejects the booking.
        loaded = await load(session, booking_id)
        await db.execute(
            update(Booking)
            .where(Booking.booking_id == booking_id)
            .values(status=BookingStatus.REJECTED)
        )
        db.add(BookingStatusLog(
            booking_id=booking_id,
            from_status=BookingStatus.PENDING.value,
            to_status=BookingStatus.REJECTED.value,
            changed_by_role=UserRole.GIVER.value,
            changed_by_id=giver_user.giver_id,
        ))
        await db.commit()
        return loaded

    monkeypatch.setattr(booking_router, "get_booking_or_404", load_then_reject_elsewhere)

    response = await client.put(
        f"/api/bookings/{booking.booking_id}/status",
        headers=auth_headers(giver_user, UserRole.GIVER),
        json={"status": "Accepted"},
    )
    assert response.status_code == 409

    status = await db.scalar(
        select(Booking.status)
        .where(Booking.booking_id == booking.booking_id)
        .execution_options(populate_existing=True)
    )
    assert status == BookingStatus.REJECTED
    logs = await db.scalar(
        select(func.count(BookingStatusLog.log_id)).where(BookingStatusLog.booking_id == booking.booking_id)
    )
    assert logs == 1


# ── Booking Retrieval ──────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_list_bookings_is_role_scoped(
    client: AsyncClient,
    db: AsyncSession,
    client_user: Client,
    other_client: Client,
    giver_user: ServiceGiver,
    admin_user,
    service_type: ServiceType,
):
    await make_booking(db, client_user, giver_user, service_type)
    await make_booking(db, other_client, giver_user, service_type, status=BookingStatus.ACCEPTED)

    mine = await client.get("/api/bookings", headers=auth_headers(client_user, UserRole.CLIENT))
    assert len(mine.json()) == 1

    assigned = await client.get("/api/bookings", headers=auth_headers(giver_user, UserRole.GIVER))
    assert len(assigned.json()) == 2

    everything = await client.get("/api/bookings", headers=auth_headers(admin_user, UserRole.ADMIN))
    assert len(everything.json()) == 2

    accepted = await client.get(
        "/api/bookings",
        params={"status": "Accepted"},
        headers=auth_headers(giver_user, UserRole.GIVER),
    )
    assert [b["status"] for b in accepted.json()] == ["Accepted"]


@pytest.mark.asyncio
async def test_list_bookings_invalid_status_filter(client: AsyncClient, client_user: Client):
    response = await client.get(
        "/api/bookings", params={"status": "Lost"}, headers=auth_headers(client_user, UserRole.CLIENT)
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_get_booking_details_access(
    client: AsyncClient,
    db: AsyncSession,
    client_user: Client,
    other_client: Client,
    giver_user: ServiceGiver,
    service_type: ServiceType,
):
    booking = await make_booking(db, client_user, giver_user, service_type)

    response = await client.get(
        f"/api/bookings/{booking.booking_id}", headers=auth_headers(client_user, UserRole.CLIENT)
    )
    assert response.status_code == 200
    assert response.json()["client_name"] == "Aline Uwase"

    response = await client.get(
        f"/api/bookings/{booking.booking_id}", headers=auth_headers(other_client, UserRole.CLIENT)
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_status_always_within_enum(
    client: AsyncClient,
    db: AsyncSession,
    client_user: Client,
    giver_user: ServiceGiver,
    service_type: ServiceType,
):
    booking = await make_booking(db, client_user, giver_user, service_type)
    headers = auth_headers(giver_user, UserRole.GIVER)
    for requested in ["Completed", "Cancelled", "Accepted", "Pending", "Rejected", "Completed"]:
        await client.put(
            f"/api/bookings/{booking.booking_id}/status", headers=headers, json={"status": requested}
        )

    await db.refresh(booking)
    assert booking.status in set(BookingStatus)
    assert booking.status == BookingStatus.COMPLETED
    assert await db.scalar(select(func.count(BookingStatusLog.log_id))) == 2
