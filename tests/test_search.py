"""
tests/test_search.py
Service types listing, service search filters, and the client dashboard.
"""

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import (
    BookingStatus,
    Client,
    GiverService,
    Payment,
    PaymentMethod,
    Profile,
    ServiceGiver,
    ServiceType,
    UserRole,
)
from tests.conftest import PASSWORD_HASH, auth_headers, make_booking


@pytest.mark.asyncio
async def test_service_types_lists_active_only(client: AsyncClient, db: AsyncSession, service_type):
    db.add(ServiceType(service_name="Retired Service", is_active=False))
    await db.commit()

    response = await client.get("/api/service-types")
    assert response.status_code == 200
    assert [s["service_name"] for s in response.json()] == ["Photography"]


@pytest.mark.asyncio
async def test_search_filters(
    client: AsyncClient,
    db: AsyncSession,
    client_user: Client,
    giver_user: ServiceGiver,
    service_type: ServiceType,
    giver_service: GiverService,
):
    # A second verified photographer in Huye, cheaper and lower rated
    rival = ServiceGiver(
        name="Patrick Niyonsaba",
        email="patrick@example.com",
        password_hash=PASSWORD_HASH,
        is_verified=True,
        rating_avg=3.5,
        rating_count=2,
    )
    db.add(rival)
    await db.flush()
    db.add(Profile(giver_id=rival.giver_id, display_name="Patrick N.", city="Huye", portfolio_links=[]))
    db.add(GiverService(giver_id=rival.giver_id, service_id=service_type.service_id, price_rwf=8000))

    giver_user.rating_avg = 4.8
    await db.commit()
    await make_booking(db, client_user, giver_user, service_type, status=BookingStatus.COMPLETED)

    response = await client.get("/api/services/search", params={"service_name": "photo"})
    results = response.json()
    assert [r["name"] for r in results] == ["Eric Habimana", "Patrick Niyonsaba"]
    assert results[0]["completed_bookings"] == 1
    assert results[0]["price_RWF"] == 20000

    response = await client.get("/api/services/search", params={"min_rating": 4})
    assert [r["name"] for r in response.json()] == ["Eric Habimana"]

    response = await client.get("/api/services/search", params={"min_price": 10000})
    assert [r["name"] for r in response.json()] == ["Eric Habimana"]

    response = await client.get("/api/services/search", params={"city": "huye"})
    assert [r["name"] for r in response.json()] == ["Patrick Niyonsaba"]


@pytest.mark.asyncio
async def test_search_hides_unverified_givers(
    client: AsyncClient, db: AsyncSession, other_giver: ServiceGiver, service_type: ServiceType
):
    db.add(GiverService(giver_id=other_giver.giver_id, service_id=service_type.service_id, price_rwf=5000))
    await db.commit()

    response = await client.get("/api/services/search")
    assert response.json() == []


# ── Client dashboard ───────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_client_dashboard(
    client: AsyncClient,
    db: AsyncSession,
    client_user: Client,
    giver_user: ServiceGiver,
    service_type: ServiceType,
):
    done = await make_booking(db, client_user, giver_user, service_type, status=BookingStatus.COMPLETED)
    await make_booking(db, client_user, giver_user, service_type)
    await make_booking(db, client_user, giver_user, service_type, status=BookingStatus.ACCEPTED)
    db.add(Payment(
        booking_id=done.booking_id,
        client_id=client_user.client_id,
        amount_rwf=20000,
        method=PaymentMethod.CARD,
        reference=f"SIM-{done.booking_id}-1111",
    ))
    await db.commit()

    response = await client.get("/api/client/dashboard", headers=auth_headers(client_user, UserRole.CLIENT))
    assert response.status_code == 200
    data = response.json()
    assert data["totalBookings"] == 3
    assert data["completedBookings"] == 1
    assert data["pendingBookings"] == 1
    assert data["totalSpent"] == 20000
    assert len(data["recentBookings"]) == 3


@pytest.mark.asyncio
async def test_client_dashboard_requires_client(client: AsyncClient, giver_user: ServiceGiver):
    response = await client.get("/api/client/dashboard", headers=auth_headers(giver_user, UserRole.GIVER))
    assert response.status_code == 403
