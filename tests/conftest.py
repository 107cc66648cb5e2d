"""
tests/conftest.py
Shared fixtures: in-memory SQLite database, in-memory Redis stand-in,
HTTP client bound to the ASGI app, and seeded accounts for each role.
"""

import os

# Must be set before the app (and its settings) are imported
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret-key"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["PAYMENT_SIMULATION_DELAY_SECONDS"] = "0"
os.environ["APP_ENV"] = "test"

from datetime import date
from typing import Optional

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import AsyncSessionLocal, Base, engine
from config.redis_client import get_redis
from main import app
from shared.models.models import (
    Admin,
    Booking,
    BookingStatus,
    Client,
    GiverService,
    Profile,
    ServiceGiver,
    ServiceType,
    UserRole,
)
from shared.utils.security import create_access_token, hash_password

PASSWORD = "correct-horse-battery"
PASSWORD_HASH = hash_password(PASSWORD)


class FakeRedis:
    """The handful of redis.asyncio commands the app uses, backed by a dict. TTLs are ignored."""

    def __init__(self):
        self.store: dict = {}

    async def setex(self, key, ttl, value):
        self.store[key] = value
        return True

    async def get(self, key):
        return self.store.get(key)

    async def exists(self, *keys):
        return sum(1 for key in keys if key in self.store)

    async def incr(self, key):
        self.store[key] = int(self.store.get(key, 0)) + 1
        return self.store[key]

    async def expire(self, key, ttl):
        return key in self.store

    async def delete(self, *keys):
        return sum(1 for key in keys if self.store.pop(key, None) is not None)

    async def ping(self):
        return True


def auth_headers(account, role: UserRole) -> dict:
    token, _ = create_access_token(account.id, role.value, account.email)
    return {"Authorization": f"Bearer {token}"}


async def make_booking(
    db: AsyncSession,
    client: Client,
    giver: ServiceGiver,
    service: ServiceType,
    status: BookingStatus = BookingStatus.PENDING,
    is_paid: bool = False,
    total_price_rwf: int = 20000,
    start: Optional[date] = None,
) -> Booking:
    booking = Booking(
        client_id=client.client_id,
        giver_id=giver.giver_id,
        service_id=service.service_id,
        start_date=start or date(2025, 1, 10),
        end_date=start or date(2025, 1, 10),
        total_price_rwf=total_price_rwf,
        status=status,
        is_paid=is_paid,
    )
    db.add(booking)
    await db.commit()
    return booking


# ── Infrastructure ─────────────────────────────────────────────

@pytest_asyncio.fixture
async def db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def fake_redis():
    return FakeRedis()


@pytest_asyncio.fixture
async def client(db, fake_redis):
    app.dependency_overrides[get_redis] = lambda: fake_redis
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


# ── Accounts & catalogue ───────────────────────────────────────

@pytest_asyncio.fixture
async def client_user(db):
    account = Client(
        name="Aline Uwase",
        email="aline@example.com",
        phone="+250788000001",
        password_hash=PASSWORD_HASH,
    )
    db.add(account)
    await db.commit()
    return account


@pytest_asyncio.fixture
async def other_client(db):
    account = Client(name="Jean Mugisha", email="jean@example.com", password_hash=PASSWORD_HASH)
    db.add(account)
    await db.commit()
    return account


@pytest_asyncio.fixture
async def giver_user(db):
    giver = ServiceGiver(
        name="Eric Habimana",
        email="eric@example.com",
        phone="+250788000002",
        password_hash=PASSWORD_HASH,
        is_verified=True,
    )
    db.add(giver)
    await db.flush()
    db.add(Profile(
        giver_id=giver.giver_id,
        display_name="Eric Shots",
        bio="Wedding and portrait photographer",
        city="Kigali",
        portfolio_links=["https://example.com/eric/portfolio"],
    ))
    await db.commit()
    return giver


@pytest_asyncio.fixture
async def other_giver(db):
    giver = ServiceGiver(
        name="Diane Ingabire",
        email="diane@example.com",
        password_hash=PASSWORD_HASH,
        is_verified=False,
    )
    db.add(giver)
    await db.commit()
    return giver


@pytest_asyncio.fixture
async def admin_user(db):
    admin = Admin(name="Platform Admin", email="admin@mediahub.rw", password_hash=PASSWORD_HASH)
    db.add(admin)
    await db.commit()
    return admin


@pytest_asyncio.fixture
async def service_type(db):
    service = ServiceType(service_name="Photography", description="Event and portrait photography")
    db.add(service)
    await db.commit()
    return service


@pytest_asyncio.fixture
async def giver_service(db, giver_user, service_type):
    offering = GiverService(
        giver_id=giver_user.giver_id,
        service_id=service_type.service_id,
        price_rwf=20000,
    )
    db.add(offering)
    await db.commit()
    return offering
