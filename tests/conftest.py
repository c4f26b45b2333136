"""
tests/conftest.py
Shared fixtures: in-memory SQLite database, fake Redis, an ASGI client wired
to both, and ready-made accounts for each role.
"""

import os

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("EVENTS_PUBLISH_ENABLED", "false")

from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Iterable

import fakeredis
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from config.database import Base, get_db
from config.policy import BookingPolicy, get_booking_policy
from config.redis_client import get_redis
from shared.models.models import (
    ApplicationStatus,
    AvailabilitySlot,
    ClientVerification,
    CompanionApplication,
    DayOfWeek,
    Role,
    RoleGrant,
    User,
    VerificationStatus,
)
from shared.utils.security import issue_token_for

COMPANION_SERVICES = ["City Tour", "Coffee Date", "Dinner Companion"]
# Wall clock for every engine and ledger under test; fixture bookings sit after it
NOW = datetime(2024, 6, 1, 8, 0)


def auth_headers(user: User) -> dict:
    """Bearer header carrying a token for the user's current active role."""
    token, _ = issue_token_for(user)
    return {"Authorization": f"Bearer {token}"}


# ── Infrastructure ────────────────────────────────────────────

@pytest_asyncio.fixture
async def db():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )
    async with session_factory() as session:
        yield session

    await engine.dispose()


@pytest_asyncio.fixture
async def redis():
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def policy() -> BookingPolicy:
    return BookingPolicy(lock_wait_seconds=0.5, clock=lambda: NOW)


@pytest_asyncio.fixture
async def client(db: AsyncSession, redis, policy: BookingPolicy):
    from main import app

    async def _get_test_db():
        try:
            yield db
            await db.commit()
        except Exception:
            # Roll back only real leftovers so fixture objects stay loaded
            if db.new or db.dirty or db.deleted:
                await db.rollback()
            raise

    app.dependency_overrides[get_db] = _get_test_db
    app.dependency_overrides[get_redis] = lambda: redis
    app.dependency_overrides[get_booking_policy] = lambda: policy

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def published_events(monkeypatch):
    """Capture outbound events instead of handing them to Celery."""
    sent = []

    def _capture(message: dict) -> bool:
        sent.append(message)
        return True

    monkeypatch.setattr("shared.utils.events.publish_event", _capture)
    return sent


# ── Builders ──────────────────────────────────────────────────

async def make_user(
    db: AsyncSession,
    email: str,
    roles: Iterable[Role] = (Role.CLIENT,),
    active_role: Role = Role.CLIENT,
    name: str = "Test User",
) -> User:
    user = User(
        email=email,
        name=name,
        active_role=active_role,
        is_email_verified=True,
        role_grants=[RoleGrant(role=r, is_active=True) for r in roles],
    )
    db.add(user)
    await db.commit()
    return user


async def verify_client(
    db: AsyncSession,
    user: User,
    status: VerificationStatus = VerificationStatus.APPROVED,
    **overrides,
) -> ClientVerification:
    fields = dict(
        address_line="221B Baker Street",
        city="London",
        state="Greater London",
        country="UK",
        postal_code="NW1 6XE",
    )
    fields.update(overrides)
    verification = ClientVerification(
        user_id=user.id,
        status=status,
        submitted_at=datetime.now(timezone.utc),
        verified_at=datetime.now(timezone.utc) if status == VerificationStatus.APPROVED else None,
        **fields,
    )
    db.add(verification)
    await db.commit()
    return verification


async def approve_companion(
    db: AsyncSession,
    user: User,
    services=COMPANION_SERVICES,
    hourly_rate: Decimal = Decimal("50.00"),
) -> CompanionApplication:
    application = CompanionApplication(
        user_id=user.id,
        date_of_birth=date(1995, 5, 17),
        government_id_number="ID-12345678",
        phone="+44 20 7946 0000",
        address_line="10 Downing Street",
        city="London",
        state="Greater London",
        country="UK",
        postal_code="SW1A 2AA",
        bio="Friendly and punctual.",
        services_offered=list(services),
        languages=["English"],
        hourly_rate=hourly_rate,
        status=ApplicationStatus.APPROVED,
        reviewed_at=datetime.now(timezone.utc),
    )
    db.add(application)
    await db.commit()
    return application


# ── Accounts ──────────────────────────────────────────────────

@pytest_asyncio.fixture
async def client_user(db: AsyncSession) -> User:
    """Client with an approved, address-complete verification."""
    user = await make_user(db, "client@example.com", name="Casey Client")
    await verify_client(db, user)
    return user


@pytest_asyncio.fixture
async def other_client(db: AsyncSession) -> User:
    user = await make_user(db, "other.client@example.com", name="Olive Other")
    await verify_client(db, user)
    return user


@pytest_asyncio.fixture
async def unverified_client(db: AsyncSession) -> User:
    return await make_user(db, "pending.client@example.com", name="Penny Pending")


@pytest_asyncio.fixture
async def companion_user(db: AsyncSession) -> User:
    """Approved companion acting as companion, who may also act as a client."""
    user = await make_user(
        db,
        "companion@example.com",
        roles=(Role.CLIENT, Role.COMPANION),
        active_role=Role.COMPANION,
        name="Charlie Companion",
    )
    await approve_companion(db, user)
    return user


@pytest_asyncio.fixture
async def admin_user(db: AsyncSession) -> User:
    return await make_user(
        db, "admin@example.com", roles=(Role.ADMIN,), active_role=Role.ADMIN, name="Ada Admin"
    )


@pytest_asyncio.fixture
async def slot(db: AsyncSession, companion_user: User) -> AvailabilitySlot:
    """Monday 09:00-17:00 offering dinner companionship."""
    slot = AvailabilitySlot(
        companion_id=companion_user.id,
        day_of_week=DayOfWeek.MONDAY,
        start_time=time(9, 0),
        end_time=time(17, 0),
        is_available=True,
        services=["Dinner Companion"],
    )
    db.add(slot)
    await db.commit()
    return slot
