import os
import tempfile
from datetime import datetime, timedelta, timezone
from decimal import Decimal

# Must be set before tourbook reads its settings
os.environ.setdefault("DB_URL", "sqlite://")
os.environ.setdefault("ENABLE_RATE_LIMITING", "false")
os.environ.setdefault("LOG_FILE", os.path.join(tempfile.gettempdir(), "tourbook-tests.log"))
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from tourbook.core import security
from tourbook.core.ratelimit import limiter
from tourbook.db import models  # noqa: F401
from tourbook.db.models import Booking, BookingStatus, PaymentStatus, ServiceProvider, Tour, User, UserType
from tourbook.db.session import db_manager
from tourbook.main import app

PASSWORD = "Password123"


@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory database wired into the global manager"""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    db_manager.engine = engine
    db_manager.async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    yield engine

    db_manager.engine = None
    db_manager.async_session = None
    await engine.dispose()


@pytest_asyncio.fixture
async def session(engine):
    async with db_manager.async_session() as session:
        yield session


@pytest_asyncio.fixture
async def client(engine):
    security.token_blacklist.clear()
    limiter.enabled = False
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture(scope="session")
def password_hash():
    return security.get_password_hash(PASSWORD)


async def make_user(session, email, user_type, password_hash, full_name="Test User"):
    user = User(email=email, full_name=full_name, user_type=user_type, password_hash=password_hash)
    session.add(user)
    await session.commit()
    return user


@pytest_asyncio.fixture
async def tourist(session, password_hash):
    return await make_user(session, "tourist@example.com", UserType.TOURIST, password_hash, "Tina Tourist")


@pytest_asyncio.fixture
async def other_tourist(session, password_hash):
    return await make_user(session, "other@example.com", UserType.TOURIST, password_hash, "Oscar Other")


@pytest_asyncio.fixture
async def admin(session, password_hash):
    return await make_user(session, "admin@example.com", UserType.ADMIN, password_hash, "Ada Admin")


@pytest_asyncio.fixture
async def provider_user(session, password_hash):
    return await make_user(session, "guide@example.com", UserType.PROVIDER, password_hash, "Gus Guide")


@pytest_asyncio.fixture
async def provider(session, provider_user):
    provider = ServiceProvider(
        user_id=provider_user.id,
        business_name="Hill Country Tours",
        description="Guided tours around Kandy",
        city="Kandy",
    )
    session.add(provider)
    await session.commit()
    return provider


def make_tour(provider=None, **overrides) -> Tour:
    values = {
        "provider_id": provider.id if provider else None,
        "title": "Temple of the Tooth",
        "description": "A guided walk through the sacred city",
        "price": Decimal("20000.00"),
        "duration": 3,
        "max_participants": 4,
        "category": "cultural",
        "location": "Kandy",
    }
    values.update(overrides)
    return Tour(**values)


@pytest_asyncio.fixture
async def tour(session, provider):
    tour = make_tour(provider)
    session.add(tour)
    await session.commit()
    return tour


def auth_headers(user) -> dict:
    token = security.create_access_token({"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}


def future_day(days: int = 7) -> datetime:
    """Noon UTC ``days`` from now, clear of any day boundary"""
    moment = datetime.now(timezone.utc) + timedelta(days=days)
    return moment.replace(hour=12, minute=0, second=0, microsecond=0)


async def add_booking(session, user, tour, participants=1, booking_date=None,
                      status=BookingStatus.CONFIRMED, payment_status=PaymentStatus.PENDING, **extra) -> Booking:
    booking = Booking(
        user_id=user.id,
        tour_id=tour.id,
        participants=participants,
        booking_date=booking_date or future_day(),
        total_amount=tour.price * participants,
        status=status,
        payment_status=payment_status,
        **extra,
    )
    session.add(booking)
    await session.commit()
    return booking
