import os
import tempfile
import uuid
from datetime import date, timedelta

_tmp = tempfile.mkdtemp(prefix="subhakary-tests-")

os.environ["BOOKING_DB"] = f"sqlite+aiosqlite:///{_tmp}/booking.db"
os.environ["AUTH_DB"] = f"sqlite+aiosqlite:///{_tmp}/auth.db"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["JWT_ALGORITHM"] = "HS256"
os.environ["CRON_SECRET_TOKEN"] = "test-cron-secret"
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "rzp-test-secret"
os.environ["AUTO_COMPLETE_INTERVAL_SECONDS"] = "0"
os.environ["RATE_LIMIT_PER_MINUTE"] = "1000"
os.environ.pop("RABBIT_URL", None)
os.environ.pop("RESEND_API_KEY", None)

import fakeredis  # noqa: E402
import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from jose import jwt  # noqa: E402

from shared import redis_client as redis_store  # noqa: E402


def make_token(sub: str, roles: list[str]) -> str:
    return jwt.encode({"sub": sub, "roles": roles}, os.environ["JWT_SECRET"], algorithm="HS256")


def auth_headers(sub: str, *roles: str) -> dict:
    return {"Authorization": f"Bearer {make_token(sub, list(roles) or ['user'])}"}


def future_day(days: int = 10) -> date:
    return date.today() + timedelta(days=days)


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    fake = fakeredis.aioredis.FakeRedis(decode_responses=True)
    monkeypatch.setattr(redis_store, "redis_client", fake)
    return fake


@pytest.fixture
async def booking_db():
    from booking_service import models  # noqa: F401
    from booking_service.db import Base, engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def auth_db():
    from auth_service import models  # noqa: F401
    from auth_service.db import Base, engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def booking_client(booking_db):
    from booking_service.main import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


@pytest.fixture
async def auth_client(auth_db):
    from auth_service.main import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


@pytest.fixture
def make_booking(booking_db):
    """Insert a booking row directly, bypassing the API checks."""
    from booking_service.db import SessionLocal
    from booking_service.models import Booking

    async def _make(**overrides):
        values = {
            "booking_id": str(uuid.uuid4()),
            "user_id": "customer@example.com",
            "provider_id": "provider@example.com",
            "service_date": future_day(),
            "status": "pending",
            "completion_confirmed_by_provider": False,
            "provider_payment_requested": False,
        }
        values.update(overrides)
        async with SessionLocal() as s:
            booking = Booking(**values)
            s.add(booking)
            await s.commit()
            return booking

    return _make


@pytest.fixture
def load_booking(booking_db):
    from sqlalchemy import select

    from booking_service.db import SessionLocal
    from booking_service.models import Booking

    async def _load(booking_id: str):
        async with SessionLocal() as s:
            res = await s.execute(select(Booking).where(Booking.booking_id == booking_id))
            return res.scalar_one()

    return _load
