import os

# settings are read at import time, so the test environment goes in first
os.environ["ENV"] = "dev"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["PASSWORD_ENCRYPT_KEY"] = "test-encrypt-key"
os.environ["OTP_HASH_SECRET"] = "test-otp-secret"
os.environ["IDENTITY_TX_ISOLATION"] = "SERIALIZABLE"
os.environ["OUTBOX_DISPATCHER_ENABLED"] = "false"
os.environ["OTP_LENGTH"] = "6"

import fakeredis
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from storefront.auth.services import AuthService
from storefront.db.roles_seed import seed_roles
from storefront.otp.constants import NotificationChannel
from storefront.otp.models import RateLimitPolicy
from storefront.otp.service import OtpService
from storefront.otp.store import RedisOtpStore
from tests.helpers import ENCRYPT_KEY, FakeClock, RecordingSender


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def redis():
    client = fakeredis.FakeAsyncRedis()
    await client.flushall()
    try:
        yield client
    finally:
        await client.flushall()
        await client.aclose()


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        await seed_roles(session)
    return factory


@pytest.fixture
def otp_service(redis, clock):
    return OtpService(
        RedisOtpStore(redis),
        hash_secret="test-otp-secret",
        code_length=6,
        expiration_minutes=5,
        max_attempts=3,
        rate_limit=RateLimitPolicy.from_minutes(max_requests=3, window_minutes=5),
        clock=clock,
    )


@pytest.fixture
def senders():
    return {ch.value: RecordingSender(ch.value) for ch in NotificationChannel}


@pytest.fixture
def sender_factory(senders):
    def factory(channel):
        return senders[NotificationChannel(channel).value]
    return factory


@pytest_asyncio.fixture
async def auth_service(otp_service, session_factory, sender_factory):
    service = AuthService(
        otp_service,
        session_factory,
        sender_factory=sender_factory,
        encrypt_key=ENCRYPT_KEY,
        default_role="customer",
        tx_timeout=5.0,
    )
    yield service
    await service.wait_for_deliveries()
