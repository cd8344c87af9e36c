from datetime import date, datetime, timedelta, timezone

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from healthtargets.core.database import Base, get_db_session
from healthtargets.core.auth import create_access_token
from healthtargets.core.clock import get_clock
from healthtargets.models.user import ActivityLevel, Gender, PrimaryGoal, User, UserProfile
from healthtargets.main import app
from healthtargets.services.inputs import ProfileInputsProvider
from healthtargets.services.metrics import MetricsComputer

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# One shared connection so every session sees the same in-memory database
test_engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)
TestSessionLocal = async_sessionmaker(test_engine, expire_on_commit=False, class_=AsyncSession)

# A Monday, with a fractional second past .5 so truncation vs rounding matters
NOW = datetime(2026, 10, 19, 8, 30, 15, 678000, tzinfo=timezone.utc)

# 82.5 kg / 175 cm / 35 y male, moderately active, losing weight to 75 kg
PROFILE_FIELDS = dict(
    date_of_birth=date(1991, 3, 2),
    gender=Gender.MALE,
    weight=82.5,
    height=175.0,
    primary_goal=PrimaryGoal.LOSE_WEIGHT,
    activity_level=ActivityLevel.MODERATELY_ACTIVE,
    target_weight=75.0,
)


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True)
async def _setup_db():
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture()
def clock() -> FrozenClock:
    return FrozenClock(NOW)


@pytest.fixture(autouse=True)
async def _override_deps(clock: FrozenClock):
    async def _get_test_session():
        async with TestSessionLocal() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = _get_test_session
    app.dependency_overrides[get_clock] = lambda: clock
    yield
    app.dependency_overrides.clear()


@pytest.fixture()
def session_factory() -> async_sessionmaker[AsyncSession]:
    return TestSessionLocal


@pytest.fixture()
async def db_session():
    async with TestSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()


@pytest.fixture()
async def async_client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def create_user(
    email: str,
    profile: dict | None = None,
    onboarded: bool = True,
    is_active: bool = True,
) -> User:
    async with TestSessionLocal() as session:
        user = User(email=email, onboarding_completed=onboarded, is_active=is_active)
        session.add(user)
        await session.flush()
        if profile is not None:
            session.add(UserProfile(user_id=user.id, **profile))
        await session.commit()
        return user


async def compute_metrics(user_id: int, clock, force_recompute: bool = False):
    async with TestSessionLocal() as session:
        inputs = await ProfileInputsProvider(session, clock).get_inputs(user_id)
        record = await MetricsComputer(session, clock).compute_and_store(
            user_id, inputs, force_recompute=force_recompute
        )
        await session.commit()
        return record


def auth_for(user: User) -> dict:
    token = create_access_token(user.id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
async def test_user() -> User:
    return await create_user("testuser@example.com", profile=PROFILE_FIELDS)


@pytest.fixture()
async def auth_header(test_user: User) -> dict:
    return auth_for(test_user)
