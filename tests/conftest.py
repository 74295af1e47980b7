"""
Pytest configuration and fixtures for dailybrief tests.

Provides:
- Async test database with SQLite
- Test client for API testing
- Factory fixtures for creating test data
"""

import uuid
from collections.abc import AsyncGenerator
from datetime import UTC, date, datetime

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import StaticPool
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from dailybrief.config import Settings, get_settings
from dailybrief.core.database import get_session_factory
from dailybrief.main import app
from dailybrief.models import Base
from dailybrief.models.calendar_settings import CalendarSettings
from dailybrief.models.context_snippet import ContextSnippet
from dailybrief.models.inbound_email import InboundEmail
from dailybrief.models.user_settings import UserSettings
from dailybrief.schemas.schedule import ScheduleRecord

# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

CRON_SECRET = "test-cron-secret"


# Override settings for testing
class TestSettings(Settings):
    database_url: str = TEST_DATABASE_URL
    debug: bool = True
    openai_api_key: str = "test-key"
    resend_api_key: str = "test-key"
    cron_secret_token: str = CRON_SECRET
    cron_rate_limit: str = "5/minute"
    base_url: str = "http://localhost:8000"


@pytest_asyncio.fixture
async def db_engine():
    """Create async test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def session_maker(db_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine, as the schedule store uses it."""
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests."""
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def client(session_maker) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client with database and settings overrides."""
    from dailybrief.core.rate_limit import limiter

    def override_get_session_factory():
        return session_maker

    def override_get_settings():
        return TestSettings()

    app.dependency_overrides[get_session_factory] = override_get_session_factory
    app.dependency_overrides[get_settings] = override_get_settings

    # Reset rate limiter storage before each test
    limiter.reset()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ============================================================================
# Factory Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def user_settings_factory(session_maker):
    """Factory for creating committed user_settings rows."""

    async def _create(
        delivery_time_utc: str | None = "08:00",
        weekdays: list[int] | None = None,
        delivery_email: str = "me@example.com",
        timezone: str = "UTC",
        last_briefing_sent_date: date | None = None,
        account_email: str = "owner@example.com",
        inbound_email_hash: str | None = None,
    ) -> UserSettings:
        row = UserSettings(
            user_id=uuid.uuid4(),
            account_email=account_email,
            delivery_time=delivery_time_utc or "08:00",
            delivery_time_utc=delivery_time_utc,
            weekdays=[1, 2, 3, 4, 5] if weekdays is None else weekdays,
            weekdays_local=[1, 2, 3, 4, 5] if weekdays is None else weekdays,
            delivery_email=delivery_email,
            timezone=timezone,
            last_briefing_sent_date=last_briefing_sent_date,
            inbound_email_hash=inbound_email_hash or uuid.uuid4().hex[:10],
        )
        async with session_maker() as session:
            session.add(row)
            await session.commit()
        return row

    return _create


@pytest_asyncio.fixture
async def briefing_data_factory(session_maker):
    """Factory for attaching calendar settings, notes and emails to a user."""

    async def _create(
        user_id: uuid.UUID,
        calendars: list[str] | None = None,
        days_in_advance: int = 7,
        notes: list[tuple[str, bool]] | None = None,
        emails: list[dict] | None = None,
    ) -> None:
        async with session_maker() as session:
            if calendars is not None:
                session.add(
                    CalendarSettings(
                        user_id=user_id,
                        selected_calendars=calendars,
                        days_in_advance=days_in_advance,
                    )
                )
            for content, active in notes or []:
                session.add(ContextSnippet(user_id=user_id, content=content, active=active))
            for data in emails or []:
                session.add(InboundEmail(user_id=user_id, **data))
            await session.commit()

    return _create


# ============================================================================
# In-Memory Test Helpers (no DB)
# ============================================================================


@pytest.fixture
def make_record():
    """
    Factory for creating in-memory ScheduleRecord objects (no DB).

    Defaults describe a weekday 08:00 UTC schedule that has never been sent.
    """

    def _make(
        delivery_time_utc: str | None = "08:00",
        weekdays: set[int] | None = None,
        recipient_address: str = "me@example.com",
        last_briefing_sent_date: date | None = None,
        timezone: str = "UTC",
        user_id: uuid.UUID | None = None,
    ) -> ScheduleRecord:
        return ScheduleRecord(
            user_id=user_id or uuid.uuid4(),
            enabled_weekdays={1, 2, 3, 4, 5} if weekdays is None else weekdays,
            delivery_time_local=delivery_time_utc or "08:00",
            delivery_time_utc=delivery_time_utc,
            timezone=timezone,
            recipient_address=recipient_address,
            last_briefing_sent_date=last_briefing_sent_date,
            account_email="owner@example.com",
            inbound_email_hash="abc123defg",
        )

    return _make


@pytest.fixture
def tuesday_morning() -> datetime:
    """Tuesday 2026-10-20 08:03 UTC."""
    return datetime(2026, 10, 20, 8, 3, tzinfo=UTC)
