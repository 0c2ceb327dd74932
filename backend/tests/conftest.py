"""
Test fixtures for parkwatch backend tests.
"""
from datetime import date
from typing import Callable, List, Optional
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from httpx import AsyncClient, ASGITransport

from parkwatch.api.deps import get_persistence
from parkwatch.database import Base, get_db
from parkwatch.main import app
from parkwatch.models.search import ScheduleFrequency
from parkwatch.schemas import Availability, DateRange, NotificationSettings, Search, SearchSchedule
from parkwatch.services import runtime
from parkwatch.services.execution_registry import ExecutionRegistry
from parkwatch.services.persistence import SqlPersistence
from parkwatch.services.rate_limiter import ConcurrencyLimiter, RateLimiter
from parkwatch.services.retry import RetryStrategy
from parkwatch.services.search_executor import SearchExecutor
import parkwatch.models  # noqa: F401


# One shared in-memory connection so every session sees the same tables
test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# Enable foreign key constraints for SQLite
@event.listens_for(test_engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


async def no_sleep(seconds: float) -> None:
    return None


def make_availability(**overrides) -> Availability:
    data = {
        "resort_id": 1,
        "resort_name": "Pobierowo",
        "accommodation_type_id": 1,
        "accommodation_type_name": "Domek",
        "date_from": "2024-06-01",
        "date_to": "2024-06-03",
        "nights": 2,
        "price_total": 800.0,
        "price_per_night": 400.0,
        "available": True,
        "link": "https://rezerwuj.holidaypark.pl/rezerwacja/pobierowo?date_from=2024-06-01",
    }
    data.update(overrides)
    return Availability(**data)


def make_search(**overrides) -> Search:
    data = {
        "name": "Summer",
        "date_ranges": [DateRange(date_from=date(2024, 6, 1), date_to=date(2024, 6, 3))],
        "stay_lengths": [2],
        "schedule": SearchSchedule(frequency=ScheduleFrequency.HOURLY),
        "notifications": NotificationSettings(email="user@example.com", only_changes=False),
    }
    data.update(overrides)
    return Search(**data)


class FakeBookingClient:
    """Records probes and answers them through a handler(check_in, check_out)."""

    def __init__(self, handler: Optional[Callable] = None):
        self.handler = handler or (lambda check_in, check_out: [])
        self.calls: List[tuple] = []

    async def check_availability(self, date_from, date_to, resort_ids=None, accommodation_type_ids=None):
        self.calls.append((date_from, date_to, resort_ids, accommodation_type_ids))
        return self.handler(date_from, date_to)

    async def close(self):
        pass


@pytest.fixture(scope="function")
def tables():
    """Create all tables before the test and drop them after."""
    Base.metadata.create_all(bind=test_engine)
    yield
    Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def db_session(tables):
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def persistence(tables):
    return SqlPersistence(TestSessionLocal)


@pytest.fixture
def booking_client():
    return FakeBookingClient()


@pytest.fixture
def notifier():
    mock = AsyncMock()
    mock.send_notification = AsyncMock(return_value=None)
    mock.send_error = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def instant_rate_limiter():
    return RateLimiter(min_delay_ms=0, max_delay_ms=0, jitter_enabled=False, sleep=no_sleep)


@pytest.fixture
def executor(persistence, booking_client, notifier, instant_rate_limiter):
    return SearchExecutor(
        persistence=persistence,
        booking_client=booking_client,
        notifier=notifier,
        rate_limiter=instant_rate_limiter,
        request_limiter=ConcurrencyLimiter(1, name="requests"),
        search_limiter=ConcurrencyLimiter(2, name="searches"),
        retry_strategy=RetryStrategy(sleep=no_sleep),
    )


@pytest.fixture(scope="function")
def override_get_db(db_session):
    """
    Override the get_db dependency to use the test database session.
    """
    def _override_get_db():
        try:
            yield db_session
        finally:
            pass

    return _override_get_db


@pytest.fixture
def registry(executor):
    return ExecutionRegistry(executor)


@pytest.fixture(scope="function")
async def client(override_get_db, persistence, executor, registry):
    """
    Async test client wired to the test database and a fake booking API.
    """
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_persistence] = lambda: persistence
    app.dependency_overrides[runtime.get_executor] = lambda: executor
    app.dependency_overrides[runtime.get_registry] = lambda: registry

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    # Clear overrides after test
    app.dependency_overrides.clear()
