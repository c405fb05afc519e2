import os

# Settings are read at import time; point them at a throwaway database
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test_booking_engine.db")


import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import booking_engine.models  # noqa: F401
from booking_engine.api.deps.scheduling import get_events, get_schedule_locks
from booking_engine.core.database import Base, get_db
from booking_engine.core.locks import ScheduleLockManager
from booking_engine.main import app
from booking_engine.services.events import InMemoryEventPublisher


@pytest.fixture
def database_url(tmp_path) -> str:
    """Per-test SQLite file unless TEST_DATABASE_URL points elsewhere."""
    return os.getenv(
        "TEST_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'booking_engine.db'}"
    )


@pytest.fixture
async def engine(database_url):
    engine = create_async_engine(database_url, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)  # Clean slate
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    """Create a fresh database session for each test."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def lock_manager() -> ScheduleLockManager:
    return ScheduleLockManager(timeout_seconds=5)


@pytest.fixture
def events() -> InMemoryEventPublisher:
    return InMemoryEventPublisher()


@pytest.fixture
async def client(db: AsyncSession, lock_manager, events):
    """HTTP client bound to the test database, lock manager and event sink."""

    async def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_schedule_locks] = lambda: lock_manager
    app.dependency_overrides[get_events] = lambda: events

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as client:
        yield client

    app.dependency_overrides.clear()


pytest_plugins = ["tests.fixtures.scheduling_fixtures"]
