# tests/conftest.py
import os

# The engine in app.database is built at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SYNC_SCHEDULER_ENABLED", "false")

import pytest
from httpx import ASGITransport, AsyncClient

from app import models  # noqa: F401
from app.core.config import Settings
from app.core.security import get_current_username
from app.database import Base, build_engine, build_sessionmaker
from app.dependencies import get_db
from app.services.registry import build_registry
from tests.mocks.factories import create_tenant
from tests.mocks.fake_store import COMPANY_ID, FakeWooStore


@pytest.fixture
def settings():
    """Provide test settings"""
    return Settings(
        DATABASE_URL="sqlite+aiosqlite://",
        SYNC_SCHEDULER_ENABLED=False,
        IMPORT_PAGE_DELAY_SECONDS=0,
        REMOTE_RETRY_BASE_DELAY=0,
        IMPORT_BATCH_SIZE=2,
        POLL_PAGE_SIZE=2,
        ORDER_NUMBER_PREFIX="EXT",
        PUBLIC_BASE_URL="https://sync.example.com",
    )


@pytest.fixture(scope="function")
async def test_engine(tmp_path):
    """File-backed SQLite so every session sees the same data (function-scoped)."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path}/test.db")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return build_sessionmaker(test_engine)


@pytest.fixture
async def db_session(session_factory):
    """Create a fresh database session for each test."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_store():
    return FakeWooStore()


@pytest.fixture
def client_factory(fake_store):
    return lambda sync_settings: fake_store


@pytest.fixture
async def tenant(db_session):
    return await create_tenant(db_session)


@pytest.fixture
async def registry(settings, session_factory, client_factory):
    registry = build_registry(settings, session_factory=session_factory, client_factory=client_factory, page_delay=0)
    yield registry
    await registry.shutdown()


@pytest.fixture
async def api_client(registry, session_factory):
    """HTTP client against the app with the test database, registry and an authenticated user."""
    from app.main import app

    async def _get_test_db():
        async with session_factory() as session:
            yield session

    app.state.registry = registry
    app.dependency_overrides[get_db] = _get_test_db
    app.dependency_overrides[get_current_username] = lambda: "tester"

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
    app.state.registry = None


@pytest.fixture
def company_headers():
    return {"X-Company-Id": COMPANY_ID}
