"""Shared test fixtures and configuration."""

import os
import pytest
from unittest.mock import patch

# Set up test environment variables before importing modules
os.environ.setdefault("STRIPE_API_KEY", "sk_test_dummy_key_for_testing")
os.environ.setdefault("COLUMN_API_KEY", "column_test_key")
os.environ.setdefault("INCREASE_API_KEY", "increase_test_key")
os.environ.setdefault("API_KEY", "test_api_key_12345")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from psp_sync import services
from psp_sync.connectors import SimulatorPageSource


@pytest.fixture(autouse=True)
def reset_lineage_locks():
    """Locks bind to an event loop; every test gets its own."""
    services._lineage_locks.clear()
    yield
    services._lineage_locks.clear()


@pytest.fixture
def mock_api_key():
    """Set up mock API key for authentication."""
    with patch.dict(os.environ, {"API_KEY": "test_api_key_12345"}):
        yield "test_api_key_12345"


@pytest.fixture
def auth_headers(mock_api_key):
    """Return headers with authentication."""
    return {"Authorization": f"Bearer {mock_api_key}"}


@pytest.fixture
def simulator():
    """Empty simulated upstream."""
    return SimulatorPageSource()


@pytest.fixture
def history_25(simulator):
    """Simulated upstream holding sim_1 (oldest) through sim_25 (newest)."""
    simulator.add_payments(25)
    return simulator


# Database fixtures
@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite database for testing."""
    from psp_sync.database import Base, create_async_engine

    engine = create_async_engine(
        database_url="sqlite+aiosqlite:///:memory:",
        echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(db_engine):
    """Create a database session for testing."""
    from psp_sync.database import get_async_session_factory

    session_factory = get_async_session_factory(db_engine)
    async with session_factory() as session:
        yield session
