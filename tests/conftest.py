"""Shared test fixtures and configuration."""

import os
import pytest
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List

# Set up test environment variables before importing modules
os.environ.setdefault("API_KEY", "test_api_key_12345")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SYNC_RATE_LIMIT", "1000/minute")

from settlement_sync.client import RetryingApiClient
from settlement_sync.connectors import SimulatorConnector
from settlement_sync.database import (
    Base,
    CollectionRecordRepository,
    RegionDatabaseRegistry,
    create_async_engine,
    get_async_session_factory,
)
from settlement_sync.models import DateRange
from settlement_sync.sync import MultiRegionCoordinator, RegionSyncJob
from settlement_sync.token_session import AuthSessionManager

MEMORY_URL = "sqlite+aiosqlite:///:memory:"
TODAY = date(2025, 1, 10)


class SleepRecorder:
    """Stands in for asyncio.sleep and records the requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


async def seed_records(registry: RegionDatabaseRegistry, region_code: str, transaction_ids: Iterable[str]) -> Dict[str, str]:
    """Create one collection record per transaction id; returns tx id -> record id."""
    created = {}
    async with registry.session(region_code) as session:
        repo = CollectionRecordRepository(session)
        for tx_id in transaction_ids:
            record = await repo.create(tx_id, amount_paid=Decimal("100.00"))
            created[tx_id] = record.id
    return created


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def week_range() -> DateRange:
    """First week of January 2025."""
    return DateRange(date_from=date(2025, 1, 1), date_to=date(2025, 1, 7))


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


# Database fixtures

@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite database for testing."""
    engine = create_async_engine(database_url=MEMORY_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(db_engine):
    """Create a database session for testing."""
    session_factory = get_async_session_factory(db_engine)
    async with session_factory() as session:
        yield session


@pytest.fixture
async def registry():
    """Two regions, each with its own in-memory datastore."""
    databases = RegionDatabaseRegistry({"A": MEMORY_URL, "B": MEMORY_URL}, create_tables=True)
    yield databases
    await databases.shutdown()


# Provider fixtures

@pytest.fixture
def simulator():
    return SimulatorConnector()


@pytest.fixture
def sessions(simulator):
    return AuthSessionManager(simulator, "sync_user", "sync_password")


@pytest.fixture
def client(simulator, sessions, sleep_recorder):
    return RetryingApiClient(
        simulator,
        sessions,
        max_retries=3,
        base_delay=2.0,
        today=lambda: TODAY,
        sleep=sleep_recorder,
    )


@pytest.fixture
def job(client, registry):
    return RegionSyncJob(client, registry, today=lambda: TODAY)


@pytest.fixture
async def coordinator(job):
    coord = MultiRegionCoordinator(
        job,
        pool_size=5,
        per_region_timeout=5,
        regions=["A", "B"],
        today=lambda: TODAY,
    )
    yield coord
    await coord.close()
