"""Test configuration and fixtures."""

import pytest
import pytest_asyncio

from fakes import RecordingSink, fake_registry
from vigil.common.config import DEFAULT_CACHE_TTLS, DEFAULT_RETRY_CONFIG, Settings
from vigil.core.engine import Orchestrator
from vigil.database.db import Database


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at a temporary database, with no batch pauses."""
    return Settings(
        database=str(tmp_path / "vigil.sqlite3"),
        batch_chunk_delay=0.0,
        cache_ttls=dict(DEFAULT_CACHE_TTLS),
        default_retry=dict(DEFAULT_RETRY_CONFIG),
    )


@pytest_asyncio.fixture
async def test_db(settings):
    """Provide a clean, migrated database for each test."""
    db = Database(settings.database)
    await db.initialize()
    yield db


@pytest.fixture
def runners():
    """Registry of fake runners, one per task type."""
    return fake_registry()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest_asyncio.fixture
async def engine(test_db, settings, runners, sink):
    """A started orchestrator backed by fake runners."""
    registry, _ = runners
    orchestrator = Orchestrator(db=test_db, settings=settings, registry=registry, notifier=sink)
    await orchestrator.start()
    yield orchestrator
    await orchestrator.shutdown(timeout=5)


@pytest.fixture
def fake(runners):
    """Fake runner lookup by task type."""
    return runners[1]


@pytest.fixture
def make_task(engine):
    """Create a task with sensible defaults for its type."""
    defaults = {
        "security-scan": {"urls": ["https://example.com"]},
        "price-alert": {"token_mint": "LYNmint111", "price_threshold": {"above": 1.0}},
        "wallet-monitor": {"wallet_address": "Wallet1111111111111111111111111111"},
    }

    async def _make(task_type="security-scan", **fields):
        task = {
            "user_id": "alice",
            "name": f"{task_type} task",
            "type": task_type,
            "frequency": "every 5 minutes",
            "config": defaults.get(task_type, {}),
        }
        task.update(fields)
        return await engine.create_task(task)

    return _make
