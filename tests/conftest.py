"""Pytest configuration and shared fixtures for all tests."""

import os

# Keep host configuration out of the tests
for _name in list(os.environ):
    if _name.startswith("TRACKER_") or _name in (
        "DB_PASSWORD", "RABBITMQ_URL", "BROKER_URL", "POINTS_RATE",
    ):
        del os.environ[_name]

import pytest

from tests.helpers import TOKEN_ADDRESS, FakeChainClient, LogFactory, RecordingBus
from tracker.config.database import create_engine, create_session_maker
from tracker.config.settings import ChainSettings, DatabaseSettings, PointsSettings
from tracker.services.ledger import Ledger


@pytest.fixture
def chain_settings():
    """Chain settings of the test network."""
    return ChainSettings(
        name="testnet",
        rpc_url="http://localhost:8545",
        chain_id=1337,
        contract_address=TOKEN_ADDRESS,
        start_block=1,
        poll_interval=0.01,
    )


@pytest.fixture
def points_settings():
    """Default points settings: rate 0.05, 60-minute interval."""
    return PointsSettings()


@pytest.fixture
def database_settings(tmp_path):
    """SQLite database in the test's temp directory."""
    return DatabaseSettings(url=f"sqlite+aiosqlite:///{tmp_path / 'tracker.db'}")


@pytest.fixture
async def ledger(database_settings):
    """Ledger over a fresh SQLite schema."""
    engine = create_engine(database_settings, null_pool=True)
    ledger = Ledger(create_session_maker(engine))
    await ledger.create_schema()
    yield ledger
    await engine.dispose()


@pytest.fixture
def logs():
    """Raw log builder."""
    return LogFactory()


@pytest.fixture
def fake_client():
    """Fake RPC client."""
    return FakeChainClient()


@pytest.fixture
def bus():
    """Recording task bus."""
    return RecordingBus()
