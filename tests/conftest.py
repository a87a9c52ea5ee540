"""
Global pytest configuration and fixtures for Roadie Guard testing.
"""
import tempfile
from pathlib import Path
from typing import Any, Dict, List

import pytest
import pytest_asyncio

from roadie_guard.core.database import DatabaseManager, SQLitePersistenceGateway
from roadie_guard.models import ContactTier, EmergencyContact, LocationSample, NotifyVia
from roadie_guard.services.emergency import EmergencyEngine

from tests.mocks.gateway_mocks import (
    FakeDialGateway, FakeLocationProvider, FakeNotificationGateway, InMemoryPersistenceGateway
)
from tests.utils import TestDataHelper, fast_config


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_config() -> Dict[str, Any]:
    """Engine configuration with sub-second timers."""
    return fast_config()


@pytest.fixture
def contacts() -> List[EmergencyContact]:
    """Two primary and one secondary contact."""
    return [
        TestDataHelper.contact("alice", ContactTier.PRIMARY, priority=2),
        TestDataHelper.contact("bob", ContactTier.PRIMARY, priority=1,
                               notify_via=NotifyVia.BOTH, medical=True),
        TestDataHelper.contact("carol", ContactTier.SECONDARY, priority=1),
    ]


@pytest.fixture
def home_location() -> LocationSample:
    return TestDataHelper.sample(37.7749, -122.4194, timestamp_ms=1_000, accuracy=8.0)


@pytest.fixture
def notification_gateway() -> FakeNotificationGateway:
    return FakeNotificationGateway()


@pytest.fixture
def dial_gateway() -> FakeDialGateway:
    return FakeDialGateway()


@pytest.fixture
def location_provider(home_location) -> FakeLocationProvider:
    return FakeLocationProvider(home_location)


@pytest.fixture
def persistence() -> InMemoryPersistenceGateway:
    return InMemoryPersistenceGateway()


@pytest.fixture
def database():
    """In-memory SQLite database with the full schema."""
    db = DatabaseManager(":memory:")
    yield db
    db.close()


@pytest.fixture
def sqlite_gateway(database) -> SQLitePersistenceGateway:
    return SQLitePersistenceGateway(database)


@pytest_asyncio.fixture
async def engine(test_config, notification_gateway, location_provider, dial_gateway,
                 persistence, contacts):
    """Started engine wired to fake gateways."""
    engine = EmergencyEngine(
        test_config,
        notification_gateway,
        location_provider=location_provider,
        dial_gateway=dial_gateway,
        persistence=persistence,
        contacts=contacts
    )
    await engine.start()
    yield engine
    await engine.stop()
