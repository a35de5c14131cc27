"""
Pytest configuration and shared fixtures

Fun fact: The name "conftest" comes from pytest's configuration testing
framework. Files named conftest.py are automatically discovered and their
fixtures are available to all tests in the same directory and subdirectories!
"""

import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

import pytest

from medequip.equipment import InMemoryEquipmentDirectory
from medequip.kernel.event_store import SQLiteEventStore
from medequip.kernel.policy import WorkflowPolicy
from medequip.kernel.time import TestTimeProvider
from medequip.marketplace import Marketplace
from tests.helpers import World, build_world


@pytest.fixture
def temp_db() -> Iterator[Path]:
    """Provide a temporary database file that's cleaned up after test"""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)

    yield db_path

    # WAL mode leaves sidecar files next to the database
    for path in (db_path, Path(f"{db_path}-wal"), Path(f"{db_path}-shm")):
        if path.exists():
            path.unlink()


@pytest.fixture
def event_store(temp_db: Path) -> SQLiteEventStore:
    """Provide a fresh event store for each test"""
    return SQLiteEventStore(temp_db)


@pytest.fixture
def test_time() -> TestTimeProvider:
    """
    Provide a controllable time provider for deterministic tests

    Default time: 2025-01-15 12:00:00 UTC, a Wednesday in the middle of
    January, so six-month analytics windows reach back into 2024.
    """
    return TestTimeProvider(datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def policy() -> WorkflowPolicy:
    """Default workflow policy (7-day bottlenecks, 10-char decline reasons)"""
    return WorkflowPolicy()


@pytest.fixture
def equipment() -> InMemoryEquipmentDirectory:
    """Empty equipment directory; the world fixture registers hospital devices"""
    return InMemoryEquipmentDirectory()


@pytest.fixture
def marketplace(
    temp_db: Path,
    policy: WorkflowPolicy,
    test_time: TestTimeProvider,
    equipment: InMemoryEquipmentDirectory,
) -> Marketplace:
    """Marketplace on a fresh database with frozen time"""
    return Marketplace(temp_db, policy=policy, time_provider=test_time, equipment=equipment)


@pytest.fixture
def world(marketplace: Marketplace, equipment: InMemoryEquipmentDirectory) -> World:
    """
    Seeded marketplace

    Two hospitals and two verified providers, each organization with an
    owner; the first hospital also has a staff member who files requests,
    and the platform has an admin and a support user.
    """
    return build_world(marketplace, equipment)
