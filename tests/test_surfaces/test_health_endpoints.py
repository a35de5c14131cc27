"""
Tests for the health server

Liveness, readiness and detailed health through Flask's test client.
The detailed view adds the workflow counters when a Marketplace is attached.
"""

from pathlib import Path

import pytest

from medequip import health_server
from medequip.health_server import app, initialize_health_server
from medequip.marketplace import Marketplace
from tests.helpers import World


@pytest.fixture
def client():
    """Flask test client"""
    app.config["TESTING"] = True
    with app.test_client() as client:
        yield client


@pytest.fixture(autouse=True)
def reset_server_state():
    """The server keeps module-level state; put it back after each test"""
    yield
    health_server._db_path = None
    health_server._market = None


def test_liveness_always_alive(client) -> None:
    response = client.get("/health/live")

    assert response.status_code == 200
    assert response.get_json() == {"status": "alive", "service": "medequip"}


def test_readiness_without_initialisation(client) -> None:
    response = client.get("/health/ready")

    assert response.status_code == 503
    assert response.get_json()["reason"] == "database_path_not_initialized"


def test_readiness_missing_database(client, tmp_path: Path) -> None:
    initialize_health_server(tmp_path / "absent.db")

    response = client.get("/health/ready")

    assert response.status_code == 503
    assert response.get_json()["reason"] == "database_file_not_found"


def test_readiness_counts_events(client, temp_db: Path, world: World) -> None:
    initialize_health_server(temp_db)

    response = client.get("/health/ready")

    data = response.get_json()
    assert response.status_code == 200
    assert data["status"] == "ready"
    assert data["event_count"] > 0


def test_detailed_health_degraded_without_database(client) -> None:
    response = client.get("/health")

    assert response.status_code == 503
    assert response.get_json()["database"] == {"status": "not_initialized"}


def test_detailed_health_reports_workflow_counters(
    client, temp_db: Path, marketplace: Marketplace, world: World
) -> None:
    initialize_health_server(temp_db, marketplace)

    response = client.get("/health")

    data = response.get_json()
    assert response.status_code == 200
    assert data["status"] == "healthy"
    assert data["database"]["stream_count"] > 0
    assert data["database"]["audit_entry_count"] > 0
    assert data["workflow"] == {"open_bottlenecks": 0, "escalated_disputes": 0}
