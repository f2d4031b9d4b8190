"""
Tests for health server

Tests Flask-based health check endpoints for Kubernetes liveness and readiness checks.
Validates security headers, ledger table checks and the reported fund position.

Fun fact: The concept of "health checks" in distributed systems was pioneered by Amazon
in the early 2000s when building their highly available retail platform. Today, every
cloud-native system uses similar patterns!
"""

import sqlite3
from pathlib import Path

import pytest

from fund_control import FundControl, health_server
from fund_control.health_server import SECURITY_HEADERS, app, initialize_health_server


@pytest.fixture
def client():
    """Flask test client"""
    app.config["TESTING"] = True
    with app.test_client() as client:
        yield client


@pytest.fixture(autouse=True)
def reset_server():
    yield
    health_server._db_path = None
    health_server._fc_instance = None


# =============================================================================
# Liveness
# =============================================================================


def test_liveness_is_always_alive(client):
    response = client.get("/health/live")

    assert response.status_code == 200
    assert response.get_json() == {"status": "alive", "service": "fund-control"}


def test_security_headers_on_every_response(client):
    response = client.get("/health/live")

    for header, value in SECURITY_HEADERS.items():
        assert response.headers[header] == value


# =============================================================================
# Readiness
# =============================================================================


def test_readiness_without_initialization(client):
    response = client.get("/health/ready")

    assert response.status_code == 503
    assert response.get_json()["reason"] == "database_path_not_initialized"


def test_readiness_missing_file(client, tmp_path: Path):
    initialize_health_server(tmp_path / "missing.db")

    response = client.get("/health/ready")

    assert response.status_code == 503
    assert response.get_json()["reason"] == "database_file_not_found"


def test_readiness_with_ledger(client, fc: FundControl, temp_db: Path, appropriation: dict):
    initialize_health_server(temp_db, fc)

    response = client.get("/health/ready")

    assert response.status_code == 200
    data = response.get_json()
    assert data["status"] == "ready"
    assert data["event_count"] == fc.event_store.count_events()


def test_readiness_event_log_without_ledger(client, tmp_path: Path):
    """An event log alone is not enough to serve fund checks"""
    db_path = tmp_path / "events-only.db"
    conn = sqlite3.connect(str(db_path))
    conn.execute("CREATE TABLE events (event_id TEXT PRIMARY KEY, stream_id TEXT NOT NULL)")
    conn.commit()
    conn.close()
    initialize_health_server(db_path)

    response = client.get("/health/ready")

    assert response.status_code == 503
    data = response.get_json()
    assert data["reason"] == "ledger_not_initialized"
    assert data["missing"] == [
        "appropriation_balances",
        "budget_balances",
        "obligation_balances",
    ]


def test_readiness_without_event_log(client, tmp_path: Path):
    db_path = tmp_path / "empty.db"
    sqlite3.connect(str(db_path)).close()
    initialize_health_server(db_path)

    response = client.get("/health/ready")

    assert response.status_code == 503
    assert response.get_json()["reason"] == "database_operational_error"


# =============================================================================
# Detailed health
# =============================================================================


def test_detailed_health_degraded_without_database(client):
    response = client.get("/health")

    assert response.status_code == 503
    data = response.get_json()
    assert data["status"] == "degraded"
    assert data["database"] == {"status": "not_initialized"}


def test_detailed_health_reports_fund_position(
    client, fc: FundControl, temp_db: Path, appropriation: dict
):
    initialize_health_server(temp_db, fc)

    response = client.get("/health")

    assert response.status_code == 200
    data = response.get_json()
    assert data["status"] == "healthy"
    assert data["database"]["stream_count"] == fc.event_store.count_streams()
    assert data["funds"]["current_fiscal_year"] == 2025
    assert data["funds"]["total_appropriated"] == "100000.00"
    assert data["funds"]["total_available"] == "100000.00"
    assert data["funds"]["requests_under_review"] == 0
