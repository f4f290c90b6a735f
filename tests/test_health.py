"""Tests for health check endpoints."""

import pytest
from fastapi.testclient import TestClient

from ordercore.main import app


@pytest.fixture
def client() -> TestClient:
    """Create test client."""
    return TestClient(app)


def test_health_check(client: TestClient) -> None:
    """Test health endpoint returns healthy status."""
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["service"] == "ordercore"
    assert "version" in data


def test_readiness_check(client: TestClient) -> None:
    """Test readiness endpoint returns ready status."""
    response = client.get("/ready")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ready"
    assert data["backend"] == "memory"


def test_health_does_not_require_auth(client: TestClient) -> None:
    response = client.get("/health", headers={"Authorization": "Bearer wrong"})
    assert response.status_code == 200
