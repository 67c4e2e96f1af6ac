"""Tests for health check API endpoints."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from fastapi import status
from fastapi.testclient import TestClient


ROUTE = "deepdive.api.routes.health"


@pytest.fixture
def checks(mocker):
    """Patch the dependency checks used by GET /health."""
    return {
        "db": mocker.patch(f"{ROUTE}.db_healthcheck", new_callable=AsyncMock, return_value=True),
        "cache": mocker.patch(f"{ROUTE}.valkey_healthcheck", new_callable=AsyncMock, return_value=True),
    }


class TestHealthEndpoint:
    """Tests for GET /health."""

    def test_healthy(self, client: TestClient, checks):
        """All dependencies up reports healthy."""
        response = client.get("/health")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["status"] == "healthy"
        assert data["checks"] == {"database": True, "cache": True}
        assert "version" in data

    def test_cache_down_is_degraded(self, client: TestClient, checks):
        """A missing cache only degrades the service."""
        checks["cache"].return_value = False

        data = client.get("/health").json()

        assert data["status"] == "degraded"

    def test_database_down_is_unhealthy(self, client: TestClient, checks):
        """A missing database makes the service unhealthy."""
        checks["db"].return_value = False

        data = client.get("/health").json()

        assert data["status"] == "unhealthy"
        assert data["checks"]["database"] is False


class TestLivenessEndpoint:
    """Tests for GET /health/live."""

    def test_live_returns_alive_status(self, client: TestClient, checks):
        """GET /health/live answers without touching dependencies."""
        response = client.get("/health/live")

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"status": "alive"}
        checks["db"].assert_not_awaited()
