"""Tests for POST /stage3/consume."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from fastapi import status
from fastapi.testclient import TestClient

from deepdive.core.exceptions import BadRequestError, ConflictError


RUN_ID = "6f1c2d3e-4a5b-4c6d-8e7f-9a0b1c2d3e4f"

BATCH_RESULT = {
    "run_id": RUN_ID,
    "processed": 1,
    "failed": 0,
    "model": "gpt-5-mini",
    "metrics": {"finalists": 2, "pending": 1, "completed": 1, "failed": 0, "spend": 0.0042},
    "results": [
        {
            "ticker": "AAPL",
            "verdict": "Buy",
            "summary": "Durable compounder.",
            "updated_at": "2026-03-01T12:00:00+00:00",
            "status": "ok",
            "retrieval": {"hits": 3, "embedding_tokens": 40},
            "cache_hit": False,
        }
    ],
    "message": "Processed 1 finalist. Pending deep dives: 1.",
    "cache_hits": 0,
    "retrieval": {"total_hits": 3, "embedding_tokens": 40},
}


@pytest.fixture
def consume(mocker):
    return mocker.patch(
        "deepdive.api.routes.stage3.consume_stage3",
        new_callable=AsyncMock,
        return_value=BATCH_RESULT,
    )


class TestConsumeAuth:
    """Authentication for POST /stage3/consume."""

    def test_requires_credentials(self, client: TestClient, consume):
        """No secret and no token returns 401."""
        response = client.post("/stage3/consume", json={"run_id": RUN_ID})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        consume.assert_not_awaited()

    def test_wrong_secret(self, client: TestClient, consume):
        """A wrong automation secret is not accepted."""
        response = client.post(
            "/stage3/consume",
            json={"run_id": RUN_ID},
            headers={"x-automation-secret": "nope"},
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_invalid_token(self, client: TestClient, consume):
        """A malformed bearer token returns 401."""
        response = client.post(
            "/stage3/consume",
            json={"run_id": RUN_ID},
            headers={"Authorization": "Bearer not-a-jwt"},
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_non_admin_token(self, client: TestClient, consume, auth_headers):
        """A regular user token returns 403."""
        response = client.post("/stage3/consume", json={"run_id": RUN_ID}, headers=auth_headers)

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json()["error"] == "ADMIN_REQUIRED"

    def test_service_secret_header(self, client: TestClient, consume, service_headers):
        """The automation secret header is accepted."""
        response = client.post(
            "/stage3/consume",
            json={"run_id": RUN_ID, "limit": 3, "client_meta": {"source": "cron"}},
            headers=service_headers,
        )

        assert response.status_code == status.HTTP_200_OK
        consume.assert_awaited_once_with(RUN_ID, 3, {"source": "cron"})

    def test_service_secret_query(self, client: TestClient, consume):
        """The automation secret may also travel as a query parameter."""
        response = client.post(
            "/stage3/consume?automation_secret=test-automation-secret",
            json={"run_id": RUN_ID},
        )

        assert response.status_code == status.HTTP_200_OK

    def test_admin_token(self, client: TestClient, consume, admin_headers):
        """An admin bearer token is accepted."""
        response = client.post("/stage3/consume", json={"run_id": RUN_ID}, headers=admin_headers)

        assert response.status_code == status.HTTP_200_OK


class TestConsumeResponses:
    """Response shapes for POST /stage3/consume."""

    def test_batch_result(self, client: TestClient, consume, service_headers):
        data = client.post("/stage3/consume", json={"run_id": RUN_ID}, headers=service_headers).json()

        assert data["processed"] == 1
        assert data["metrics"]["spend"] == 0.0042
        assert data["results"][0]["retrieval"] == {"hits": 3, "embedding_tokens": 40}
        assert data["retrieval"]["total_hits"] == 3

    def test_missing_run_id(self, client: TestClient, consume, service_headers):
        response = client.post("/stage3/consume", json={}, headers=service_headers)

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"] == "BAD_REQUEST"

    def test_invalid_run_id(self, client: TestClient, consume, service_headers):
        consume.side_effect = BadRequestError("Invalid run_id", details={"run_id": "x"})

        response = client.post("/stage3/consume", json={"run_id": "x"}, headers=service_headers)

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["message"] == "Invalid run_id"

    def test_stop_requested(self, client: TestClient, consume, service_headers):
        metrics = {"finalists": 2, "pending": 1, "completed": 1, "failed": 0, "spend": 0.5}
        consume.side_effect = ConflictError("Run flagged to stop", details={"metrics": metrics})

        response = client.post("/stage3/consume", json={"run_id": RUN_ID}, headers=service_headers)

        assert response.status_code == status.HTTP_409_CONFLICT
        body = response.json()
        assert body["message"] == "Run flagged to stop"
        assert body["details"]["metrics"] == metrics

    def test_fractional_limit_is_passed_through(self, client: TestClient, consume, service_headers):
        """A non-integer limit is clamped by the pipeline, not rejected."""
        response = client.post(
            "/stage3/consume",
            json={"run_id": RUN_ID, "limit": 2.5},
            headers=service_headers,
        )

        assert response.status_code == status.HTTP_200_OK
        consume.assert_awaited_once_with(RUN_ID, 2.5, None)
