"""Tests for health check endpoints."""

from __future__ import annotations

from fastapi.testclient import TestClient

from main import app


class TestHealthCheck:
    def test_health_check_returns_success(self) -> None:
        client = TestClient(app)
        response = client.get("/api/v1/health")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["data"]["status"] == "healthy"
        assert "AI Master Architect" in data["data"]["message"]
        assert data["data"]["environment"] == "test"
        assert data["message"] == "Health check successful"

    def test_health_check_sets_correlation_header(self) -> None:
        client = TestClient(app)
        response = client.get(
            "/api/v1/health", headers={"X-Correlation-ID": "probe-1"}
        )

        assert response.headers["X-Correlation-ID"] == "probe-1"
