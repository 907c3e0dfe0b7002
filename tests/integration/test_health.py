"""Integration tests for health check endpoints."""

from unittest.mock import AsyncMock, MagicMock, patch

from fastapi.testclient import TestClient


class TestHealthEndpoint:
    """Tests for /health endpoint."""

    def test_health_returns_healthy_status(self, client: TestClient) -> None:
        """Test that /health returns 200 with status, timestamp and version."""
        response = client.get("/health")
        data = response.json()

        assert response.status_code == 200
        assert data["status"] == "healthy"
        assert data["timestamp"] is not None
        assert data["version"] == "0.1.0"


class TestReadinessEndpoint:
    """Tests for /health/ready endpoint."""

    @patch("storefront.api.routes.health.check_order_api_connection", new_callable=AsyncMock)
    def test_readiness_returns_200_when_healthy(self, mock_order_api: AsyncMock, client: TestClient) -> None:
        """Test that /health/ready returns 200 when all dependencies are healthy."""
        mock_order_api.return_value = {"healthy": True}

        response = client.get("/health/ready")
        data = response.json()

        assert response.status_code == 200
        assert data["status"] == "healthy"
        assert [check["name"] for check in data["checks"]] == ["database", "order_api"]
        assert all(check["latency_ms"] is not None for check in data["checks"])

    @patch("storefront.api.routes.health.check_order_api_connection", new_callable=AsyncMock)
    def test_readiness_returns_503_when_order_api_down(self, mock_order_api: AsyncMock, client: TestClient) -> None:
        """Test that an unreachable order backend makes the service unready."""
        mock_order_api.return_value = {"healthy": False, "error": "connection refused"}

        response = client.get("/health/ready")
        data = response.json()

        assert response.status_code == 503
        assert data["status"] == "unhealthy"
        order_check = next(check for check in data["checks"] if check["name"] == "order_api")
        assert order_check["error"] == "connection refused"

    @patch("storefront.api.routes.health.check_order_api_connection", new_callable=AsyncMock)
    def test_readiness_returns_503_when_database_down(
        self,
        mock_order_api: AsyncMock,
        client: TestClient,
        mock_supabase_client: MagicMock,
    ) -> None:
        """Test that a database failure makes the service unready."""
        mock_order_api.return_value = {"healthy": True}
        mock_supabase_client.table.return_value.select.return_value.limit.return_value.execute.side_effect = (
            Exception("Connection refused")
        )

        response = client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["checks"][0]["healthy"] is False
