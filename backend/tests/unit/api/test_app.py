"""Tests for the FastAPI application wiring."""

import pytest
from fastapi.testclient import TestClient
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_502_BAD_GATEWAY,
    HTTP_504_GATEWAY_TIMEOUT,
)

from commerce_api.exceptions import ERROR_CODE_TO_HTTP_STATUS, get_http_status_for_error
from commerce_core.models.errors import ErrorCode


@pytest.fixture
def app_client() -> TestClient:
    from commerce_api.main import app

    return TestClient(app)


class TestHealthCheck:
    def test_ping_returns_ok(self, app_client: TestClient) -> None:
        response = app_client.get("/api/ping")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["service"] == "commerce-api"
        assert "timestamp" in data

    def test_health_endpoint_returns_healthy(self, app_client: TestClient) -> None:
        response = app_client.get("/api/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["version"] == "0.1.0"

    def test_correlation_id_is_echoed(self, app_client: TestClient) -> None:
        response = app_client.get("/api/ping", headers={"X-Correlation-ID": "req-abc"})
        assert response.headers["X-Correlation-ID"] == "req-abc"


class TestErrorMapping:
    def test_every_code_is_mapped(self) -> None:
        assert set(ERROR_CODE_TO_HTTP_STATUS) == set(ErrorCode)

    @pytest.mark.parametrize(
        "code,status",
        [
            (ErrorCode.INVALID_QUANTITY, HTTP_400_BAD_REQUEST),
            (ErrorCode.ORDER_NOT_FOUND, HTTP_404_NOT_FOUND),
            (ErrorCode.INVALID_TRANSITION, HTTP_409_CONFLICT),
            (ErrorCode.OVER_REFUND, HTTP_409_CONFLICT),
            (ErrorCode.GATEWAY_ERROR, HTTP_502_BAD_GATEWAY),
            (ErrorCode.GATEWAY_TIMEOUT, HTTP_504_GATEWAY_TIMEOUT),
        ],
    )
    def test_status_for_code(self, code: ErrorCode, status: int) -> None:
        assert get_http_status_for_error(code) == status


class TestRoutesRegistered:
    def test_expected_routes(self) -> None:
        from commerce_api.main import app

        paths = {route.path for route in app.routes}
        for path in (
            "/api/webhooks/payments",
            "/api/orders",
            "/api/orders/{order_id}",
            "/api/orders/{order_id}/transitions",
            "/api/orders/{order_id}/refunds",
            "/api/orders/{order_id}/returns",
            "/api/returns/{return_request_id}/refund",
            "/api/inventory/transfers/{transfer_id}/complete",
        ):
            assert path in paths
