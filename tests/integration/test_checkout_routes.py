"""Integration tests for checkout API endpoints."""

from collections.abc import Generator
from typing import Any
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from fastapi.testclient import TestClient

from storefront.schemas.checkout import PaymentIntent, PaymentVerification

HEADERS = {"X-Session-Token": "checkout-session", "X-User-Id": "42"}

SHIPPING = {
    "name": "Asha Rao",
    "email": "asha@example.com",
    "phone": "9876543210",
    "address": "12 MG Road",
    "city": "Bengaluru",
    "state": "Karnataka",
    "pincode": "560001",
}

CALLBACK = {
    "razorpay_payment_id": "pay_1",
    "razorpay_order_id": "order_1",
    "razorpay_signature": "sig",
}


@pytest.fixture
def order_api() -> Generator[AsyncMock, None, None]:
    """Patch the order backend client used by new checkout runs.

    Yields:
        AsyncMock: The order API client double.
    """
    mock_client = AsyncMock()
    mock_client.process_cod.return_value = "1001"
    mock_client.create_payment_order.return_value = PaymentIntent(
        gateway_order_id="order_1",
        amount=89100,
        currency="INR",
        key="rzp_test",
        order_id="2002",
    )
    mock_client.verify_payment.return_value = PaymentVerification(success=True)

    with patch("storefront.api.routes.checkout.OrderApiClient", return_value=mock_client):
        yield mock_client


def _start_with_cart(client: TestClient, *product_ids: int) -> dict[str, Any]:
    for product_id in product_ids:
        client.post("/api/v1/cart/items", json={"product_id": product_id}, headers=HEADERS)
    response = client.post("/api/v1/checkout/start", json={"mode": "cart"}, headers=HEADERS)
    assert response.status_code == 201
    return response.json()


def _review(client: TestClient, payment_method: str = "razorpay") -> dict[str, Any]:
    response = client.post(
        "/api/v1/checkout/review",
        json={"shipping": SHIPPING, "payment_method": payment_method},
        headers=HEADERS,
    )
    assert response.status_code == 200
    return response.json()


class TestStartAndReview:
    """Tests for starting and reviewing a checkout."""

    def test_start_loads_cart(self, client: TestClient, store_backend: dict[str, Any], order_api: AsyncMock) -> None:
        """Test that starting a cart checkout shows the cart lines."""
        data = _start_with_cart(client, 1)

        assert data["state"] == "idle"
        assert data["mode"] == "cart"
        assert [item["product_id"] for item in data["items"]] == [1]

    def test_review_freezes_breakdown(
        self,
        client: TestClient,
        store_backend: dict[str, Any],
        order_api: AsyncMock,
    ) -> None:
        """Test that a passing review freezes the gateway-priced breakdown."""
        _start_with_cart(client, 1)

        data = _review(client)

        assert data["state"] == "form_review"
        assert data["breakdown"]["grand_total"] == 89100
        assert data["payment_method"] == "razorpay"

    def test_out_of_stock_line_reported_but_not_blocking(
        self,
        client: TestClient,
        store_backend: dict[str, Any],
        catalog_products: dict[int, Any],
        order_api: AsyncMock,
    ) -> None:
        """Test that a sold-out cart line is dropped with a notice."""
        catalog_products[2] = catalog_products[2].model_copy(update={"stock": 3})
        _start_with_cart(client, 1, 2)
        # Sold out between adding to cart and checking out
        catalog_products[2] = catalog_products[2].model_copy(update={"stock": 0})

        data = _review(client, "cod")

        assert data["state"] == "form_review"
        assert [item["product_id"] for item in data["items"]] == [1]
        assert data["breakdown"]["subtotal"] == 90000
        assert "Silk Dupatta" in data["validation"]["reasons"][0]["message"]

    def test_incomplete_variant_blocks(
        self,
        client: TestClient,
        store_backend: dict[str, Any],
        order_api: AsyncMock,
    ) -> None:
        """Test that a lehenga without color and size cannot be ordered."""
        _start_with_cart(client, 3)

        data = _review(client)

        assert data["state"] == "idle"
        assert data["failure"]["code"] == "validation_blocked"
        assert "Lehenga" in data["failure"]["message"]

    def test_review_requires_sign_in(
        self,
        client: TestClient,
        store_backend: dict[str, Any],
        order_api: AsyncMock,
    ) -> None:
        """Test that a guest cannot review a checkout."""
        client.post("/api/v1/checkout/start", json={"mode": "cart"}, headers={"X-Session-Token": "guest"})

        response = client.post(
            "/api/v1/checkout/review",
            json={"shipping": SHIPPING},
            headers={"X-Session-Token": "guest"},
        )

        assert response.status_code == 401

    def test_no_checkout_started(self, client: TestClient, store_backend: dict[str, Any]) -> None:
        """Test that reading state without a run is a 404."""
        response = client.get("/api/v1/checkout", headers={"X-Session-Token": "never-started"})

        assert response.status_code == 404


class TestCashOnDeliveryFlow:
    """Tests for placing COD orders over HTTP."""

    def test_buy_now_cod(self, client: TestClient, store_backend: dict[str, Any], order_api: AsyncMock) -> None:
        """Test that a buy-now COD order succeeds and clears the buy-now item."""
        client.put("/api/v1/buy-now", json={"product_id": 1}, headers=HEADERS)
        client.post("/api/v1/checkout/start", json={"mode": "buy_now"}, headers=HEADERS)
        _review(client, "cod")

        response = client.post("/api/v1/checkout/place", json={}, headers=HEADERS)
        data = response.json()

        assert data["state"] == "succeeded"
        assert data["order_id"] == "1001"
        assert data["confirmation_url"] == "/order-confirmation?orderId=1001&paymentMethod=cod"
        assert client.get("/api/v1/buy-now", headers=HEADERS).status_code == 404

    def test_failure_then_resubmit(
        self,
        client: TestClient,
        store_backend: dict[str, Any],
        order_api: AsyncMock,
    ) -> None:
        """Test that a failed COD submission can be resent and then clears the cart."""
        order_api.process_cod.side_effect = [httpx.ConnectError("down"), "1003"]
        _start_with_cart(client, 1)
        _review(client, "cod")

        failed = client.post("/api/v1/checkout/place", json={}, headers=HEADERS).json()
        assert failed["state"] == "failed"
        assert failed["failure"]["code"] == "network_failure"
        assert failed["can_resubmit"] is True
        assert client.get("/api/v1/cart", headers=HEADERS).json()["item_count"] == 1

        retry = client.post("/api/v1/checkout/resubmit", headers=HEADERS)
        assert retry.status_code == 201
        assert retry.json()["state"] == "form_review"

        placed = client.post("/api/v1/checkout/place", json={}, headers=HEADERS).json()
        assert placed["state"] == "succeeded"
        assert placed["order_id"] == "1003"
        assert client.get("/api/v1/cart", headers=HEADERS).json()["item_count"] == 0

    def test_place_twice_conflicts(
        self,
        client: TestClient,
        store_backend: dict[str, Any],
        order_api: AsyncMock,
    ) -> None:
        """Test that a settled run cannot be placed again."""
        _start_with_cart(client, 1)
        _review(client, "cod")
        client.post("/api/v1/checkout/place", json={}, headers=HEADERS)

        response = client.post("/api/v1/checkout/place", json={}, headers=HEADERS)

        assert response.status_code == 409
        order_api.process_cod.assert_awaited_once()


class TestGatewayFlow:
    """Tests for the Razorpay widget round trip over HTTP."""

    def test_paid(self, client: TestClient, store_backend: dict[str, Any], order_api: AsyncMock) -> None:
        """Test place, widget success callback, verification and confirmation."""
        _start_with_cart(client, 1)
        _review(client)

        pending = client.post("/api/v1/checkout/place", json={"widget_loaded": True}, headers=HEADERS).json()
        assert pending["state"] == "gateway_pending"
        assert pending["busy"] is True
        assert pending["payment_options"]["order_id"] == "order_1"
        assert pending["payment_options"]["key"] == "rzp_test"

        response = client.post("/api/v1/checkout/payment/callback", json=CALLBACK, headers=HEADERS)
        data = response.json()

        assert data["state"] == "succeeded"
        assert data["confirmation_url"] == "/order-confirmation?orderId=2002&paymentMethod=razorpay"
        assert client.get("/api/v1/cart", headers=HEADERS).json()["items"] == []

    def test_dismiss_returns_to_review(
        self,
        client: TestClient,
        store_backend: dict[str, Any],
        order_api: AsyncMock,
    ) -> None:
        """Test that closing the widget allows another attempt with a fresh intent."""
        _start_with_cart(client, 1)
        _review(client)
        client.post("/api/v1/checkout/place", json={}, headers=HEADERS)

        dismissed = client.post(
            "/api/v1/checkout/payment/dismiss",
            json={"razorpay_order_id": "order_1"},
            headers=HEADERS,
        ).json()

        assert dismissed["state"] == "form_review"
        assert dismissed["busy"] is False

        client.post("/api/v1/checkout/place", json={}, headers=HEADERS)
        client.post(
            "/api/v1/checkout/payment/failure",
            json={"razorpay_order_id": "order_1", "reason": "Bank declined"},
            headers=HEADERS,
        )

        state = client.get("/api/v1/checkout", headers=HEADERS).json()
        assert state["state"] == "failed"
        assert state["failure"]["code"] == "payment_declined"
        assert order_api.create_payment_order.await_count == 2

    def test_callback_for_other_order_rejected(
        self,
        client: TestClient,
        store_backend: dict[str, Any],
        order_api: AsyncMock,
    ) -> None:
        """Test that a payload for a different gateway order is refused."""
        _start_with_cart(client, 1)
        _review(client)
        client.post("/api/v1/checkout/place", json={}, headers=HEADERS)

        response = client.post(
            "/api/v1/checkout/payment/callback",
            json={**CALLBACK, "razorpay_order_id": "order_forged"},
            headers=HEADERS,
        )

        assert response.status_code == 409
        order_api.verify_payment.assert_not_awaited()

        client.post("/api/v1/checkout/payment/dismiss", json={"razorpay_order_id": "order_1"}, headers=HEADERS)

    def test_widget_not_loaded(self, client: TestClient, store_backend: dict[str, Any], order_api: AsyncMock) -> None:
        """Test that a missing widget fails before a payment order is created."""
        _start_with_cart(client, 1)
        _review(client)

        data = client.post("/api/v1/checkout/place", json={"widget_loaded": False}, headers=HEADERS).json()

        assert data["state"] == "failed"
        assert data["failure"]["code"] == "gateway_unavailable"
        order_api.create_payment_order.assert_not_awaited()

    def test_restart_refused_while_paying(
        self,
        client: TestClient,
        store_backend: dict[str, Any],
        order_api: AsyncMock,
    ) -> None:
        """Test that a new checkout cannot replace one with an open payment."""
        _start_with_cart(client, 1)
        _review(client)
        client.post("/api/v1/checkout/place", json={}, headers=HEADERS)

        response = client.post("/api/v1/checkout/start", json={"mode": "cart"}, headers=HEADERS)

        assert response.status_code == 409
        client.post("/api/v1/checkout/payment/dismiss", json={"razorpay_order_id": "order_1"}, headers=HEADERS)
