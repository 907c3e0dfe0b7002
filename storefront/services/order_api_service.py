"""Client for the order persistence and payment backend."""

import logging
from typing import Any

import httpx

from storefront.core.order_api import get_order_api_client
from storefront.schemas.checkout import (
    CheckoutOrder,
    GatewayCallback,
    PaymentIntent,
    PaymentVerification,
    ShippingDetails,
)

logger = logging.getLogger(__name__)


class OrderApiError(Exception):
    """The order backend answered with a non-success status.

    The message is the backend's own ``message`` field when it sent one,
    so business-rule rejections can be shown verbatim.
    """

    def __init__(self, message: str, status_code: int) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)


def _order_items_payload(order: CheckoutOrder) -> list[dict[str, Any]]:
    return [
        {
            "productId": item.product_id,
            "name": item.name,
            "price": item.price,
            "quantity": item.quantity,
            "selectedColor": item.selected_color,
            "selectedSize": item.selected_size,
        }
        for item in order.items
    ]


class OrderApiClient:
    """Calls /api/payment/* on the order backend. Never retries."""

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        """Initialize order API client.

        Args:
            client: Optional HTTP client for testing.
        """
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = get_order_api_client()
        return self._client

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        response = await self.client.post(path, json=payload)

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.is_error:
            message = body.get("message") if isinstance(body, dict) else None
            logger.warning("Order API %s returned %d: %s", path, response.status_code, message)
            raise OrderApiError(message or f"Request failed with status {response.status_code}", response.status_code)

        return body if isinstance(body, dict) else {}

    async def create_payment_order(
        self,
        order: CheckoutOrder,
        shipping: ShippingDetails,
        currency: str,
    ) -> PaymentIntent:
        """Create a gateway order for the given checkout order.

        Args:
            order: Frozen order whose total is charged.
            shipping: Contact fields for the gateway order.
            currency: ISO currency code.

        Returns:
            PaymentIntent: Fresh gateway handle for exactly one payment session.
        """
        payload = {
            "amount": order.total_amount,
            "currency": currency,
            "userEmail": shipping.email,
            "userPhone": shipping.phone,
            "userName": shipping.name,
            "userId": order.user_id,
            "totalAmount": order.total_amount,
            "shippingAddress": order.shipping_address,
            "paymentMethod": order.payment_method.value,
            "specialInstructions": order.special_instructions,
            "items": _order_items_payload(order),
        }
        data = await self._post("/api/payment/create-order", payload)

        if not data.get("id") or not data.get("orderId"):
            raise OrderApiError("Order backend did not return a payment order", 502)

        try:
            intent = PaymentIntent(
                gateway_order_id=str(data["id"]),
                amount=int(data.get("amount") or order.total_amount),
                currency=data.get("currency") or currency,
                key=data.get("key") or "",
                order_id=str(data["orderId"]),
            )
        except (TypeError, ValueError) as e:
            # pydantic's ValidationError is a ValueError
            logger.warning("Malformed payment order from order backend: %s", e)
            raise OrderApiError("Order backend returned an invalid payment order", 502) from e
        logger.info("Created payment intent %s for order %s", intent.gateway_order_id, intent.order_id)
        return intent

    async def verify_payment(self, callback: GatewayCallback, order_id: str) -> PaymentVerification:
        """Ask the backend to verify a gateway callback signature.

        A rejection that comes back as an error status is still a verdict,
        so it is returned as an unsuccessful verification.
        """
        payload = callback.model_dump()
        payload["orderId"] = order_id

        try:
            data = await self._post("/api/payment/verify", payload)
        except OrderApiError as e:
            if e.status_code in (400, 401, 403, 422):
                return PaymentVerification(success=False, message=e.message)
            raise

        return PaymentVerification(success=bool(data.get("success")), message=data.get("message"))

    async def process_cod(self, order: CheckoutOrder) -> str:
        """Submit a cash on delivery order.

        Returns:
            str: The created order id.
        """
        payload = {
            "userId": order.user_id,
            "totalAmount": order.total_amount,
            "shippingAddress": order.shipping_address,
            "specialInstructions": order.special_instructions,
            "items": _order_items_payload(order),
        }
        data = await self._post("/api/payment/process-cod", payload)

        if "orderId" not in data:
            raise OrderApiError("Order backend did not return an order id", 502)

        order_id = str(data["orderId"])
        logger.info("Cash on delivery order %s created", order_id)
        return order_id
