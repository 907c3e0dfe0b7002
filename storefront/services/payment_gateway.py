"""Razorpay checkout widget bridge.

The widget runs in the browser and reports back through callbacks. This
adapter turns one widget session into a single awaitable: ``pay()`` opens
the session and resolves once the browser posts the success payload, a
dismissal, or a gateway failure to the callback routes.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from storefront.core.config import Settings, get_settings
from storefront.schemas.checkout import GatewayCallback, PaymentIntent

logger = logging.getLogger(__name__)


class GatewayStatus(str, Enum):
    """How a payment session ended."""

    PAID = "paid"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class GatewayResponse:
    """Resolved value of a payment session."""

    status: GatewayStatus
    callback: GatewayCallback | None = None
    error: str | None = None


@dataclass(frozen=True)
class PaymentPrefill:
    """Shopper details pre-filled in the widget."""

    name: str
    email: str
    contact: str
    address: str


class PaymentSessionError(Exception):
    """A callback could not be matched to an open payment session."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class PaymentSessionNotFoundError(PaymentSessionError):
    """No open payment session for the gateway order id."""


@dataclass
class PaymentSession:
    """One open widget session for one payment intent."""

    intent: PaymentIntent
    options: dict[str, Any]
    future: asyncio.Future = field(repr=False)

    def resolve(self, response: GatewayResponse) -> bool:
        """Settle the session once. Returns False if it was already settled."""
        if self.future.done():
            return False
        self.future.set_result(response)
        return True


class RazorpayCheckoutAdapter:
    """Single-shot adapter over the callback-style Razorpay widget."""

    def __init__(self, settings: Settings | None = None, session_timeout: float | None = None) -> None:
        self.settings = settings or get_settings()
        self.session_timeout = (
            session_timeout if session_timeout is not None else self.settings.payment_session_timeout_seconds
        )
        self._sessions: dict[str, PaymentSession] = {}

    def is_available(self, widget_loaded: bool = True) -> bool:
        """Whether a payment session can be opened at all.

        Args:
            widget_loaded: Whether the browser loaded the checkout script.
        """
        return self.settings.razorpay_enabled and widget_loaded

    def checkout_options(self, intent: PaymentIntent, prefill: PaymentPrefill, item_count: int) -> dict[str, Any]:
        """Build the options object the browser passes to the widget."""
        return {
            "key": intent.key or self.settings.razorpay_key_id,
            "amount": intent.amount,
            "currency": intent.currency,
            "name": self.settings.store_display_name,
            "description": f"Order payment for {item_count} items",
            "order_id": intent.gateway_order_id,
            "prefill": {
                "name": prefill.name,
                "email": prefill.email,
                "contact": prefill.contact,
            },
            "notes": {"address": prefill.address},
            "theme": {"color": self.settings.checkout_theme_color},
        }

    def get_session(self, gateway_order_id: str) -> PaymentSession | None:
        return self._sessions.get(gateway_order_id)

    async def pay(
        self,
        intent: PaymentIntent,
        prefill: PaymentPrefill,
        item_count: int = 1,
        on_open: Callable[[PaymentSession], None] | None = None,
    ) -> GatewayResponse:
        """Open a payment session and wait for the widget's outcome.

        A session left open past the timeout counts as abandoned and
        resolves as cancelled.

        Args:
            intent: Fresh payment intent; never one already used.
            prefill: Shopper details for the widget.
            item_count: Number of lines, shown in the description.
            on_open: Called with the session once it is registered.

        Returns:
            GatewayResponse: PAID with the callback payload, CANCELLED, or FAILED.

        Raises:
            PaymentSessionError: If a session for this intent is already open.
        """
        if intent.gateway_order_id in self._sessions:
            raise PaymentSessionError(f"Payment session {intent.gateway_order_id} is already open")

        session = PaymentSession(
            intent=intent,
            options=self.checkout_options(intent, prefill, item_count),
            future=asyncio.get_running_loop().create_future(),
        )
        self._sessions[intent.gateway_order_id] = session
        logger.info("Opened payment session %s for %d paisa", intent.gateway_order_id, intent.amount)

        try:
            if on_open is not None:
                on_open(session)
            return await asyncio.wait_for(session.future, timeout=self.session_timeout)
        except asyncio.TimeoutError:
            logger.warning("Payment session %s timed out", intent.gateway_order_id)
            return GatewayResponse(status=GatewayStatus.CANCELLED, error="Payment session expired")
        finally:
            self._sessions.pop(intent.gateway_order_id, None)

    def complete(self, gateway_order_id: str, callback: GatewayCallback) -> bool:
        """Deliver the widget's success payload.

        Raises:
            PaymentSessionNotFoundError: If no session is open for the order id.
            PaymentSessionError: If the payload belongs to a different gateway order.
        """
        session = self._require(gateway_order_id)
        if callback.razorpay_order_id != gateway_order_id:
            raise PaymentSessionError(
                f"Payment payload for {callback.razorpay_order_id} does not match session {gateway_order_id}"
            )
        logger.info("Payment session %s completed with payment %s", gateway_order_id, callback.razorpay_payment_id)
        return session.resolve(GatewayResponse(status=GatewayStatus.PAID, callback=callback))

    def cancel(self, gateway_order_id: str) -> bool:
        """Record that the shopper closed the widget without paying."""
        session = self._require(gateway_order_id)
        logger.info("Payment session %s dismissed by shopper", gateway_order_id)
        return session.resolve(GatewayResponse(status=GatewayStatus.CANCELLED))

    def fail(self, gateway_order_id: str, reason: str) -> bool:
        """Record a failure reported by the gateway."""
        session = self._require(gateway_order_id)
        logger.warning("Payment session %s failed: %s", gateway_order_id, reason)
        return session.resolve(GatewayResponse(status=GatewayStatus.FAILED, error=reason))

    def _require(self, gateway_order_id: str) -> PaymentSession:
        session = self._sessions.get(gateway_order_id)
        if session is None:
            raise PaymentSessionNotFoundError(f"No open payment session for {gateway_order_id}")
        return session


# Global singleton instance
_payment_gateway: RazorpayCheckoutAdapter | None = None


def get_payment_gateway() -> RazorpayCheckoutAdapter:
    """Get or create the global payment gateway adapter."""
    global _payment_gateway
    if _payment_gateway is None:
        _payment_gateway = RazorpayCheckoutAdapter()
    return _payment_gateway
