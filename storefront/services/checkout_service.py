"""Checkout orchestration: from a validated cart to a placed, paid order.

One ``CheckoutOrchestrator`` drives one checkout run through

    IDLE -> FORM_REVIEW -> {GATEWAY_PENDING, COD_SUBMITTING} -> {SUCCEEDED, FAILED}

This is the only layer that catches collaborator exceptions. Each one is
mapped to a ``CheckoutErrorCode`` and a message the shopper can act on.
Nothing is retried automatically; every retry is a new shopper action.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from urllib.parse import urlencode

import httpx

from storefront.core.config import Settings, get_settings
from storefront.schemas.cart import LineItem
from storefront.schemas.checkout import (
    CheckoutErrorCode,
    CheckoutFailure,
    CheckoutMode,
    CheckoutOrder,
    CheckoutState,
    CheckoutStateResponse,
    OrderItem,
    PaymentIntent,
    ShippingDetails,
    ValidationResult,
)
from storefront.schemas.pricing import PaymentMethod, PricingBreakdown
from storefront.services.buy_now_service import BuyNowStore
from storefront.services.cart_service import CartStore
from storefront.services.checkout_validator import CheckoutValidator
from storefront.services.order_api_service import OrderApiClient, OrderApiError
from storefront.services.payment_gateway import (
    GatewayStatus,
    PaymentPrefill,
    PaymentSession,
    PaymentSessionError,
    RazorpayCheckoutAdapter,
)
from storefront.services.pricing_service import PricingPolicy, compute_breakdown

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[CheckoutState, frozenset[CheckoutState]] = {
    CheckoutState.IDLE: frozenset({CheckoutState.FORM_REVIEW, CheckoutState.FAILED}),
    CheckoutState.FORM_REVIEW: frozenset(
        {
            CheckoutState.IDLE,
            CheckoutState.GATEWAY_PENDING,
            CheckoutState.COD_SUBMITTING,
            CheckoutState.FAILED,
        }
    ),
    CheckoutState.GATEWAY_PENDING: frozenset(
        {CheckoutState.FORM_REVIEW, CheckoutState.SUCCEEDED, CheckoutState.FAILED}
    ),
    CheckoutState.COD_SUBMITTING: frozenset({CheckoutState.SUCCEEDED, CheckoutState.FAILED}),
    CheckoutState.SUCCEEDED: frozenset(),
    CheckoutState.FAILED: frozenset(),
}

NETWORK_FAILURE_MESSAGE = "We could not reach the order service. Please check your connection and try again."
UNEXPECTED_FAILURE_MESSAGE = (
    "Something went wrong while placing your order. If you were charged, please contact support."
)


class CheckoutError(Exception):
    """A checkout request that is not valid in the run's current state."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidCheckoutTransitionError(CheckoutError):
    """The requested step is not reachable from the current state."""


class CheckoutBusyError(CheckoutError):
    """A submission is already in flight for this run."""


class CheckoutOrchestrator:
    """State machine for a single checkout run.

    Cart contents are frozen when the run enters FORM_REVIEW. The charged
    amount always comes from that frozen breakdown, never from the live
    cart, so the price shown and the price charged cannot drift apart.
    """

    def __init__(
        self,
        mode: CheckoutMode,
        session_key: str,
        cart_store: CartStore | None,
        buy_now_store: BuyNowStore,
        validator: CheckoutValidator,
        order_api: OrderApiClient,
        gateway: RazorpayCheckoutAdapter,
        policy: PricingPolicy | None = None,
        settings: Settings | None = None,
    ) -> None:
        if mode == CheckoutMode.CART and cart_store is None:
            raise ValueError("Cart checkout requires a cart store")

        self.run_id = uuid.uuid4().hex
        self.mode = mode
        self.session_key = session_key
        self.cart_store = cart_store
        self.buy_now_store = buy_now_store
        self.validator = validator
        self.order_api = order_api
        self.gateway = gateway
        self.policy = policy or PricingPolicy.from_settings()
        self.settings = settings or get_settings()

        self.state = CheckoutState.IDLE
        self.busy = False
        self.items: list[LineItem] = []
        self.validation: ValidationResult | None = None
        self.frozen_items: tuple[LineItem, ...] = ()
        self.breakdown: PricingBreakdown | None = None
        self.shipping: ShippingDetails | None = None
        self.payment_method: PaymentMethod | None = None
        self.user_id: str | None = None
        self.order: CheckoutOrder | None = None
        self.intent: PaymentIntent | None = None
        self.order_id: str | None = None
        self.confirmation_url: str | None = None
        self.failure: CheckoutFailure | None = None
        self.can_resubmit = False
        self.payment_options: dict | None = None

        self._validated_fingerprint: tuple[tuple[int, int], ...] | None = None
        self._attempt: asyncio.Task | None = None
        self._payment_window = asyncio.Event()

    # -------------------------------------------------------------------
    # Entry
    # -------------------------------------------------------------------
    async def start(self) -> CheckoutStateResponse:
        """Load the items for this run (checkout page load)."""
        if self.mode == CheckoutMode.CART:
            await self.cart_store.load(force=True)
            self.items = self.cart_store.items
        else:
            buy_now_item = self.buy_now_store.get(self.session_key)
            if buy_now_item is None:
                self._fail(CheckoutErrorCode.NO_BUY_NOW_ITEM, "Please select a product to purchase.")
            else:
                self.items = [buy_now_item.to_line_item()]

        logger.info("Checkout run %s started in %s mode with %d items", self.run_id, self.mode.value, len(self.items))
        return self.snapshot()

    # -------------------------------------------------------------------
    # Review
    # -------------------------------------------------------------------
    async def review(
        self,
        shipping: ShippingDetails,
        payment_method: PaymentMethod,
        user_id: str,
    ) -> CheckoutStateResponse:
        """Validate the items and freeze them with the shipping form.

        A blocked validation leaves the run in IDLE with the reasons
        attached. Re-reviewing after a variant-only edit reuses the stock
        fetched by the previous pass.

        Raises:
            CheckoutBusyError: If a submission is in flight.
            InvalidCheckoutTransitionError: If a payment attempt has started or the run ended.
        """
        if self.busy:
            raise CheckoutBusyError("A submission is already in progress")
        if self.state not in (CheckoutState.IDLE, CheckoutState.FORM_REVIEW):
            raise InvalidCheckoutTransitionError(f"Cannot review checkout in state {self.state.value}")

        if self.mode == CheckoutMode.CART:
            self.items = self.cart_store.items

        fingerprint = tuple(sorted((item.product_id, item.quantity) for item in self.items))
        refresh_stock = fingerprint != self._validated_fingerprint

        try:
            result = await self.validator.validate(self.items, self.mode, refresh_stock=refresh_stock)
        except Exception:
            logger.exception("Stock lookup failed for checkout run %s", self.run_id)
            self.failure = CheckoutFailure(code=CheckoutErrorCode.NETWORK_FAILURE, message=NETWORK_FAILURE_MESSAGE)
            return self.snapshot()

        self._validated_fingerprint = fingerprint
        self.validation = result

        if result.blocked:
            messages = [reason.message for reason in result.reasons if reason.blocking]
            self.failure = CheckoutFailure(code=CheckoutErrorCode.VALIDATION_BLOCKED, message=" ".join(messages))
            self.frozen_items = ()
            self.breakdown = None
            if self.state == CheckoutState.FORM_REVIEW:
                self._transition(CheckoutState.IDLE)
            return self.snapshot()

        self.frozen_items = tuple(result.eligible_items)
        self.breakdown = compute_breakdown(self.frozen_items, payment_method, self.policy)
        self.shipping = shipping
        self.payment_method = payment_method
        self.user_id = user_id
        self.order = None
        self.failure = None
        if self.state != CheckoutState.FORM_REVIEW:
            self._transition(CheckoutState.FORM_REVIEW)

        logger.info(
            "Checkout run %s ready: %d items, %s, total %d paisa",
            self.run_id,
            len(self.frozen_items),
            payment_method.value,
            self.breakdown.grand_total,
        )
        return self.snapshot()

    # -------------------------------------------------------------------
    # Placement
    # -------------------------------------------------------------------
    async def place_order(self, widget_loaded: bool = True) -> CheckoutStateResponse:
        """Drive the chosen payment path until it settles.

        COD ends in SUCCEEDED or FAILED. The gateway path ends there too,
        or back in FORM_REVIEW if the shopper closes the widget.

        Raises:
            CheckoutBusyError: If a submission is already in flight.
            InvalidCheckoutTransitionError: If the run is not in FORM_REVIEW.
        """
        self._claim_submission()
        return await self._run_attempt(widget_loaded)

    async def begin_place_order(self, widget_loaded: bool = True) -> CheckoutStateResponse:
        """Start placement in the background and return once there is something to show.

        For COD that is the settled result. For the gateway it is the open
        payment session, whose widget options are in the snapshot, or the
        early failure if no session could be opened.

        Raises:
            CheckoutBusyError: If a submission is already in flight.
            InvalidCheckoutTransitionError: If the run is not in FORM_REVIEW.
        """
        self._claim_submission()
        self._attempt = asyncio.create_task(self._run_attempt(widget_loaded))
        return await self.wait_for_payment_window()

    def _claim_submission(self) -> None:
        # Synchronous so no other request can pass the check before busy is set
        if self.busy:
            raise CheckoutBusyError("A submission is already in progress")
        if self.state != CheckoutState.FORM_REVIEW:
            raise InvalidCheckoutTransitionError(f"Cannot place order in state {self.state.value}")
        self.busy = True
        self._payment_window = asyncio.Event()

    async def _run_attempt(self, widget_loaded: bool) -> CheckoutStateResponse:
        try:
            if self.payment_method == PaymentMethod.CASH_ON_DELIVERY:
                await self._submit_cod()
            else:
                await self._pay_with_gateway(widget_loaded)
        except Exception:
            logger.exception("Checkout run %s failed unexpectedly in state %s", self.run_id, self.state.value)
            if not self.state.is_terminal:
                self._fail(CheckoutErrorCode.SERVER_REJECTED, UNEXPECTED_FAILURE_MESSAGE)
        finally:
            self.busy = False
            self.payment_options = None
            self._payment_window.set()

        return self.snapshot()

    async def wait_for_payment_window(self) -> CheckoutStateResponse:
        """Wait until a payment session is open or the attempt has ended."""
        if self._attempt is not None and not self._attempt.done():
            window = asyncio.ensure_future(self._payment_window.wait())
            await asyncio.wait({window, self._attempt}, return_when=asyncio.FIRST_COMPLETED)
            window.cancel()
        return self.snapshot()

    async def wait_for_attempt(self) -> CheckoutStateResponse:
        """Wait for the background placement attempt to finish."""
        if self._attempt is not None:
            await self._attempt
        return self.snapshot()

    def cancel_payment(self, gateway_order_id: str | None = None) -> bool:
        """Close the open payment session on the shopper's behalf.

        Raises:
            InvalidCheckoutTransitionError: If no payment session is open.
        """
        if self.state != CheckoutState.GATEWAY_PENDING or self.intent is None:
            raise InvalidCheckoutTransitionError("No payment is in progress")
        if gateway_order_id is not None and gateway_order_id != self.intent.gateway_order_id:
            raise InvalidCheckoutTransitionError("Payment session does not belong to this checkout")
        return self.gateway.cancel(self.intent.gateway_order_id)

    def resubmit(self) -> "CheckoutOrchestrator":
        """Create a new run that resends this failed run's frozen data.

        The items were validated and frozen before the failed submission,
        so the new run starts directly in FORM_REVIEW without validating
        again. This run stays FAILED.

        Raises:
            InvalidCheckoutTransitionError: If this run cannot be resubmitted.
        """
        if self.state != CheckoutState.FAILED or not self.can_resubmit:
            raise InvalidCheckoutTransitionError("This checkout cannot be resubmitted")

        run = CheckoutOrchestrator(
            mode=self.mode,
            session_key=self.session_key,
            cart_store=self.cart_store,
            buy_now_store=self.buy_now_store,
            validator=self.validator,
            order_api=self.order_api,
            gateway=self.gateway,
            policy=self.policy,
            settings=self.settings,
        )
        run.items = list(self.items)
        run.validation = self.validation
        run.frozen_items = self.frozen_items
        run.breakdown = self.breakdown
        run.shipping = self.shipping
        run.payment_method = self.payment_method
        run.user_id = self.user_id
        run.order = self.order
        run._validated_fingerprint = self._validated_fingerprint
        run.state = CheckoutState.FORM_REVIEW
        logger.info("Checkout run %s resubmits failed run %s", run.run_id, self.run_id)
        return run

    # -------------------------------------------------------------------
    # Payment paths
    # -------------------------------------------------------------------
    async def _submit_cod(self) -> None:
        self._transition(CheckoutState.COD_SUBMITTING)
        order = self._build_order()

        try:
            order_id = await self.order_api.process_cod(order)
        except httpx.HTTPError as e:
            logger.warning("COD submission for run %s failed: %s", self.run_id, e)
            self._fail(CheckoutErrorCode.NETWORK_FAILURE, NETWORK_FAILURE_MESSAGE, resubmittable=True)
            return
        except OrderApiError as e:
            self._fail(CheckoutErrorCode.SERVER_REJECTED, e.message, resubmittable=True)
            return

        await self._succeed(order_id, PaymentMethod.CASH_ON_DELIVERY)

    async def _pay_with_gateway(self, widget_loaded: bool) -> None:
        if not self.gateway.is_available(widget_loaded):
            self._fail(
                CheckoutErrorCode.GATEWAY_UNAVAILABLE,
                "The payment gateway could not be loaded. Please refresh the page and try again.",
                resubmittable=True,
            )
            return

        self._transition(CheckoutState.GATEWAY_PENDING)
        order = self._build_order()

        try:
            intent = await self.order_api.create_payment_order(order, self.shipping, self.settings.currency)
        except httpx.HTTPError as e:
            logger.warning("Payment order creation for run %s failed: %s", self.run_id, e)
            self._fail(CheckoutErrorCode.NETWORK_FAILURE, NETWORK_FAILURE_MESSAGE, resubmittable=True)
            return
        except OrderApiError as e:
            self._fail(CheckoutErrorCode.SERVER_REJECTED, e.message, resubmittable=True)
            return

        self.intent = intent
        prefill = PaymentPrefill(
            name=self.shipping.name,
            email=self.shipping.email,
            contact=self.shipping.phone,
            address=self.shipping.postal_address,
        )

        try:
            response = await self.gateway.pay(
                intent,
                prefill,
                item_count=len(self.frozen_items),
                on_open=self._on_payment_open,
            )
        except PaymentSessionError as e:
            self._fail(CheckoutErrorCode.GATEWAY_UNAVAILABLE, e.message)
            return
        finally:
            self.payment_options = None

        if response.status == GatewayStatus.CANCELLED:
            # Intents are single use; the next attempt requests a fresh one
            self.intent = None
            self._transition(CheckoutState.FORM_REVIEW)
            return

        if response.status == GatewayStatus.FAILED:
            self._fail(
                CheckoutErrorCode.PAYMENT_DECLINED,
                response.error or "The payment did not go through.",
                resubmittable=True,
            )
            return

        callback = response.callback
        try:
            verification = await self.order_api.verify_payment(callback, intent.order_id)
        except httpx.HTTPError as e:
            logger.error("Verification request for payment %s failed: %s", callback.razorpay_payment_id, e)
            self._fail(
                CheckoutErrorCode.NETWORK_FAILURE,
                "We could not confirm your payment. If you were charged, please contact support "
                f"with payment id {callback.razorpay_payment_id}.",
            )
            return
        except OrderApiError as e:
            self._fail(CheckoutErrorCode.SERVER_REJECTED, e.message)
            return

        if not verification.success:
            logger.error(
                "Payment %s for order %s failed verification: %s",
                callback.razorpay_payment_id,
                intent.order_id,
                verification.message,
            )
            self._fail(
                CheckoutErrorCode.PAYMENT_VERIFICATION_FAILED,
                f"{verification.message or 'Payment verification failed'}. Please contact support "
                f"with payment id {callback.razorpay_payment_id}.",
            )
            return

        await self._succeed(intent.order_id, PaymentMethod.GATEWAY)

    def _on_payment_open(self, session: PaymentSession) -> None:
        self.payment_options = session.options
        self._payment_window.set()

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------
    def _build_order(self) -> CheckoutOrder:
        if self.order is None:
            self.order = CheckoutOrder(
                user_id=self.user_id,
                shipping_address=self.shipping.full_address,
                special_instructions=self.shipping.special_instructions,
                items=tuple(OrderItem.from_line_item(item) for item in self.frozen_items),
                total_amount=self.breakdown.grand_total,
                payment_method=self.payment_method,
            )
        return self.order

    async def _succeed(self, order_id: str, payment_method: PaymentMethod) -> None:
        if self.mode == CheckoutMode.CART:
            try:
                await self.cart_store.clear()
            except Exception:
                # The order is already placed; a failed clear leaves a stale cart only
                logger.exception("Order %s placed but clearing cart %s failed", order_id, self.cart_store.owner_key)
        else:
            self.buy_now_store.delete(self.session_key)

        self.order_id = order_id
        self.confirmation_url = (
            f"{self.settings.order_confirmation_path}?"
            f"{urlencode({'orderId': order_id, 'paymentMethod': payment_method.value})}"
        )
        self._transition(CheckoutState.SUCCEEDED)
        logger.info("Checkout run %s placed order %s", self.run_id, order_id)

    def _fail(self, code: CheckoutErrorCode, message: str, resubmittable: bool = False) -> None:
        self.failure = CheckoutFailure(code=code, message=message)
        self.can_resubmit = resubmittable
        self._transition(CheckoutState.FAILED)
        logger.warning("Checkout run %s failed (%s): %s", self.run_id, code.value, message)

    def _transition(self, target: CheckoutState) -> None:
        if target not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidCheckoutTransitionError(
                f"Illegal checkout transition {self.state.value} -> {target.value}"
            )
        logger.debug("Checkout run %s: %s -> %s", self.run_id, self.state.value, target.value)
        self.state = target

    def snapshot(self) -> CheckoutStateResponse:
        """Describe the run for the UI."""
        return CheckoutStateResponse(
            run_id=self.run_id,
            mode=self.mode,
            state=self.state,
            busy=self.busy,
            payment_method=self.payment_method,
            items=list(self.frozen_items) if self.frozen_items else list(self.items),
            breakdown=self.breakdown,
            validation=self.validation,
            order_id=self.order_id,
            confirmation_url=self.confirmation_url,
            failure=self.failure,
            can_resubmit=self.can_resubmit,
            payment_options=self.payment_options,
        )


@dataclass
class RunEntry:
    """A checkout run and when its session last touched it."""

    run: CheckoutOrchestrator
    last_used: float

    def is_expired(self, now: float, ttl_seconds: int) -> bool:
        return not self.run.busy and now - self.last_used > ttl_seconds


class CheckoutRunRegistry:
    """Current checkout run per session.

    Runs nobody has touched for ``ttl_seconds`` are forgotten. At capacity,
    expired runs go first, then settled runs, then the least recently used
    tenth. A run with a submission in flight is never evicted.
    """

    def __init__(self, max_size: int = 5000, ttl_seconds: int = 3600) -> None:
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._runs: dict[str, RunEntry] = {}

    @classmethod
    def from_settings(cls) -> "CheckoutRunRegistry":
        """Create a registry sized from application settings."""
        settings = get_settings()
        return cls(max_size=settings.checkout_run_max_entries, ttl_seconds=settings.checkout_run_ttl_seconds)

    def __len__(self) -> int:
        return len(self._runs)

    def get(self, session_key: str) -> CheckoutOrchestrator | None:
        entry = self._runs.get(session_key)
        if entry is None:
            return None
        now = time.time()
        if entry.is_expired(now, self.ttl_seconds):
            del self._runs[session_key]
            logger.debug("Checkout run %s expired", entry.run.run_id)
            return None
        entry.last_used = now
        return entry.run

    def replace(self, run: CheckoutOrchestrator) -> CheckoutOrchestrator:
        """Install a run for its session.

        Raises:
            CheckoutBusyError: If the current run has a submission in flight.
        """
        current = self._runs.get(run.session_key)
        if current is not None and current.run is not run and current.run.busy:
            raise CheckoutBusyError("A submission is already in progress")

        if current is None and len(self._runs) >= self.max_size:
            self._evict()
        self._runs[run.session_key] = RunEntry(run=run, last_used=time.time())
        return run

    def cleanup(self) -> int:
        """Forget every expired run.

        Returns:
            Number of runs removed.
        """
        now = time.time()
        expired = [key for key, entry in self._runs.items() if entry.is_expired(now, self.ttl_seconds)]
        for key in expired:
            del self._runs[key]
        return len(expired)

    def _evict(self) -> None:
        removed = self.cleanup()

        if len(self._runs) >= self.max_size:
            settled = [key for key, entry in self._runs.items() if entry.run.state.is_terminal]
            for key in settled:
                del self._runs[key]
            removed += len(settled)

        if len(self._runs) >= self.max_size:
            idle = sorted(
                ((key, entry) for key, entry in self._runs.items() if not entry.run.busy),
                key=lambda item: item[1].last_used,
            )
            for key, _ in idle[: max(1, len(self._runs) // 10)]:
                del self._runs[key]
                removed += 1

        logger.warning("Evicted %d checkout runs at capacity", removed)


# Global singleton instance
_checkout_registry: CheckoutRunRegistry | None = None


def get_checkout_registry() -> CheckoutRunRegistry:
    """Get or create the global checkout run registry."""
    global _checkout_registry
    if _checkout_registry is None:
        _checkout_registry = CheckoutRunRegistry.from_settings()
    return _checkout_registry
