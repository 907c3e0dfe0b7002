"""Checkout API routes: review, placement and Razorpay widget callbacks."""

import logging

from fastapi import APIRouter, status

from storefront.api.deps import BuyNowSlots, CheckoutRuns, PaymentGateway, Shopper, ShopperContext, SignedInShopper
from storefront.api.middleware.error_handler import ConflictError, NotFoundError
from storefront.schemas.checkout import (
    CheckoutMode,
    CheckoutReviewRequest,
    CheckoutStartRequest,
    CheckoutState,
    CheckoutStateResponse,
    GatewayCallback,
    PaymentDismissRequest,
    PaymentFailureRequest,
    PlaceOrderRequest,
)
from storefront.services.buy_now_service import BuyNowStore
from storefront.services.cart_service import get_cart_store
from storefront.services.checkout_service import (
    CheckoutError,
    CheckoutOrchestrator,
    CheckoutRunRegistry,
)
from storefront.services.checkout_validator import CheckoutValidator
from storefront.services.order_api_service import OrderApiClient
from storefront.services.payment_gateway import PaymentSessionError, RazorpayCheckoutAdapter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/checkout", tags=["checkout"])


def _new_run(
    mode: CheckoutMode,
    shopper: ShopperContext,
    slots: BuyNowStore,
    gateway: RazorpayCheckoutAdapter,
) -> CheckoutOrchestrator:
    return CheckoutOrchestrator(
        mode=mode,
        session_key=shopper.session_key,
        cart_store=get_cart_store(shopper.owner_key) if mode == CheckoutMode.CART else None,
        buy_now_store=slots,
        validator=CheckoutValidator(),
        order_api=OrderApiClient(),
        gateway=gateway,
    )


def _require_run(runs: CheckoutRunRegistry, shopper: ShopperContext) -> CheckoutOrchestrator:
    run = runs.get(shopper.session_key)
    if run is None:
        raise NotFoundError("No checkout in progress")
    return run


def _require_payment_session(run: CheckoutOrchestrator, gateway_order_id: str) -> None:
    if run.state != CheckoutState.GATEWAY_PENDING or run.intent is None:
        raise ConflictError("No payment is in progress")
    if run.intent.gateway_order_id != gateway_order_id:
        raise ConflictError("Payment does not belong to this checkout")


@router.post(
    "/start",
    response_model=CheckoutStateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start checkout",
    description="Starts a checkout run from the cart or the buy-now item, replacing any finished run.",
)
async def start_checkout(
    data: CheckoutStartRequest,
    shopper: Shopper,
    runs: CheckoutRuns,
    slots: BuyNowSlots,
    gateway: PaymentGateway,
) -> CheckoutStateResponse:
    """Start a checkout run for this session.

    Raises:
        ConflictError: 409 if the current run has a submission in flight.
    """
    run = _new_run(data.mode, shopper, slots, gateway)
    try:
        runs.replace(run)
    except CheckoutError as e:
        raise ConflictError(e.message) from e
    return await run.start()


@router.get(
    "",
    response_model=CheckoutStateResponse,
    summary="Get checkout state",
)
async def get_checkout(shopper: Shopper, runs: CheckoutRuns) -> CheckoutStateResponse:
    return _require_run(runs, shopper).snapshot()


@router.post(
    "/review",
    response_model=CheckoutStateResponse,
    summary="Review checkout",
    description=(
        "Validates stock and variant selections, then freezes the items and price "
        "breakdown for the submitted shipping details and payment method."
    ),
)
async def review_checkout(
    data: CheckoutReviewRequest,
    shopper: SignedInShopper,
    runs: CheckoutRuns,
) -> CheckoutStateResponse:
    """Validate and freeze the checkout.

    A blocked validation is not an HTTP error: the response carries the
    reasons and the run stays in the idle state.

    Raises:
        AuthenticationError: 401 if the shopper is not signed in.
        NotFoundError: 404 if no checkout was started.
        ConflictError: 409 if a payment is in progress or the run has ended.
    """
    run = _require_run(runs, shopper)
    try:
        return await run.review(data.shipping, data.payment_method, shopper.user_id)
    except CheckoutError as e:
        raise ConflictError(e.message) from e


@router.post(
    "/place",
    response_model=CheckoutStateResponse,
    summary="Place order",
    description=(
        "Submits a cash on delivery order, or opens a Razorpay payment session and "
        "returns the widget options in payment_options."
    ),
)
async def place_order(
    data: PlaceOrderRequest,
    shopper: SignedInShopper,
    runs: CheckoutRuns,
) -> CheckoutStateResponse:
    run = _require_run(runs, shopper)
    try:
        return await run.begin_place_order(widget_loaded=data.widget_loaded)
    except CheckoutError as e:
        raise ConflictError(e.message) from e


@router.post(
    "/payment/callback",
    response_model=CheckoutStateResponse,
    summary="Razorpay success callback",
    description="Receives the widget's success payload, verifies it and settles the checkout.",
)
async def payment_callback(
    data: GatewayCallback,
    shopper: SignedInShopper,
    runs: CheckoutRuns,
    gateway: PaymentGateway,
) -> CheckoutStateResponse:
    """Hand the widget's success payload to the open payment session.

    Raises:
        ConflictError: 409 if no matching payment session is open.
    """
    run = _require_run(runs, shopper)
    _require_payment_session(run, data.razorpay_order_id)
    try:
        gateway.complete(run.intent.gateway_order_id, data)
    except PaymentSessionError as e:
        raise ConflictError(e.message) from e
    return await run.wait_for_attempt()


@router.post(
    "/payment/dismiss",
    response_model=CheckoutStateResponse,
    summary="Razorpay widget dismissed",
    description="The shopper closed the widget; the checkout returns to review with the same frozen items.",
)
async def payment_dismissed(
    data: PaymentDismissRequest,
    shopper: SignedInShopper,
    runs: CheckoutRuns,
) -> CheckoutStateResponse:
    run = _require_run(runs, shopper)
    try:
        run.cancel_payment(data.razorpay_order_id)
    except (CheckoutError, PaymentSessionError) as e:
        raise ConflictError(e.message) from e
    return await run.wait_for_attempt()


@router.post(
    "/payment/failure",
    response_model=CheckoutStateResponse,
    summary="Razorpay payment failed",
)
async def payment_failed(
    data: PaymentFailureRequest,
    shopper: SignedInShopper,
    runs: CheckoutRuns,
    gateway: PaymentGateway,
) -> CheckoutStateResponse:
    run = _require_run(runs, shopper)
    _require_payment_session(run, data.razorpay_order_id)
    try:
        gateway.fail(data.razorpay_order_id, data.reason)
    except PaymentSessionError as e:
        raise ConflictError(e.message) from e
    return await run.wait_for_attempt()


@router.post(
    "/resubmit",
    response_model=CheckoutStateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Retry a failed submission",
    description="Starts a new run with the failed run's validated items, ready to place again.",
)
async def resubmit_checkout(shopper: SignedInShopper, runs: CheckoutRuns) -> CheckoutStateResponse:
    run = _require_run(runs, shopper)
    try:
        new_run = runs.replace(run.resubmit())
    except CheckoutError as e:
        raise ConflictError(e.message) from e
    return new_run.snapshot()
