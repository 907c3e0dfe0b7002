"""Cart API routes."""

import asyncio
import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, Query, Request, status
from fastapi.responses import StreamingResponse

from storefront.api.deps import ShopperCart
from storefront.api.middleware.error_handler import NotFoundError, ValidationError
from storefront.schemas.cart import (
    CartItemAdd,
    CartMutationResponse,
    CartResponse,
    QuantityUpdate,
    VariantUpdate,
)
from storefront.schemas.pricing import PaymentMethod
from storefront.services.cart_service import (
    CartError,
    CartItemNotFoundError,
    CartMutation,
    CartSnapshot,
    CartStore,
    InvalidQuantityError,
    ProductNotFoundError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cart", tags=["cart"])

# Seconds between keep-alive comments on an idle cart stream
STREAM_KEEPALIVE_SECONDS = 15.0

PaymentMethodQuery = Query(
    default=PaymentMethod.GATEWAY,
    description="Payment method to price the cart for",
)


def _cart_response(snapshot: CartSnapshot, payment_method: PaymentMethod) -> CartResponse:
    return CartResponse(
        items=list(snapshot.items),
        item_count=snapshot.item_count,
        payment_method=payment_method,
        breakdown=snapshot.breakdown(payment_method),
    )


def _mutation_response(store: CartStore, mutation: CartMutation, payment_method: PaymentMethod) -> CartMutationResponse:
    return CartMutationResponse(
        item=mutation.item,
        warning=mutation.warning,
        cart=_cart_response(store.snapshot, payment_method),
    )


def _raise_cart_error(error: CartError) -> None:
    if isinstance(error, (CartItemNotFoundError, ProductNotFoundError)):
        raise NotFoundError(error.message) from error
    if isinstance(error, InvalidQuantityError):
        raise ValidationError(error.message) from error
    raise error


@router.get(
    "",
    response_model=CartResponse,
    summary="Get cart",
    description="Returns the cart lines and the price breakdown for the chosen payment method.",
)
async def get_cart(
    cart: ShopperCart,
    payment_method: PaymentMethod = PaymentMethodQuery,
) -> CartResponse:
    return _cart_response(cart.snapshot, payment_method)


@router.post(
    "/items",
    response_model=CartMutationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add item to cart",
    description="Adds a product to the cart, merging into an existing line with the same color and size.",
)
async def add_item(
    data: CartItemAdd,
    cart: ShopperCart,
    payment_method: PaymentMethod = PaymentMethodQuery,
) -> CartMutationResponse:
    """Add a product to the cart.

    Args:
        data: Product, quantity and variant to add.
        cart: The shopper's cart.
        payment_method: Payment method to price the returned cart for.

    Returns:
        CartMutationResponse: The affected line, any clamping warning, and the cart.

    Raises:
        NotFoundError: 404 if the product does not exist.
        ValidationError: 422 if quantity is below one.
    """
    try:
        mutation = await cart.add(
            product_id=data.product_id,
            quantity=data.quantity,
            selected_color=data.selected_color,
            selected_size=data.selected_size,
        )
    except CartError as e:
        _raise_cart_error(e)
    return _mutation_response(cart, mutation, payment_method)


@router.patch(
    "/items/{line_id}",
    response_model=CartMutationResponse,
    summary="Set item quantity",
    description="Sets the absolute quantity of a line. Quantities above stock are reduced with a warning.",
)
async def update_item_quantity(
    line_id: str,
    data: QuantityUpdate,
    cart: ShopperCart,
    payment_method: PaymentMethod = PaymentMethodQuery,
) -> CartMutationResponse:
    try:
        mutation = await cart.update_quantity(line_id, data.quantity)
    except CartError as e:
        _raise_cart_error(e)
    return _mutation_response(cart, mutation, payment_method)


@router.patch(
    "/items/{line_id}/variant",
    response_model=CartMutationResponse,
    summary="Change item color or size",
)
async def update_item_variant(
    line_id: str,
    data: VariantUpdate,
    cart: ShopperCart,
    payment_method: PaymentMethod = PaymentMethodQuery,
) -> CartMutationResponse:
    """Change the color and/or size of a line.

    Only the fields present in the request body are changed.
    """
    try:
        mutation = await cart.update_variant(line_id, **data.model_dump(exclude_unset=True))
    except CartError as e:
        _raise_cart_error(e)
    return _mutation_response(cart, mutation, payment_method)


@router.delete(
    "/items/{line_id}",
    response_model=CartMutationResponse,
    summary="Remove item from cart",
    description="Removes a line. Removing a line that is already gone succeeds.",
)
async def remove_item(
    line_id: str,
    cart: ShopperCart,
    payment_method: PaymentMethod = PaymentMethodQuery,
) -> CartMutationResponse:
    mutation = await cart.remove(line_id)
    return _mutation_response(cart, mutation, payment_method)


@router.delete(
    "",
    response_model=CartResponse,
    summary="Clear cart",
)
async def clear_cart(
    cart: ShopperCart,
    payment_method: PaymentMethod = PaymentMethodQuery,
) -> CartResponse:
    await cart.clear()
    return _cart_response(cart.snapshot, payment_method)


async def _snapshot_events(
    request: Request,
    cart: CartStore,
    payment_method: PaymentMethod,
) -> AsyncIterator[str]:
    queue: asyncio.Queue[CartSnapshot] = asyncio.Queue()
    unsubscribe = cart.subscribe(queue.put_nowait)
    try:
        snapshot = cart.snapshot
        while True:
            payload = _cart_response(snapshot, payment_method).model_dump_json()
            yield f"event: cart\ndata: {payload}\n\n"

            while True:
                try:
                    snapshot = await asyncio.wait_for(queue.get(), timeout=STREAM_KEEPALIVE_SECONDS)
                    break
                except asyncio.TimeoutError:
                    if await request.is_disconnected():
                        return
                    yield ": keep-alive\n\n"
    finally:
        unsubscribe()
        logger.debug("Cart stream for %s closed", cart.owner_key)


@router.get(
    "/stream",
    summary="Stream cart updates",
    description="Server-sent events: the current cart, then a new event after every change.",
    response_class=StreamingResponse,
)
async def stream_cart(
    request: Request,
    cart: ShopperCart,
    payment_method: PaymentMethod = PaymentMethodQuery,
) -> StreamingResponse:
    return StreamingResponse(
        _snapshot_events(request, cart, payment_method),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
