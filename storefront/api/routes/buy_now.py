"""Buy-now API routes: the single item purchased without the cart."""

import uuid

from fastapi import APIRouter, Response, status

from storefront.api.deps import BuyNowSlots, Shopper
from storefront.api.middleware.error_handler import NotFoundError
from storefront.schemas.cart import BuyNowCreate, BuyNowItem
from storefront.services.product_service import ProductCatalog

router = APIRouter(prefix="/buy-now", tags=["buy-now"])


@router.put(
    "",
    response_model=BuyNowItem,
    summary="Set buy-now item",
    description="Stores one product for immediate checkout, replacing any previous buy-now item.",
)
async def set_buy_now_item(
    data: BuyNowCreate,
    shopper: Shopper,
    slots: BuyNowSlots,
) -> BuyNowItem:
    """Store the buy-now item for the shopper's session.

    The product snapshot is taken from the catalog now; stock is checked
    again when checkout validates the item.

    Raises:
        NotFoundError: 404 if the product does not exist.
    """
    product = await ProductCatalog().get_product(data.product_id)
    if product is None:
        raise NotFoundError(f"Product {data.product_id} not found")

    item = BuyNowItem(
        id=uuid.uuid4().hex,
        product_id=data.product_id,
        quantity=data.quantity,
        product=product,
        selected_color=data.selected_color,
        selected_size=data.selected_size,
    )
    return slots.put(shopper.session_key, item)


@router.get(
    "",
    response_model=BuyNowItem,
    summary="Get buy-now item",
    responses={404: {"description": "No buy-now item for this session"}},
)
async def get_buy_now_item(shopper: Shopper, slots: BuyNowSlots) -> BuyNowItem:
    item = slots.get(shopper.session_key)
    if item is None:
        raise NotFoundError("No buy-now item")
    return item


@router.delete(
    "",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Discard buy-now item",
)
async def delete_buy_now_item(shopper: Shopper, slots: BuyNowSlots) -> Response:
    slots.delete(shopper.session_key)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
