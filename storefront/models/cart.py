"""Cart and product row type definitions for database operations."""

from datetime import datetime
from typing import TypedDict


class ProductRow(TypedDict, total=False):
    """Products table row representation.

    Only the columns the checkout pipeline reads. Prices are in paisa.
    """

    id: int
    name: str
    price: int
    discounted_price: int | None
    original_price: int | None
    stock: int
    has_variants: bool
    image: str | None


class CartItemRow(TypedDict):
    """Cart items table row representation.

    The embedded ``product`` is selected through the products foreign key
    and becomes the line item's point-in-time snapshot.
    """

    id: int
    owner_key: str
    product_id: int
    quantity: int
    selected_color: str | None
    selected_size: str | None
    created_at: datetime
    updated_at: datetime
    product: ProductRow | None


class CartItemCreate(TypedDict, total=False):
    """Data required to insert a new cart line."""

    owner_key: str
    product_id: int
    quantity: int
    selected_color: str | None
    selected_size: str | None


class CartItemUpdate(TypedDict, total=False):
    """Data that can be updated on a cart line."""

    quantity: int
    selected_color: str | None
    selected_size: str | None
