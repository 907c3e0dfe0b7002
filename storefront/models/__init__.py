"""Database model type definitions."""

from storefront.models.cart import CartItemCreate, CartItemRow, CartItemUpdate, ProductRow

__all__ = [
    "CartItemRow",
    "CartItemCreate",
    "CartItemUpdate",
    "ProductRow",
]
