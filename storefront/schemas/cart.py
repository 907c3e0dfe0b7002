"""Cart and line item Pydantic schemas."""

from pydantic import BaseModel, ConfigDict, Field

from storefront.schemas.pricing import PaymentMethod, PricingBreakdown


class ProductSnapshot(BaseModel):
    """Point-in-time copy of the product fields checkout depends on.

    Prices are in paisa. A snapshot is never a live reference; it may go
    stale until the next validation pass refreshes the stock.
    """

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int = Field(description="Product identifier")
    name: str = Field(default="", description="Product name")
    price: int | None = Field(default=None, description="List price in paisa")
    discounted_price: int | None = Field(default=None, description="Sale price in paisa")
    original_price: int | None = Field(default=None, description="Struck-through price in paisa")
    stock: int = Field(default=0, description="Units in stock")
    has_variants: bool = Field(default=False, description="Whether color and size must be chosen")
    image: str | None = Field(default=None, description="Product image URL")

    @property
    def unit_price(self) -> int:
        """Price charged per unit; missing prices count as zero."""
        if self.discounted_price is not None:
            return self.discounted_price
        return self.price or 0


class LineItem(BaseModel):
    """A cart line: one product in one variant combination."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str = Field(description="Line identifier, unique within a cart")
    product_id: int = Field(description="Product identifier")
    quantity: int = Field(ge=1, description="Units ordered")
    selected_color: str | None = Field(default=None, description="Chosen color")
    selected_size: str | None = Field(default=None, description="Chosen size")
    product: ProductSnapshot = Field(description="Product snapshot taken when the line was loaded")

    @property
    def unit_price(self) -> int:
        return self.product.unit_price

    @property
    def line_total(self) -> int:
        return self.unit_price * self.quantity

    @property
    def in_stock(self) -> bool:
        return self.product.stock > 0

    def matches_variant(self, product_id: int, selected_color: str | None, selected_size: str | None) -> bool:
        """Check whether this line holds the given product+variant combination."""
        return (
            self.product_id == product_id
            and self.selected_color == selected_color
            and self.selected_size == selected_size
        )


class BuyNowItem(BaseModel):
    """Single ad-hoc purchase that bypasses the cart.

    Stored in session-scoped storage under the ``buyNowItem`` key and
    serialized with camelCase keys, matching what the browser keeps.
    """

    model_config = ConfigDict(from_attributes=True, frozen=True, populate_by_name=True)

    id: str = Field(description="Item identifier")
    product_id: int = Field(alias="productId", description="Product identifier")
    quantity: int = Field(ge=1, description="Units ordered")
    product: ProductSnapshot = Field(description="Product snapshot")
    selected_color: str | None = Field(default=None, alias="selectedColor")
    selected_size: str | None = Field(default=None, alias="selectedSize")

    def to_line_item(self) -> LineItem:
        """View the buy-now item as a line item for validation and pricing."""
        return LineItem(
            id=self.id,
            product_id=self.product_id,
            quantity=self.quantity,
            selected_color=self.selected_color,
            selected_size=self.selected_size,
            product=self.product,
        )


class CartItemAdd(BaseModel):
    """Schema for POST /cart/items."""

    product_id: int = Field(description="Product to add")
    quantity: int = Field(default=1, description="Units to add")
    selected_color: str | None = Field(default=None, description="Chosen color")
    selected_size: str | None = Field(default=None, description="Chosen size")


class QuantityUpdate(BaseModel):
    """Schema for PATCH /cart/items/{line_id}."""

    quantity: int = Field(description="New absolute quantity")


class VariantUpdate(BaseModel):
    """Schema for PATCH /cart/items/{line_id}/variant.

    Either field may be sent alone; omitted fields keep their value.
    """

    selected_color: str | None = Field(default=None, description="New color")
    selected_size: str | None = Field(default=None, description="New size")


class BuyNowCreate(BaseModel):
    """Schema for PUT /buy-now."""

    product_id: int = Field(description="Product to buy")
    quantity: int = Field(default=1, ge=1, description="Units to buy")
    selected_color: str | None = Field(default=None)
    selected_size: str | None = Field(default=None)


class CartResponse(BaseModel):
    """Cart contents with the current pricing."""

    items: list[LineItem] = Field(description="Cart lines in insertion order")
    item_count: int = Field(description="Total units across all lines")
    payment_method: PaymentMethod = Field(description="Payment method the breakdown was priced for")
    breakdown: PricingBreakdown = Field(description="Price breakdown")


class CartMutationResponse(BaseModel):
    """Result of a cart mutation."""

    item: LineItem | None = Field(default=None, description="The line that was created or changed")
    warning: str | None = Field(default=None, description="Non-fatal notice, e.g. a clamped quantity")
    cart: CartResponse = Field(description="Cart after the mutation")
