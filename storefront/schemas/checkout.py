"""Checkout, order and payment Pydantic schemas."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from storefront.schemas.cart import LineItem
from storefront.schemas.pricing import PaymentMethod, PricingBreakdown


class CheckoutMode(str, Enum):
    """Where the checkout items come from."""

    CART = "cart"
    BUY_NOW = "buy_now"


class CheckoutState(str, Enum):
    """Checkout orchestration states."""

    IDLE = "idle"
    FORM_REVIEW = "form_review"
    GATEWAY_PENDING = "gateway_pending"
    COD_SUBMITTING = "cod_submitting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (CheckoutState.SUCCEEDED, CheckoutState.FAILED)


class CheckoutErrorCode(str, Enum):
    """Failure categories surfaced to the shopper."""

    VALIDATION_BLOCKED = "validation_blocked"
    NETWORK_FAILURE = "network_failure"
    GATEWAY_UNAVAILABLE = "gateway_unavailable"
    PAYMENT_VERIFICATION_FAILED = "payment_verification_failed"
    PAYMENT_DECLINED = "payment_declined"
    SERVER_REJECTED = "server_rejected"
    NO_BUY_NOW_ITEM = "no_buy_now_item"


class BlockReasonCode(str, Enum):
    """Why a line item holds up checkout."""

    OUT_OF_STOCK = "out_of_stock"
    ALL_OUT_OF_STOCK = "all_out_of_stock"
    INSUFFICIENT_STOCK = "insufficient_stock"
    VARIANT_INCOMPLETE = "variant_incomplete"
    EMPTY_CART = "empty_cart"


class ShippingDetails(BaseModel):
    """Shipping form submitted at checkout."""

    name: str = Field(min_length=1, description="Recipient name")
    email: str = Field(default="", description="Contact email")
    phone: str = Field(min_length=1, description="Contact phone")
    address: str = Field(min_length=1, description="Street address")
    city: str = Field(min_length=1, description="City")
    state: str = Field(min_length=1, description="State")
    pincode: str = Field(min_length=1, description="Postal code")
    special_instructions: str = Field(default="", description="Delivery notes")

    @property
    def postal_address(self) -> str:
        """Address without contact details, as shown in the payment widget."""
        return f"{self.address}, {self.city}, {self.state} - {self.pincode}"

    @property
    def full_address(self) -> str:
        """Address with recipient and phone, as stored on the order."""
        return f"{self.name}, {self.phone}, {self.postal_address}"


class BlockReason(BaseModel):
    """Advisory reason produced by a validation gate."""

    code: BlockReasonCode = Field(description="Reason category")
    message: str = Field(description="Human-readable explanation")
    blocking: bool = Field(default=True, description="Whether this reason alone prevents checkout")
    product_id: int | None = Field(default=None, description="Product the reason refers to")
    product_name: str | None = Field(default=None, description="Name of that product")


class ValidationResult(BaseModel):
    """Outcome of running every checkout gate."""

    blocked: bool = Field(description="Whether checkout may not proceed")
    reasons: list[BlockReason] = Field(default_factory=list, description="All problems found")
    eligible_items: list[LineItem] = Field(
        default_factory=list,
        description="Lines that will be ordered, with live stock applied",
    )


class OrderItem(BaseModel):
    """One ordered line as sent to order persistence."""

    model_config = ConfigDict(frozen=True)

    product_id: int
    name: str
    price: int
    quantity: int
    selected_color: str | None = None
    selected_size: str | None = None

    @classmethod
    def from_line_item(cls, item: LineItem) -> "OrderItem":
        return cls(
            product_id=item.product_id,
            name=item.product.name,
            price=item.unit_price,
            quantity=item.quantity,
            selected_color=item.selected_color,
            selected_size=item.selected_size,
        )


class CheckoutOrder(BaseModel):
    """Order payload submitted to order persistence. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(description="Opaque shopper identifier")
    shipping_address: str = Field(description="Formatted shipping address")
    special_instructions: str = Field(default="", description="Delivery notes")
    items: tuple[OrderItem, ...] = Field(description="Ordered lines")
    total_amount: int = Field(ge=0, description="Amount payable in paisa")
    payment_method: PaymentMethod = Field(description="How the order is paid")


class PaymentIntent(BaseModel):
    """Gateway order handle created by the backend. Used for one payment session only."""

    model_config = ConfigDict(frozen=True)

    gateway_order_id: str = Field(description="Razorpay order id")
    amount: int = Field(description="Amount in paisa")
    currency: str = Field(description="ISO currency code")
    key: str = Field(description="Public gateway key for the widget")
    order_id: str = Field(description="Internal order reference")


class GatewayCallback(BaseModel):
    """Payload the Razorpay widget hands to its success handler."""

    model_config = ConfigDict(frozen=True)

    razorpay_payment_id: str = Field(min_length=1)
    razorpay_order_id: str = Field(min_length=1)
    razorpay_signature: str = Field(min_length=1)


class PaymentVerification(BaseModel):
    """Backend verdict on a gateway callback."""

    success: bool
    message: str | None = None


class CheckoutFailure(BaseModel):
    """Categorized failure shown to the shopper."""

    code: CheckoutErrorCode
    message: str


class CheckoutStateResponse(BaseModel):
    """Snapshot of a checkout run."""

    run_id: str = Field(description="Checkout run identifier")
    mode: CheckoutMode
    state: CheckoutState
    busy: bool = Field(description="Whether a submission is in flight; the submit control should be disabled")
    payment_method: PaymentMethod | None = None
    items: list[LineItem] = Field(default_factory=list)
    breakdown: PricingBreakdown | None = None
    validation: ValidationResult | None = None
    order_id: str | None = None
    confirmation_url: str | None = None
    failure: CheckoutFailure | None = None
    can_resubmit: bool = Field(default=False, description="Whether a failed submission may be resent as is")
    payment_options: dict[str, Any] | None = Field(
        default=None,
        description="Options for the payment widget while a payment session is open",
    )


class CheckoutStartRequest(BaseModel):
    """Schema for POST /checkout/start."""

    mode: CheckoutMode = Field(default=CheckoutMode.CART)


class CheckoutReviewRequest(BaseModel):
    """Schema for POST /checkout/review."""

    shipping: ShippingDetails
    payment_method: PaymentMethod = Field(default=PaymentMethod.GATEWAY)


class PlaceOrderRequest(BaseModel):
    """Schema for POST /checkout/place."""

    widget_loaded: bool = Field(
        default=True,
        description="Whether the browser managed to load the payment widget script",
    )


class PaymentDismissRequest(BaseModel):
    """Schema for POST /checkout/payment/dismiss."""

    razorpay_order_id: str = Field(min_length=1)


class PaymentFailureRequest(BaseModel):
    """Schema for POST /checkout/payment/failure."""

    razorpay_order_id: str = Field(min_length=1)
    reason: str = Field(default="Payment failed", description="Gateway error description")
