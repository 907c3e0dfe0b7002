"""Pricing Pydantic schemas."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class PaymentMethod(str, Enum):
    """Payment methods offered at checkout."""

    GATEWAY = "razorpay"
    CASH_ON_DELIVERY = "cod"


class PricingBreakdown(BaseModel):
    """Price breakdown for a set of line items.

    All amounts are non-negative integers in paisa. The grand total always
    equals subtotal + delivery_charge + handling_fee - universal_discount
    - payment_method_discount.
    """

    model_config = ConfigDict(frozen=True)

    subtotal: int = Field(ge=0, description="Sum of eligible line totals")
    delivery_charge: int = Field(ge=0, description="Flat delivery charge")
    universal_discount: int = Field(ge=0, description="Discount every order receives")
    handling_fee: int = Field(default=0, ge=0, description="Cash on delivery handling fee")
    payment_method_discount_rate: float = Field(ge=0, description="Rate applied for the payment method")
    payment_method_discount: int = Field(ge=0, description="Discount for the payment method")
    grand_total: int = Field(ge=0, description="Amount payable")
    item_count: int = Field(default=0, ge=0, description="Units across eligible lines")

    @property
    def base_total(self) -> int:
        """Total after the universal discount, before any payment method adjustment."""
        return self.subtotal + self.delivery_charge - self.universal_discount
