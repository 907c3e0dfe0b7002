"""Price breakdown computation for checkout.

Pure functions only: no I/O and no exceptions for malformed input.
Upstream validation owns data integrity, so a line without a price simply
contributes nothing to the subtotal.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from storefront.core.config import Settings, get_settings
from storefront.schemas.cart import LineItem
from storefront.schemas.pricing import PaymentMethod, PricingBreakdown


@dataclass(frozen=True)
class PricingPolicy:
    """Named policy constants for delivery, discounts and fees (paisa)."""

    delivery_charge: int = 4000
    universal_discount: int = 4000
    gateway_discount_threshold: int = 100000
    gateway_rate_below_threshold: Decimal = Decimal("0.01")
    gateway_rate_at_or_above_threshold: Decimal = Decimal("0.05")
    cod_handling_fee: int = 0

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "PricingPolicy":
        """Create policy from application settings."""
        settings = settings or get_settings()
        return cls(
            delivery_charge=settings.delivery_charge_paisa,
            universal_discount=settings.universal_discount,
            gateway_discount_threshold=settings.gateway_discount_threshold_paisa,
            gateway_rate_below_threshold=Decimal(str(settings.gateway_discount_rate_below_threshold)),
            gateway_rate_at_or_above_threshold=Decimal(str(settings.gateway_discount_rate_at_or_above_threshold)),
            cod_handling_fee=settings.cod_handling_fee_paisa,
        )

    def gateway_rate(self, base_total: int) -> Decimal:
        """Discount rate for gateway payments on the given base total."""
        if base_total >= self.gateway_discount_threshold:
            return self.gateway_rate_at_or_above_threshold
        return self.gateway_rate_below_threshold


def round_half_up(value: Decimal) -> int:
    """Round to the nearest whole paisa, halves away from zero."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _safe_line_total(item: LineItem) -> int:
    return max(item.line_total, 0)


def compute_breakdown(
    items: Iterable[LineItem],
    payment_method: PaymentMethod,
    policy: PricingPolicy | None = None,
) -> PricingBreakdown:
    """Compute the price breakdown for a set of line items.

    Only in-stock lines count. Rules apply in fixed order: subtotal,
    delivery charge, universal discount, then the payment method
    adjustment on the base total (after the universal discount).

    Args:
        items: Line items; out-of-stock lines are ignored.
        payment_method: Selected payment method.
        policy: Pricing policy; defaults to the configured one.

    Returns:
        PricingBreakdown: Integer amounts in paisa.
    """
    policy = policy or PricingPolicy.from_settings()

    eligible = [item for item in items if item.in_stock]
    subtotal = sum(_safe_line_total(item) for item in eligible)
    item_count = sum(item.quantity for item in eligible)

    delivery_charge = max(policy.delivery_charge, 0)
    universal_discount = min(max(policy.universal_discount, 0), subtotal + delivery_charge)
    base_total = subtotal + delivery_charge - universal_discount

    rate = Decimal("0")
    handling_fee = 0
    if payment_method == PaymentMethod.GATEWAY:
        rate = policy.gateway_rate(base_total)
    elif payment_method == PaymentMethod.CASH_ON_DELIVERY:
        handling_fee = max(policy.cod_handling_fee, 0)

    payment_method_discount = min(round_half_up(Decimal(base_total) * rate), base_total)
    grand_total = subtotal + delivery_charge + handling_fee - universal_discount - payment_method_discount

    return PricingBreakdown(
        subtotal=subtotal,
        delivery_charge=delivery_charge,
        universal_discount=universal_discount,
        handling_fee=handling_fee,
        payment_method_discount_rate=float(rate),
        payment_method_discount=payment_method_discount,
        grand_total=grand_total,
        item_count=item_count,
    )
