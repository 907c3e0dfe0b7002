"""Pre-checkout gates: live stock and variant completeness."""

import logging
from collections.abc import Sequence

from storefront.schemas.cart import LineItem, ProductSnapshot
from storefront.schemas.checkout import BlockReason, BlockReasonCode, CheckoutMode, ValidationResult
from storefront.services.product_service import ProductCatalog

logger = logging.getLogger(__name__)


def _display_name(product: ProductSnapshot) -> str:
    return product.name or f"Product {product.id}"


class CheckoutValidator:
    """Decides whether checkout may proceed and what blocks it.

    Both gates always run so every problem is reported at once. Results
    are advisory; the orchestrator refuses to proceed while blocked.

    The validator remembers the live stock from its last lookup, so a
    re-validation after a variant-only edit can skip the refetch.
    """

    def __init__(self, catalog: ProductCatalog | None = None) -> None:
        self.catalog = catalog or ProductCatalog()
        self._live: dict[int, ProductSnapshot] = {}

    async def validate(
        self,
        items: Sequence[LineItem],
        mode: CheckoutMode,
        refresh_stock: bool = True,
    ) -> ValidationResult:
        """Run the stock and variant gates.

        Args:
            items: Cart lines, or the single buy-now line.
            mode: Cart checkout or buy-now.
            refresh_stock: Refetch live stock even if the previous lookup
                covered every product.

        Returns:
            ValidationResult: Block flag, reasons and the lines to order.
        """
        if not items:
            message = "Your cart is empty" if mode == CheckoutMode.CART else "No product selected"
            return ValidationResult(
                blocked=True,
                reasons=[BlockReason(code=BlockReasonCode.EMPTY_CART, message=message)],
            )

        if refresh_stock or any(item.product_id not in self._live for item in items):
            self._live = await self.catalog.get_products(item.product_id for item in items)
            logger.debug("Fetched live stock for %d products", len(self._live))

        refreshed = [self._with_live_product(item) for item in items]
        eligible = [item for item in refreshed if item.in_stock]

        reasons = self._stock_gate(refreshed, mode)
        reasons.extend(self._variant_gate(refreshed, mode))

        if mode == CheckoutMode.CART and not eligible:
            reasons.append(
                BlockReason(
                    code=BlockReasonCode.ALL_OUT_OF_STOCK,
                    message="All items are out of stock. Please add some available products to your cart.",
                )
            )

        blocked = any(reason.blocking for reason in reasons)
        if blocked:
            logger.info("Checkout blocked: %s", [reason.code.value for reason in reasons if reason.blocking])

        return ValidationResult(blocked=blocked, reasons=reasons, eligible_items=eligible)

    def _with_live_product(self, item: LineItem) -> LineItem:
        live = self._live.get(item.product_id)
        if live is None:
            # Gone from the catalog: treat as unavailable
            live = item.product.model_copy(update={"stock": 0})
        return item.model_copy(update={"product": live})

    @staticmethod
    def _stock_gate(items: Sequence[LineItem], mode: CheckoutMode) -> list[BlockReason]:
        reasons = []
        for item in items:
            name = _display_name(item.product)
            if item.product.stock <= 0:
                if mode == CheckoutMode.CART:
                    message = f'"{name}" is out of stock and will not be included in your order'
                else:
                    message = f'"{name}" is out of stock'
                reasons.append(
                    BlockReason(
                        code=BlockReasonCode.OUT_OF_STOCK,
                        message=message,
                        blocking=mode == CheckoutMode.BUY_NOW,
                        product_id=item.product_id,
                        product_name=name,
                    )
                )
            elif item.quantity > item.product.stock:
                reasons.append(
                    BlockReason(
                        code=BlockReasonCode.INSUFFICIENT_STOCK,
                        message=f'Only {item.product.stock} of "{name}" left; please reduce the quantity',
                        product_id=item.product_id,
                        product_name=name,
                    )
                )
        return reasons

    @staticmethod
    def _variant_gate(items: Sequence[LineItem], mode: CheckoutMode) -> list[BlockReason]:
        reasons = []
        for item in items:
            if not item.product.has_variants:
                continue

            missing = [
                label
                for label, value in (("color", item.selected_color), ("size", item.selected_size))
                if not value
            ]
            if not missing:
                continue

            name = _display_name(item.product)
            reasons.append(
                BlockReason(
                    code=BlockReasonCode.VARIANT_INCOMPLETE,
                    message=f'Please select {" and ".join(missing)} for "{name}"',
                    # A cart line that is dropped for being out of stock cannot hold up the order
                    blocking=item.in_stock or mode == CheckoutMode.BUY_NOW,
                    product_id=item.product_id,
                    product_name=name,
                )
            )
        return reasons
