"""Unit tests for CheckoutValidator."""

from typing import Any
from unittest.mock import AsyncMock

import pytest

from storefront.schemas.checkout import BlockReasonCode, CheckoutMode
from storefront.services.checkout_validator import CheckoutValidator


@pytest.fixture
def validator(mock_catalog: AsyncMock) -> CheckoutValidator:
    """Create a CheckoutValidator over a mocked catalog."""
    return CheckoutValidator(catalog=mock_catalog)


class TestStockGate:
    """Tests for live stock checks."""

    @pytest.mark.asyncio
    async def test_cart_out_of_stock_item_excluded_not_blocking(
        self,
        validator: CheckoutValidator,
        mock_catalog: AsyncMock,
        make_line: Any,
        make_product: Any,
    ) -> None:
        """Test that a cart with one sold-out item can still check out the rest."""
        items = [
            make_line(line_id="a", product_id=1, name="Kurta", quantity=2, stock=5),
            make_line(line_id="b", product_id=2, name="Dupatta", stock=5),
        ]
        # The dupatta sold out after it was added to the cart
        mock_catalog.get_products.return_value = {
            1: make_product(product_id=1, name="Kurta", stock=5),
            2: make_product(product_id=2, name="Dupatta", stock=0),
        }

        result = await validator.validate(items, CheckoutMode.CART)

        assert result.blocked is False
        assert [item.id for item in result.eligible_items] == ["a"]
        assert len(result.reasons) == 1
        reason = result.reasons[0]
        assert reason.code == BlockReasonCode.OUT_OF_STOCK
        assert reason.blocking is False
        assert "Dupatta" in reason.message

    @pytest.mark.asyncio
    async def test_cart_all_out_of_stock_blocks(
        self,
        validator: CheckoutValidator,
        mock_catalog: AsyncMock,
        make_line: Any,
        make_product: Any,
    ) -> None:
        """Test that a cart with nothing in stock is blocked."""
        mock_catalog.get_products.return_value = {1: make_product(product_id=1, stock=0)}

        result = await validator.validate([make_line(product_id=1)], CheckoutMode.CART)

        assert result.blocked is True
        assert result.eligible_items == []
        assert BlockReasonCode.ALL_OUT_OF_STOCK in [reason.code for reason in result.reasons]

    @pytest.mark.asyncio
    async def test_buy_now_out_of_stock_blocks(
        self,
        validator: CheckoutValidator,
        mock_catalog: AsyncMock,
        make_line: Any,
        make_product: Any,
    ) -> None:
        """Test that buy-now of a sold-out product is blocked."""
        mock_catalog.get_products.return_value = {1: make_product(product_id=1, stock=0)}

        result = await validator.validate([make_line(product_id=1)], CheckoutMode.BUY_NOW)

        assert result.blocked is True
        assert result.reasons[0].code == BlockReasonCode.OUT_OF_STOCK
        assert result.reasons[0].blocking is True

    @pytest.mark.asyncio
    async def test_quantity_above_live_stock_blocks(
        self,
        validator: CheckoutValidator,
        mock_catalog: AsyncMock,
        make_line: Any,
        make_product: Any,
    ) -> None:
        """Test that ordering more than is left is blocked."""
        mock_catalog.get_products.return_value = {1: make_product(product_id=1, name="Kurta", stock=2)}

        result = await validator.validate([make_line(product_id=1, quantity=5)], CheckoutMode.CART)

        assert result.blocked is True
        assert result.reasons[0].code == BlockReasonCode.INSUFFICIENT_STOCK
        assert "Only 2" in result.reasons[0].message

    @pytest.mark.asyncio
    async def test_product_missing_from_catalog_is_out_of_stock(
        self,
        validator: CheckoutValidator,
        mock_catalog: AsyncMock,
        make_line: Any,
        make_product: Any,
    ) -> None:
        """Test that a deleted product is treated as unavailable."""
        mock_catalog.get_products.return_value = {1: make_product(product_id=1, stock=5)}
        items = [make_line(line_id="a", product_id=1), make_line(line_id="b", product_id=2, stock=5)]

        result = await validator.validate(items, CheckoutMode.CART)

        assert [item.id for item in result.eligible_items] == ["a"]
        assert result.reasons[0].product_id == 2

    @pytest.mark.asyncio
    async def test_eligible_items_carry_live_stock(
        self,
        validator: CheckoutValidator,
        mock_catalog: AsyncMock,
        make_line: Any,
        make_product: Any,
    ) -> None:
        """Test that eligible lines are refreshed with the looked-up snapshot."""
        mock_catalog.get_products.return_value = {1: make_product(product_id=1, stock=7, price=42000)}

        result = await validator.validate([make_line(product_id=1, stock=1, price=50000)], CheckoutMode.CART)

        assert result.eligible_items[0].product.stock == 7
        assert result.eligible_items[0].unit_price == 42000

    @pytest.mark.asyncio
    async def test_empty_cart_blocks(self, validator: CheckoutValidator, mock_catalog: AsyncMock) -> None:
        """Test that an empty cart cannot check out and needs no lookup."""
        result = await validator.validate([], CheckoutMode.CART)

        assert result.blocked is True
        assert result.reasons[0].code == BlockReasonCode.EMPTY_CART
        mock_catalog.get_products.assert_not_awaited()


class TestVariantGate:
    """Tests for color and size completeness."""

    @pytest.mark.asyncio
    async def test_missing_size_blocks(
        self,
        validator: CheckoutValidator,
        mock_catalog: AsyncMock,
        make_line: Any,
        make_product: Any,
    ) -> None:
        """Test that a variant product with only a color is blocked."""
        mock_catalog.get_products.return_value = {
            1: make_product(product_id=1, name="Lehenga", stock=3, has_variants=True),
        }
        line = make_line(product_id=1, name="Lehenga", selected_color="Red", has_variants=True)

        result = await validator.validate([line], CheckoutMode.CART)

        assert result.blocked is True
        reason = result.reasons[0]
        assert reason.code == BlockReasonCode.VARIANT_INCOMPLETE
        assert "size" in reason.message
        assert "Lehenga" in reason.message

    @pytest.mark.asyncio
    async def test_choosing_size_unblocks_without_second_lookup(
        self,
        validator: CheckoutValidator,
        mock_catalog: AsyncMock,
        make_line: Any,
        make_product: Any,
    ) -> None:
        """Test that re-validating after a variant edit reuses the fetched stock."""
        mock_catalog.get_products.return_value = {
            1: make_product(product_id=1, stock=3, has_variants=True),
        }
        incomplete = make_line(product_id=1, selected_color="Red", has_variants=True)
        complete = incomplete.model_copy(update={"selected_size": "M"})

        first = await validator.validate([incomplete], CheckoutMode.CART)
        second = await validator.validate([complete], CheckoutMode.CART, refresh_stock=False)

        assert first.blocked is True
        assert second.blocked is False
        assert second.reasons == []
        mock_catalog.get_products.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_non_variant_products_exempt(
        self,
        validator: CheckoutValidator,
        mock_catalog: AsyncMock,
        make_line: Any,
        make_product: Any,
    ) -> None:
        """Test that products without variants need no color or size."""
        mock_catalog.get_products.return_value = {1: make_product(product_id=1, stock=3)}

        result = await validator.validate([make_line(product_id=1)], CheckoutMode.BUY_NOW)

        assert result.blocked is False

    @pytest.mark.asyncio
    async def test_both_gates_reported_together(
        self,
        validator: CheckoutValidator,
        mock_catalog: AsyncMock,
        make_line: Any,
        make_product: Any,
    ) -> None:
        """Test that stock and variant problems are reported in one pass."""
        mock_catalog.get_products.return_value = {
            1: make_product(product_id=1, stock=0),
            2: make_product(product_id=2, stock=4, has_variants=True),
        }
        items = [
            make_line(line_id="a", product_id=1),
            make_line(line_id="b", product_id=2, has_variants=True),
        ]

        result = await validator.validate(items, CheckoutMode.CART)

        codes = [reason.code for reason in result.reasons]
        assert codes == [BlockReasonCode.OUT_OF_STOCK, BlockReasonCode.VARIANT_INCOMPLETE]
        assert result.blocked is True
