"""Pytest configuration and fixtures."""

import os
from collections.abc import Generator
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing application modules
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_SECRET_KEY", "test-secret-key")
os.environ.setdefault("ORDER_API_BASE_URL", "https://orders.test")
os.environ.setdefault("SESSION_COOKIE_SECURE", "false")

from storefront.schemas.cart import LineItem, ProductSnapshot  # noqa: E402
from storefront.schemas.checkout import ShippingDetails  # noqa: E402
from storefront.services.pricing_service import PricingPolicy  # noqa: E402


@pytest.fixture(scope="session")
def test_settings() -> Generator[Any, None, None]:
    """Provide test settings with cleared cache.

    Yields:
        Settings: Test configuration settings.
    """
    from storefront.core.config import get_settings

    get_settings.cache_clear()

    settings = get_settings()
    yield settings

    get_settings.cache_clear()


@pytest.fixture
def policy() -> PricingPolicy:
    """Default pricing policy: 40 delivery, 40 universal discount, 1%/5% gateway split at 1000."""
    return PricingPolicy()


def _make_product(
    product_id: int = 1,
    name: str = "Cotton Kurta",
    price: int | None = 50000,
    discounted_price: int | None = None,
    stock: int = 10,
    has_variants: bool = False,
) -> ProductSnapshot:
    """Build a product snapshot with sensible defaults (prices in paisa)."""
    return ProductSnapshot(
        id=product_id,
        name=name,
        price=price,
        discounted_price=discounted_price,
        stock=stock,
        has_variants=has_variants,
    )


def _make_line(
    line_id: str = "line-1",
    quantity: int = 1,
    selected_color: str | None = None,
    selected_size: str | None = None,
    **product_kwargs: Any,
) -> LineItem:
    """Build a cart line around _make_product()."""
    product = _make_product(**product_kwargs)
    return LineItem(
        id=line_id,
        product_id=product.id,
        quantity=quantity,
        selected_color=selected_color,
        selected_size=selected_size,
        product=product,
    )


@pytest.fixture
def make_product() -> Any:
    """Provide the product snapshot factory."""
    return _make_product


@pytest.fixture
def make_line() -> Any:
    """Provide the cart line factory."""
    return _make_line


@pytest.fixture
def shipping() -> ShippingDetails:
    """Provide a filled-in shipping form."""
    return ShippingDetails(
        name="Asha Rao",
        email="asha@example.com",
        phone="9876543210",
        address="12 MG Road",
        city="Bengaluru",
        state="Karnataka",
        pincode="560001",
    )


@pytest.fixture
def mock_supabase_client() -> Generator[MagicMock, None, None]:
    """Provide a mocked Supabase client.

    Yields:
        MagicMock: Mocked Supabase client for testing.
    """
    mock_client = MagicMock()

    mock_response = MagicMock()
    mock_response.data = []
    mock_client.table.return_value.select.return_value.limit.return_value.execute.return_value = (
        mock_response
    )

    with patch("storefront.core.supabase.get_supabase_client", return_value=mock_client):
        yield mock_client


@pytest.fixture
def mock_catalog() -> AsyncMock:
    """Provide a product catalog whose lookups are awaitable mocks."""
    catalog = AsyncMock()
    catalog.get_product.return_value = None
    catalog.get_products.return_value = {}
    return catalog


@pytest.fixture
def client(mock_supabase_client: MagicMock) -> Generator[TestClient, None, None]:
    """Provide a test client for the FastAPI application.

    Args:
        mock_supabase_client: Mocked Supabase client fixture.

    Yields:
        TestClient: FastAPI test client.
    """
    from storefront.main import app
    from storefront.services.cart_service import reset_cart_stores

    reset_cart_stores()
    with TestClient(app) as test_client:
        yield test_client
    reset_cart_stores()


class InMemoryCartRepository:
    """Cart repository double that keeps rows in a dict, in insertion order."""

    def __init__(self, products: dict[int, ProductSnapshot]) -> None:
        self.products = products
        self.rows: dict[str, dict[str, Any]] = {}
        self._next_id = 1

    async def list_items(self, owner_key: str) -> list[LineItem]:
        return [
            LineItem(
                id=line_id,
                product_id=row["product_id"],
                quantity=row["quantity"],
                selected_color=row["selected_color"],
                selected_size=row["selected_size"],
                product=self.products[row["product_id"]],
            )
            for line_id, row in self.rows.items()
            if row["owner_key"] == owner_key
        ]

    async def insert(self, data: dict[str, Any]) -> str:
        line_id = str(self._next_id)
        self._next_id += 1
        self.rows[line_id] = dict(data)
        return line_id

    async def update(self, line_id: str, data: dict[str, Any]) -> None:
        self.rows[line_id].update(data)

    async def delete(self, line_id: str) -> None:
        self.rows.pop(line_id, None)

    async def delete_all(self, owner_key: str) -> None:
        self.rows = {key: row for key, row in self.rows.items() if row["owner_key"] != owner_key}


@pytest.fixture
def catalog_products() -> dict[int, ProductSnapshot]:
    """Products known to the patched catalog, keyed by id."""
    return {
        1: _make_product(product_id=1, name="Cotton Kurta", price=90000, stock=5),
        2: _make_product(product_id=2, name="Silk Dupatta", price=30000, stock=0),
        3: _make_product(product_id=3, name="Lehenga", price=250000, stock=2, has_variants=True),
    }


@pytest.fixture
def store_backend(catalog_products: dict[int, ProductSnapshot]) -> Generator[dict[str, Any], None, None]:
    """Patch cart persistence and product lookups with in-memory doubles.

    Yields:
        dict: The repository and catalog doubles.
    """
    repository = InMemoryCartRepository(catalog_products)
    catalog = AsyncMock()
    catalog.get_product.side_effect = lambda product_id: catalog_products.get(product_id)
    catalog.get_products.side_effect = lambda ids: {
        product_id: catalog_products[product_id] for product_id in ids if product_id in catalog_products
    }

    with patch("storefront.services.cart_service.CartRepository", return_value=repository), \
         patch("storefront.services.cart_service.ProductCatalog", return_value=catalog), \
         patch("storefront.services.checkout_validator.ProductCatalog", return_value=catalog), \
         patch("storefront.api.routes.buy_now.ProductCatalog", return_value=catalog):
        yield {"repository": repository, "catalog": catalog}
