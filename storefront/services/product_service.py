"""Product lookups for cart snapshots and live stock checks."""

import logging
from collections.abc import Iterable

from supabase import Client

from storefront.core.supabase import get_supabase_client
from storefront.models.cart import ProductRow
from storefront.schemas.cart import ProductSnapshot

logger = logging.getLogger(__name__)

PRODUCT_COLUMNS = "id, name, price, discounted_price, original_price, stock, has_variants, image"


def snapshot_from_row(row: ProductRow) -> ProductSnapshot:
    """Build a product snapshot from a products table row."""
    return ProductSnapshot(
        id=row["id"],
        name=row.get("name") or "",
        price=row.get("price"),
        discounted_price=row.get("discounted_price"),
        original_price=row.get("original_price"),
        stock=row.get("stock") or 0,
        has_variants=bool(row.get("has_variants")),
        image=row.get("image"),
    )


class ProductCatalog:
    """Read-only access to product price, stock and variant flags."""

    def __init__(self, supabase_client: Client | None = None) -> None:
        """Initialize product catalog.

        Args:
            supabase_client: Optional Supabase client for testing.
        """
        self._supabase_client = supabase_client

    @property
    def supabase(self) -> Client:
        """Get Supabase client."""
        if self._supabase_client is None:
            self._supabase_client = get_supabase_client()
        return self._supabase_client

    async def get_product(self, product_id: int) -> ProductSnapshot | None:
        """Get a fresh snapshot of one product.

        Args:
            product_id: Product identifier.

        Returns:
            ProductSnapshot | None: The snapshot, or None if no such product.
        """
        response = (
            self.supabase.table("products")
            .select(PRODUCT_COLUMNS)
            .eq("id", product_id)
            .maybe_single()
            .execute()
        )

        if not response or not response.data:
            return None
        return snapshot_from_row(response.data)

    async def get_products(self, product_ids: Iterable[int]) -> dict[int, ProductSnapshot]:
        """Get fresh snapshots for several products in one query.

        Args:
            product_ids: Product identifiers; duplicates are collapsed.

        Returns:
            dict: Snapshots keyed by product id. Unknown ids are absent.
        """
        ids = sorted(set(product_ids))
        if not ids:
            return {}

        response = (
            self.supabase.table("products")
            .select(PRODUCT_COLUMNS)
            .in_("id", ids)
            .execute()
        )

        snapshots = {row["id"]: snapshot_from_row(row) for row in response.data or []}
        missing = set(ids) - snapshots.keys()
        if missing:
            logger.warning("Products not found during lookup: %s", sorted(missing))
        return snapshots
