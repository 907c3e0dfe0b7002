"""Cart store: line item state, persistence and change notification."""

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from threading import Lock
from typing import Any

from supabase import Client

from storefront.core.config import get_settings
from storefront.core.supabase import get_supabase_client
from storefront.models.cart import CartItemCreate, CartItemRow, CartItemUpdate
from storefront.schemas.cart import LineItem, ProductSnapshot
from storefront.schemas.pricing import PaymentMethod, PricingBreakdown
from storefront.services.pricing_service import PricingPolicy, compute_breakdown
from storefront.services.product_service import PRODUCT_COLUMNS, ProductCatalog, snapshot_from_row

logger = logging.getLogger(__name__)

_UNSET: Any = object()


class CartError(Exception):
    """Base class for cart mutation errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidQuantityError(CartError):
    """Quantity below one. Callers map a decrement to zero onto remove()."""


class CartItemNotFoundError(CartError):
    """No line with the given id in this cart."""


class ProductNotFoundError(CartError):
    """The product being added does not exist."""


@dataclass(frozen=True)
class CartSnapshot:
    """Cart contents and freshly computed pricing, pushed to every listener."""

    owner_key: str
    items: tuple[LineItem, ...]
    breakdowns: dict[PaymentMethod, PricingBreakdown]

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def breakdown(self, payment_method: PaymentMethod) -> PricingBreakdown:
        return self.breakdowns[payment_method]

    @classmethod
    def build(cls, owner_key: str, items: tuple[LineItem, ...], policy: PricingPolicy) -> "CartSnapshot":
        return cls(
            owner_key=owner_key,
            items=items,
            breakdowns={method: compute_breakdown(items, method, policy) for method in PaymentMethod},
        )


@dataclass
class CartMutation:
    """What a mutation changed, plus any warning for the shopper."""

    item: LineItem | None = None
    warning: str | None = None


CartListener = Callable[[CartSnapshot], Awaitable[None] | None]


class CartRepository:
    """Persists cart lines in the Supabase cart_items table."""

    def __init__(self, supabase_client: Client | None = None) -> None:
        self._supabase_client = supabase_client

    @property
    def supabase(self) -> Client:
        """Get Supabase client."""
        if self._supabase_client is None:
            self._supabase_client = get_supabase_client()
        return self._supabase_client

    async def list_items(self, owner_key: str) -> list[LineItem]:
        """Load every line for an owner, oldest first, with product snapshots."""
        response = (
            self.supabase.table("cart_items")
            .select(f"*, product:products({PRODUCT_COLUMNS})")
            .eq("owner_key", owner_key)
            .order("created_at")
            .execute()
        )

        items = []
        for row in response.data or []:
            line = self._line_from_row(row)
            if line is not None:
                items.append(line)
        return items

    async def insert(self, data: CartItemCreate) -> str:
        """Insert a line and return its id."""
        response = self.supabase.table("cart_items").insert(dict(data)).execute()
        return str(response.data[0]["id"])

    async def update(self, line_id: str, data: CartItemUpdate) -> None:
        self.supabase.table("cart_items").update(dict(data)).eq("id", line_id).execute()

    async def delete(self, line_id: str) -> None:
        self.supabase.table("cart_items").delete().eq("id", line_id).execute()

    async def delete_all(self, owner_key: str) -> None:
        self.supabase.table("cart_items").delete().eq("owner_key", owner_key).execute()

    @staticmethod
    def _line_from_row(row: CartItemRow) -> LineItem | None:
        product = row.get("product")
        if not product:
            # Product was deleted from the catalog; nothing left to sell
            logger.warning("Skipping cart line %s with missing product %s", row["id"], row["product_id"])
            return None
        return LineItem(
            id=str(row["id"]),
            product_id=row["product_id"],
            quantity=max(row["quantity"], 1),
            selected_color=row.get("selected_color"),
            selected_size=row.get("selected_size"),
            product=snapshot_from_row(product),
        )


class CartStore:
    """Shopping cart for one owner (user id or guest session key).

    Mutations are applied in the order they are issued. After each one the
    pricing is recomputed and the new snapshot is pushed to subscribers, so
    the header badge and the cart page never show different totals.
    """

    def __init__(
        self,
        owner_key: str,
        repository: CartRepository | None = None,
        catalog: ProductCatalog | None = None,
        policy: PricingPolicy | None = None,
    ) -> None:
        self.owner_key = owner_key
        self.repository = repository or CartRepository()
        self.catalog = catalog or ProductCatalog()
        self.policy = policy or PricingPolicy.from_settings()
        self._lines: dict[str, LineItem] = {}
        self._loaded = False
        self._lock = asyncio.Lock()
        self._listeners: list[CartListener] = []
        self._snapshot = CartSnapshot.build(owner_key, (), self.policy)

    @property
    def items(self) -> list[LineItem]:
        return list(self._lines.values())

    @property
    def item_count(self) -> int:
        return self._snapshot.item_count

    @property
    def snapshot(self) -> CartSnapshot:
        return self._snapshot

    def breakdown(self, payment_method: PaymentMethod) -> PricingBreakdown:
        return self._snapshot.breakdown(payment_method)

    def get_item(self, line_id: str) -> LineItem | None:
        return self._lines.get(line_id)

    @property
    def has_listeners(self) -> bool:
        return bool(self._listeners)

    def subscribe(self, listener: CartListener) -> Callable[[], None]:
        """Register a listener for cart snapshots.

        Args:
            listener: Called (or awaited) with each new snapshot.

        Returns:
            Callable: Removes the listener when called.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def load(self, force: bool = False) -> CartSnapshot:
        """Read persisted lines. Later calls are no-ops unless forced."""
        async with self._lock:
            if self._loaded and not force:
                return self._snapshot
            items = await self.repository.list_items(self.owner_key)
            self._lines = {item.id: item for item in items}
            self._loaded = True
            logger.debug("Loaded cart %s with %d lines", self.owner_key, len(self._lines))
            await self._publish()
            return self._snapshot

    async def add(
        self,
        product_id: int,
        quantity: int = 1,
        selected_color: str | None = None,
        selected_size: str | None = None,
    ) -> CartMutation:
        """Add a product, merging into an existing line for the same variant.

        Raises:
            InvalidQuantityError: If quantity is below one.
            ProductNotFoundError: If the product does not exist.
        """
        if quantity < 1:
            raise InvalidQuantityError(f"Quantity must be at least 1, got {quantity}")

        await self.load()
        async with self._lock:
            product = await self.catalog.get_product(product_id)
            if product is None:
                raise ProductNotFoundError(f"Product {product_id} not found")

            existing = next(
                (line for line in self._lines.values() if line.matches_variant(product_id, selected_color, selected_size)),
                None,
            )

            if existing is not None:
                requested = existing.quantity + quantity
                new_quantity, warning = self._clamp(requested, product)
                await self.repository.update(existing.id, {"quantity": new_quantity})
                line = existing.model_copy(update={"quantity": new_quantity, "product": product})
            else:
                new_quantity, warning = self._clamp(quantity, product)
                line_id = await self.repository.insert(
                    {
                        "owner_key": self.owner_key,
                        "product_id": product_id,
                        "quantity": new_quantity,
                        "selected_color": selected_color,
                        "selected_size": selected_size,
                    }
                )
                line = LineItem(
                    id=line_id,
                    product_id=product_id,
                    quantity=new_quantity,
                    selected_color=selected_color,
                    selected_size=selected_size,
                    product=product,
                )

            self._lines[line.id] = line
            logger.info("Cart %s: line %s for product %s now x%d", self.owner_key, line.id, product_id, line.quantity)
            await self._publish()
            return CartMutation(item=line, warning=warning)

    async def update_quantity(self, line_id: str, quantity: int) -> CartMutation:
        """Set a line's quantity to an absolute value.

        Quantities above the known stock are clamped and reported in the
        warning rather than rejected.

        Raises:
            InvalidQuantityError: If quantity is below one.
            CartItemNotFoundError: If the line does not exist.
        """
        if quantity < 1:
            raise InvalidQuantityError(f"Quantity must be at least 1, got {quantity}. Remove the item instead.")

        await self.load()
        async with self._lock:
            line = self._require(line_id)
            new_quantity, warning = self._clamp(quantity, line.product)

            if new_quantity != line.quantity:
                await self.repository.update(line_id, {"quantity": new_quantity})
                line = line.model_copy(update={"quantity": new_quantity})
                self._lines[line_id] = line
                logger.info("Cart %s: line %s quantity set to %d", self.owner_key, line_id, new_quantity)

            await self._publish()
            return CartMutation(item=line, warning=warning)

    async def update_variant(
        self,
        line_id: str,
        selected_color: str | None = _UNSET,
        selected_size: str | None = _UNSET,
    ) -> CartMutation:
        """Change color and/or size of a line. Omitted fields keep their value.

        If another line already holds the new variant, the two lines merge
        into that one, with the combined quantity clamped to stock.

        Raises:
            CartItemNotFoundError: If the line does not exist.
        """
        await self.load()
        async with self._lock:
            line = self._require(line_id)

            changes: CartItemUpdate = {}
            if selected_color is not _UNSET:
                changes["selected_color"] = selected_color
            if selected_size is not _UNSET:
                changes["selected_size"] = selected_size

            if not changes:
                await self._publish()
                return CartMutation(item=line)

            updated = line.model_copy(update=dict(changes))
            target = next(
                (
                    other
                    for other in self._lines.values()
                    if other.id != line_id
                    and other.matches_variant(updated.product_id, updated.selected_color, updated.selected_size)
                ),
                None,
            )

            if target is None:
                await self.repository.update(line_id, changes)
                self._lines[line_id] = updated
                logger.info("Cart %s: line %s variant updated %s", self.owner_key, line_id, changes)
                await self._publish()
                return CartMutation(item=updated)

            new_quantity, warning = self._clamp(target.quantity + line.quantity, target.product)
            await self.repository.update(target.id, {"quantity": new_quantity})
            await self.repository.delete(line_id)
            merged = target.model_copy(update={"quantity": new_quantity})
            self._lines[target.id] = merged
            del self._lines[line_id]
            logger.info("Cart %s: line %s merged into %s, now x%d", self.owner_key, line_id, target.id, new_quantity)
            await self._publish()
            return CartMutation(item=merged, warning=warning)

    async def remove(self, line_id: str) -> CartMutation:
        """Remove a line. Removing an absent line is a no-op."""
        await self.load()
        async with self._lock:
            line = self._lines.pop(line_id, None)
            if line is None:
                logger.debug("Cart %s: line %s already absent", self.owner_key, line_id)
                return CartMutation()

            await self.repository.delete(line_id)
            logger.info("Cart %s: removed line %s", self.owner_key, line_id)
            await self._publish()
            return CartMutation(item=line)

    async def clear(self) -> None:
        """Remove every line."""
        async with self._lock:
            await self.repository.delete_all(self.owner_key)
            self._lines.clear()
            self._loaded = True
            logger.info("Cart %s cleared", self.owner_key)
            await self._publish()

    def _require(self, line_id: str) -> LineItem:
        line = self._lines.get(line_id)
        if line is None:
            raise CartItemNotFoundError(f"Cart item {line_id} not found")
        return line

    @staticmethod
    def _clamp(quantity: int, product: ProductSnapshot) -> tuple[int, str | None]:
        if product.stock > 0 and quantity > product.stock:
            return product.stock, (
                f"Only {product.stock} of {product.name or 'this item'} in stock; quantity reduced to {product.stock}"
            )
        return quantity, None

    async def _publish(self) -> None:
        self._snapshot = CartSnapshot.build(self.owner_key, tuple(self._lines.values()), self.policy)
        for listener in list(self._listeners):
            try:
                result = listener(self._snapshot)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Cart listener failed for %s", self.owner_key)


@dataclass
class CartStoreEntry:
    """A cached cart store and when it was last handed out."""

    store: CartStore
    last_used: float

    def is_idle(self, now: float, idle_seconds: int) -> bool:
        return now - self.last_used > idle_seconds


# Global registry, one store per owner
_cart_stores: dict[str, CartStoreEntry] = {}
_cart_stores_lock = Lock()


def get_cart_store(owner_key: str) -> CartStore:
    """Get or create the cart store for an owner.

    A store left idle past the configured TTL is dropped, so the next
    access reloads the cart from persistence. At capacity, idle stores are
    evicted first, then the least recently used tenth. Stores with live
    subscribers are never evicted.
    """
    settings = get_settings()
    now = time.time()

    with _cart_stores_lock:
        entry = _cart_stores.get(owner_key)
        if entry is not None and entry.is_idle(now, settings.cart_store_idle_seconds) and not entry.store.has_listeners:
            del _cart_stores[owner_key]
            entry = None

        if entry is None:
            if len(_cart_stores) >= settings.cart_store_max_entries:
                _evict_cart_stores(now, settings.cart_store_idle_seconds, settings.cart_store_max_entries)
            entry = CartStoreEntry(store=CartStore(owner_key), last_used=now)
            _cart_stores[owner_key] = entry

        entry.last_used = now
        return entry.store


def _evict_cart_stores(now: float, idle_seconds: int, max_entries: int) -> None:
    """Drop idle stores, then the least recently used tenth. Must be called with lock held."""
    evictable = {key: entry for key, entry in _cart_stores.items() if not entry.store.has_listeners}

    for key, entry in evictable.items():
        if entry.is_idle(now, idle_seconds):
            del _cart_stores[key]

    if len(_cart_stores) >= max_entries:
        remaining = sorted(
            ((key, entry) for key, entry in _cart_stores.items() if not entry.store.has_listeners),
            key=lambda item: item[1].last_used,
        )
        to_remove = max(1, len(_cart_stores) // 10)
        for key, _ in remaining[:to_remove]:
            del _cart_stores[key]
        logger.warning("Evicted %d cart stores at capacity", min(to_remove, len(remaining)))


def reset_cart_stores() -> None:
    """Drop every cached store so the next access reloads from persistence."""
    with _cart_stores_lock:
        _cart_stores.clear()
