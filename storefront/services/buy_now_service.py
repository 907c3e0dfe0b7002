"""Session-scoped storage for the single buy-now item.

A buy-now purchase bypasses the cart entirely. The item lives here from
the "buy now" click until the checkout attempt succeeds or the slot
expires; a failed attempt leaves it in place for a retry.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from threading import Lock

from storefront.schemas.cart import BuyNowItem

logger = logging.getLogger(__name__)

BUY_NOW_STORAGE_KEY = "buyNowItem"


@dataclass
class BuyNowEntry:
    """A stored buy-now item with expiration."""

    item: BuyNowItem
    expires_at: float

    def is_expired(self) -> bool:
        return time.time() > self.expires_at


@dataclass
class BuyNowStoreConfig:
    """Configuration for buy-now storage."""

    max_size: int = 5000
    ttl_seconds: int = 1800
    cleanup_interval_seconds: int = 300

    @classmethod
    def from_settings(cls) -> "BuyNowStoreConfig":
        """Create config from application settings."""
        from storefront.core.config import get_settings

        settings = get_settings()
        return cls(
            max_size=settings.buy_now_max_entries,
            ttl_seconds=settings.buy_now_ttl_seconds,
        )


class BuyNowStore:
    """In-memory buy-now slots, one per session, with TTL."""

    def __init__(self, config: BuyNowStoreConfig | None = None) -> None:
        self.config = config or BuyNowStoreConfig()
        self._slots: dict[str, BuyNowEntry] = {}
        self._lock = Lock()
        self._cleanup_task: asyncio.Task | None = None

    @staticmethod
    def _key(session_key: str) -> str:
        return f"{session_key}:{BUY_NOW_STORAGE_KEY}"

    async def start_cleanup_task(self) -> None:
        """Start background cleanup task."""
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
            logger.info("Buy-now cleanup task started")

    async def stop_cleanup_task(self) -> None:
        """Stop background cleanup task."""
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
            logger.info("Buy-now cleanup task stopped")

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.cleanup_interval_seconds)
            count = self.cleanup()
            if count > 0:
                logger.debug("Expired %d abandoned buy-now items", count)

    def put(self, session_key: str, item: BuyNowItem) -> BuyNowItem:
        """Store the buy-now item for a session, replacing any previous one."""
        expires_at = time.time() + self.config.ttl_seconds

        with self._lock:
            if len(self._slots) >= self.config.max_size and self._key(session_key) not in self._slots:
                self._evict_oldest()
            self._slots[self._key(session_key)] = BuyNowEntry(item=item, expires_at=expires_at)

        logger.info("Buy-now item set for product %s x%d", item.product_id, item.quantity)
        return item

    def get(self, session_key: str) -> BuyNowItem | None:
        """Read the session's buy-now item, if present and not expired."""
        key = self._key(session_key)
        with self._lock:
            entry = self._slots.get(key)
            if entry is None:
                return None
            if entry.is_expired():
                del self._slots[key]
                return None
            return entry.item

    def delete(self, session_key: str) -> bool:
        """Remove the session's buy-now item.

        Returns:
            bool: True if an item was removed.
        """
        with self._lock:
            return self._slots.pop(self._key(session_key), None) is not None

    def _evict_oldest(self) -> None:
        """Evict expired entries, then the oldest 10%. Must be called with lock held."""
        expired_keys = [k for k, v in self._slots.items() if v.is_expired()]
        for key in expired_keys:
            del self._slots[key]

        if len(self._slots) >= self.config.max_size:
            sorted_entries = sorted(self._slots.items(), key=lambda x: x[1].expires_at)
            to_remove = max(1, len(self._slots) // 10)
            for key, _ in sorted_entries[:to_remove]:
                del self._slots[key]
            logger.warning("Evicted %d buy-now items at capacity", to_remove)

    def cleanup(self) -> int:
        """Remove all expired entries.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            expired_keys = [k for k, v in self._slots.items() if v.is_expired()]
            for key in expired_keys:
                del self._slots[key]
            return len(expired_keys)


# Global singleton instance
_buy_now_store: BuyNowStore | None = None


def get_buy_now_store() -> BuyNowStore:
    """Get or create the global buy-now store."""
    global _buy_now_store
    if _buy_now_store is None:
        _buy_now_store = BuyNowStore(BuyNowStoreConfig.from_settings())
    return _buy_now_store


async def init_buy_now_store() -> BuyNowStore:
    """Initialize buy-now store with cleanup task. Call at app startup."""
    store = get_buy_now_store()
    await store.start_cleanup_task()
    return store


async def shutdown_buy_now_store() -> None:
    """Shutdown buy-now cleanup task. Call at app shutdown."""
    global _buy_now_store
    if _buy_now_store:
        await _buy_now_store.stop_cleanup_task()
