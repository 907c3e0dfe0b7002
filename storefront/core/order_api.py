"""Shared HTTP client for the order persistence and payment backend."""

import logging
from typing import Any

import httpx

from storefront.core.config import get_settings

logger = logging.getLogger(__name__)

# Global client instance, opened at startup and closed at shutdown
_order_api_client: httpx.AsyncClient | None = None


def create_order_api_client(transport: httpx.AsyncBaseTransport | None = None) -> httpx.AsyncClient:
    """Build an HTTP client pointed at the order backend.

    Args:
        transport: Optional transport override, used by tests.

    Returns:
        httpx.AsyncClient: Client with base URL and timeout from settings.
    """
    settings = get_settings()
    return httpx.AsyncClient(
        base_url=settings.order_api_base_url,
        timeout=settings.order_api_timeout_seconds,
        headers={"Accept": "application/json"},
        transport=transport,
    )


def get_order_api_client() -> httpx.AsyncClient:
    """Get or create the global order API client."""
    global _order_api_client
    if _order_api_client is None or _order_api_client.is_closed:
        _order_api_client = create_order_api_client()
    return _order_api_client


async def init_order_api_client() -> httpx.AsyncClient:
    """Open the order API client. Call at app startup."""
    client = get_order_api_client()
    logger.info("Order API client ready for %s", client.base_url)
    return client


async def shutdown_order_api_client() -> None:
    """Close the order API client. Call at app shutdown."""
    global _order_api_client
    if _order_api_client is not None:
        await _order_api_client.aclose()
        _order_api_client = None


async def check_order_api_connection() -> dict[str, Any]:
    """Check whether the order backend answers at all.

    Any HTTP response, including 404, counts as reachable; only transport
    failures mark the backend unhealthy.

    Returns:
        dict: Connection status with 'healthy' boolean and optional 'error' message.
    """
    try:
        await get_order_api_client().get("/")
        return {"healthy": True}
    except httpx.HTTPError as e:
        return {"healthy": False, "error": str(e)}
