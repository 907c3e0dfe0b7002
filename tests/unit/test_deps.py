"""Unit tests for FastAPI dependency injection functions."""

import pytest
from fastapi import Request, Response

from storefront.api.deps import ShopperContext, get_session_token, get_shopper, get_signed_in_shopper
from storefront.api.middleware.error_handler import AuthenticationError


def _request(headers: dict[str, str] | None = None) -> Request:
    raw_headers = [(key.lower().encode(), value.encode()) for key, value in (headers or {}).items()]
    return Request({"type": "http", "method": "GET", "path": "/", "headers": raw_headers})


class TestShopperContext:
    """Tests for the cart owner key."""

    def test_guest_owner_key(self) -> None:
        """Test that a guest cart is keyed by session."""
        shopper = ShopperContext(session_key="abc")

        assert shopper.is_authenticated is False
        assert shopper.owner_key == "session:abc"

    def test_signed_in_owner_key(self) -> None:
        """Test that a signed-in cart is keyed by user."""
        shopper = ShopperContext(session_key="abc", user_id="42")

        assert shopper.is_authenticated is True
        assert shopper.owner_key == "user:42"


class TestGetSessionToken:
    """Tests for session token extraction."""

    def test_header_preferred(self) -> None:
        """Test that the header wins over the cookie."""
        request = _request({"X-Session-Token": "from-header", "Cookie": "storefront_session=from-cookie"})

        assert get_session_token(request) == "from-header"

    def test_cookie_fallback(self) -> None:
        """Test that the cookie is used when there is no header."""
        request = _request({"Cookie": "storefront_session=from-cookie"})

        assert get_session_token(request) == "from-cookie"

    def test_absent(self) -> None:
        assert get_session_token(_request()) is None


class TestGetShopper:
    """Tests for resolving the shopper."""

    @pytest.mark.asyncio
    async def test_existing_session_reused(self) -> None:
        """Test that a known session token is kept and no cookie is set."""
        response = Response()

        shopper = await get_shopper(_request({"X-Session-Token": "tok"}), response, x_user_id="42")

        assert shopper.session_key == "tok"
        assert shopper.user_id == "42"
        assert "set-cookie" not in response.headers

    @pytest.mark.asyncio
    async def test_new_session_created(self) -> None:
        """Test that a request without a session gets one in cookie and header."""
        response = Response()

        shopper = await get_shopper(_request(), response, x_user_id=None)

        assert shopper.session_key
        assert response.headers["x-session-token"] == shopper.session_key
        assert "storefront_session=" in response.headers["set-cookie"]

    @pytest.mark.asyncio
    async def test_signed_in_required(self) -> None:
        """Test that guests cannot use routes that need a user."""
        with pytest.raises(AuthenticationError):
            await get_signed_in_shopper(ShopperContext(session_key="tok"))
