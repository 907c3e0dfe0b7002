"""FastAPI dependency injection functions."""

import secrets
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Header, Request, Response

from storefront.api.middleware.error_handler import AuthenticationError
from storefront.core.config import get_settings
from storefront.services.buy_now_service import BuyNowStore, get_buy_now_store
from storefront.services.cart_service import CartStore, get_cart_store
from storefront.services.checkout_service import CheckoutRunRegistry, get_checkout_registry
from storefront.services.payment_gateway import RazorpayCheckoutAdapter, get_payment_gateway


def get_session_cookie_config() -> dict:
    """Get session cookie configuration from settings."""
    settings = get_settings()
    # SameSite=None is rejected by browsers unless Secure is also set
    samesite = "none" if settings.session_cookie_secure else "lax"
    return {
        "key": settings.session_cookie_name,
        "max_age": settings.session_cookie_max_age,
        "httponly": True,
        "secure": settings.session_cookie_secure,
        "samesite": samesite,
        "path": "/",
    }


@dataclass
class ShopperContext:
    """Who is shopping: a signed-in user, a guest session, or both.

    The session key always exists. The user id is only known once the
    shopper has signed in.
    """

    session_key: str
    user_id: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def owner_key(self) -> str:
        """Key the cart is stored under."""
        if self.user_id:
            return f"user:{self.user_id}"
        return f"session:{self.session_key}"


def get_session_token(request: Request) -> str | None:
    """Extract session token from X-Session-Token header or cookie.

    Checks header first (works when third-party cookies are blocked),
    then falls back to cookie.

    Args:
        request: FastAPI request object.

    Returns:
        str | None: The session token or None if not present.
    """
    header_token = request.headers.get("x-session-token")
    if header_token:
        return header_token

    config = get_session_cookie_config()
    return request.cookies.get(config["key"])


def set_session_cookie(response: Response, token: str) -> None:
    """Set session cookie on response.

    Args:
        response: FastAPI response object.
        token: The session token to set.
    """
    config = get_session_cookie_config()
    response.set_cookie(
        key=config["key"],
        value=token,
        max_age=config["max_age"],
        httponly=config["httponly"],
        secure=config["secure"],
        samesite=config["samesite"],
        path=config["path"],
    )


async def get_shopper(
    request: Request,
    response: Response,
    x_user_id: Annotated[str | None, Header()] = None,
) -> ShopperContext:
    """Resolve the shopper for this request.

    A new guest session is started when the request carries none; its
    token is returned in the cookie and the X-Session-Token header.

    Args:
        request: FastAPI request object.
        response: FastAPI response object.
        x_user_id: Opaque user id supplied by the auth layer in front of this service.

    Returns:
        ShopperContext: Session key and optional user id.
    """
    session_key = get_session_token(request)
    if not session_key:
        session_key = secrets.token_urlsafe(32)
        set_session_cookie(response, session_key)
        response.headers["x-session-token"] = session_key

    return ShopperContext(session_key=session_key, user_id=x_user_id or None)


async def get_signed_in_shopper(shopper: Annotated[ShopperContext, Depends(get_shopper)]) -> ShopperContext:
    """Require a signed-in shopper.

    Raises:
        AuthenticationError: If no user id accompanies the request.
    """
    if not shopper.is_authenticated:
        raise AuthenticationError("Please sign in to place an order")
    return shopper


async def get_shopper_cart(shopper: Annotated[ShopperContext, Depends(get_shopper)]) -> CartStore:
    """Get the shopper's cart store, loaded from persistence."""
    store = get_cart_store(shopper.owner_key)
    await store.load()
    return store


# Type aliases for cleaner dependency injection
Shopper = Annotated[ShopperContext, Depends(get_shopper)]
SignedInShopper = Annotated[ShopperContext, Depends(get_signed_in_shopper)]
ShopperCart = Annotated[CartStore, Depends(get_shopper_cart)]
BuyNowSlots = Annotated[BuyNowStore, Depends(get_buy_now_store)]
CheckoutRuns = Annotated[CheckoutRunRegistry, Depends(get_checkout_registry)]
PaymentGateway = Annotated[RazorpayCheckoutAdapter, Depends(get_payment_gateway)]
