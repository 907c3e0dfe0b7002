"""Application configuration management using Pydantic Settings."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    Required settings will raise validation errors if not provided.
    Monetary policy values are integers in paisa.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="storefront-checkout", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/staging/production)")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="Comma-separated list of allowed CORS origins",
    )

    # Supabase (cart persistence and product stock lookups)
    supabase_url: str = Field(..., description="Supabase project URL")
    supabase_secret_key: str = Field(..., description="Supabase secret key for backend operations")

    # Order persistence / payment backend
    order_api_base_url: str = Field(..., description="Base URL of the order persistence API")
    order_api_timeout_seconds: float = Field(default=15.0, description="Timeout for order API requests")

    # Payment gateway widget
    razorpay_enabled: bool = Field(default=True, description="Offer the Razorpay payment method")
    razorpay_key_id: str = Field(default="", description="Fallback public key when the backend omits one")
    payment_session_timeout_seconds: float = Field(
        default=900.0,
        description="Seconds an open payment widget may wait for a callback before it counts as abandoned",
    )
    store_display_name: str = Field(default="Blinkeach", description="Merchant name shown in the payment widget")
    checkout_theme_color: str = Field(default="#1F51A9", description="Payment widget theme color")

    # Pricing policy
    currency: str = Field(default="INR", description="ISO currency code")
    delivery_charge_paisa: int = Field(default=4000, ge=0, description="Flat delivery charge")
    universal_discount_paisa: int | None = Field(
        default=None,
        ge=0,
        description="Discount every order receives; defaults to the delivery charge",
    )
    gateway_discount_threshold_paisa: int = Field(
        default=100000,
        ge=0,
        description="Base total at/above which the higher gateway discount applies",
    )
    gateway_discount_rate_below_threshold: float = Field(default=0.01, ge=0, le=1)
    gateway_discount_rate_at_or_above_threshold: float = Field(default=0.05, ge=0, le=1)
    cod_handling_fee_paisa: int = Field(default=0, ge=0, description="Extra fee for cash on delivery")

    # Session
    session_cookie_name: str = Field(default="storefront_session", description="Session cookie name")
    session_cookie_max_age: int = Field(default=2592000, description="Session cookie max age in seconds (30 days)")
    session_cookie_secure: bool = Field(default=True, description="Use secure cookies (HTTPS only)")

    # Buy-now slot
    buy_now_ttl_seconds: int = Field(default=1800, description="Lifetime of an unused buy-now item")
    buy_now_max_entries: int = Field(default=5000, description="Maximum buy-now slots held in memory")

    # In-memory caches of carts and checkout runs
    cart_store_idle_seconds: int = Field(
        default=900,
        description="Idle time after which a cached cart is dropped and reloaded from persistence",
    )
    cart_store_max_entries: int = Field(default=5000, description="Maximum carts cached in memory")
    checkout_run_ttl_seconds: int = Field(
        default=3600,
        description="Idle time after which an unattended checkout run is forgotten",
    )
    checkout_run_max_entries: int = Field(default=5000, description="Maximum checkout runs held in memory")

    # Confirmation view
    order_confirmation_path: str = Field(
        default="/order-confirmation",
        description="Frontend path of the order confirmation view",
    )

    # Request limits
    max_request_body_size: int = Field(default=65536, description="Maximum request body size in bytes")

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins string into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"

    @property
    def universal_discount(self) -> int:
        """Resolve the universal discount, which offsets delivery unless set explicitly."""
        if self.universal_discount_paisa is None:
            return self.delivery_charge_paisa
        return self.universal_discount_paisa


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings: Application settings instance.

    Note:
        Settings are cached using lru_cache for performance.
        Call get_settings.cache_clear() to reload settings.
    """
    return Settings()
