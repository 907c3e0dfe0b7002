"""Unit tests for configuration module."""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from storefront.core.config import Settings, get_settings

REQUIRED_ENV = {
    "SUPABASE_URL": "https://test.supabase.co",
    "SUPABASE_SECRET_KEY": "test-secret",
    "ORDER_API_BASE_URL": "https://orders.example.com",
}


class TestSettings:
    """Tests for Settings class."""

    def test_settings_loads_from_environment(self) -> None:
        """Test that Settings loads values from environment variables."""
        env_vars = {
            **REQUIRED_ENV,
            "APP_NAME": "test-app",
            "APP_ENV": "testing",
            "DEBUG": "true",
            "PORT": "9000",
            "DELIVERY_CHARGE_PAISA": "5000",
            "RAZORPAY_ENABLED": "false",
        }

        with patch.dict(os.environ, env_vars, clear=False):
            settings = Settings()

            assert settings.app_name == "test-app"
            assert settings.app_env == "testing"
            assert settings.debug is True
            assert settings.port == 9000
            assert settings.order_api_base_url == "https://orders.example.com"
            assert settings.delivery_charge_paisa == 5000
            assert settings.razorpay_enabled is False

    def test_settings_cors_origins_list(self) -> None:
        """Test that CORS origins are correctly parsed into a list."""
        env_vars = {**REQUIRED_ENV, "CORS_ORIGINS": "http://localhost:3000, http://example.com , http://test.com"}

        with patch.dict(os.environ, env_vars, clear=False):
            origins = Settings().cors_origins_list

            assert origins == ["http://localhost:3000", "http://example.com", "http://test.com"]

    def test_settings_is_production_property(self) -> None:
        """Test the is_production property."""
        with patch.dict(os.environ, {**REQUIRED_ENV, "APP_ENV": "production"}, clear=False):
            assert Settings().is_production is True

        with patch.dict(os.environ, {**REQUIRED_ENV, "APP_ENV": "development"}, clear=False):
            assert Settings().is_production is False

    def test_pricing_defaults(self) -> None:
        """Test the default pricing policy values."""
        with patch.dict(os.environ, REQUIRED_ENV, clear=True):
            settings = Settings(_env_file=None)

            assert settings.currency == "INR"
            assert settings.delivery_charge_paisa == 4000
            assert settings.gateway_discount_threshold_paisa == 100000
            assert settings.gateway_discount_rate_below_threshold == 0.01
            assert settings.gateway_discount_rate_at_or_above_threshold == 0.05
            assert settings.cod_handling_fee_paisa == 0

    def test_universal_discount_follows_delivery_charge(self) -> None:
        """Test that an unset universal discount equals the delivery charge."""
        with patch.dict(os.environ, {**REQUIRED_ENV, "DELIVERY_CHARGE_PAISA": "6000"}, clear=True):
            assert Settings(_env_file=None).universal_discount == 6000

        env_vars = {**REQUIRED_ENV, "DELIVERY_CHARGE_PAISA": "6000", "UNIVERSAL_DISCOUNT_PAISA": "0"}
        with patch.dict(os.environ, env_vars, clear=True):
            assert Settings(_env_file=None).universal_discount == 0

    def test_negative_delivery_charge_rejected(self) -> None:
        """Test that policy amounts cannot be negative."""
        with patch.dict(os.environ, {**REQUIRED_ENV, "DELIVERY_CHARGE_PAISA": "-1"}, clear=True):
            with pytest.raises(ValidationError):
                Settings(_env_file=None)

    def test_settings_validation_error_missing_required(self) -> None:
        """Test that validation errors are raised for missing required fields."""
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ValidationError) as exc_info:
                Settings(_env_file=None)

            error_fields = [e["loc"][0] for e in exc_info.value.errors()]
            assert "supabase_url" in error_fields
            assert "order_api_base_url" in error_fields


class TestGetSettings:
    """Tests for get_settings function."""

    def test_get_settings_returns_cached_singleton(self) -> None:
        """Test that get_settings returns the same cached instance."""
        get_settings.cache_clear()

        settings1 = get_settings()
        settings2 = get_settings()

        assert isinstance(settings1, Settings)
        assert settings1 is settings2

        get_settings.cache_clear()

    def test_get_settings_cache_can_be_cleared(self) -> None:
        """Test that cache can be cleared to reload settings."""
        get_settings.cache_clear()

        settings1 = get_settings()
        get_settings.cache_clear()
        settings2 = get_settings()

        assert settings1 is not settings2

        get_settings.cache_clear()
