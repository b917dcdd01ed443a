"""Application configuration management using Pydantic Settings."""

from decimal import Decimal
from functools import lru_cache
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_SHIPPING_COSTS: dict[str, Decimal] = {
    "standard": Decimal("5.99"),
    "express": Decimal("12.99"),
    "overnight": Decimal("24.99"),
}

DEFAULT_COUPONS: dict[str, dict[str, Any]] = {
    "SAVE10": {"discount": Decimal("10"), "discount_type": "percentage"},
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    Required settings will raise validation errors if not provided.
    Mapping settings (shipping costs, coupons) are read as JSON.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="marketplace-backend", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/staging/production)")
    debug: bool = Field(default=False, description="Enable debug mode (docs, tracebacks in errors)")

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="Comma-separated list of allowed CORS origins",
    )

    # Request limits
    max_request_body_size: int = Field(default=64 * 1024, ge=1, description="Largest accepted request body in bytes")

    # Supabase
    supabase_url: str = Field(..., description="Supabase project URL")
    supabase_secret_key: str = Field(..., description="Supabase secret key for backend operations")

    # Auth
    jwt_secret: str = Field(..., description="Secret used to verify bearer tokens")
    jwt_algorithm: str = Field(default="HS256", description="Bearer token signing algorithm")
    auth_cookie_name: str = Field(default="token", description="Cookie carrying the bearer token")

    # Pricing
    tax_rate: Decimal = Field(default=Decimal("0.08"), ge=0, description="Flat tax rate applied to the discounted subtotal")
    shipping_costs: dict[str, Decimal] = Field(
        default_factory=lambda: dict(DEFAULT_SHIPPING_COSTS),
        description="Shipping cost per shipping method",
    )
    coupons: dict[str, dict[str, Any]] = Field(
        default_factory=lambda: dict(DEFAULT_COUPONS),
        description="Coupon code table: code -> {discount, discount_type}",
    )

    # Cart
    cart_retention_days: int = Field(default=30, ge=1, description="Days an untouched cart is kept")
    cart_write_attempts: int = Field(default=3, ge=1, description="Attempts for a cart write before reporting a conflict")

    @field_validator("shipping_costs")
    @classmethod
    def validate_shipping_methods(cls, value: dict[str, Decimal]) -> dict[str, Decimal]:
        """Every known shipping method must have a cost."""
        missing = set(DEFAULT_SHIPPING_COSTS) - set(value)
        if missing:
            raise ValueError(f"Missing shipping cost for: {', '.join(sorted(missing))}")
        return value

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins string into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"


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
