"""Environment-driven configuration objects for the delivery backend."""
from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from dotenv import load_dotenv

from app.core.exceptions import ConfigurationException


def _str_to_bool(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"true", "1", "yes", "y"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationException(f"{name} must be an integer, got {raw!r}") from exc


def _env_decimal(name: str, default: str) -> Decimal:
    raw = os.getenv(name) or default
    try:
        value = Decimal(raw.strip())
    except InvalidOperation as exc:
        raise ConfigurationException(f"{name} must be a number, got {raw!r}") from exc
    if value < 0:
        raise ConfigurationException(f"{name} must not be negative")
    return value


@dataclass(slots=True)
class PricingConfig:
    delivery_fee: Decimal
    tax_rate: Decimal
    delivery_eta_minutes: int
    max_item_quantity: int


@dataclass(slots=True)
class PaymentConfig:
    stripe_secret_key: str | None
    stripe_webhook_secret: str | None
    currency: str
    min_amount_minor: int
    require_gateway_confirmation: bool

    @property
    def enabled(self) -> bool:
        return bool(self.stripe_secret_key)


@dataclass(slots=True)
class Settings:
    database_url: str | None
    db_min_connections: int
    db_max_connections: int
    db_pool_wait_timeout: int
    redis_url: str | None
    cart_ttl_seconds: int
    pricing: PricingConfig
    payments: PaymentConfig
    sentry_dsn: str | None
    environment: str
    log_level: str
    rate_limit_orders: str


def load_settings() -> Settings:
    """Load environment variables once and expose typed settings."""
    load_dotenv()

    pricing = PricingConfig(
        delivery_fee=_env_decimal("DELIVERY_FEE", "2.99"),
        tax_rate=_env_decimal("TAX_RATE", "0.08"),
        delivery_eta_minutes=_env_int("DELIVERY_ETA_MINUTES", 30),
        max_item_quantity=_env_int("CART_MAX_QUANTITY", 10),
    )
    if pricing.max_item_quantity < 1:
        raise ConfigurationException("CART_MAX_QUANTITY must be at least 1")

    payments = PaymentConfig(
        stripe_secret_key=os.getenv("STRIPE_SECRET_KEY") or None,
        stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET") or None,
        currency=(os.getenv("PAYMENT_CURRENCY") or "inr").strip().lower(),
        min_amount_minor=_env_int("PAYMENT_MIN_AMOUNT", 5000),
        require_gateway_confirmation=_str_to_bool(os.getenv("REQUIRE_GATEWAY_CONFIRMATION")),
    )

    return Settings(
        database_url=os.getenv("DATABASE_URL") or None,
        db_min_connections=_env_int("DB_MIN_CONN", 1),
        db_max_connections=_env_int("DB_MAX_CONN", 5),
        db_pool_wait_timeout=_env_int("DB_POOL_WAIT_TIMEOUT", 30),
        redis_url=os.getenv("REDIS_URL") or None,
        cart_ttl_seconds=_env_int("CART_TTL_SECONDS", 24 * 60 * 60),
        pricing=pricing,
        payments=payments,
        sentry_dsn=os.getenv("SENTRY_DSN") or None,
        environment=os.getenv("ENVIRONMENT", "production"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        rate_limit_orders=os.getenv("RATE_LIMIT_ORDERS", "10/minute"),
    )
