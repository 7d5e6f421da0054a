"""Centralized application configuration for all environments."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Final

from dotenv import load_dotenv

BASE_DIR: Final[Path] = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"

# Load environment variables once, prioritizing runtime env over file values
load_dotenv(dotenv_path=ENV_PATH, override=False)


def _str_to_bool(value: str | bool | None, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _determine_database_url() -> str:
    """
    Return a connection string using the following precedence:
    1. Explicit DATABASE_URL
    2. Individual DB_* components (for PostgreSQL)
    3. Local SQLite fallback (for onboarding / tests)
    """
    explicit_url = os.getenv("DATABASE_URL")
    if explicit_url:
        return explicit_url

    username = os.getenv("DB_USERNAME")
    password = os.getenv("DB_PASSWORD")
    host = os.getenv("DB_HOST")
    port = os.getenv("DB_PORT")
    name = os.getenv("DB_NAME")

    if all([username, password, host, port, name]):
        driver = os.getenv("DB_DRIVER", "postgresql+psycopg2")
        return f"{driver}://{username}:{password}@{host}:{port}/{name}"

    fallback_path = BASE_DIR / "db" / "app.db"
    fallback_path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{fallback_path.as_posix()}"


def _csv_tuple(raw: str, default: tuple[str, ...]) -> tuple[str, ...]:
    values = [item.strip().lower() for item in raw.split(",") if item.strip()]
    return tuple(values) or default


class Config:
    """Default runtime configuration shared across Flask, services, and scripts."""

    APP_NAME: Final[str] = os.getenv("APP_NAME", "Luxe Storefront")
    APP_ENV: Final[str] = os.getenv("APP_ENV", "development")

    SECRET_KEY: Final[str] = os.getenv("SECRET_KEY", "change-me-in-prod")
    DEBUG: Final[bool] = _str_to_bool(os.getenv("FLASK_DEBUG"), default=APP_ENV == "development")
    TESTING: Final[bool] = _str_to_bool(os.getenv("FLASK_TESTING"), default=False)

    # Flask run configuration (used by run.py)
    FLASK_RUN_HOST: Final[str] = os.getenv("FLASK_RUN_HOST", "0.0.0.0")
    FLASK_RUN_PORT: Final[int] = int(os.getenv("FLASK_RUN_PORT", "5000"))

    # Database
    DATABASE_URL: Final[str] = _determine_database_url()
    SQL_ECHO: Final[bool] = _str_to_bool(os.getenv("SQL_ECHO"), default=False)
    DB_POOL_SIZE: Final[int] = int(os.getenv("DB_POOL_SIZE", "10"))
    DB_MAX_OVERFLOW: Final[int] = int(os.getenv("DB_MAX_OVERFLOW", "20"))

    # Pricing (overridable at runtime through the tax_config site setting)
    CURRENCY_SYMBOL: Final[str] = os.getenv("CURRENCY_SYMBOL", "₹")
    TAX_RATE: Final[float] = float(os.getenv("TAX_RATE", "0.18"))
    SHIPPING_FLAT_RATE: Final[float] = float(os.getenv("SHIPPING_FLAT_RATE", "99"))
    FREE_SHIPPING_THRESHOLD: Final[float] = float(os.getenv("FREE_SHIPPING_THRESHOLD", "1000"))
    COD_HANDLING_FEE: Final[float] = float(os.getenv("COD_HANDLING_FEE", "5"))

    # Delivery estimate window
    DELIVERY_MIN_DAYS: Final[int] = int(os.getenv("DELIVERY_MIN_DAYS", "3"))
    DELIVERY_MAX_DAYS: Final[int] = int(os.getenv("DELIVERY_MAX_DAYS", "7"))

    # LuxePay simulated gateway timers
    LUXEPAY_STAGE_INTERVAL_SECONDS: Final[float] = float(os.getenv("LUXEPAY_STAGE_INTERVAL_SECONDS", "1.2"))
    LUXEPAY_SETTLE_SECONDS: Final[float] = float(os.getenv("LUXEPAY_SETTLE_SECONDS", "0.8"))
    LUXEPAY_RELEASE_SECONDS: Final[float] = float(os.getenv("LUXEPAY_RELEASE_SECONDS", "2.5"))
    # Idle sessions expire after the TTL; consumed or cancelled ones are kept
    # briefly so late polls still see their final state
    LUXEPAY_SESSION_TTL_SECONDS: Final[float] = float(os.getenv("LUXEPAY_SESSION_TTL_SECONDS", "900"))
    LUXEPAY_FINISHED_RETENTION_SECONDS: Final[float] = float(os.getenv("LUXEPAY_FINISHED_RETENTION_SECONDS", "60"))

    # Razorpay (mock responses are used while the key is unset or a placeholder)
    RAZORPAY_KEY_ID: Final[str] = os.getenv("RAZORPAY_KEY_ID", "")
    RAZORPAY_KEY_SECRET: Final[str] = os.getenv("RAZORPAY_KEY_SECRET", "")
    RAZORPAY_API_BASE: Final[str] = os.getenv("RAZORPAY_API_BASE", "https://api.razorpay.com/v1")
    RAZORPAY_TIMEOUT_SECONDS: Final[int] = int(os.getenv("RAZORPAY_TIMEOUT_SECONDS", "30"))

    # Media storage
    MEDIA_ROOT: Final[Path] = Path(os.getenv("MEDIA_ROOT", (BASE_DIR / "media").as_posix()))
    MEDIA_URL_PREFIX: Final[str] = os.getenv("MEDIA_URL_PREFIX", "/media/")
    MEDIA_ALLOWED_EXTENSIONS: Final[tuple[str, ...]] = _csv_tuple(
        os.getenv("MEDIA_ALLOWED_EXTENSIONS", "jpg,jpeg,png,gif,webp,mp4,webm"),
        ("jpg", "jpeg", "png", "gif", "webp", "mp4", "webm"),
    )

    # Storefront behaviour
    BROWSING_HISTORY_LIMIT: Final[int] = int(os.getenv("BROWSING_HISTORY_LIMIT", "20"))
    RECENT_HISTORY_WINDOW: Final[int] = int(os.getenv("RECENT_HISTORY_WINDOW", "5"))
    CART_REMINDER_DELAY_MINUTES: Final[int] = int(os.getenv("CART_REMINDER_DELAY_MINUTES", "60"))
    NOTIFICATION_PAGE_SIZE: Final[int] = int(os.getenv("NOTIFICATION_PAGE_SIZE", "50"))
    ANALYTICS_WINDOW_DAYS: Final[int] = int(os.getenv("ANALYTICS_WINDOW_DAYS", "90"))
    ANALYTICS_CHART_DAYS: Final[int] = int(os.getenv("ANALYTICS_CHART_DAYS", "7"))
    CHANGE_FEED_MAX_EVENTS: Final[int] = int(os.getenv("CHANGE_FEED_MAX_EVENTS", "500"))
    LOW_STOCK_THRESHOLD: Final[int] = int(os.getenv("LOW_STOCK_THRESHOLD", "5"))

    # Observability
    STRUCTURED_LOGS_ENABLED: Final[bool] = _str_to_bool(os.getenv("STRUCTURED_LOGS_ENABLED"), default=True)
    LOG_LEVEL: Final[str] = os.getenv("LOG_LEVEL", "INFO")
    REQUEST_ID_HEADER: Final[str] = os.getenv("REQUEST_ID_HEADER", "X-Request-ID")
    OBSERVABILITY_ENABLED: Final[bool] = _str_to_bool(os.getenv("OBSERVABILITY_ENABLED"), default=True)

    DEFAULT_TIMEZONE: Final[str] = os.getenv("DEFAULT_TIMEZONE", "UTC")

    @classmethod
    def configure_app(cls, app: Any) -> None:
        """Apply core configuration to a Flask app instance."""
        app.config["SECRET_KEY"] = cls.SECRET_KEY
        app.config["ENV"] = cls.APP_ENV
        app.config["DEBUG"] = cls.DEBUG
        app.config["TESTING"] = cls.TESTING
        app.config["SQLALCHEMY_DATABASE_URI"] = cls.DATABASE_URL
        app.config["SQLALCHEMY_ECHO"] = cls.SQL_ECHO
        cls.MEDIA_ROOT.mkdir(parents=True, exist_ok=True)
        app.config["MEDIA_ROOT"] = str(cls.MEDIA_ROOT)
        app.config["MEDIA_URL_PREFIX"] = cls.MEDIA_URL_PREFIX
        app.config["STRUCTURED_LOGS_ENABLED"] = cls.STRUCTURED_LOGS_ENABLED
        app.config["OBSERVABILITY_ENABLED"] = cls.OBSERVABILITY_ENABLED
