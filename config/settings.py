"""
config/settings.py
Application settings loaded from environment variables.
Uses Pydantic BaseSettings for validation and type safety.
Every service process reads the same settings; SERVICE_NAME picks which app runs.
"""

from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


def _split(value: str) -> List[str]:
    return [v.strip().rstrip("/") for v in value.split(",") if v.strip()]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────
    APP_NAME: str = "Booking Platform"
    APP_ENV: str = "development"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    SERVICE_NAME: str = "gateway"

    # ── Server ───────────────────────────────────────────────
    HOST: str = "0.0.0.0"
    GATEWAY_PORT: int = 3000
    USER_SERVICE_PORT: int = 3001
    BOOKING_SERVICE_PORT: int = 3002
    PAYMENT_SERVICE_PORT: int = 3003
    NOTIFICATION_SERVICE_PORT: int = 3004

    # ── Databases (one per service) ──────────────────────────
    USERS_DATABASE_URL: str = "sqlite+aiosqlite:///./users.db"
    BOOKINGS_DATABASE_URL: str = "sqlite+aiosqlite:///./bookings.db"
    PAYMENTS_DATABASE_URL: str = "sqlite+aiosqlite:///./payments.db"
    NOTIFICATIONS_DATABASE_URL: str = "sqlite+aiosqlite:///./notifications.db"
    DATABASE_POOL_SIZE: int = 10
    DATABASE_MAX_OVERFLOW: int = 20
    DATABASE_POOL_TIMEOUT: int = 30

    # ── Redis ────────────────────────────────────────────────
    REDIS_URL: str = "redis://localhost:6379/0"

    # ── JWT ──────────────────────────────────────────────────
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24
    JWT_SERVICE_TOKEN_EXPIRE_MINUTES: int = 5

    # ── Service Registry ─────────────────────────────────────
    USER_SERVICE_URLS: str = "http://localhost:3001"
    BOOKING_SERVICE_URLS: str = "http://localhost:3002"
    PAYMENT_SERVICE_URLS: str = "http://localhost:3003"
    NOTIFICATION_SERVICE_URLS: str = "http://localhost:3004"

    # ── Gateway ──────────────────────────────────────────────
    GATEWAY_TIMEOUT_SECONDS: float = 30.0
    RATE_LIMIT_REQUESTS: int = 100
    RATE_LIMIT_WINDOW_SECONDS: int = 15 * 60

    # ── Frontend ─────────────────────────────────────────────
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # ── Payments (simulated gateways) ────────────────────────
    PAYMENT_CURRENCY: str = "USD"
    PAYMENT_LATENCY_SCALE: float = 1.0
    REFUND_FAILURE_RATE: float = 0.1

    # ── Notifications (simulated email) ──────────────────────
    EMAIL_FAILURE_RATE: float = 0.02
    EMAIL_LATENCY_SECONDS: float = 0.5
    NOTIFICATION_RECIPIENT_TEMPLATE: str = "user{account_id}@example.com"

    # ── Outbox delivery ──────────────────────────────────────
    OUTBOX_DISPATCH_INLINE: bool = True
    OUTBOX_MAX_ATTEMPTS: int = 8
    OUTBOX_BACKOFF_BASE_SECONDS: float = 2.0
    OUTBOX_BACKOFF_MAX_SECONDS: float = 300.0
    OUTBOX_BATCH_SIZE: int = 50
    OUTBOX_FLUSH_INTERVAL_SECONDS: int = 30
    OUTBOX_LEASE_SECONDS: int = 60

    # ── Internal HTTP ────────────────────────────────────────
    INTERNAL_HTTP_TIMEOUT_SECONDS: float = 10.0
    INTERNAL_HTTP_RETRY_ATTEMPTS: int = 3

    # ── Celery ───────────────────────────────────────────────
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"

    # ── Observability ────────────────────────────────────────
    METRICS_ENABLED: bool = True
    LOG_JSON: bool = True

    # ── Seed ─────────────────────────────────────────────────
    SEED_CATALOG: bool = True

    @property
    def allowed_origins_list(self) -> List[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",")]

    @property
    def service_urls(self) -> dict:
        return {
            "users": _split(self.USER_SERVICE_URLS),
            "bookings": _split(self.BOOKING_SERVICE_URLS),
            "payments": _split(self.PAYMENT_SERVICE_URLS),
            "notifications": _split(self.NOTIFICATION_SERVICE_URLS),
        }

    @property
    def service_ports(self) -> dict:
        return {
            "gateway": self.GATEWAY_PORT,
            "users": self.USER_SERVICE_PORT,
            "bookings": self.BOOKING_SERVICE_PORT,
            "payments": self.PAYMENT_SERVICE_PORT,
            "notifications": self.NOTIFICATION_SERVICE_PORT,
        }


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance. Call this everywhere."""
    return Settings()


settings = get_settings()
