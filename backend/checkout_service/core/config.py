from functools import lru_cache

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # App
    app_name: str = "Course Checkout"
    debug: bool = False
    site_url: str = "http://localhost:3000"
    allowed_redirect_origins: list[str] = []
    # Returns fake checkout URLs instead of calling Stripe (never honored when debug is off)
    dev_checkout: bool = False

    # Database (empty = no durable backend, file ledger + in-memory rate limits)
    database_url: str = Field(
        default="",
        validation_alias=AliasChoices("database_url", "DATABASE_URL", "POSTGRES_URL"),
    )

    # Stripe
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_price_id_live_eur: str = Field(
        default="",
        validation_alias=AliasChoices(
            "stripe_price_id_live_eur", "STRIPE_PRICE_ID_LIVE_EUR", "STRIPE_PRICE_ID_COURSE_EUR"
        ),
    )
    stripe_price_id_self_eur: str = ""

    # Email (Resend)
    resend_api_key: str = ""
    email_from: str = "KI Kompakt Kurs <noreply@zangerlcoachingdynamics.com>"
    support_email: str = "lukas@zangerlcoachingdynamics.com"
    confirmation_timeout_seconds: float = 30.0

    # Webhook ledger file, used only without a database
    webhook_ledger_path: str = "logs/webhook-events.json"

    # Rate limits (fixed window)
    checkout_rate_limit: int = 20
    webhook_rate_limit: int = 60
    rate_limit_window_ms: int = 60_000

    @field_validator("database_url")
    @classmethod
    def _use_async_driver(cls, value: str) -> str:
        """Point bare Postgres URLs at the asyncpg driver."""
        for prefix in ("postgres://", "postgresql://"):
            if value.startswith(prefix):
                return "postgresql+asyncpg://" + value[len(prefix):]
        return value

    @property
    def has_database(self) -> bool:
        return bool(self.database_url)


@lru_cache
def get_settings() -> Settings:
    return Settings()
