from functools import lru_cache
from typing import Any, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_CORS = ["http://localhost:3000", "http://localhost:5173"]


def _parse_cors_origins(v: Any) -> List[str]:
    if v is None or v == "":
        return _DEFAULT_CORS.copy()
    if isinstance(v, list):
        return [x for x in v if isinstance(x, str) and x.strip()]
    s = str(v).strip()
    if s.startswith("["):
        import json
        try:
            out = json.loads(s)
        except ValueError:
            return _DEFAULT_CORS.copy()
        return [x for x in out if isinstance(x, str) and x.strip()] or _DEFAULT_CORS.copy()
    return [x.strip() for x in s.split(",") if x.strip()] or _DEFAULT_CORS.copy()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    env: str = Field(default="development", description="ENV")
    debug: bool = Field(default=False, description="DEBUG")
    secret_key: str = Field(default="change-me-in-production-min-32-chars")
    app_timezone: str = Field(default="Asia/Kolkata", alias="APP_TIMEZONE")

    # MongoDB
    mongodb_uri: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URI")
    mongodb_db_name: str = Field(default="resume_credits", alias="MONGODB_DB_NAME")
    # Requires a replica set (Atlas or rs0 locally); turn off for a standalone mongod
    mongodb_transactions: bool = Field(default=True, alias="MONGODB_TRANSACTIONS")
    storage_retry_attempts: int = Field(default=3, alias="STORAGE_RETRY_ATTEMPTS")

    # Razorpay
    razorpay_key_id: str = Field(default="", alias="RAZORPAY_KEY_ID")
    razorpay_key_secret: str = Field(default="", alias="RAZORPAY_KEY_SECRET")
    razorpay_webhook_secret: str = Field(default="", alias="RAZORPAY_WEBHOOK_SECRET")
    razorpay_timeout_seconds: float = Field(default=10.0, alias="RAZORPAY_TIMEOUT_SECONDS")
    receipt_max_length: int = Field(default=40, alias="RECEIPT_MAX_LENGTH")

    # Sentry
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")

    # CORS: env as string, exposed as list
    cors_origins_raw: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        alias="CORS_ORIGINS",
        description="Comma-separated or JSON list",
    )

    @property
    def cors_origins(self) -> List[str]:
        return _parse_cors_origins(getattr(self, "cors_origins_raw", None))

    @property
    def is_production(self) -> bool:
        return self.env.lower() == "production"

    # Credit policy
    signup_bonus_credits: int = Field(default=1, alias="SIGNUP_BONUS_CREDITS")
    free_daily_action_limit: int = Field(default=1, alias="FREE_DAILY_ACTION_LIMIT")
    default_credit_pack: int = Field(default=7, alias="DEFAULT_CREDIT_PACK")
    refund_on_generation_failure: bool = Field(default=False, alias="REFUND_ON_GENERATION_FAILURE")

    # Subscription
    subscription_months: int = Field(default=1, alias="SUBSCRIPTION_MONTHS")
    subscription_renewal_days: int = Field(default=30, alias="SUBSCRIPTION_RENEWAL_DAYS")


@lru_cache
def get_settings() -> Settings:
    return Settings()
