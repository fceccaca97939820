from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):

    AWS_REGION: str
    AWS_PROFILE: str | None = None
    DYNAMODB_TABLE_NAME: str
    DYNAMODB_ENDPOINT_URL: str | None = None

    STRIPE_SECRET_KEY: str
    STRIPE_WEBHOOK_SECRET: str

    PAYPAL_CLIENT_ID: str = ""
    PAYPAL_CLIENT_SECRET: str = ""
    PAYPAL_MODE: Literal["sandbox", "live"] = "sandbox"

    ADMIN_GROUP: str = "admin"

    # Aggregation
    LAST_DONORS_WINDOW: int = 15
    AGGREGATE_MAX_ATTEMPTS: int = 5
    AGGREGATE_RETRY_WAIT_SECONDS: float = 0.05

    # Checkout guard rails, in major units
    DEFAULT_CURRENCY: str = "GBP"
    MIN_DONATION: Decimal = Decimal("1")
    MAX_DONATION: Decimal = Decimal("10000")

    RATE_LIMIT_BACKEND: Literal["memory", "dynamodb"] = "memory"
    RATE_LIMIT_REQUESTS: int = 30
    RATE_LIMIT_WINDOW_SECONDS: int = 60

    CORS_ALLOW_ORIGINS: list[str] = ["*"]
    API_ROOT_PATH: str = ""
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

@lru_cache()
def get_settings() -> Settings:
    return Settings()
