"""Application configuration settings.

All configuration values are loaded from environment variables (.env file).
No sensitive values should be hardcoded here.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    PROJECT_NAME: str = "Receptionist Billing API"
    VERSION: str = "0.1.0"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = False

    # Database - REQUIRED
    DATABASE_URL: str

    # Stripe - REQUIRED for overage charging and webhooks
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""

    # Billing cycle
    # Fixed-length cycle used when a paid invoice rolls the period forward
    BILLING_CYCLE_DAYS: int = 30
    BILLING_CURRENCY: str = "usd"

    # Retry policy for Stripe charge calls
    STRIPE_RETRY_ATTEMPTS: int = 3
    STRIPE_RETRY_BASE_DELAY_SECONDS: float = 1.0
    STRIPE_RETRY_MAX_DELAY_SECONDS: float = 30.0

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # CORS
    CORS_ORIGINS: list[str] = []

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
