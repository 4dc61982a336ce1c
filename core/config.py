# ==================================================================================
# core/config.py: Billing Service Configuration (Stripe + SendGrid + Pydantic v2)
# ==================================================================================
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import EmailStr, ValidationError
import logging
import sys

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    # ------------------------
    # DATABASE CONFIG
    # ------------------------
    DATABASE_URL: str = "sqlite:///./billing.db"

    # ------------------------
    # SECURITY CONFIG
    # ------------------------
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # ------------------------
    # SENDGRID EMAIL CONFIG
    # ------------------------
    SENDGRID_API_KEY: str | None = None
    MAIL_FROM: EmailStr | None = None

    FRONTEND_URL: str = "http://localhost:3000"

    # ------------------------
    # STRIPE / PAYMENT CONFIG
    # ------------------------
    STRIPE_SECRET_KEY: str
    STRIPE_WEBHOOK_SECRET: str | None = None

    # Seconds allowed for one outbound call back to Stripe
    STRIPE_TIMEOUT_SECONDS: float = 10.0
    # Accepted age of a webhook signature timestamp
    STRIPE_WEBHOOK_TOLERANCE_SECONDS: int = 300

    STRIPE_STARTER_PRICE_ID: str | None = None
    STRIPE_PROFESSIONAL_PRICE_ID: str | None = None
    STRIPE_AGENCY_PRICE_ID: str | None = None

    DEFAULT_TIER: str = "starter"
    TRIAL_DURATION_DAYS: int = 14

    # Days a processed webhook delivery is kept; must outlast Stripe's 3-day redelivery window
    WEBHOOK_EVENT_RETENTION_DAYS: int = 30

    # ------------------------
    # CRON CONFIG
    # ------------------------
    CRON_SECRET: str | None = None

    # ------------------------
    # ENVIRONMENT SETTINGS
    # ------------------------
    ENVIRONMENT: str = "development"  # 'development' | 'production'
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    @property
    def IS_PRODUCTION(self) -> bool:
        """Convenience helper to check if running in production"""
        return self.ENVIRONMENT.lower() == "production"

    @property
    def tier_price_ids(self) -> dict[str, str | None]:
        """Price id configured for each paid tier."""
        return {
            "starter": self.STRIPE_STARTER_PRICE_ID,
            "professional": self.STRIPE_PROFESSIONAL_PRICE_ID,
            "agency": self.STRIPE_AGENCY_PRICE_ID,
        }

    def validate_stripe_key(self) -> None:
        """
        Fail fast on a malformed Stripe secret key, and refuse a test key
        when running in production.
        """
        if not self.STRIPE_SECRET_KEY.startswith(("sk_", "rk_")):
            raise ValueError("STRIPE_SECRET_KEY must start with 'sk_' or 'rk_'")
        if self.IS_PRODUCTION and self.STRIPE_SECRET_KEY.startswith("sk_test_"):
            raise ValueError("Refusing to use a Stripe test key in production")

    # ------------------------
    # Pydantic v2 Settings
    # ------------------------
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


# ------------------------
# Global Settings Loader
# ------------------------
try:
    settings = Settings()
    settings.validate_stripe_key()
    logger.info(f"✅ Environment loaded. Environment: {settings.ENVIRONMENT}, Debug: {settings.DEBUG}")
except ValidationError as e:
    print("❌ Environment configuration error: missing or invalid settings!")
    print(e)
    sys.exit(1)
except ValueError as ex:
    print(f"❌ Invalid Stripe configuration: {ex}")
    sys.exit(1)
