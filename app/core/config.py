from pydantic import model_validator
from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    # App Config
    APP_NAME: str = "Stripe Billing Bridge"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: list[str] = ["*"]
    RATE_LIMIT_ENABLED: bool = True
    SUPPORT_EMAIL: str = "support@example.com"

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_TIMEOUT_SECONDS: int = 8
    STRIPE_MAX_NETWORK_RETRIES: int = 2
    STRIPE_WEBHOOK_TOLERANCE_SECONDS: int = 300
    WEBHOOK_TIMEOUT_SECONDS: float = 25.0

    # Redirects (checkout success/cancel, portal return)
    WEBSITE_URL: Optional[str] = None
    CHECKOUT_SUCCESS_PATH: str = "/dashboard"
    CHECKOUT_CANCEL_PATH: str = "/dashboard"
    PORTAL_RETURN_PATH: str = "/dashboard"

    # Sessions issued by the auth service
    AUTH_SECRET_KEY: Optional[str] = None
    AUTH_ALGORITHM: str = "HS256"
    SESSION_COOKIE_NAME: str = "session_token"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"

    @model_validator(mode="after")
    def _stripe_fits_in_webhook_timeout(self):
        # retrieve_customer is the only Stripe call made while handling an event
        worst_case = self.STRIPE_TIMEOUT_SECONDS * (self.STRIPE_MAX_NETWORK_RETRIES + 1)
        if worst_case >= self.WEBHOOK_TIMEOUT_SECONDS:
            raise ValueError(
                f"Stripe calls may take {worst_case}s with retries; "
                f"WEBHOOK_TIMEOUT_SECONDS ({self.WEBHOOK_TIMEOUT_SECONDS}) must be larger"
            )
        return self

    def missing_required(self) -> list[str]:
        """Names of required settings that are unset or empty."""
        required = ("STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET", "WEBSITE_URL", "AUTH_SECRET_KEY")
        return [name for name in required if not getattr(self, name)]

    def website_url(self, path: str) -> str:
        return (self.WEBSITE_URL or "").rstrip("/") + path


@lru_cache()
def get_settings():
    return Settings()
