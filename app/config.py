from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # Pydantic v2 settings config
    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Database Configuration - required from .env
    DATABASE_URL: str

    # Logging Configuration - required from .env
    LOG_LEVEL: str

    # Twilio webhook signature check, disabled when empty
    TWILIO_AUTH_TOKEN: str = ""
    # Public URL Twilio posts to; falls back to the request URL
    PUBLIC_WEBHOOK_URL: str = ""

    # Property details used in replies and the service window
    PROPERTY_NAME: str = "Sandpiper Run"
    PROPERTY_TIMEZONE: str = "America/New_York"
    EMERGENCY_CONTACT: str = "[EMERGENCY NUMBER - TO BE PROVIDED]"

    # Admin read API key (X-Admin-Key header), API disabled when empty
    ADMIN_API_KEY: str = ""


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


# Global settings instance
settings = get_settings()
