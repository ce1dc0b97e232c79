# app/core/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,  # Environment vars are uppercase
        extra="ignore",      # Ignore unexpected vars instead of raising
    )

    # Core application settings
    DATABASE_URL: str
    GOOGLE_API_KEY: str
    HOST: str = "0.0.0.0"
    PORT: int = 8101
    DEBUG: bool = False
    ENVIRONMENT: str = "development"
    LOG_FILE: str | None = "app.log"

    # CORS settings
    ALLOWED_ORIGINS: list[str] = ["*"]  # In production, specify actual origins
    ALLOW_CREDENTIALS: bool = True
    ALLOWED_METHODS: list[str] = ["*"]
    ALLOWED_HEADERS: list[str] = ["*"]

    # JWT settings (tokens are issued by the identity service)
    JWT_SECRET: str
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRE_MINUTES: int = 60

    # Text generation (Gemini)
    TEXT_MODEL: str = "gemini-2.5-flash"

    # Moderation and image generation (OpenAI-compatible endpoints)
    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    MODERATION_MODEL: str = "omni-moderation-latest"
    MODERATION_ENABLED: bool = True
    IMAGE_MODEL: str = "dall-e-3"
    IMAGE_SIZE: str = "1024x1024"
    UPSTREAM_TIMEOUT_SECONDS: float = 60.0
    UPSTREAM_MAX_RETRIES: int = 2

    # Card shape
    SCENES_PER_CARD: int = 4
    MAX_SCENES_PER_CARD: int = 8

    # Daily generation quota per subscription tier
    DAILY_LIMIT_FREE: int = 5
    DAILY_LIMIT_EDUCATOR: int = 50
    DAILY_LIMIT_PREMIUM: int = 200
    QUOTA_TIMEZONE: str = "UTC"

    # Session orchestration
    MAX_SESSION_RETRIES: int = 3
    GENERATION_WORKERS: int = 2
    STALE_SESSION_MINUTES: int = 15
    REAPER_POLL_SECONDS: int = 60

    # Cost accounting (USD)
    TEXT_COST_PER_1K_TOKENS_USD: float = 0.0006
    IMAGE_COST_USD: float = 0.04


def _validate_settings(settings: Settings) -> None:
    """Validate critical application settings."""
    if not settings.DATABASE_URL:
        raise ValueError("DATABASE_URL is required")
    if not settings.GOOGLE_API_KEY:
        raise ValueError("GOOGLE_API_KEY is required")
    if settings.MAX_SESSION_RETRIES < 1:
        raise ValueError("MAX_SESSION_RETRIES must be at least 1")
    if not 1 <= settings.SCENES_PER_CARD <= settings.MAX_SCENES_PER_CARD:
        raise ValueError("SCENES_PER_CARD must be between 1 and MAX_SCENES_PER_CARD")

    # Environment-specific validations
    if settings.ENVIRONMENT == "production" and settings.DEBUG:
        print("WARNING: DEBUG is enabled in production. Consider setting DEBUG=False.")
    if settings.ENVIRONMENT == "production" and not settings.OPENAI_API_KEY:
        raise ValueError("OPENAI_API_KEY is required in production")


# Initialize settings with error handling
try:
    settings = Settings()
    _validate_settings(settings)
except Exception as e:
    print(f"Error initializing settings: {e}")
    raise
