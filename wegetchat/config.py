from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Snapshot database
    DATABASE_URL: str = "sqlite:///./data/wegetchat.db"

    LOG_LEVEL: str = "INFO"

    # Key for signing session tokens - required from .env
    SESSION_SECRET: str

    # PBKDF2 work factor for new password hashes
    PASSWORD_HASH_ITERATIONS: int = 260_000

    # Where uploaded pictures and attachments are written
    UPLOAD_DIR: str = "./uploads"

    # Notifications kept per user, and shown per page
    NOTIFICATION_RETENTION: int = 200
    NOTIFICATION_PAGE_SIZE: int = 30


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()
