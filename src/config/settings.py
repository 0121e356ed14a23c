from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    APP_NAME: str = "Coachboard Progression API"
    APP_VERSION: str = "0.3.0"
    APP_ENV: Literal["development", "staging", "production"] = "development"
    DEBUG: bool = True
    API_V1_PREFIX: str = "/api/v1"
    APP_URL: str = "https://app.coachboard.io"  # Frontend URL for share links

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./coachboard.db"
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"

    # CORS
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "https://app.coachboard.io",
    ]

    # Assignment synchronization
    SYNC_TRANSPORT: Literal["polling", "push"] = "polling"
    SYNC_POLL_INTERVAL_SECONDS: float = 2.0
    SYNC_KEY_PREFIX: str = "assignment_sync:"
    SYNC_CHANNEL_PREFIX: str = "assignment_changes:"
    SYNC_KEY_TTL_SECONDS: int = 7 * 24 * 3600
    SSE_HEARTBEAT_SECONDS: float = 30.0

    # Optimistic concurrency
    COMMIT_MAX_RETRIES: int = 3

    # Observability (GlitchTip/Sentry)
    GLITCHTIP_DSN: str = ""
    GLITCHTIP_TRACES_SAMPLE_RATE: float = 0.2
    GLITCHTIP_PROFILES_SAMPLE_RATE: float = 0.1

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"

    @property
    def is_development(self) -> bool:
        return self.APP_ENV == "development"

    def share_url(self, share_token: str) -> str:
        """Build the client-facing share link for an assignment."""
        return f"{self.APP_URL.rstrip('/')}/share/{share_token}"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
