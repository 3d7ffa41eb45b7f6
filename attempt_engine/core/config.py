"""Application settings and configuration."""

from typing import Literal

from pydantic import Field, model_validator  # type: ignore
from pydantic_settings import BaseSettings, SettingsConfigDict  # type: ignore


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    ENV: Literal["dev", "staging", "prod", "test"] = Field(default="dev")
    PROJECT_NAME: str = Field(default="Exam Attempt Engine")

    # API
    API_PREFIX: str = Field(default="/v1")

    # CORS - Accept string or list, will be normalized to list
    CORS_ORIGINS: str | list[str] = Field(default="http://localhost:3000,http://localhost:3001")

    # Logging
    LOG_LEVEL: str = Field(default="INFO")

    # Remote attempt store
    ATTEMPT_STORE_URL: str = Field(default="http://localhost:8080/api")
    ATTEMPT_STORE_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)

    # Integrity
    MAX_VIOLATIONS: int = Field(default=3, ge=1)
    REQUIRE_FULLSCREEN: bool = Field(default=True)
    REQUIRE_MEDIA: bool = Field(default=True)
    MEDIA_RESTART_THROTTLE_SECONDS: float = Field(default=5.0, ge=0)

    # Timer
    TICK_INTERVAL_SECONDS: float = Field(default=1.0, gt=0)
    LOW_TIME_WARNING_MINUTES: int = Field(default=5, ge=0)

    # Answer sync / submit retry (linear backoff: delay * attempt)
    SYNC_MAX_ATTEMPTS: int = Field(default=3, ge=1)
    SYNC_RETRY_DELAY_SECONDS: float = Field(default=1.0, ge=0)
    SUBMIT_MAX_ATTEMPTS: int = Field(default=3, ge=1)

    # Results polling
    RESULTS_POLL_INTERVAL_SECONDS: float = Field(default=5.0, gt=0)
    RESULTS_POLL_MAX_ATTEMPTS: int = Field(default=60, ge=1)

    @model_validator(mode="before")
    @classmethod
    def parse_cors_origins(cls, data):
        """Parse CORS_ORIGINS from comma-separated string or list."""
        if isinstance(data, dict) and "CORS_ORIGINS" in data:
            cors_origins = data["CORS_ORIGINS"]
            if isinstance(cors_origins, str):
                data["CORS_ORIGINS"] = [
                    origin.strip() for origin in cors_origins.split(",") if origin.strip()
                ]
        return data

    def __init__(self, **kwargs):
        """Validate settings on initialization."""
        super().__init__(**kwargs)
        # Ensure CORS_ORIGINS is a list after initialization
        if isinstance(self.CORS_ORIGINS, str):
            object.__setattr__(
                self,
                "CORS_ORIGINS",
                [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()],
            )
        # Fail fast in production if critical vars are missing
        if self.ENV == "prod":
            if not self.ATTEMPT_STORE_URL or "localhost" in self.ATTEMPT_STORE_URL:
                raise ValueError("ATTEMPT_STORE_URL must be set in production")


# Global settings instance
settings = Settings()
