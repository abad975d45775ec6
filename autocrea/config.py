"""Application configuration using pydantic-settings."""

from functools import lru_cache
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file without clobbering variables already set in the environment
load_dotenv(override=False)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True

    # API Server
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Authentication: bearer token -> user id. Empty disables verification.
    api_tokens: dict[str, str] = Field(default_factory=dict)

    # Vercel
    vercel_token: str = Field(default="")
    vercel_team_id: str | None = None
    vercel_api_url: str = "https://api.vercel.com"

    # Netlify
    netlify_token: str = Field(default="")
    netlify_api_url: str = "https://api.netlify.com/api/v1"

    # Railway
    railway_token: str = Field(default="")
    railway_api_url: str = "https://backboard.railway.app/graphql/v2"

    # Provider call timeouts
    create_timeout_seconds: float = 30.0
    status_timeout_seconds: float = 10.0
    cancel_timeout_seconds: float = 15.0

    # Status polling
    poll_enabled: bool = True
    poll_interval_seconds: float = 15.0
    poll_max_concurrency: int = Field(default=4, ge=1)
    max_poll_failures: int = Field(default=5, ge=1)

    # Deployment storage
    store_backend: Literal["memory", "sqlite"] = "memory"
    deployment_db_path: str = "data/deployments.db"

    # Rate limiting for deployment creation
    deploy_rate_limit: int = 10
    deploy_rate_window_seconds: int = 3600

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["console", "json"] = "console"
    log_directory: str = "logs"
    log_file_name: str = "autocrea.log"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

