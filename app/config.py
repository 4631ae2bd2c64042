"""
Configuration Management

Uses Pydantic BaseSettings to load configuration from environment variables.
All settings can be overridden via .env file or environment variables.

Environment Variables:
    APP_ENV: Environment name (development/staging/production)
    DEBUG: Enable debug mode (default: False)
    RECOMMENDER_URL: Base URL of the alternative-time recommender (optional)
    RECOMMENDER_TIMEOUT_SECONDS: Bound on recommender calls (default: 5)
    ALTERNATIVE_SEARCH_DAYS: Days searched either side of a request (default: 3)
    ALTERNATIVE_STEP_MINUTES: Candidate slot granularity (default: 30)
    ALTERNATIVE_TOP_K: Alternatives returned per request (default: 5)
    OPTIMIZER_MAX_WORKERS: Scoring threads per batch (default: 4)
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application Environment
    app_env: Literal["development", "staging", "production"] = "development"
    """Current application environment.

    Options:
    - development: Local development, verbose logging, docs enabled
    - staging: Pre-production testing environment
    - production: Live production environment, minimal logging
    """

    debug: bool = False
    """Enable debug mode.

    When True:
    - Detailed error messages in responses
    - DEBUG log level (conflict details, request timings)

    Should be False in production.
    """

    # Application Configuration
    app_name: str = "therapy-scheduler"
    """Application name."""

    host: str = "0.0.0.0"
    """Host to bind the application server."""

    port: int = 8000
    """Port to bind the application server."""

    # CORS Configuration
    cors_origins: str = "http://localhost:3000"
    """Comma-separated list of allowed CORS origins."""

    # Alternative Recommender
    recommender_url: Optional[str] = None
    """Base URL of the external alternative-time recommender.

    When unset, alternatives are ranked locally. When set, locally
    found candidates are sent to the recommender for final ranking.
    Example: http://localhost:8002
    """

    recommender_timeout_seconds: float = 5.0
    """Upper bound on a recommender call.

    On timeout the suggester returns an empty list instead of
    blocking the caller.
    """

    # Alternative-Time Search
    alternative_search_days: int = 3
    """Days searched before and after the requested date."""

    alternative_step_minutes: int = 30
    """Granularity of candidate start times in minutes."""

    alternative_top_k: int = 5
    """Maximum number of alternatives returned."""

    # Batch Optimizer
    optimizer_max_workers: int = 4
    """Threads used to score therapists for one client in parallel.

    Assignment itself is always serialized.
    """

    # Pydantic configuration
    model_config = SettingsConfigDict(
        env_file=".env",  # Load from .env file if it exists
        env_file_encoding="utf-8",
        case_sensitive=False,  # Allow RECOMMENDER_URL or recommender_url
        extra="ignore",  # Ignore extra environment variables
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.app_env == "development"

    @property
    def cors_origins_list(self) -> list[str]:
        """Split cors_origins into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def recommender_enabled(self) -> bool:
        """Check if an external recommender is configured."""
        return bool(self.recommender_url)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses lru_cache to ensure settings are loaded only once and reused
    across the application.

    Returns:
        Settings: Cached settings instance

    Example:
        >>> from app.config import get_settings
        >>> settings = get_settings()
        >>> print(settings.alternative_top_k)
        5
    """
    return Settings()


# Module-level settings instance for easy imports
settings = get_settings()
