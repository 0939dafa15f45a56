"""Application configuration using Pydantic Settings."""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite:///./plinth.db"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    LOG_LEVEL: str = "INFO"

    # Salt for run idempotency keys; bump to force fresh runs after a pipeline change
    PIPELINE_VERSION: str = "v1"

    # Coverage gate
    COVERAGE_MIN_TOTAL_SOURCES: int = 5
    COVERAGE_MIN_EVIDENCE_TYPES: int = 3
    COVERAGE_MIN_FIRST_PARTY_RATIO: float = 0.2
    COVERAGE_MAX_MEDIAN_AGE_DAYS: float = 180.0

    # Orchestration
    STEP_TIMEOUT_SECONDS: int = 900
    SWEEP_INTERVAL: int = 60
    CLAIM_MAX_RETRIES: int = 3

    # Evidence collector (search API)
    SEARCH_API_KEY: Optional[str] = None
    SEARCH_API_URL: str = "https://api.tavily.com/search"
    SEARCH_MAX_RESULTS: int = 8
    SEARCH_TIMEOUT: float = 15.0

    # Content generator (OpenRouter)
    OPENROUTER_API_KEY: Optional[str] = None
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"
    GENERATOR_MODEL: str = "openai/gpt-oss-120b:free"
    SITE_URL: str = ""
    SITE_NAME: str = "Plinth"

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)


# Global settings instance
settings = Settings()
