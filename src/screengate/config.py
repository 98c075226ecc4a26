"""Centralized configuration management using environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# Load .env file from project root
load_dotenv()


class Config(BaseSettings):
    """Configuration settings for screengate."""

    # Database (PostgreSQL in production, SQLite for development)
    database_url: str = "sqlite:///screengate.db"
    database_echo: bool = False

    # Rate limiting: packages express their ceiling per window of this length
    sg_rate_window_seconds: float = 60.0

    # Credits debited per screening job
    sg_job_cost: int = 1

    # Executor
    sg_max_concurrent_jobs: int = 4
    sg_job_timeout_seconds: float = 120.0

    # Pairing links
    sg_link_ttl_seconds: float = 600.0

    # Ledger bookkeeping: resolved reservation ids remembered for idempotency
    sg_resolved_token_cache: int = 10_000

    # Logging
    sg_log_level: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


@lru_cache(maxsize=1)
def get_config() -> Config:
    """Get configuration instance with validation."""
    config = Config()

    if config.sg_job_cost < 1:
        raise ValueError(f"SG_JOB_COST must be at least 1, got {config.sg_job_cost}")
    if config.sg_max_concurrent_jobs < 1:
        raise ValueError(
            f"SG_MAX_CONCURRENT_JOBS must be at least 1, got {config.sg_max_concurrent_jobs}"
        )
    if config.sg_rate_window_seconds <= 0:
        raise ValueError("SG_RATE_WINDOW_SECONDS must be positive")

    return config
