from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # Where Claude Code keeps its session logs (None = ~/.claude)
    claude_config_dir: Path | None = None

    # Billing windows are UTC-aligned blocks of this many hours
    session_window_hours: int = Field(default=5, ge=1, le=24)
    burn_rate_window_minutes: int = Field(default=60, gt=0)

    # Cache tiers (seconds)
    cache_ttl_seconds: float = 30
    session_cache_ttl_seconds: float = 60
    block_cache_ttl_seconds: float = 300

    # Report defaults
    default_daily_days: int = 30
    default_monthly_months: int = 6

    # API
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    # Logging
    log_level: str = "INFO"


settings = Settings()
