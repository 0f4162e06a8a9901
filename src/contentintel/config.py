"""Configuration loading from environment variables with validation."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

# Anchor all paths to the project root (two levels up from this file)
_PROJECT_DIR = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CONTENTINTEL_",
        case_sensitive=False,
    )

    # Third-party credentials (loaded separately, no prefix)
    anthropic_api_key: str = ""
    youtube_api_key: str = ""
    google_service_account_key: str = ""  # base64-encoded service account JSON
    telegram_bot_token: str = ""

    # Model settings
    model: str = "claude-sonnet-4-5-20250929"
    max_tokens: int = 8192
    temperature: float = 0.3
    model_timeout_seconds: float = 300.0

    # Storage paths (absolute, anchored to the project root)
    db_path: Path = _PROJECT_DIR / "data" / "contentintel.db"
    reports_dir: Path = _PROJECT_DIR / "data" / "reports"

    # Fetching
    fetch_concurrency: int = 4
    fetch_timeout_seconds: float = 20.0
    fetch_join_timeout_seconds: float = 120.0
    max_articles_per_source: int = 10
    lookback_days: int = 45
    user_agent: str = "contentintel/0.1 (+digest pipeline)"

    # Analysis
    max_article_chars: int = 6000

    # Delivery
    relay_queue_size: int = 100
    relay_min_interval_seconds: float = 1.0
    summary_top_n: int = 5
    delivery_timeout_seconds: float = 120.0

    # Recovery
    stale_run_minutes: int = 180

    # Logging
    log_level: str = "INFO"


def get_settings() -> Settings:
    """Load settings from environment and .env file."""
    # Load .env from the project root regardless of cwd
    load_dotenv(_PROJECT_DIR / ".env")
    return Settings(
        anthropic_api_key=os.getenv("ANTHROPIC_API_KEY", ""),
        youtube_api_key=os.getenv("YOUTUBE_API_KEY", ""),
        google_service_account_key=os.getenv("GOOGLE_SERVICE_ACCOUNT_KEY", ""),
        telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN", ""),
    )
