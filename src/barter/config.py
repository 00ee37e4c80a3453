"""Configuration helpers for the trade engine."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


@dataclass
class Settings:
    """Runtime settings loaded from the environment."""

    database_path: str = "data/barter.db"
    geocoder_base_url: str = "https://api.bigdatacloud.net"
    geocoder_country: str = "US"
    geocoder_timeout: float = 5.0
    review_window_days: int = 30
    review_comment_limit: int = 140
    discord_token: Optional[str] = None


def _env_number(name: str, default, cast):
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return cast(raw.strip())
    except ValueError:
        raise RuntimeError(f"{name} must be a number, got {raw!r}") from None


def load_settings() -> Settings:
    """Load settings from environment variables.

    The function will read a local `.env` file when present.
    """

    load_dotenv()
    return Settings(
        database_path=os.getenv("BARTER_DB_PATH", "data/barter.db"),
        geocoder_base_url=os.getenv("BARTER_GEOCODER_URL", "https://api.bigdatacloud.net"),
        geocoder_country=os.getenv("BARTER_GEOCODER_COUNTRY", "US"),
        geocoder_timeout=_env_number("BARTER_GEOCODER_TIMEOUT", 5.0, float),
        review_window_days=_env_number("BARTER_REVIEW_WINDOW_DAYS", 30, int),
        review_comment_limit=_env_number("BARTER_REVIEW_COMMENT_LIMIT", 140, int),
        discord_token=os.getenv("DISCORD_TOKEN") or None,
    )
