"""Configuration utilities for the BillTrack client."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

DEFAULT_API_BASE_URL = "http://127.0.0.1:8080"
DEFAULT_USER_ID = "local"
DEFAULT_POLL_INTERVAL = 1
DEFAULT_REQUEST_TIMEOUT = 15
DEFAULT_CACHE_PATH = Path.home() / ".billtrack" / "tracking.json"


@dataclass(slots=True)
class AppConfig:
    """Configuration values for the client."""

    api_base_url: str = DEFAULT_API_BASE_URL
    api_token: Optional[str] = None
    user_id: str = DEFAULT_USER_ID
    polling_interval_seconds: int = DEFAULT_POLL_INTERVAL
    request_timeout: int = DEFAULT_REQUEST_TIMEOUT
    tracking_cache_path: Optional[Path] = DEFAULT_CACHE_PATH


def load_config() -> AppConfig:
    """Load the configuration from an optional `.env` file and the environment."""

    env_path = Path(__file__).resolve().parent.parent / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    cache_path = os.getenv("BILLTRACK_TRACKING_CACHE")
    return AppConfig(
        api_base_url=os.getenv("BILLTRACK_API_BASE_URL", DEFAULT_API_BASE_URL),
        api_token=os.getenv("BILLTRACK_API_TOKEN"),
        user_id=os.getenv("BILLTRACK_USER_ID", DEFAULT_USER_ID),
        polling_interval_seconds=int(os.getenv("BILLTRACK_POLL_INTERVAL", DEFAULT_POLL_INTERVAL)),
        request_timeout=int(os.getenv("BILLTRACK_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT)),
        # An empty value disables the hint cache.
        tracking_cache_path=Path(cache_path) if cache_path else (DEFAULT_CACHE_PATH if cache_path is None else None),
    )


__all__ = ["AppConfig", "load_config"]
