from __future__ import annotations

import os
from pathlib import Path
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)
    """Application runtime configuration."""

    app_name: str = "BillTrack"
    environment: str = "development"
    host: str = os.getenv("BT_HOST", "127.0.0.1")
    port: int = int(os.getenv("BT_PORT", "8080"))
    log_level: str = os.getenv("BT_LOG_LEVEL", "INFO")
    cors_origins: List[str] = Field(
        default_factory=lambda: [
            origin.strip()
            for origin in os.getenv("BT_CORS_ORIGINS", "http://127.0.0.1:4200,http://localhost:4200").split(",")
            if origin.strip()
        ]
    )

    sqlite_path: Path = Path(os.getenv("BT_SQLITE_PATH", "./data/billtrack.db"))
    export_dir: Path = Path(os.getenv("BT_EXPORT_DIR", "./data/exports"))

    # Divisor turning a contract's daily rate into an hourly rate.
    hours_per_day: float = float(os.getenv("BT_HOURS_PER_DAY", "8"))

    default_user_id: str = os.getenv("BT_DEFAULT_USER", "local")

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: str | List[str]) -> List[str]:
        if isinstance(value, list):
            return value
        if not value:
            return []
        return [origin.strip() for origin in value.split(",") if origin.strip()]

    @field_validator("hours_per_day")
    @classmethod
    def _positive_hours(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("hours_per_day must be positive")
        return value


settings = Settings()

# Ensure essential directories exist
settings.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
settings.export_dir.mkdir(parents=True, exist_ok=True)
