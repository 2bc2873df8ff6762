"""Application configuration."""

import os
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    data_dir: Path = Path("data")
    images_dir: Path | None = None
    store_path: Path | None = None
    secret_path: Path | None = None
    timezone: str = "UTC"
    cloud_sync_enabled: bool = False
    supabase_url: str | None = None
    supabase_service_key: str | None = None
    supabase_bucket: str = "meal-photos"
    description_provider: str = "mistral"
    mistral_model: str = "mistral-large-3-25-12"
    mistral_base_url: str = "https://api.mistral.ai/v1"
    openai_model: str = "gpt-5.2"
    description_api_key: str | None = None
    sync_interval_seconds: float = 0
    analysis_interval_seconds: float = 0
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )

    @property
    def resolved_images_dir(self) -> Path:
        return self.images_dir or self.data_dir / "images"

    @property
    def resolved_store_path(self) -> Path:
        return self.store_path or self.data_dir / "foodlog.db"

    @property
    def resolved_secret_path(self) -> Path:
        return self.secret_path or self.data_dir / "description_api_key"


def parse_timezone(raw: str | None) -> ZoneInfo:
    """Parse an IANA timezone name, defaulting to UTC when blank."""
    cleaned = (raw or "").strip()
    if not cleaned:
        return ZoneInfo("UTC")
    try:
        return ZoneInfo(cleaned)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone {cleaned!r}") from exc
