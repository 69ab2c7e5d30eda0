"""Application configuration and settings management."""

from pathlib import Path
from typing import Any, Optional

import json
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="COURIER_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "Courier Journey Sync"
    api_prefix: str = "/api"
    data_root: Path = Field(default=Path("data"), description="Root directory for device-local state.")
    storage_quota_bytes: int = Field(
        default=5 * 1024 * 1024,
        ge=0,
        description="Maximum bytes the device store may hold across all keys (0 disables the quota).",
    )

    route_service_base_url: Optional[str] = Field(
        default=None,
        description="Base URL of the delivery platform API (e.g., https://ops.example.com/api).",
    )
    route_service_timeout_seconds: float = Field(default=30.0, gt=0.0)
    route_service_max_retries: int = Field(default=3, ge=0)
    route_service_backoff_seconds: float = Field(default=1.0, ge=0.0)

    driver_id: Optional[str] = Field(default=None, description="Delivery executive this device belongs to.")

    queue_max_retries: int = Field(default=5, ge=1)
    traffic_check_interval_seconds: float = Field(default=300.0, gt=0.0)
    network_probe_interval_seconds: float = Field(
        default=15.0,
        ge=0.0,
        description="How often to probe the route service for connectivity (0 disables probing).",
    )

    geolocation_timeout_seconds: float = Field(default=8.0, gt=0.0)
    geolocation_high_accuracy: bool = True
    geolocation_maximum_age_seconds: float = Field(default=0.0, ge=0.0)
    device_latitude: Optional[float] = Field(default=None, ge=-90.0, le=90.0)
    device_longitude: Optional[float] = Field(default=None, ge=-180.0, le=180.0)

    frontend_allowed_origins: tuple[str, ...] = Field(
        default=(
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ),
        description="Permitted web origins for the on-device UI (CORS).",
    )

    @field_validator("data_root", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Path:
        path_value = value if isinstance(value, Path) else Path(str(value))
        return path_value.expanduser().resolve()

    @field_validator("route_service_base_url", mode="before")
    @classmethod
    def _strip_trailing_slash(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip()
        return text.rstrip("/") or None

    @field_validator("frontend_allowed_origins", mode="before")
    @classmethod
    def _parse_str_tuple_from_env(cls, value: Any) -> tuple[str, ...]:
        """Parse string tuple from environment variable (comma-separated or JSON array)."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(str(item) for item in value)
        if isinstance(value, str):
            # Try JSON first
            try:
                parsed = json.loads(value)
                if isinstance(parsed, list):
                    return tuple(str(item) for item in parsed)
            except (json.JSONDecodeError, TypeError):
                pass
            if "," in value:
                return tuple(item.strip() for item in value.split(",") if item.strip())
            if value.strip():
                return (value.strip(),)
        return tuple()


settings = Settings()
