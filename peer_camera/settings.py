"""
Application Settings
Configuration management using Pydantic settings.
"""

import platform
from pathlib import Path
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support (``PEER_CAMERA_*``)."""

    model_config = SettingsConfigDict(
        env_prefix="PEER_CAMERA_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Identity
    device_name: str = Field(default_factory=lambda: platform.node() or "peer-camera")
    service_id: str = "peer-camera"

    # Network
    host: str = "0.0.0.0"
    port: int = 8765
    camera_urls: List[str] = Field(default_factory=lambda: ["http://localhost:8765"])
    discovery_interval_s: float = 2.0
    connect_timeout_s: float = 5.0
    ping_interval_s: float = 2.0
    capture_timeout_s: float = 10.0

    # Preview
    preview_interval_ms: int = 150
    preview_scale_factor: int = 4
    preview_intermediate_quality: int = 50
    preview_final_quality: int = 60

    # Camera
    photo_quality: int = 95
    camera_index: int = 0
    front_camera_index: int = 1
    photo_dir: Path = Path("photos")

    log_level: str = "INFO"


# Cached settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get cached settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
