"""Kiosk player configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PlayerSettings(BaseSettings):
    """Kiosk player settings (``KIOSK_PLAYER_*`` environment variables)."""

    model_config = SettingsConfigDict(
        env_prefix="KIOSK_PLAYER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    debug: bool = False

    # Mirror server
    server_url: str = "http://127.0.0.1:8000"
    http_timeout_seconds: float = Field(default=15.0, gt=0)
    playlist_refresh_seconds: float = Field(default=600.0, gt=0)

    # Playback
    muted: bool = True
    loop_playlist: bool = True
    max_play_retries: int = Field(default=3, ge=0, le=10)
    retry_base_delay: float = Field(default=0.5, gt=0)
    error_skip_delay: float = Field(default=0.05, ge=0)

    # mpv
    mpv_path: str = "mpv"
    ipc_path: Path = Path("/tmp/kiosk-player.sock")
    mpv_args: list[str] = Field(default_factory=lambda: ["--fullscreen"])
    ipc_connect_timeout: float = Field(default=10.0, gt=0)
