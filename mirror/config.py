"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Kiosk Mirror application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    debug: bool = False
    expose_docs: bool = False

    # Paths
    media_dir: Path = Path("./public/videos")
    manifest_path: Path = Path("./manifest.json")

    # Remote source
    drive_folder_id: str = ""
    drive_api_base: str = "https://www.googleapis.com/drive/v3"
    drive_access_token: str = ""
    gcp_sa_key: str = ""
    gcp_sa_key_file: Path | None = None
    playlist_descriptor_name: str = "playlist.json"

    # Sync
    max_file_bytes: int = Field(default=1_000_000_000, ge=1)
    download_concurrency: int = Field(default=2, ge=1, le=16)
    redownload_without_checksum: bool = False
    sync_interval_seconds: int = Field(default=0, ge=0)
    http_timeout_seconds: float = Field(default=60.0, gt=0)

    # Media serving
    media_chunk_bytes: int = Field(default=256 * 1024, ge=4096)
    default_media_type: str = "video/mp4"

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)

    # CORS
    cors_origins: list[str] = Field(default_factory=list)
    trusted_hosts: list[str] = Field(default_factory=list)

    # Response hardening
    security_headers_enabled: bool = True

    @property
    def lock_path(self) -> Path:
        """Lock file serializing reconciliation passes across processes."""
        return self.manifest_path.with_name(self.manifest_path.name + ".lock")

    @property
    def drive_configured(self) -> bool:
        return bool(self.drive_folder_id) and bool(
            self.drive_access_token or self.gcp_sa_key or self.gcp_sa_key_file
        )

    def validate_runtime(self) -> None:
        """Validate settings that would make the server misbehave silently."""
        violations: list[str] = []
        if self.media_dir.exists() and not self.media_dir.is_dir():
            violations.append(f"MEDIA_DIR exists but is not a directory: {self.media_dir}")
        if self.manifest_path.exists() and self.manifest_path.is_dir():
            violations.append(f"MANIFEST_PATH points at a directory: {self.manifest_path}")
        if self.sync_interval_seconds and not self.drive_configured:
            violations.append(
                "SYNC_INTERVAL_SECONDS requires DRIVE_FOLDER_ID and Drive credentials"
            )
        if not self.debug and not self.trusted_hosts:
            violations.append("TRUSTED_HOSTS must be configured in production")

        if violations:
            joined = "; ".join(violations)
            raise ValueError(f"Invalid configuration: {joined}")
