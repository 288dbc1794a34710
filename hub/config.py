"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Knowledge Hub application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    debug: bool = False
    expose_docs: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///data/db/hub.db"

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)

    # CORS
    cors_origins: list[str] = Field(default_factory=list)
    trusted_hosts: list[str] = Field(default_factory=list)

    # Remote repository API
    github_api_base: str = "https://api.github.com"
    github_request_timeout_seconds: float = Field(default=15.0, gt=0)

    # Sync
    sync_timeout_seconds: float = Field(default=300.0, gt=0)
    sync_max_files_limit: int = Field(default=5000, ge=1)
    sync_stale_after_seconds: int = Field(default=1800, ge=1)

    # Local folder sync
    local_sync_max_files: int = Field(default=2000, ge=1)
    local_sync_max_file_bytes: int = Field(default=1_000_000, ge=1)

    # Identity bootstrap
    bootstrap_username: str = "owner"
    bootstrap_api_key: str | None = None

    def validate_runtime_security(self) -> None:
        """Validate security-critical production settings."""
        if self.debug:
            return

        violations: list[str] = []
        if not self.github_api_base.startswith("https://"):
            violations.append("GITHUB_API_BASE must use https in production")
        if not self.trusted_hosts:
            violations.append("TRUSTED_HOSTS must be configured in production")

        if violations:
            joined = "; ".join(violations)
            raise ValueError(f"Insecure production configuration: {joined}")
