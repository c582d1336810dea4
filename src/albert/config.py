# Albert configuration.
# Created: 2026-10-02
#
# Deployment-level settings live in ~/.albert/config.json (overridable with
# ALBERT_* environment variables). Runtime state that admins toggle while the
# server runs (keys, disabled abilities) lives in the options table instead.

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


def get_config_dir() -> Path:
    """Return the config directory, creating it if needed."""
    override = os.environ.get("ALBERT_CONFIG_DIR")
    path = Path(override) if override else Path.home() / ".albert"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_config_path() -> Path:
    return get_config_dir() / "config.json"


class Settings(BaseSettings):
    """Albert settings."""

    model_config = SettingsConfigDict(env_prefix="ALBERT_", extra="ignore")

    site_name: str = Field(default="Albert", description="Name shown on consent screens")
    base_url: str = Field(
        default="http://localhost:8888", description="Public URL of this server"
    )
    external_url: str = Field(
        default="", description="Tunnel/proxy URL used instead of base_url in developer mode"
    )
    developer_mode: bool = Field(default=False, description="Enable developer-only behavior")
    db_path: str = Field(default="", description="SQLite database path (default: config dir)")
    log_level: str = Field(default="INFO")
    session_token_ttl_hours: int = Field(default=24, description="Login cookie lifetime")
    audit_enabled: bool = Field(default=True, description="Write the JSONL audit log")
    api_cors_allowed_origins: list[str] = Field(default_factory=list)

    def public_base_url(self) -> str:
        """URL advertised to OAuth clients.

        The external URL only wins in developer mode, so a stale tunnel URL can
        never leak into a production discovery document.
        """
        if self.developer_mode and self.external_url:
            return self.external_url.rstrip("/")
        return self.base_url.rstrip("/")

    def resolved_db_path(self) -> Path:
        if self.db_path:
            return Path(self.db_path).expanduser()
        return get_config_dir() / "albert.sqlite3"

    def save(self) -> None:
        """Persist settings to the config file."""
        path = get_config_path()
        path.write_text(json.dumps(self.model_dump(), indent=2))
        try:
            path.chmod(0o600)
        except OSError as exc:
            logger.debug("Could not restrict permissions on %s: %s", path, exc)

    @classmethod
    def load(cls) -> Settings:
        """Load settings from the config file, with environment overrides."""
        path = get_config_path()
        data: dict = {}
        if path.exists():
            try:
                data = json.loads(path.read_text())
            except (json.JSONDecodeError, OSError) as exc:
                logger.warning("Failed to read %s: %s", path, exc)
        # Environment variables take precedence over the file.
        env_keys = {name for name in cls.model_fields if f"ALBERT_{name.upper()}" in os.environ}
        file_data = {k: v for k, v in data.items() if k in cls.model_fields and k not in env_keys}
        return cls(**file_data)

