"""Cosmic Uploads application configuration.

Loads settings from a single YAML file, ``cosmic.settings.yaml``.  Every key
is optional; anything missing falls back to the defaults below, which match
the behaviour of the public deployment (24h TTL, 5GB cap, 1GB uploads).

Two environment variables override the file:
  * PORT: ``server.port``
  * FRONTEND_URL: ``server.frontend_url``
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("cosmic.settings.yaml")

_GIB = 1024 * 1024 * 1024


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:         str = "0.0.0.0"
    port:         int = 3000
    frontend_url: str = "https://lucasnegerson-eng.github.io/cosmic-uploads"


class StorageSettings(BaseModel):
    """Lifecycle limits for stored uploads."""
    upload_dir:                      str  = "uploads"
    ttl_seconds:                     int  = 24 * 60 * 60
    max_storage_bytes:               int  = 5 * _GIB
    expiry_sweep_interval_seconds:   int  = 60 * 60
    capacity_sweep_interval_seconds: int  = 10 * 60
    purge_orphans_on_start:          bool = True

    @field_validator(
        "ttl_seconds",
        "max_storage_bytes",
        "expiry_sweep_interval_seconds",
        "capacity_sweep_interval_seconds",
    )
    @classmethod
    def _must_be_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value


class UploadSettings(BaseModel):
    max_file_size_bytes: int = _GIB


class LoggingSettings(BaseModel):
    level: str = "info"


class AppConfig(BaseModel):
    server:  ServerSettings  = Field(default_factory=ServerSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    upload:  UploadSettings  = Field(default_factory=UploadSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def _apply_env_overrides(data: Dict[str, Any]) -> None:
    server = data.get("server") or {}
    data["server"] = server
    port = os.environ.get("PORT")
    if port:
        server["port"] = int(port)
    frontend_url = os.environ.get("FRONTEND_URL")
    if frontend_url:
        server["frontend_url"] = frontend_url


def load_config(settings_path: Optional[Path] = None) -> AppConfig:
    """Load *AppConfig* from YAML, then apply environment overrides.

    A relative ``storage.upload_dir`` is resolved against the directory that
    holds the settings file, so the service can be started from anywhere.
    """
    path = Path(settings_path) if settings_path is not None else SETTINGS_FILE
    data = _load_yaml(path)
    _apply_env_overrides(data)

    config = AppConfig(**data)

    upload_dir = Path(config.storage.upload_dir)
    if not upload_dir.is_absolute():
        base = path.resolve().parent
        config.storage.upload_dir = str(base / upload_dir)

    config.server.frontend_url = config.server.frontend_url.rstrip("/")

    logger.info(
        "Settings loaded (server=%s:%s, upload_dir=%s, ttl=%ss, cap=%d bytes)",
        config.server.host,
        config.server.port,
        config.storage.upload_dir,
        config.storage.ttl_seconds,
        config.storage.max_storage_bytes,
    )
    return config


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Return the process-wide config, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config
