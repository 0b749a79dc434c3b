"""Huddle application configuration.

Loads settings from a single YAML file:
  * huddle.settings.yaml: server, logging, chat and client settings

The path can be overridden with the ``HUDDLE_SETTINGS`` environment variable.
A missing file is not an error; every field has a default.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("huddle.settings.yaml")
SETTINGS_ENV_VAR = "HUDDLE_SETTINGS"


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
    host: str = "0.0.0.0"
    port: int = 8000


class LoggingSettings(BaseModel):
    level: str = "info"


class ChatSettings(BaseModel):
    """Server-side room settings."""
    history_limit:        int   = Field(default=100, ge=1)
    send_timeout_seconds: float = Field(default=5.0, gt=0)


class ClientSettings(BaseModel):
    """Reconnection and typing behaviour of the chat client."""
    url:                     str   = "ws://localhost:8000/ws"
    base_delay_ms:           int   = Field(default=1000, ge=0)
    max_delay_ms:            int   = Field(default=30000, ge=0)
    max_attempts:            int   = Field(default=5, ge=0)
    typing_expiry_seconds:   float = Field(default=3.0, gt=0)
    typing_debounce_seconds: float = Field(default=3.0, gt=0)


class AppSettings(BaseModel):
    server:  ServerSettings  = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    chat:    ChatSettings    = Field(default_factory=ChatSettings)
    client:  ClientSettings  = Field(default_factory=ClientSettings)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def settings_path() -> Path:
    return Path(os.environ.get(SETTINGS_ENV_VAR, str(SETTINGS_FILE)))


def load_settings(path: Optional[Path] = None) -> AppSettings:
    """Load *AppSettings* from YAML, falling back to defaults."""
    settings_data = _load_yaml(path or settings_path())

    app_settings = AppSettings(**settings_data)
    logger.info(
        "Settings loaded (server=%s:%s, history_limit=%s, max_attempts=%s)",
        app_settings.server.host,
        app_settings.server.port,
        app_settings.chat.history_limit,
        app_settings.client.max_attempts,
    )
    return app_settings


_config: Optional[AppSettings] = None


def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    global _config
    if _config is None:
        _config = load_settings()
    return _config


def reset_config() -> None:
    """Drop the cached settings so the next get_config() reloads them."""
    global _config
    _config = None
