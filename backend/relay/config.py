"""Signaling relay configuration.

Loads settings from a single YAML file:
  * relay.settings.yaml: server, logging and signaling options

The path can be overridden with the RELAY_SETTINGS_FILE environment variable.
A missing file is not an error; every setting has a default.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("relay.settings.yaml")
SETTINGS_ENV_VAR = "RELAY_SETTINGS_FILE"


def _settings_path() -> Path:
    override = os.environ.get(SETTINGS_ENV_VAR)
    return Path(override) if override else SETTINGS_FILE


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
    level: Literal["debug", "info", "warning", "error", "critical"] = "info"

    @field_validator("level", mode="before")
    @classmethod
    def _lowercase(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value


class SignalingSettings(BaseModel):
    """Options for rooms and message delivery."""
    max_participants:  int = Field(default=0, ge=0)   # 0 = no limit
    lock_stripes:      int = Field(default=16, ge=1)
    room_topic_prefix: str = "/topic/room/"
    user_queue:        str = "/queue/signal"


class AppSettings(BaseModel):
    server:    ServerSettings    = Field(default_factory=ServerSettings)
    logging:   LoggingSettings   = Field(default_factory=LoggingSettings)
    signaling: SignalingSettings = Field(default_factory=SignalingSettings)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------

_config: Optional[AppSettings] = None


def load_settings(path: Optional[Path] = None) -> AppSettings:
    """Load settings from YAML into an *AppSettings* object."""
    settings_data = _load_yaml(path or _settings_path())
    app_settings = AppSettings(**settings_data)
    logger.info(
        "Settings loaded (server=%s:%s, max_participants=%s, lock_stripes=%s)",
        app_settings.server.host,
        app_settings.server.port,
        app_settings.signaling.max_participants,
        app_settings.signaling.lock_stripes,
    )
    return app_settings


def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    global _config
    if _config is None:
        _config = load_settings()
    return _config


def reset_config() -> None:
    """Forget cached settings so the next get_config() reloads them."""
    global _config
    _config = None
