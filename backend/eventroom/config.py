"""Eventroom application configuration.

Loads settings from a single YAML file:
  * eventroom.settings.yaml  - server, logging, presence and debug settings

The file location can be overridden with the ``EVENTROOM_SETTINGS``
environment variable. A missing file yields the defaults below.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("eventroom.settings.yaml")
SETTINGS_ENV_VAR = "EVENTROOM_SETTINGS"


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
    host:            str       = "0.0.0.0"
    port:            int       = 5001
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class LoggingSettings(BaseModel):
    level: str = "info"


class PresenceSettings(BaseModel):
    """Disconnect handling for room participants."""
    grace_period_seconds: float = 10.0

    @field_validator("grace_period_seconds")
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("grace_period_seconds must be >= 0")
        return value


class DebugSettings(BaseModel):
    endpoint_enabled: bool = True


class AppConfig(BaseModel):
    server:   ServerSettings   = Field(default_factory=ServerSettings)
    logging:  LoggingSettings  = Field(default_factory=LoggingSettings)
    presence: PresenceSettings = Field(default_factory=PresenceSettings)
    debug:    DebugSettings    = Field(default_factory=DebugSettings)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(settings_path: Optional[Path] = None) -> AppConfig:
    """Load *settings_path* (or the default location) into an AppConfig."""
    if settings_path is None:
        settings_path = Path(os.environ.get(SETTINGS_ENV_VAR, SETTINGS_FILE))

    config = AppConfig(**_load_yaml(Path(settings_path)))
    logger.info(
        "Settings loaded (server=%s:%s, grace_period=%ss, debug_endpoint=%s)",
        config.server.host,
        config.server.port,
        config.presence.grace_period_seconds,
        config.debug.endpoint_enabled,
    )
    return config


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Return the process-wide config, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Forget the cached config so the next get_config() reloads it."""
    global _config
    _config = None
