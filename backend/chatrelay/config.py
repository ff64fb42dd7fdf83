"""Chat Relay application configuration.

Loads settings from a single YAML file:
  * relay.settings.yaml: server, history store, limits and logging

The file location can be overridden with the CHATRELAY_SETTINGS environment
variable. A missing file is not an error; every setting has a default.
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

SETTINGS_FILE = Path("relay.settings.yaml")
SETTINGS_ENV_VAR = "CHATRELAY_SETTINGS"


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
    port:            int       = 3000
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class HistorySettings(BaseModel):
    """Configuration for the persisted message log."""
    db_path:                     str   = "chat_history.duckdb"
    window_size:                 int   = Field(default=20, ge=1)
    persistence_timeout_seconds: float = Field(default=5.0, gt=0)
    welcome_sender:              str   = "System"
    welcome_message:             str   = "Welcome to the chat!"


class LimitSettings(BaseModel):
    """Upper bounds on client-supplied text. Longer events are dropped."""
    max_message_length:      int = Field(default=4000, ge=1)
    max_display_name_length: int = Field(default=64, ge=1)


class LoggingSettings(BaseModel):
    level: str = "info"

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        if not isinstance(getattr(logging, value.upper(), None), int):
            raise ValueError(f"Unknown log level: {value}")
        return value


class AppSettings(BaseModel):
    server:  ServerSettings  = Field(default_factory=ServerSettings)
    history: HistorySettings = Field(default_factory=HistorySettings)
    limits:  LimitSettings   = Field(default_factory=LimitSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


# ---------------------------------------------------------------------------
# Path resolution
# ---------------------------------------------------------------------------


def _resolve_db_path(settings: AppSettings, settings_path: Path) -> None:
    """Resolve a relative history db_path against the settings file directory.

    ``:memory:`` is left untouched so tests can run against an in-memory DB.
    """
    raw = settings.history.db_path
    if raw == ":memory:" or Path(raw).is_absolute():
        return
    settings.history.db_path = str(settings_path.parent.resolve() / raw)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(settings_path: Optional[Path] = None) -> AppSettings:
    """Load settings from *settings_path* (or the env var / default file)."""
    if settings_path is None:
        settings_path = Path(os.environ.get(SETTINGS_ENV_VAR, SETTINGS_FILE))
    settings_path = Path(settings_path)

    app_settings = AppSettings(**_load_yaml(settings_path))
    _resolve_db_path(app_settings, settings_path)

    logger.info(
        "Settings loaded (server=%s:%s, history.db_path=%s, history.window_size=%d)",
        app_settings.server.host,
        app_settings.server.port,
        app_settings.history.db_path,
        app_settings.history.window_size,
    )
    return app_settings


_config: Optional[AppSettings] = None


def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Drop the cached settings. Primarily used for testing."""
    global _config
    _config = None
