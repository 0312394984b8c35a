"""
Nightlight configuration.

Settings come from a YAML file (path in NIGHTLIGHT_CONFIG, default
config/settings.yaml). String values may reference environment variables
as ${NAME} or ${NAME:-fallback}; unknown keys inside a section are ignored.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


@dataclass
class DatabaseConfig:
    store_backend: str = "memory"                      # "memory" | "file"
    store_file_dir: str = "./data"                     # directory for file backend
    flush_interval_s: float = 0                        # 0 = flush on every write


@dataclass
class QueueConfig:
    backend: str = "memory"             # "memory" for dev, "redis" for production
    redis_url: str = "redis://localhost:6379"
    queue_name: str = "nightlight-queue"
    worker_concurrency: int = 5         # max jobs handled in parallel per worker
    poll_interval_ms: int = 500         # pause between empty claim_due polls
    claim_batch_size: int = 20
    keep_completed_seconds: int = 3600  # how long finished job records are retained
    keep_failed_seconds: int = 86400


@dataclass
class ExpiryConfig:
    group_expiry_hours: float = 12       # used when a group has no explicit expiration
    reaction_ttl_minutes: float = 60     # lifetime of an emoji reaction


@dataclass
class NotificationConfig:
    push_enabled: bool = True
    expo_push_url: str = "https://exp.host/--/api/v2/push/send"
    expo_access_token: str = ""
    timeout_seconds: float = 10.0


@dataclass
class Settings:
    app_name: str = "Nightlight"
    debug: bool = False
    log_level: str = "INFO"
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    expiry: ExpiryConfig = field(default_factory=ExpiryConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)


_SECTIONS = {
    "database": DatabaseConfig,
    "queue": QueueConfig,
    "expiry": ExpiryConfig,
    "notifications": NotificationConfig,
}
_SCALARS = ("app_name", "debug", "log_level")
_ENV_REF = re.compile(r"\$\{(\w+)(?::-([^}]*))?\}")

_settings: Optional[Settings] = None


def _expand_env(value: Any) -> Any:
    """Resolve ${NAME} references in every string of a parsed YAML tree."""
    if isinstance(value, dict):
        return {k: _expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand_env(v) for v in value]
    if not isinstance(value, str):
        return value

    def lookup(m: re.Match) -> str:
        name, fallback = m.group(1), m.group(2)
        if name in os.environ:
            return os.environ[name]
        return fallback if fallback is not None else m.group(0)

    return _ENV_REF.sub(lookup, value)


def _section(cls, raw: dict[str, Any]):
    """Build a config dataclass from a raw dict, ignoring unknown keys."""
    known = {k: v for k, v in (raw or {}).items() if k in cls.__dataclass_fields__}
    return cls(**known)


def load_settings(config_path: str = None) -> Settings:
    global _settings

    path = Path(config_path or os.environ.get("NIGHTLIGHT_CONFIG")
                or Path(__file__).parent / "settings.yaml")
    settings = Settings()

    if path.is_file():
        raw = _expand_env(yaml.safe_load(path.read_text()) or {})
        for key in _SCALARS:
            if key in raw:
                setattr(settings, key, raw[key])
        for key, cls in _SECTIONS.items():
            if key in raw:
                setattr(settings, key, _section(cls, raw[key]))

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Cached settings; loaded from the default location on first use."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
