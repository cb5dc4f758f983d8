"""Configuration management for the TeamBoard web application."""
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml

from .database import resolve_database_path

DEFAULT_SESSION_COOKIE = "teamboard_session"
DEFAULT_SESSION_MAX_AGE = 60 * 60 * 24 * 7


def _env_flag(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _resolve_path(raw: str, base_path: Path | None) -> Path:
    candidate = Path(raw).expanduser()
    if candidate.is_absolute() or base_path is None:
        return candidate.resolve(strict=False)
    return (base_path / candidate).resolve(strict=False)


@dataclass(frozen=True)
class AppSettings:
    """Runtime settings for the web application."""

    database_path: Path
    session_secret: Optional[str] = None
    session_cookie: str = DEFAULT_SESSION_COOKIE
    session_max_age: int = DEFAULT_SESSION_MAX_AGE
    secure_cookies: bool = False

    @staticmethod
    def from_dict(data: Dict[str, object], base_path: Path | None = None) -> "AppSettings":
        """Create :class:`AppSettings` from raw dictionary data."""

        raw_db_path = data.get("database_path")
        if raw_db_path:
            database_path = _resolve_path(str(raw_db_path), base_path)
        else:
            database_path = resolve_database_path(None)

        max_age = int(data.get("session_max_age", DEFAULT_SESSION_MAX_AGE))
        if max_age <= 0:
            raise ValueError("session_max_age must be a positive number of seconds")

        secret = data.get("session_secret")
        return AppSettings(
            database_path=database_path,
            session_secret=str(secret) if secret else None,
            session_cookie=str(data.get("session_cookie") or DEFAULT_SESSION_COOKIE),
            session_max_age=max_age,
            secure_cookies=bool(data.get("secure_cookies", False)),
        )

    def with_environment(self, environ: Mapping[str, str]) -> "AppSettings":
        """Return a copy with ``TEAMBOARD_*`` environment overrides applied."""

        overrides: Dict[str, object] = {}
        db_path = environ.get("TEAMBOARD_DB_PATH")
        if db_path:
            overrides["database_path"] = resolve_database_path(db_path)
        secret = environ.get("TEAMBOARD_SESSION_SECRET")
        if secret:
            overrides["session_secret"] = secret
        secure = environ.get("TEAMBOARD_SESSION_SECURE")
        if secure is not None:
            overrides["secure_cookies"] = _env_flag(secure)
        return replace(self, **overrides)


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the configuration file."""
    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    return (Path(__file__).resolve().parent.parent / "config" / "teamboard.yaml").resolve(strict=False)


def load_settings(
    config_path: Optional[Path] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> AppSettings:
    """Load settings from a YAML file, then apply environment overrides.

    A missing file is not an error; defaults are used instead.
    """
    env = os.environ if environ is None else environ
    path = config_path or resolve_config_path(env.get("TEAMBOARD_CONFIG"))

    raw: Dict[str, object] = {}
    if path.is_file():
        with path.open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Configuration file {path} must contain a mapping")
        raw = loaded

    settings = AppSettings.from_dict(raw, base_path=path.parent)
    return settings.with_environment(env)


__all__ = ["AppSettings", "load_settings", "resolve_config_path"]
