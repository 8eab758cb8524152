# src/daysync/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- No secrets required at import time (the remote token is optional;
  without it the app runs fully offline).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "DAYSYNC"

DEFAULT_BASE_URL = "https://teuxdeux.com/api/v4"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


# Local .env never overrides the real environment.
load_dotenv(override=False)


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


def normalize_token(raw: str | None) -> str | None:
    """Accept the token with or without the 'Bearer ' prefix."""
    if raw is None:
        return None
    token = raw.strip()
    if not token:
        return None
    if token.lower().startswith("bearer "):
        return "Bearer " + token[7:].strip()
    return f"Bearer {token}"


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Connectors ----
    console_enabled: bool

    # ---- Remote task service ----
    base_url: str
    auth_token: str | None
    workspace_id: int
    connect_timeout_seconds: float
    read_timeout_seconds: float

    # ---- Connectivity probe ----
    probe_interval_seconds: float
    probe_timeout_seconds: float

    # ---- Sync policy ----
    max_retry_count: int

    # ---- Local display window (days around the current date) ----
    window_days_back: int
    window_days_forward: int

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    db_path: Path

    @property
    def remote_configured(self) -> bool:
        return bool(self.base_url.strip()) and self.auth_token is not None

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "daysync") or "daysync"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        console_enabled = _env_bool(_k("CONSOLE_ENABLED"), True)

        base_url = (_env(_k("BASE_URL"), DEFAULT_BASE_URL) or "").strip().rstrip("/")
        auth_token = normalize_token(_first_env(_k("AUTH_TOKEN"), "TEUXDEUX_TOKEN", default=None))
        workspace_id = _env_int(_k("WORKSPACE_ID"), 0)

        connect_timeout_seconds = _env_float(_k("CONNECT_TIMEOUT_SECONDS"), 15.0)
        read_timeout_seconds = _env_float(_k("READ_TIMEOUT_SECONDS"), 30.0)

        probe_interval_seconds = _env_float(_k("PROBE_INTERVAL_SECONDS"), 5.0)
        probe_timeout_seconds = _env_float(_k("PROBE_TIMEOUT_SECONDS"), 3.0)

        max_retry_count = max(1, _env_int(_k("MAX_RETRY_COUNT"), 3))

        window_days_back = max(0, _env_int(_k("WINDOW_DAYS_BACK"), 3))
        window_days_forward = max(0, _env_int(_k("WINDOW_DAYS_FORWARD"), 3))

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/daysync"))
        db_path = _env_path(_k("DB_PATH"), data_dir / "daysync.sqlite3")

        return Settings(
            app_name=app_name,
            log_level=log_level,
            console_enabled=console_enabled,
            base_url=base_url,
            auth_token=auth_token,
            workspace_id=workspace_id,
            connect_timeout_seconds=connect_timeout_seconds,
            read_timeout_seconds=read_timeout_seconds,
            probe_interval_seconds=probe_interval_seconds,
            probe_timeout_seconds=probe_timeout_seconds,
            max_retry_count=max_retry_count,
            window_days_back=window_days_back,
            window_days_forward=window_days_forward,
            data_dir=data_dir,
            db_path=db_path,
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
