"""Helpers for locating application directories."""

from __future__ import annotations

from pathlib import Path

from platformdirs import PlatformDirs


APP_NAME = "TimerRecord"
APP_AUTHOR = "TimerRecord"


def _dirs() -> PlatformDirs:
    return PlatformDirs(appname=APP_NAME, appauthor=APP_AUTHOR, roaming=True)


def get_data_dir() -> Path:
    """Return the base directory for persistent data."""
    path = Path(_dirs().user_data_path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_config_dir() -> Path:
    path = Path(_dirs().user_config_path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_db_path() -> Path:
    return get_data_dir() / "timer-record.sqlite3"


def get_config_path() -> Path:
    return get_config_dir() / "config.json"


def get_log_path() -> Path:
    return get_data_dir() / "tracker.log"
