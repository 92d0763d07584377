"""Configuration models and helpers for the tracker."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Any, Optional

from .errors import ConfigurationError
from .paths import get_config_path

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TrackerConfig:
    """Polling parameters, fixed for the lifetime of one tracker run."""

    poll_interval_seconds: int = 5
    idle_threshold_seconds: int = 300
    min_entry_duration_seconds: int = 30
    auto_pause_enabled: bool = True

    def __post_init__(self) -> None:
        if self.poll_interval_seconds <= 0:
            raise ConfigurationError(
                f"poll interval must be positive, got {self.poll_interval_seconds}"
            )
        if self.idle_threshold_seconds <= 0:
            raise ConfigurationError(
                f"idle threshold must be positive, got {self.idle_threshold_seconds}"
            )
        if self.min_entry_duration_seconds < 0:
            raise ConfigurationError(
                "minimum entry duration cannot be negative, "
                f"got {self.min_entry_duration_seconds}"
            )

    @classmethod
    def from_app_config(
        cls,
        config: "AppConfig",
        *,
        poll_interval: Optional[int] = None,
        idle_threshold: Optional[int] = None,
        min_entry_duration: Optional[int] = None,
    ) -> "TrackerConfig":
        return cls(
            poll_interval_seconds=poll_interval if poll_interval is not None else config.poll_interval,
            idle_threshold_seconds=(
                idle_threshold if idle_threshold is not None else config.idle_threshold
            ),
            min_entry_duration_seconds=(
                min_entry_duration
                if min_entry_duration is not None
                else config.min_entry_duration
            ),
            auto_pause_enabled=config.auto_pause_enabled,
        )


@dataclass(frozen=True, slots=True)
class PomodoroSettings:
    """Durations in minutes, as the user configures them."""

    work: int = 25
    short_break: int = 5
    long_break: int = 15
    sessions_before_long_break: int = 4


@dataclass(slots=True)
class AppConfig:
    """Contents of ``config.json``."""

    poll_interval: int = 5
    idle_threshold: int = 300
    min_entry_duration: int = 30
    default_category: Optional[str] = None
    auto_pause_enabled: bool = True
    pomodoro_work: int = 25
    pomodoro_break: int = 5
    pomodoro_long_break: int = 15
    pomodoro_sessions_before_long_break: int = 4

    @property
    def pomodoro(self) -> PomodoroSettings:
        return PomodoroSettings(
            work=self.pomodoro_work,
            short_break=self.pomodoro_break,
            long_break=self.pomodoro_long_break,
            sessions_before_long_break=self.pomodoro_sessions_before_long_break,
        )

    def to_json(self) -> dict[str, Any]:
        return {_FIELD_TO_KEY[name]: value for name, value in asdict(self).items()}


# User-facing keys, in display order.
CONFIG_KEYS: tuple[str, ...] = (
    "poll_interval",
    "idle_threshold",
    "min_entry_duration",
    "default_category",
    "auto_pause_enabled",
    "pomodoro.work",
    "pomodoro.break",
    "pomodoro.long_break",
    "pomodoro.sessions_before_long_break",
)

_KEY_TO_FIELD = {key: key.replace(".", "_") for key in CONFIG_KEYS}
_FIELD_TO_KEY = {value: key for key, value in _KEY_TO_FIELD.items()}

_INT_LIMITS: dict[str, tuple[int, int, str]] = {
    "poll_interval": (1, 60, "seconds"),
    "idle_threshold": (30, 3600, "seconds"),
    "min_entry_duration": (5, 300, "seconds"),
    "pomodoro.work": (1, 120, "minutes"),
    "pomodoro.break": (1, 60, "minutes"),
    "pomodoro.long_break": (1, 120, "minutes"),
    "pomodoro.sessions_before_long_break": (1, 10, "sessions"),
}


def load_config(path: Optional[Path] = None) -> AppConfig:
    """Load ``config.json``, falling back to defaults for missing or unparseable files.

    Keys that are present must hold valid values; anything else raises
    :class:`ConfigurationError` naming the file and the key.
    """
    config_path = Path(path) if path is not None else get_config_path()
    if not config_path.exists():
        return AppConfig()
    try:
        raw = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        logger.warning("Ignoring unreadable config file %s; using defaults.", config_path)
        return AppConfig()
    if not isinstance(raw, dict):
        logger.warning("Ignoring malformed config file %s; using defaults.", config_path)
        return AppConfig()

    values: dict[str, Any] = {}
    for key, value in raw.items():
        key = _FIELD_TO_KEY.get(key, key)
        if key not in _KEY_TO_FIELD:
            logger.debug("Ignoring unknown config key %r", key)
            continue
        try:
            values[_KEY_TO_FIELD[key]] = _stored_value(key, value)
        except ConfigurationError as exc:
            raise ConfigurationError(
                f"{config_path}: {exc.message}", details={"key": key}
            ) from exc
    return replace(AppConfig(), **values)


def _stored_value(key: str, value: Any) -> Any:
    """Validate a value read from JSON with the same rules as ``tt config set``."""
    if value is None:
        if key == "default_category":
            return None
        raise ConfigurationError(f"{key} must not be null")
    if isinstance(value, bool):
        if key in _INT_LIMITS:
            raise ConfigurationError(f"{key} must be a positive integer")
        raw = "true" if value else "false"
    elif isinstance(value, (int, str)):
        raw = str(value)
    else:
        raise ConfigurationError(f"{key} has an invalid value: {value!r}")
    return parse_config_value(key, raw)


def save_config(config: AppConfig, path: Optional[Path] = None) -> None:
    config_path = Path(path) if path is not None else get_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(config.to_json(), indent=2), encoding="utf-8")


def set_config_value(key: str, raw_value: str, path: Optional[Path] = None) -> AppConfig:
    value = parse_config_value(key, raw_value)
    config = replace(load_config(path), **{_KEY_TO_FIELD[key]: value})
    save_config(config, path)
    return config


def reset_config(path: Optional[Path] = None) -> AppConfig:
    config = AppConfig()
    save_config(config, path)
    return config


def parse_config_value(key: str, raw_value: str) -> Any:
    """Validate a value typed by the user for ``key``."""
    if key not in _KEY_TO_FIELD:
        raise ConfigurationError(f"Unknown config key: {key}")

    if key in _INT_LIMITS:
        low, high, unit = _INT_LIMITS[key]
        try:
            number = int(raw_value)
        except ValueError:
            raise ConfigurationError(f"{key} must be a positive integer") from None
        if number < low or number > high:
            raise ConfigurationError(f"{key} must be between {low} and {high} {unit}")
        return number

    if key == "auto_pause_enabled":
        lowered = raw_value.strip().lower()
        if lowered in {"true", "1", "yes", "on"}:
            return True
        if lowered in {"false", "0", "no", "off"}:
            return False
        raise ConfigurationError(f"{key} must be true or false")

    # default_category
    if raw_value == "" or raw_value.lower() == "null":
        return None
    return raw_value


def get_config_value(config: AppConfig, key: str) -> Any:
    if key not in _KEY_TO_FIELD:
        raise ConfigurationError(f"Unknown config key: {key}")
    return getattr(config, _KEY_TO_FIELD[key])


def format_config_value(key: str, value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if key == "idle_threshold":
        return f"{value} seconds ({int(value) // 60} min)"
    if key in _INT_LIMITS:
        unit = _INT_LIMITS[key][2]
        return f"{value} {unit}"
    return str(value)
