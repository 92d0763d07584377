import json

import pytest

from timer_record.config import (
    AppConfig,
    TrackerConfig,
    format_config_value,
    get_config_value,
    load_config,
    parse_config_value,
    reset_config,
    set_config_value,
)
from timer_record.errors import ConfigurationError


def test_missing_file_gives_defaults(tmp_path):
    config = load_config(tmp_path / "config.json")

    assert config == AppConfig()
    assert config.pomodoro.work == 25


def test_corrupt_file_gives_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json", encoding="utf-8")

    assert load_config(path) == AppConfig()


def test_dotted_keys_are_read_and_unknown_keys_ignored(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps({"idle_threshold": 600, "pomodoro.work": 50, "theme": "dark"}),
        encoding="utf-8",
    )

    config = load_config(path)

    assert config.idle_threshold == 600
    assert config.pomodoro.work == 50


def test_set_value_persists(tmp_path):
    path = tmp_path / "nested" / "config.json"

    set_config_value("pomodoro.break", "10", path)
    set_config_value("auto_pause_enabled", "off", path)

    config = load_config(path)
    assert config.pomodoro_break == 10
    assert config.auto_pause_enabled is False
    assert json.loads(path.read_text(encoding="utf-8"))["pomodoro.break"] == 10


def test_reset_restores_defaults(tmp_path):
    path = tmp_path / "config.json"
    set_config_value("poll_interval", "10", path)

    assert reset_config(path) == AppConfig()
    assert load_config(path).poll_interval == 5


@pytest.mark.parametrize(
    ("key", "raw"),
    [
        ("poll_interval", "0"),
        ("poll_interval", "61"),
        ("idle_threshold", "10"),
        ("min_entry_duration", "abc"),
        ("auto_pause_enabled", "maybe"),
        ("no_such_key", "1"),
    ],
)
def test_invalid_values_are_rejected(key, raw):
    with pytest.raises(ConfigurationError):
        parse_config_value(key, raw)


def test_default_category_accepts_null():
    assert parse_config_value("default_category", "null") is None
    assert parse_config_value("default_category", "research") == "research"


def test_format_config_value():
    config = AppConfig()

    assert format_config_value("idle_threshold", get_config_value(config, "idle_threshold")) == "300 seconds (5 min)"
    assert format_config_value("pomodoro.work", 25) == "25 minutes"
    assert format_config_value("auto_pause_enabled", True) == "true"
    assert format_config_value("default_category", None) == "null"


def test_tracker_config_from_app_config_with_overrides():
    app_config = AppConfig(poll_interval=3, idle_threshold=120, min_entry_duration=15)

    config = TrackerConfig.from_app_config(app_config, idle_threshold=60)

    assert config.poll_interval_seconds == 3
    assert config.idle_threshold_seconds == 60
    assert config.min_entry_duration_seconds == 15


@pytest.mark.parametrize(
    "kwargs",
    [
        {"poll_interval_seconds": 0},
        {"idle_threshold_seconds": -1},
        {"min_entry_duration_seconds": -5},
    ],
)
def test_tracker_config_validates(kwargs):
    with pytest.raises(ConfigurationError):
        TrackerConfig(**kwargs)


@pytest.mark.parametrize(
    "contents",
    [
        {"poll_interval": "fast"},
        {"idle_threshold": None},
        {"min_entry_duration": 2.5},
        {"poll_interval": True},
        {"idle_threshold": 5},
        {"auto_pause_enabled": "sometimes"},
        {"pomodoro.work": [25]},
    ],
)
def test_invalid_stored_values_raise_configuration_error(tmp_path, contents):
    path = tmp_path / "config.json"
    path.write_text(json.dumps(contents), encoding="utf-8")

    with pytest.raises(ConfigurationError) as excinfo:
        load_config(path)

    assert str(path) in excinfo.value.message
    assert excinfo.value.details["key"] == next(iter(contents))


def test_stored_values_are_coerced_like_cli_input(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps(
            {
                "auto_pause_enabled": "false",
                "poll_interval": "10",
                "default_category": None,
                "pomodoro_work": 40,
            }
        ),
        encoding="utf-8",
    )

    config = load_config(path)

    assert config.auto_pause_enabled is False
    assert config.poll_interval == 10
    assert config.default_category is None
    assert config.pomodoro_work == 40
    assert TrackerConfig.from_app_config(config).auto_pause_enabled is False
