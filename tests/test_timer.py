from datetime import datetime, timedelta

import pytest

from timer_record.errors import CategoryNotFound, ConfigurationError, TimerAlreadyRunning
from timer_record.timer import (
    add_note,
    get_timer_status,
    log_entry,
    parse_duration,
    parse_time,
    start_timer,
    stop_timer,
)


def test_start_and_stop_manual_timer(store, clock):
    entry = start_timer(store, "programming", notes="feature work")

    assert entry.is_manual
    assert entry.category_name == "programming"
    assert get_timer_status(store).id == entry.id

    clock.advance(90)
    stopped = stop_timer(store)

    assert stopped.duration_seconds == 90
    assert get_timer_status(store) is None
    assert stop_timer(store) is None


def test_start_without_category(store):
    entry = start_timer(store)

    assert entry.category_id is None
    assert entry.app_name is None


def test_start_refuses_while_another_entry_is_open(store):
    start_timer(store, "programming")

    with pytest.raises(TimerAlreadyRunning, match="programming"):
        start_timer(store, "meetings")


def test_start_with_unknown_category(store):
    with pytest.raises(CategoryNotFound):
        start_timer(store, "gardening")
    assert get_timer_status(store) is None


def test_add_note(store):
    assert add_note(store, "nothing running") is None

    start_timer(store, "research")
    assert add_note(store, "reading RFCs").notes == "reading RFCs"


def test_log_entry_defaults_to_ending_now(store, clock):
    entry = log_entry(store, "meetings", 1800)

    assert entry.end_time == clock()
    assert entry.start_time == clock() - timedelta(minutes=30)
    assert entry.category_name == "meetings"


def test_log_entry_with_start_time(store, clock):
    start = clock().replace(hour=14, minute=0)

    entry = log_entry(store, "meetings", 3600, start_time=start, notes="planning")

    assert entry.start_time == start
    assert entry.duration_seconds == 3600


def test_log_entry_rejects_bad_input(store):
    with pytest.raises(ConfigurationError):
        log_entry(store, "meetings", 0)
    with pytest.raises(CategoryNotFound):
        log_entry(store, "gardening", 60)


@pytest.mark.parametrize(
    ("text", "seconds"),
    [
        ("1h30m", 5400),
        ("2h", 7200),
        ("1.5h", 5400),
        ("30m", 1800),
        ("45", 2700),
        (" 2H ", 7200),
    ],
)
def test_parse_duration(text, seconds):
    assert parse_duration(text) == seconds


@pytest.mark.parametrize("text", ["", "soon", "1d", "h30"])
def test_parse_duration_rejects_garbage(text):
    assert parse_duration(text) is None


NOW = datetime(2026, 10, 18, 16, 45, 12)


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("2pm", datetime(2026, 10, 18, 14, 0)),
        ("2:30pm", datetime(2026, 10, 18, 14, 30)),
        ("12am", datetime(2026, 10, 18, 0, 0)),
        ("12pm", datetime(2026, 10, 18, 12, 0)),
        ("14:30", datetime(2026, 10, 18, 14, 30)),
        ("9", datetime(2026, 10, 18, 9, 0)),
        ("today 9am", datetime(2026, 10, 18, 9, 0)),
        ("yesterday 2pm", datetime(2026, 10, 17, 14, 0)),
    ],
)
def test_parse_time(text, expected):
    assert parse_time(text, now=NOW) == expected


@pytest.mark.parametrize("text", ["13pm", "25:00", "14:75", "noon"])
def test_parse_time_rejects_garbage(text):
    assert parse_time(text, now=NOW) is None
