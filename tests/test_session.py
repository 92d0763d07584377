import random

import pytest

from timer_record.categorization import Categorizer
from timer_record.config import TrackerConfig
from timer_record.db import fetch_open_entry_count
from timer_record.errors import StoreUnavailable, TimerAlreadyRunning
from timer_record.models import CategorizationRule, SessionState, WindowDescriptor
from timer_record.session import SessionStateMachine, TickAction
from timer_record.timer import start_timer, stop_timer

from conftest import BROWSER, CHAT, EDITOR


def make_session(store, *, min_duration=10, idle_threshold=300, auto_pause=True, rules=()):
    config = TrackerConfig(
        poll_interval_seconds=5,
        idle_threshold_seconds=idle_threshold,
        min_entry_duration_seconds=min_duration,
        auto_pause_enabled=auto_pause,
    )
    return SessionStateMachine(store, Categorizer(rules, defaults=()), config)


def test_first_tick_opens_categorized_entry(store):
    rule = CategorizationRule("programming", id=1, app_identifier="com.x.editor")
    session = make_session(store, rules=[rule])

    result = session.tick(0, EDITOR)

    assert result.action is TickAction.STARTED
    assert result.state is SessionState.TRACKING
    assert result.category == "programming"
    entry = store.get_active_entry()
    assert entry.id == session.current_entry_id
    assert entry.category_name == "programming"
    assert entry.app_name == "Editor"
    assert not entry.is_manual


def test_unmatched_descriptor_is_tracked_without_category(store):
    session = make_session(store)

    result = session.tick(0, CHAT)

    assert result.action is TickAction.STARTED
    assert result.opened.category_id is None


def test_idle_round_trip_keeps_long_entry_and_resumes_with_current_window(store, clock):
    session = make_session(store)
    first = session.tick(0, EDITOR)
    for _ in range(2):
        clock.advance(5)
        assert session.tick(0, EDITOR).action is TickAction.UNCHANGED
    clock.advance(5)

    paused = session.tick(310, EDITOR)

    assert paused.action is TickAction.PAUSED
    assert paused.state is SessionState.AUTO_PAUSED
    assert paused.closed.id == first.opened.id
    assert paused.closed.duration_seconds == 15
    assert not paused.discarded
    assert store.get_entry(first.opened.id).end_time is not None
    assert session.auto_pause.pre_pause_context == EDITOR
    assert fetch_open_entry_count(store.conn) == 0

    clock.advance(5)
    resumed = session.tick(0, BROWSER)

    assert resumed.action is TickAction.RESUMED
    assert resumed.state is SessionState.TRACKING
    assert resumed.opened.app_name == "Chrome"
    assert session.auto_pause is None
    assert fetch_open_entry_count(store.conn) == 1


def test_staying_idle_writes_nothing(store, clock):
    session = make_session(store)
    session.tick(0, EDITOR)
    clock.advance(60)
    session.tick(400, EDITOR)

    clock.advance(60)
    result = session.tick(460, EDITOR)

    assert result.action is TickAction.UNCHANGED
    assert result.state is SessionState.AUTO_PAUSED
    assert fetch_open_entry_count(store.conn) == 0


def test_short_entry_is_discarded_on_switch(store, clock):
    session = make_session(store, min_duration=10)
    first = session.tick(0, EDITOR)
    clock.advance(5)

    result = session.tick(0, BROWSER)

    assert result.action is TickAction.SWITCHED
    assert result.discarded
    assert result.closed.id == first.opened.id
    assert store.get_entry(first.opened.id) is None
    assert result.opened.app_name == "Chrome"
    assert store.get_active_entry().id == result.opened.id


def test_long_entry_is_kept_on_switch(store, clock):
    session = make_session(store, min_duration=10)
    first = session.tick(0, EDITOR)
    clock.advance(60)

    result = session.tick(0, BROWSER)

    assert not result.discarded
    kept = store.get_entry(first.opened.id)
    assert kept.duration_seconds == 60
    assert kept.end_time == clock()


def test_short_entry_is_discarded_on_idle(store, clock):
    session = make_session(store, min_duration=30)
    first = session.tick(0, EDITOR)
    clock.advance(5)

    result = session.tick(400, EDITOR)

    assert result.action is TickAction.PAUSED
    assert result.discarded
    assert store.get_entry(first.opened.id) is None


def test_title_change_within_app_keeps_entry(store, clock):
    session = make_session(store)
    first = session.tick(0, EDITOR)
    clock.advance(5)

    result = session.tick(0, WindowDescriptor("Editor", "com.x.editor", "other.py"))

    assert result.action is TickAction.UNCHANGED
    assert session.current_entry_id == first.opened.id


def test_unknown_descriptor_while_tracking_keeps_entry(store, clock):
    session = make_session(store)
    first = session.tick(0, EDITOR)
    clock.advance(5)

    result = session.tick(0, WindowDescriptor.unknown())

    assert result.action is TickAction.UNCHANGED
    assert store.get_active_entry().id == first.opened.id


def test_going_idle_without_entry_opens_nothing(store, clock):
    session = make_session(store)

    result = session.tick(400, WindowDescriptor.unknown())

    assert result.action is TickAction.PAUSED
    assert result.state is SessionState.AUTO_PAUSED
    assert session.auto_pause.paused_entry_id is None
    assert fetch_open_entry_count(store.conn) == 0

    clock.advance(5)
    assert session.tick(0, EDITOR).action is TickAction.RESUMED


def test_entry_closed_elsewhere_is_replaced(store, clock):
    session = make_session(store)
    first = session.tick(0, EDITOR)
    clock.advance(30)
    stop_timer(store)

    clock.advance(5)
    result = session.tick(0, EDITOR)

    assert result.action is TickAction.STARTED
    assert result.opened.id != first.opened.id
    assert store.get_entry(first.opened.id).duration_seconds == 30


def test_manual_timer_makes_session_defer(store, clock):
    manual = start_timer(store, "programming")
    session = make_session(store)

    assert session.tick(0, EDITOR).action is TickAction.DEFERRED
    clock.advance(5)
    assert session.tick(0, BROWSER).action is TickAction.DEFERRED

    assert session.state is SessionState.IDLE
    assert store.get_active_entry().id == manual.id

    stop_timer(store)
    clock.advance(5)
    assert session.tick(0, BROWSER).action is TickAction.STARTED


def test_idle_pauses_and_resumes_manual_timer(store, clock):
    manual = start_timer(store, "programming")
    session = make_session(store)
    session.tick(0, EDITOR)
    clock.advance(60)

    paused = session.tick(400, WindowDescriptor.unknown())

    assert paused.action is TickAction.PAUSED
    assert session.auto_pause.foreign
    assert store.get_entry(manual.id).paused_at == clock()

    clock.advance(40)
    resumed = session.tick(0, EDITOR)

    assert resumed.action is TickAction.RESUMED
    entry = store.get_entry(manual.id)
    assert entry.paused_at is None
    assert entry.paused_duration_seconds == 40

    clock.advance(20)
    stopped = stop_timer(store)
    assert stopped.duration_seconds == 80


def test_manual_timer_is_left_alone_when_auto_pause_disabled(store, clock):
    manual = start_timer(store, "programming")
    session = make_session(store, auto_pause=False)

    session.tick(400, WindowDescriptor.unknown())

    assert session.state is SessionState.AUTO_PAUSED
    assert store.get_entry(manual.id).paused_at is None


def test_failed_close_keeps_tracking_state(store, clock, monkeypatch):
    session = make_session(store)
    first = session.tick(0, EDITOR)
    clock.advance(30)

    def broken_stop(entry_id):
        raise StoreUnavailable("stop entry")

    monkeypatch.setattr(store, "stop_entry", broken_stop)
    with pytest.raises(StoreUnavailable):
        session.tick(0, BROWSER)

    assert session.state is SessionState.TRACKING
    assert session.current_entry_id == first.opened.id
    assert session.last_descriptor == EDITOR

    monkeypatch.undo()
    result = session.tick(0, BROWSER)
    assert result.action is TickAction.SWITCHED
    assert result.closed.id == first.opened.id


def test_failed_open_after_close_leaves_session_idle(store, clock, monkeypatch):
    session = make_session(store)
    session.tick(0, EDITOR)
    clock.advance(30)

    def broken_open(*args, **kwargs):
        raise StoreUnavailable("open entry")

    monkeypatch.setattr(store, "open_entry", broken_open)
    with pytest.raises(StoreUnavailable):
        session.tick(0, BROWSER)

    assert session.state is SessionState.IDLE
    assert session.current_entry_id is None
    assert fetch_open_entry_count(store.conn) == 0

    monkeypatch.undo()
    assert session.tick(0, BROWSER).action is TickAction.STARTED


def test_finalize_closes_tracked_entry(store, clock):
    session = make_session(store, min_duration=0)
    first = session.tick(0, EDITOR)
    clock.advance(12)

    closed = session.finalize()

    assert closed.id == first.opened.id
    assert closed.duration_seconds == 12
    assert session.state is SessionState.IDLE
    assert session.finalize() is None


def test_finalize_resumes_paused_manual_timer(store, clock):
    manual = start_timer(store, "programming")
    session = make_session(store)
    session.tick(400, WindowDescriptor.unknown())
    clock.advance(10)

    assert session.finalize() is None

    entry = store.get_entry(manual.id)
    assert entry.end_time is None
    assert entry.paused_at is None
    assert entry.paused_duration_seconds == 10


def test_at_most_one_open_entry_under_random_interleavings(store, clock):
    rng = random.Random(1234)
    session = make_session(store)
    descriptors = [EDITOR, BROWSER, CHAT, WindowDescriptor.unknown()]

    for _ in range(400):
        clock.advance(rng.choice([1, 5, 30]))
        roll = rng.random()
        if roll < 0.1:
            try:
                start_timer(store, "programming")
            except TimerAlreadyRunning:
                pass
        elif roll < 0.2:
            stop_timer(store)
        else:
            session.tick(rng.choice([0, 0, 0, 10, 400]), rng.choice(descriptors))
        assert fetch_open_entry_count(store.conn) <= 1


def test_tick_reports_idle_boundary_crossings(store, clock):
    session = make_session(store)

    started = session.tick(0, EDITOR)
    clock.advance(30)
    paused = session.tick(310, EDITOR)
    clock.advance(5)
    still_idle = session.tick(320, EDITOR)
    clock.advance(5)
    resumed = session.tick(0, EDITOR)

    assert not started.transition.crossed_into_idle
    assert not started.transition.crossed_into_active
    assert paused.transition.crossed_into_idle
    assert paused.transition.is_idle
    assert not still_idle.transition.crossed_into_idle
    assert still_idle.action is TickAction.UNCHANGED
    assert resumed.transition.crossed_into_active
    assert not resumed.transition.is_idle


def test_failed_pause_is_retried_after_the_crossing(store, clock, monkeypatch):
    session = make_session(store)
    first = session.tick(0, EDITOR)
    clock.advance(30)

    def broken_stop(entry_id):
        raise StoreUnavailable("stop entry")

    monkeypatch.setattr(store, "stop_entry", broken_stop)
    with pytest.raises(StoreUnavailable):
        session.tick(310, EDITOR)
    assert session.state is SessionState.TRACKING

    monkeypatch.undo()
    clock.advance(5)
    retried = session.tick(320, EDITOR)

    assert not retried.transition.crossed_into_idle
    assert retried.action is TickAction.PAUSED
    assert retried.closed.id == first.opened.id
    assert fetch_open_entry_count(store.conn) == 0
