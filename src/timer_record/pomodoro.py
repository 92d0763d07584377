"""Pomodoro sessions layered on top of manual timers.

Each work phase owns one manual time entry. Breaks close it, the next work
phase opens a fresh one, so a pomodoro respects the single-open-entry rule
like any other manual timer.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from .config import PomodoroSettings
from .db import EntryStore, fetch_active_pomodoro, insert_pomodoro, save_pomodoro
from .errors import InvariantViolation, NoActiveTimer
from .models import PomodoroSession, PomodoroState
from .timer import start_timer

logger = logging.getLogger(__name__)


def get_active_pomodoro(store: EntryStore) -> Optional[PomodoroSession]:
    with store.guard("load pomodoro"):
        return fetch_active_pomodoro(store.conn)


def _require_active(store: EntryStore) -> PomodoroSession:
    session = get_active_pomodoro(store)
    if session is None:
        raise NoActiveTimer()
    return session


def _save(store: EntryStore, session: PomodoroSession) -> PomodoroSession:
    with store.guard("save pomodoro"):
        save_pomodoro(store.conn, session)
    return session


def start_pomodoro(
    store: EntryStore,
    settings: PomodoroSettings,
    *,
    category: Optional[str] = None,
    notes: Optional[str] = None,
) -> PomodoroSession:
    if get_active_pomodoro(store) is not None:
        raise InvariantViolation("A pomodoro session is already running")
    entry = start_timer(store, category=category, notes=notes)
    with store.guard("start pomodoro"):
        session = insert_pomodoro(
            store.conn,
            entry_id=entry.id,
            category_id=entry.category_id,
            work_duration=settings.work * 60,
            break_duration=settings.short_break * 60,
            long_break_duration=settings.long_break * 60,
            sessions_until_long_break=settings.sessions_before_long_break,
            started_at=store.now(),
            notes=notes,
        )
    logger.info("Pomodoro %s started (%d min work)", session.id, settings.work)
    return session


def advance_phase(store: EntryStore) -> PomodoroSession:
    """Finish the current phase: work goes to a break, a break to the next work phase."""
    session = _require_active(store)
    if session.state is PomodoroState.PAUSED:
        raise InvariantViolation("Pomodoro is paused; resume it before advancing")

    if session.state is PomodoroState.WORK:
        if session.entry_id is not None:
            store.stop_entry(session.entry_id)
        session.entry_id = None
        if session.current_session % session.sessions_until_long_break == 0:
            session.state = PomodoroState.LONG_BREAK
        else:
            session.state = PomodoroState.BREAK
    else:
        entry = store.open_entry(
            None, session.category_id, is_manual=True, notes=session.notes
        )
        session.entry_id = entry.id
        session.current_session += 1
        session.state = PomodoroState.WORK

    session.phase_started_at = store.now()
    logger.info("Pomodoro %s entered %s", session.id, session.state.value)
    return _save(store, session)


def pause_pomodoro(store: EntryStore) -> PomodoroSession:
    session = _require_active(store)
    if session.state is PomodoroState.PAUSED:
        return session
    if session.entry_id is not None:
        store.pause_entry(session.entry_id)
    session.paused_state = session.state
    session.paused_at = store.now()
    session.state = PomodoroState.PAUSED
    return _save(store, session)


def resume_pomodoro(store: EntryStore) -> PomodoroSession:
    session = _require_active(store)
    if session.state is not PomodoroState.PAUSED:
        return session
    now = store.now()
    if session.paused_at is not None:
        session.phase_started_at += now - session.paused_at
    if session.entry_id is not None:
        store.resume_entry(session.entry_id)
    session.state = session.paused_state or PomodoroState.WORK
    session.paused_state = None
    session.paused_at = None
    return _save(store, session)


def stop_pomodoro(store: EntryStore) -> Optional[PomodoroSession]:
    """Close the work entry (if any) and mark the session completed."""
    session = get_active_pomodoro(store)
    if session is None:
        return None
    if session.entry_id is not None:
        store.stop_entry(session.entry_id)
    session.state = PomodoroState.COMPLETED
    session.paused_state = None
    session.paused_at = None
    session.completed_at = store.now()
    logger.info("Pomodoro %s completed after %d session(s)", session.id, session.current_session)
    return _save(store, session)


def remaining_seconds(session: PomodoroSession, now: datetime) -> int:
    """Seconds left in the current phase; frozen while paused."""
    reference = session.paused_at if session.state is PomodoroState.PAUSED and session.paused_at else now
    elapsed = int((reference - session.phase_started_at).total_seconds())
    return max(0, session.phase_length() - elapsed)
