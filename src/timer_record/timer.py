"""Manual timers and logged entries created outside the polling loop."""

from __future__ import annotations

import re
from datetime import datetime, timedelta
from typing import Optional

from .db import EntryStore
from .errors import CategoryNotFound, ConfigurationError
from .models import TimeEntry

_HOURS_MINUTES = re.compile(r"^(\d+)h\s*(\d+)m$", re.IGNORECASE)
_HOURS = re.compile(r"^(\d+(?:\.\d+)?)\s*h$", re.IGNORECASE)
_MINUTES = re.compile(r"^(\d+)\s*m$", re.IGNORECASE)
_PLAIN = re.compile(r"^\d+$")

_AM_PM = re.compile(r"^(\d{1,2})(?::(\d{2}))?\s*(am|pm)$", re.IGNORECASE)
_CLOCK = re.compile(r"^(\d{1,2}):(\d{2})$")
_HOUR_ONLY = re.compile(r"^(\d{1,2})$")


def _resolve_category(store: EntryStore, category: Optional[str]) -> Optional[int]:
    if not category:
        return None
    category_id = store.category_id_for(category)
    if category_id is None:
        raise CategoryNotFound(category)
    return category_id


def start_timer(
    store: EntryStore,
    category: Optional[str] = None,
    notes: Optional[str] = None,
) -> TimeEntry:
    """Open a manual entry.

    Raises :class:`TimerAlreadyRunning` when any entry, manual or tracked, is
    already open; the caller has to stop it first.
    """
    category_id = _resolve_category(store, category)
    return store.open_entry(None, category_id, is_manual=True, notes=notes)


def stop_timer(store: EntryStore) -> Optional[TimeEntry]:
    return store.stop_active_entry()


def get_timer_status(store: EntryStore) -> Optional[TimeEntry]:
    return store.get_active_entry()


def add_note(store: EntryStore, notes: str) -> Optional[TimeEntry]:
    """Attach notes to the open entry, returning it, or ``None`` if nothing is open."""
    active = store.get_active_entry()
    if active is None:
        return None
    store.set_notes(active.id, notes)
    return store.get_entry(active.id)


def log_entry(
    store: EntryStore,
    category: str,
    duration_seconds: int,
    *,
    start_time: Optional[datetime] = None,
    notes: Optional[str] = None,
) -> TimeEntry:
    """Record a finished block of time; without ``start_time`` it ends now."""
    if duration_seconds <= 0:
        raise ConfigurationError(f"Invalid duration: {duration_seconds}s")
    category_id = _resolve_category(store, category)
    if start_time is None:
        start_time = store.now() - timedelta(seconds=duration_seconds)
    return store.log_entry(
        category_id=category_id,
        start_time=start_time,
        duration_seconds=duration_seconds,
        notes=notes,
    )


def parse_duration(value: str) -> Optional[int]:
    """Parse ``1h30m``, ``2h``, ``1.5h``, ``30m`` or plain minutes into seconds."""
    text = value.strip()
    match = _HOURS_MINUTES.match(text)
    if match:
        return int(match.group(1)) * 3600 + int(match.group(2)) * 60
    match = _HOURS.match(text)
    if match:
        return round(float(match.group(1)) * 3600)
    match = _MINUTES.match(text)
    if match:
        return int(match.group(1)) * 60
    if _PLAIN.match(text):
        return int(text) * 60
    return None


def parse_time(value: str, now: Optional[datetime] = None) -> Optional[datetime]:
    """Parse ``2pm``, ``2:30pm``, ``14:30``, ``14``, optionally prefixed by today/yesterday."""
    base = now or datetime.now()
    text = value.strip().lower()
    if text.startswith("yesterday"):
        base = base - timedelta(days=1)
        text = text[len("yesterday"):].strip()
    elif text.startswith("today"):
        text = text[len("today"):].strip()

    match = _AM_PM.match(text)
    if match:
        hours = int(match.group(1))
        minutes = int(match.group(2) or 0)
        if hours > 12 or minutes > 59:
            return None
        is_pm = match.group(3) == "pm"
        if is_pm and hours != 12:
            hours += 12
        if not is_pm and hours == 12:
            hours = 0
        return base.replace(hour=hours, minute=minutes, second=0, microsecond=0)

    match = _CLOCK.match(text)
    if match:
        hours, minutes = int(match.group(1)), int(match.group(2))
        if hours > 23 or minutes > 59:
            return None
        return base.replace(hour=hours, minute=minutes, second=0, microsecond=0)

    match = _HOUR_ONLY.match(text)
    if match:
        hours = int(match.group(1))
        if hours <= 23:
            return base.replace(hour=hours, minute=0, second=0, microsecond=0)
    return None
