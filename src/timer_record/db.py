"""SQLite database layer for time entries, categories and rules."""

from __future__ import annotations

import logging
import os
import sqlite3
import time
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Iterator, Optional

from .errors import CategoryNotFound, EntryNotFound, StoreUnavailable, TimerAlreadyRunning
from .models import (
    CategorizationRule,
    Category,
    PomodoroSession,
    PomodoroState,
    TimeEntry,
    WindowDescriptor,
)

logger = logging.getLogger(__name__)

DATETIME_FMT = "%Y-%m-%d %H:%M:%S.%f"

Clock = Callable[[], datetime]

_UNSET = object()

DEFAULT_CATEGORIES: tuple[tuple[str, str, str, int], ...] = (
    ("programming", "#61AFEF", "General coding and development", 1),
    ("debugging", "#E06C75", "Bug fixing and troubleshooting", 1),
    ("code-review", "#98C379", "PR reviews and reading code", 1),
    ("business-logic", "#C678DD", "Feature development, core logic", 1),
    ("testing", "#56B6C2", "Writing and running tests", 1),
    ("research", "#ABB2BF", "Documentation, Stack Overflow", 1),
    ("excel-modeling", "#217346", "Excel and financial models", 1),
    ("presentations", "#D24726", "PowerPoint and Keynote", 1),
    ("financial-analysis", "#4472C4", "Analysis work", 1),
    ("valuation", "#7030A0", "DCF, comparables, valuations", 1),
    ("communication", "#E5C07B", "Chat and messaging", 1),
    ("meetings", "#D19A66", "Video calls and meetings", 1),
    ("email", "#BE5046", "Reading and writing email", 1),
    ("browsing", "#5C6370", "General web browsing", 0),
    ("entertainment", "#FF6B6B", "Video, music and games", 0),
    ("social-media", "#FF8E53", "Social networks", 0),
    ("uncategorized", "#808080", "Activity no rule matched", 0),
)

LOCK_TTL = timedelta(seconds=10)
LOCK_WAIT_SECONDS = 2.0


def open_database(
    path: Path, *, check_same_thread: bool = True, timeout: float = 5.0
) -> sqlite3.Connection:
    """Open (and initialize) the SQLite database."""
    conn = sqlite3.connect(
        path,
        isolation_level=None,
        check_same_thread=check_same_thread,
        timeout=timeout,
    )
    conn.row_factory = sqlite3.Row
    enable_foreign_keys(conn)
    initialize_schema(conn)
    return conn


def enable_foreign_keys(conn: sqlite3.Connection) -> None:
    conn.execute("PRAGMA foreign_keys = ON;")


def initialize_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS categories (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT UNIQUE NOT NULL,
            color TEXT,
            description TEXT,
            is_productive INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS time_entries (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            category_id INTEGER REFERENCES categories(id) ON DELETE SET NULL,
            app_name TEXT,
            app_identifier TEXT,
            window_title TEXT,
            start_time TEXT NOT NULL,
            end_time TEXT,
            duration_seconds INTEGER,
            is_manual INTEGER NOT NULL DEFAULT 0,
            notes TEXT,
            paused_at TEXT,
            paused_duration_seconds INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_entries_start_time
            ON time_entries(start_time);
        CREATE INDEX IF NOT EXISTS idx_entries_open
            ON time_entries(end_time) WHERE end_time IS NULL;

        CREATE TABLE IF NOT EXISTS categorization_rules (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            app_name_pattern TEXT,
            app_identifier TEXT,
            window_title_pattern TEXT,
            category_id INTEGER NOT NULL REFERENCES categories(id) ON DELETE CASCADE,
            priority INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS pomodoro_sessions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            entry_id INTEGER REFERENCES time_entries(id) ON DELETE SET NULL,
            category_id INTEGER REFERENCES categories(id) ON DELETE SET NULL,
            work_duration INTEGER NOT NULL,
            break_duration INTEGER NOT NULL,
            long_break_duration INTEGER NOT NULL,
            sessions_until_long_break INTEGER NOT NULL,
            current_session INTEGER NOT NULL DEFAULT 1,
            state TEXT NOT NULL,
            phase_started_at TEXT NOT NULL,
            paused_at TEXT,
            paused_state TEXT,
            completed_at TEXT,
            notes TEXT
        );

        CREATE TABLE IF NOT EXISTS writer_lock (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            locked_by TEXT,
            expires_at TEXT
        );

        INSERT OR IGNORE INTO writer_lock (id, locked_by, expires_at) VALUES (1, NULL, NULL);
        """
    )
    seed_default_categories(conn)


def seed_default_categories(conn: sqlite3.Connection) -> None:
    created = _format(datetime.now())
    conn.executemany(
        """
        INSERT OR IGNORE INTO categories (name, color, description, is_productive, created_at)
        VALUES (?, ?, ?, ?, ?)
        """,
        [(name, color, desc, productive, created) for name, color, desc, productive in DEFAULT_CATEGORIES],
    )


def _format(value: datetime) -> str:
    return value.strftime(DATETIME_FMT)


def _parse(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.strptime(value, DATETIME_FMT)


# ---------------------------------------------------------------------------
# Categories


def _row_to_category(row: sqlite3.Row) -> Category:
    return Category(
        id=row["id"],
        name=row["name"],
        color=row["color"],
        description=row["description"],
        is_productive=bool(row["is_productive"]),
    )


def fetch_categories(conn: sqlite3.Connection) -> list[Category]:
    rows = conn.execute("SELECT * FROM categories ORDER BY name").fetchall()
    return [_row_to_category(row) for row in rows]


def get_category_by_name(conn: sqlite3.Connection, name: str) -> Optional[Category]:
    row = conn.execute(
        "SELECT * FROM categories WHERE name = ? COLLATE NOCASE", (name,)
    ).fetchone()
    return _row_to_category(row) if row else None


def add_category(
    conn: sqlite3.Connection,
    name: str,
    *,
    color: Optional[str] = None,
    description: Optional[str] = None,
    is_productive: bool = True,
) -> Category:
    cur = conn.execute(
        """
        INSERT INTO categories (name, color, description, is_productive, created_at)
        VALUES (?, ?, ?, ?, ?)
        """,
        (name, color, description, 1 if is_productive else 0, _format(datetime.now())),
    )
    return Category(
        id=cur.lastrowid,
        name=name,
        color=color,
        description=description,
        is_productive=is_productive,
    )


# ---------------------------------------------------------------------------
# Categorization rules


def fetch_rules(conn: sqlite3.Connection) -> list[CategorizationRule]:
    """Return user rules by descending priority, then ascending id."""
    rows = conn.execute(
        """
        SELECT r.*, c.name AS category_name
        FROM categorization_rules r
        JOIN categories c ON r.category_id = c.id
        ORDER BY r.priority DESC, r.id ASC
        """
    ).fetchall()
    return [
        CategorizationRule(
            id=row["id"],
            category_id=row["category_id"],
            category_name=row["category_name"],
            priority=row["priority"],
            app_name_pattern=row["app_name_pattern"],
            app_identifier=row["app_identifier"],
            window_title_pattern=row["window_title_pattern"],
        )
        for row in rows
    ]


def add_rule(
    conn: sqlite3.Connection,
    category_name: str,
    *,
    app_name_pattern: Optional[str] = None,
    app_identifier: Optional[str] = None,
    window_title_pattern: Optional[str] = None,
    priority: int = 0,
) -> CategorizationRule:
    if not (app_name_pattern or app_identifier or window_title_pattern):
        raise ValueError("A rule needs at least one of app name, identifier or title pattern")
    category = get_category_by_name(conn, category_name)
    if category is None:
        raise CategoryNotFound(category_name)
    cur = conn.execute(
        """
        INSERT INTO categorization_rules (
            app_name_pattern,
            app_identifier,
            window_title_pattern,
            category_id,
            priority,
            created_at
        ) VALUES (?, ?, ?, ?, ?, ?)
        """,
        (
            app_name_pattern or None,
            app_identifier or None,
            window_title_pattern or None,
            category.id,
            priority,
            _format(datetime.now()),
        ),
    )
    return CategorizationRule(
        id=cur.lastrowid,
        category_id=category.id,
        category_name=category.name,
        priority=priority,
        app_name_pattern=app_name_pattern or None,
        app_identifier=app_identifier or None,
        window_title_pattern=window_title_pattern or None,
    )


def remove_rule(conn: sqlite3.Connection, rule_id: int) -> bool:
    cur = conn.execute("DELETE FROM categorization_rules WHERE id = ?", (rule_id,))
    return cur.rowcount > 0


# ---------------------------------------------------------------------------
# Cross-process writer lock


def acquire_writer_lock(
    conn: sqlite3.Connection, owner: str, now: datetime, ttl: timedelta = LOCK_TTL
) -> bool:
    """Claim the single-row advisory lock unless another live owner holds it."""
    cur = conn.execute(
        """
        UPDATE writer_lock
        SET locked_by = ?, expires_at = ?
        WHERE id = 1
          AND (locked_by IS NULL OR locked_by = ? OR expires_at < ?)
        """,
        (owner, _format(now + ttl), owner, _format(now)),
    )
    return cur.rowcount == 1


def release_writer_lock(conn: sqlite3.Connection, owner: str) -> None:
    conn.execute(
        "UPDATE writer_lock SET locked_by = NULL, expires_at = NULL WHERE id = 1 AND locked_by = ?",
        (owner,),
    )


@contextmanager
def writer_lock(
    conn: sqlite3.Connection,
    owner: str,
    clock: Clock = datetime.now,
    *,
    wait_seconds: float = LOCK_WAIT_SECONDS,
) -> Iterator[None]:
    deadline = time.monotonic() + wait_seconds
    while not acquire_writer_lock(conn, owner, clock()):
        if time.monotonic() >= deadline:
            logger.warning("Writer lock still held after %.1fs; giving up.", wait_seconds)
            raise StoreUnavailable("acquire writer lock")
        time.sleep(0.05)
    try:
        yield
    finally:
        release_writer_lock(conn, owner)


# ---------------------------------------------------------------------------
# Time entries


_ENTRY_SELECT = """
    SELECT e.*, c.name AS category_name
    FROM time_entries e
    LEFT JOIN categories c ON e.category_id = c.id
"""


def _row_to_entry(row: sqlite3.Row) -> TimeEntry:
    return TimeEntry(
        id=row["id"],
        category_id=row["category_id"],
        category_name=row["category_name"],
        app_name=row["app_name"],
        app_identifier=row["app_identifier"],
        window_title=row["window_title"],
        start_time=_parse(row["start_time"]),
        end_time=_parse(row["end_time"]),
        duration_seconds=row["duration_seconds"],
        is_manual=bool(row["is_manual"]),
        notes=row["notes"],
        paused_at=_parse(row["paused_at"]),
        paused_duration_seconds=row["paused_duration_seconds"] or 0,
        created_at=_parse(row["created_at"]),
    )


def fetch_entry(conn: sqlite3.Connection, entry_id: int) -> Optional[TimeEntry]:
    row = conn.execute(f"{_ENTRY_SELECT} WHERE e.id = ?", (entry_id,)).fetchone()
    return _row_to_entry(row) if row else None


def fetch_active_entry(conn: sqlite3.Connection) -> Optional[TimeEntry]:
    row = conn.execute(
        f"{_ENTRY_SELECT} WHERE e.end_time IS NULL ORDER BY e.start_time DESC, e.id DESC LIMIT 1"
    ).fetchone()
    return _row_to_entry(row) if row else None


def fetch_open_entry_count(conn: sqlite3.Connection) -> int:
    return conn.execute(
        "SELECT COUNT(*) FROM time_entries WHERE end_time IS NULL"
    ).fetchone()[0]


def fetch_entries_for_day(conn: sqlite3.Connection, day: datetime) -> list[TimeEntry]:
    """Fetch the entries started on the provided day."""
    start = day.replace(hour=0, minute=0, second=0, microsecond=0)
    end = start + timedelta(days=1)
    rows = conn.execute(
        f"{_ENTRY_SELECT} WHERE e.start_time >= ? AND e.start_time < ? ORDER BY e.start_time",
        (_format(start), _format(end)),
    ).fetchall()
    return [_row_to_entry(row) for row in rows]


def insert_entry(
    conn: sqlite3.Connection,
    *,
    start_time: datetime,
    created_at: datetime,
    category_id: Optional[int] = None,
    app_name: Optional[str] = None,
    app_identifier: Optional[str] = None,
    window_title: Optional[str] = None,
    end_time: Optional[datetime] = None,
    duration_seconds: Optional[int] = None,
    is_manual: bool = False,
    notes: Optional[str] = None,
) -> int:
    cur = conn.execute(
        """
        INSERT INTO time_entries (
            category_id,
            app_name,
            app_identifier,
            window_title,
            start_time,
            end_time,
            duration_seconds,
            is_manual,
            notes,
            created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            category_id,
            app_name,
            app_identifier,
            window_title,
            _format(start_time),
            _format(end_time) if end_time else None,
            duration_seconds,
            1 if is_manual else 0,
            notes,
            _format(created_at),
        ),
    )
    return cur.lastrowid


def update_entry(
    conn: sqlite3.Connection,
    entry_id: int,
    *,
    notes: object = _UNSET,
    category_id: object = _UNSET,
) -> None:
    """Update editable fields of a single entry."""
    fields: list[str] = []
    params: list[object] = []
    if notes is not _UNSET:
        fields.append("notes = ?")
        params.append(notes)
    if category_id is not _UNSET:
        fields.append("category_id = ?")
        params.append(category_id)
    if not fields:
        return

    params.append(entry_id)
    cur = conn.execute(
        f"UPDATE time_entries SET {', '.join(fields)} WHERE id = ?",
        params,
    )
    if cur.rowcount == 0:
        raise EntryNotFound(entry_id)


class EntryStore:
    """Repository over ``time_entries`` used by the tracker and the manual timer.

    Every ``sqlite3.Error`` is re-raised as :class:`StoreUnavailable` so callers
    only deal with the project's own exceptions.
    """

    def __init__(self, conn: sqlite3.Connection, clock: Optional[Clock] = None) -> None:
        self.conn = conn
        self._clock = clock or datetime.now
        self._owner = f"{os.getpid()}:{uuid.uuid4().hex[:8]}"

    @classmethod
    def open(
        cls, path: Path, *, clock: Optional[Clock] = None, check_same_thread: bool = True
    ) -> "EntryStore":
        try:
            conn = open_database(Path(path), check_same_thread=check_same_thread)
        except sqlite3.Error as exc:
            raise StoreUnavailable("open database", exc) from exc
        return cls(conn, clock=clock)

    def now(self) -> datetime:
        return self._clock()

    def close(self) -> None:
        self.conn.close()

    @contextmanager
    def guard(self, operation: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.Error as exc:
            raise StoreUnavailable(operation, exc) from exc

    def create_entry(
        self,
        descriptor: Optional[WindowDescriptor],
        category_id: Optional[int],
        is_manual: bool,
        *,
        notes: Optional[str] = None,
    ) -> TimeEntry:
        """Insert an open entry without checking for an existing one."""
        now = self.now()
        descriptor = descriptor or WindowDescriptor.unknown()
        with self.guard("create entry"):
            entry_id = insert_entry(
                self.conn,
                start_time=now,
                created_at=now,
                category_id=category_id,
                app_name=descriptor.app_name or None,
                app_identifier=descriptor.app_identifier or None,
                window_title=descriptor.window_title or None,
                is_manual=is_manual,
                notes=notes,
            )
            entry = fetch_entry(self.conn, entry_id)
        if entry is None:
            raise StoreUnavailable("create entry")
        return entry

    def open_entry(
        self,
        descriptor: Optional[WindowDescriptor],
        category_id: Optional[int],
        is_manual: bool,
        *,
        notes: Optional[str] = None,
    ) -> TimeEntry:
        """Create an open entry, refusing when another entry is already open."""
        with self.guard("open entry"), writer_lock(self.conn, self._owner, self._clock):
            active = fetch_active_entry(self.conn)
            if active is not None:
                raise TimerAlreadyRunning(active.category_name, active.id)
            return self.create_entry(descriptor, category_id, is_manual, notes=notes)

    def log_entry(
        self,
        *,
        category_id: Optional[int],
        start_time: datetime,
        duration_seconds: int,
        notes: Optional[str] = None,
    ) -> TimeEntry:
        """Insert an already closed manual entry."""
        with self.guard("log entry"):
            entry_id = insert_entry(
                self.conn,
                start_time=start_time,
                end_time=start_time + timedelta(seconds=duration_seconds),
                duration_seconds=duration_seconds,
                created_at=self.now(),
                category_id=category_id,
                is_manual=True,
                notes=notes,
            )
            entry = fetch_entry(self.conn, entry_id)
        if entry is None:
            raise StoreUnavailable("log entry")
        return entry

    def get_entry(self, entry_id: int) -> Optional[TimeEntry]:
        with self.guard("get entry"):
            return fetch_entry(self.conn, entry_id)

    def get_active_entry(self) -> Optional[TimeEntry]:
        with self.guard("get active entry"):
            return fetch_active_entry(self.conn)

    def stop_active_entry(self) -> Optional[TimeEntry]:
        """Close the open entry and return it, or ``None`` when nothing is open."""
        with self.guard("stop active entry"):
            active = fetch_active_entry(self.conn)
            if active is None:
                return None
            return self._close(active)

    def stop_entry(self, entry_id: int) -> Optional[TimeEntry]:
        """Close ``entry_id`` if it is still open; ``None`` when it no longer is."""
        with self.guard("stop entry"):
            entry = fetch_entry(self.conn, entry_id)
            if entry is None or entry.end_time is not None:
                return None
            return self._close(entry)

    def _close(self, active: TimeEntry) -> Optional[TimeEntry]:
        end = self.now()
        paused = active.paused_duration_seconds
        if active.paused_at is not None:
            paused += max(0, int((end - active.paused_at).total_seconds()))
        elapsed = int((end - active.start_time).total_seconds())
        duration = max(0, elapsed - paused)
        cur = self.conn.execute(
            """
            UPDATE time_entries
            SET end_time = ?,
                duration_seconds = ?,
                paused_at = NULL,
                paused_duration_seconds = ?
            WHERE id = ? AND end_time IS NULL
            """,
            (_format(end), duration, paused, active.id),
        )
        if cur.rowcount == 0:
            return None
        return fetch_entry(self.conn, active.id)

    def delete_entry(self, entry_id: int) -> bool:
        with self.guard("delete entry"):
            cur = self.conn.execute("DELETE FROM time_entries WHERE id = ?", (entry_id,))
            return cur.rowcount > 0

    def pause_entry(self, entry_id: int) -> Optional[TimeEntry]:
        with self.guard("pause entry"):
            self.conn.execute(
                """
                UPDATE time_entries SET paused_at = ?
                WHERE id = ? AND end_time IS NULL AND paused_at IS NULL
                """,
                (_format(self.now()), entry_id),
            )
            return fetch_entry(self.conn, entry_id)

    def resume_entry(self, entry_id: int) -> Optional[TimeEntry]:
        """Fold the current pause into ``paused_duration_seconds``."""
        now = self.now()
        with self.guard("resume entry"):
            entry = fetch_entry(self.conn, entry_id)
            if entry is None or entry.paused_at is None or entry.end_time is not None:
                return entry
            paused = max(0, int((now - entry.paused_at).total_seconds()))
            self.conn.execute(
                """
                UPDATE time_entries
                SET paused_at = NULL,
                    paused_duration_seconds = paused_duration_seconds + ?
                WHERE id = ?
                """,
                (paused, entry_id),
            )
            return fetch_entry(self.conn, entry_id)

    def set_notes(self, entry_id: int, notes: Optional[str]) -> None:
        with self.guard("update entry"):
            update_entry(self.conn, entry_id, notes=notes)

    def category_id_for(self, name: str) -> Optional[int]:
        with self.guard("look up category"):
            category = get_category_by_name(self.conn, name)
        return category.id if category else None

    def category_names(self) -> set[str]:
        with self.guard("list categories"):
            return {category.name for category in fetch_categories(self.conn)}

    def get_rules(self) -> list[CategorizationRule]:
        with self.guard("load rules"):
            return fetch_rules(self.conn)

    def entries_for_day(self, day: datetime) -> list[TimeEntry]:
        with self.guard("list entries"):
            return fetch_entries_for_day(self.conn, day)


# ---------------------------------------------------------------------------
# Pomodoro sessions


def _row_to_pomodoro(row: sqlite3.Row) -> PomodoroSession:
    return PomodoroSession(
        id=row["id"],
        entry_id=row["entry_id"],
        category_id=row["category_id"],
        work_duration=row["work_duration"],
        break_duration=row["break_duration"],
        long_break_duration=row["long_break_duration"],
        sessions_until_long_break=row["sessions_until_long_break"],
        current_session=row["current_session"],
        state=PomodoroState(row["state"]),
        phase_started_at=_parse(row["phase_started_at"]),
        paused_at=_parse(row["paused_at"]),
        paused_state=PomodoroState(row["paused_state"]) if row["paused_state"] else None,
        completed_at=_parse(row["completed_at"]),
        notes=row["notes"],
    )


def insert_pomodoro(
    conn: sqlite3.Connection,
    *,
    entry_id: Optional[int],
    category_id: Optional[int],
    work_duration: int,
    break_duration: int,
    long_break_duration: int,
    sessions_until_long_break: int,
    started_at: datetime,
    notes: Optional[str] = None,
) -> PomodoroSession:
    cur = conn.execute(
        """
        INSERT INTO pomodoro_sessions (
            entry_id, category_id, work_duration, break_duration, long_break_duration,
            sessions_until_long_break, current_session, state, phase_started_at, notes
        ) VALUES (?, ?, ?, ?, ?, ?, 1, ?, ?, ?)
        """,
        (
            entry_id,
            category_id,
            work_duration,
            break_duration,
            long_break_duration,
            sessions_until_long_break,
            PomodoroState.WORK.value,
            _format(started_at),
            notes,
        ),
    )
    session = fetch_pomodoro(conn, cur.lastrowid)
    if session is None:
        raise StoreUnavailable("start pomodoro")
    return session


def fetch_pomodoro(conn: sqlite3.Connection, session_id: int) -> Optional[PomodoroSession]:
    row = conn.execute("SELECT * FROM pomodoro_sessions WHERE id = ?", (session_id,)).fetchone()
    return _row_to_pomodoro(row) if row else None


def fetch_active_pomodoro(conn: sqlite3.Connection) -> Optional[PomodoroSession]:
    row = conn.execute(
        """
        SELECT * FROM pomodoro_sessions
        WHERE state != ?
        ORDER BY id DESC
        LIMIT 1
        """,
        (PomodoroState.COMPLETED.value,),
    ).fetchone()
    return _row_to_pomodoro(row) if row else None


def save_pomodoro(conn: sqlite3.Connection, session: PomodoroSession) -> None:
    conn.execute(
        """
        UPDATE pomodoro_sessions
        SET entry_id = ?,
            current_session = ?,
            state = ?,
            phase_started_at = ?,
            paused_at = ?,
            paused_state = ?,
            completed_at = ?
        WHERE id = ?
        """,
        (
            session.entry_id,
            session.current_session,
            session.state.value,
            _format(session.phase_started_at),
            _format(session.paused_at) if session.paused_at else None,
            session.paused_state.value if session.paused_state else None,
            _format(session.completed_at) if session.completed_at else None,
            session.id,
        ),
    )
