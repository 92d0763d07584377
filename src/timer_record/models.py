"""Domain models for tracked time."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


@dataclass(frozen=True, slots=True)
class WindowDescriptor:
    """Snapshot of the foreground application at one polling instant."""

    app_name: str = ""
    app_identifier: str = ""
    window_title: str = ""
    observed_at: datetime = field(default_factory=datetime.now, compare=False)

    @classmethod
    def unknown(cls) -> "WindowDescriptor":
        return cls()

    @property
    def is_unknown(self) -> bool:
        return not (self.app_name or self.app_identifier or self.window_title)

    def same_context(self, other: Optional["WindowDescriptor"]) -> bool:
        """Title changes inside one application do not split an entry."""
        if other is None:
            return False
        return (
            self.app_name == other.app_name
            and self.app_identifier == other.app_identifier
        )


@dataclass(frozen=True, slots=True)
class CategorizationRule:
    category_name: str
    priority: int = 0
    app_name_pattern: Optional[str] = None
    app_identifier: Optional[str] = None
    window_title_pattern: Optional[str] = None
    category_id: Optional[int] = None
    id: Optional[int] = None


@dataclass(slots=True)
class Category:
    id: int
    name: str
    color: Optional[str] = None
    description: Optional[str] = None
    is_productive: bool = True


@dataclass(slots=True)
class TimeEntry:
    """A block of time attributed to one application or manual timer."""

    id: int
    start_time: datetime
    end_time: Optional[datetime] = None
    duration_seconds: Optional[int] = None
    category_id: Optional[int] = None
    category_name: Optional[str] = None
    app_name: Optional[str] = None
    app_identifier: Optional[str] = None
    window_title: Optional[str] = None
    is_manual: bool = False
    notes: Optional[str] = None
    paused_at: Optional[datetime] = None
    paused_duration_seconds: int = 0
    created_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.end_time is None

    @property
    def is_paused(self) -> bool:
        return self.paused_at is not None

    def elapsed_seconds(self, now: datetime) -> int:
        """Working seconds so far, excluding paused time."""
        end = self.end_time or now
        paused = self.paused_duration_seconds
        if self.paused_at is not None and self.end_time is None:
            paused += max(0, int((now - self.paused_at).total_seconds()))
        return max(0, int((end - self.start_time).total_seconds()) - paused)


@dataclass(slots=True)
class AutoPauseState:
    idle_since: datetime
    paused_entry_id: Optional[int] = None
    pre_pause_context: Optional[WindowDescriptor] = None
    # True when the paused entry belongs to a manual timer and stays open.
    foreign: bool = False


class SessionState(str, Enum):
    IDLE = "idle"
    TRACKING = "tracking"
    AUTO_PAUSED = "auto_paused"


class PomodoroState(str, Enum):
    WORK = "work"
    BREAK = "break"
    LONG_BREAK = "long_break"
    PAUSED = "paused"
    COMPLETED = "completed"


@dataclass(slots=True)
class PomodoroSession:
    id: int
    work_duration: int
    break_duration: int
    long_break_duration: int
    sessions_until_long_break: int
    current_session: int
    state: PomodoroState
    phase_started_at: datetime
    entry_id: Optional[int] = None
    category_id: Optional[int] = None
    paused_at: Optional[datetime] = None
    paused_state: Optional[PomodoroState] = None
    completed_at: Optional[datetime] = None
    notes: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.state is not PomodoroState.COMPLETED

    def phase_length(self, state: Optional[PomodoroState] = None) -> int:
        state = state or self.state
        if state is PomodoroState.PAUSED and self.paused_state is not None:
            state = self.paused_state
        if state is PomodoroState.BREAK:
            return self.break_duration
        if state is PomodoroState.LONG_BREAK:
            return self.long_break_duration
        return self.work_duration
