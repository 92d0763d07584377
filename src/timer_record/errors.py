"""Exception hierarchy shared by the tracker, the CLI and the control API."""

from __future__ import annotations

from typing import Any, Optional


class TimerRecordError(Exception):
    """Base class for errors surfaced to users."""

    code = "TIMER_RECORD_ERROR"

    def __init__(self, message: str, *, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ProbeUnavailable(TimerRecordError):
    """The window probe cannot run (missing permission or platform tooling)."""

    code = "PROBE_UNAVAILABLE"


class StoreUnavailable(TimerRecordError):
    """A read or write against the entry store failed."""

    code = "STORE_UNAVAILABLE"

    def __init__(self, operation: str, cause: Optional[BaseException] = None) -> None:
        message = f"Database operation failed: {operation}"
        if cause is not None:
            message = f"{message} ({cause})"
        super().__init__(message, details={"operation": operation})


class InvariantViolation(TimerRecordError):
    code = "INVARIANT_VIOLATION"


class TimerAlreadyRunning(InvariantViolation):
    code = "TIMER_ALREADY_RUNNING"

    def __init__(self, category_name: Optional[str] = None, entry_id: Optional[int] = None) -> None:
        if category_name:
            message = f"Timer already running for: {category_name}"
        else:
            message = "A timer is already running"
        super().__init__(
            message, details={"category_name": category_name, "entry_id": entry_id}
        )


class ConfigurationError(TimerRecordError):
    code = "CONFIGURATION_ERROR"


class CategoryNotFound(TimerRecordError):
    code = "CATEGORY_NOT_FOUND"

    def __init__(self, category_name: str) -> None:
        super().__init__(
            f"Category not found: {category_name}",
            details={"category_name": category_name},
        )


class EntryNotFound(TimerRecordError):
    code = "ENTRY_NOT_FOUND"

    def __init__(self, entry_id: int) -> None:
        super().__init__(f"Entry not found: {entry_id}", details={"entry_id": entry_id})


class NoActiveTimer(TimerRecordError):
    code = "NO_ACTIVE_TIMER"

    def __init__(self) -> None:
        super().__init__("No active timer running")
