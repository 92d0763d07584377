"""Shared fixtures: a file-backed store, a controllable clock and a scripted probe."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

import pytest

from timer_record.db import EntryStore
from timer_record.models import WindowDescriptor
from timer_record.probe import WindowProbe


class FakeClock:
    def __init__(self, start: datetime = datetime(2026, 10, 18, 9, 0, 0)) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


class FakeProbe(WindowProbe):
    platform_name = "test"

    def __init__(
        self,
        descriptor: Optional[WindowDescriptor] = None,
        idle_seconds: int = 0,
        permitted: bool = True,
    ) -> None:
        self.descriptor = descriptor or WindowDescriptor.unknown()
        self.idle_seconds = idle_seconds
        self.permitted = permitted
        self.fail_next = False

    def get_active_window(self) -> WindowDescriptor:
        if self.fail_next:
            self.fail_next = False
            raise RuntimeError("probe exploded")
        return self.descriptor

    def get_idle_seconds(self) -> int:
        return self.idle_seconds

    def has_permission(self) -> bool:
        return self.permitted


EDITOR = WindowDescriptor("Editor", "com.x.editor", "main.py")
BROWSER = WindowDescriptor("Chrome", "com.google.Chrome", "Docs")
CHAT = WindowDescriptor("Slack", "com.tinyspeck.slackmacgap", "general")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "timer-record.sqlite3"


@pytest.fixture
def store(db_path, clock):
    entry_store = EntryStore.open(db_path, clock=clock, check_same_thread=False)
    yield entry_store
    entry_store.close()


@pytest.fixture
def probe() -> FakeProbe:
    return FakeProbe(EDITOR)
