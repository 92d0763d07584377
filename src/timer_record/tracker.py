"""Background tracker: polls the window probe and drives the session state machine."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

from .categorization import Categorizer
from .config import TrackerConfig
from .db import Clock, EntryStore
from .errors import TimerRecordError
from .models import AutoPauseState, SessionState, TimeEntry, WindowDescriptor
from .probe import WindowProbe, get_default_probe
from .session import SessionStateMachine, TickResult

logger = logging.getLogger(__name__)

RULES_REFRESH_INTERVAL = timedelta(seconds=30)


@dataclass(slots=True)
class TrackerStatus:
    running: bool
    state: SessionState
    current_entry: Optional[TimeEntry]
    config: TrackerConfig
    auto_pause: Optional[AutoPauseState] = None
    last_tick_at: Optional[datetime] = None
    last_error: Optional[str] = None


class TrackerService:
    """Owns the polling thread; ticks never overlap and never escape errors.

    ``stop()`` joins the worker, then finalizes the open entry once under the
    same lock the ticks use.
    """

    def __init__(
        self,
        store: EntryStore,
        config: TrackerConfig,
        *,
        probe: Optional[WindowProbe] = None,
        categorizer: Optional[Categorizer] = None,
    ) -> None:
        self.store = store
        self.config = config
        self.probe = probe or get_default_probe()
        self._static_categorizer = categorizer is not None
        self._rules_loaded_at: Optional[datetime] = None
        self._session = SessionStateMachine(
            store, categorizer or Categorizer(), config
        )
        self._tick_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None
        self._running = False
        self.last_tick_at: Optional[datetime] = None
        self.last_error: Optional[str] = None

    @classmethod
    def open(
        cls,
        db_path: Path,
        config: TrackerConfig,
        *,
        probe: Optional[WindowProbe] = None,
        clock: Optional[Clock] = None,
    ) -> "TrackerService":
        store = EntryStore.open(db_path, clock=clock, check_same_thread=False)
        return cls(store, config, probe=probe)

    @property
    def session(self) -> SessionStateMachine:
        return self._session

    def is_running(self) -> bool:
        with self._state_lock:
            return self._running

    def start(self) -> bool:
        """Start polling in a worker thread; ``False`` if running or not permitted."""
        with self._state_lock:
            if self._running:
                logger.info("Tracker already running")
                return False
            if not self.probe.has_permission():
                logger.error(
                    "Window detection unavailable on %s; tracker not started.",
                    self.probe.platform_name,
                )
                return False
            stop_event = threading.Event()
            thread = threading.Thread(
                target=self._run_loop,
                args=(stop_event,),
                name="timer-record-tracker",
                daemon=True,
            )
            self._stop_event = stop_event
            self._thread = thread
            self._running = True
            thread.start()
        logger.info("Tracker started (polling every %ss)", self.config.poll_interval_seconds)
        return True

    def stop(self) -> Optional[TimeEntry]:
        """Halt polling if needed, then close the entry the session opened.

        Entries opened through direct :meth:`tick` calls are closed too. A
        second call finds the session idle and returns ``None``.
        """
        with self._state_lock:
            was_running = self._running
            self._running = False
            thread, self._thread = self._thread, None
            stop_event, self._stop_event = self._stop_event, None
        if stop_event is not None:
            stop_event.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=max(10.0, self.config.poll_interval_seconds * 2))

        with self._tick_lock:
            try:
                closed = self._session.finalize()
            except TimerRecordError as exc:
                logger.error("Failed to finalize entry on stop: %s", exc)
                self.last_error = str(exc)
                closed = None
        if was_running:
            logger.info("Tracker stopped")
        return closed

    def request_stop(self) -> None:
        """Wake the worker loop; ``stop()`` still has to run to finalize."""
        with self._state_lock:
            if self._stop_event is not None:
                self._stop_event.set()

    def run_forever(self) -> bool:
        """Track in the foreground until interrupted; ``False`` if it never started."""
        if not self.start():
            return False
        with self._state_lock:
            stop_event = self._stop_event
        try:
            while stop_event is not None and not stop_event.wait(0.5):
                pass
        except KeyboardInterrupt:
            logger.info("Tracker interrupted; finalizing current entry.")
        finally:
            self.stop()
        return True

    def tick(self) -> Optional[TickResult]:
        """Run one poll; errors are logged and the previous state is kept."""
        with self._tick_lock:
            try:
                idle_seconds = self.probe.get_idle_seconds()
                if idle_seconds > self.config.idle_threshold_seconds:
                    descriptor = WindowDescriptor.unknown()
                else:
                    descriptor = self.probe.get_active_window()
                self._refresh_categorizer()
                result = self._session.tick(idle_seconds, descriptor)
            except TimerRecordError as exc:
                logger.warning("Tick failed: %s", exc)
                self.last_error = str(exc)
                return None
            except Exception:
                logger.exception("Unexpected error during tick")
                self.last_error = "unexpected error during tick"
                return None
            self.last_tick_at = self.store.now()
            self.last_error = None
            return result

    def get_status(self) -> TrackerStatus:
        running = self.is_running()
        with self._tick_lock:
            current = self.store.get_active_entry() if running else None
            return TrackerStatus(
                running=running,
                state=self._session.state,
                current_entry=current,
                config=self.config,
                auto_pause=self._session.auto_pause,
                last_tick_at=self.last_tick_at,
                last_error=self.last_error,
            )

    def close(self) -> None:
        self.stop()
        self.store.close()

    def _refresh_categorizer(self) -> None:
        if self._static_categorizer:
            return
        now = self.store.now()
        if self._rules_loaded_at is not None and now - self._rules_loaded_at < RULES_REFRESH_INTERVAL:
            return
        self._session.categorizer = Categorizer.from_store(self.store)
        self._rules_loaded_at = now

    def _run_loop(self, stop_event: threading.Event) -> None:
        interval = self.config.poll_interval_seconds
        while not stop_event.is_set():
            self.tick()
            # Sleep in an interruptible manner.
            stop_event.wait(interval)
