"""Session state machine driven by one poll tick at a time."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Optional

from .autopause import AutoPauseMonitor, IdleTransition
from .categorization import Categorizer
from .config import TrackerConfig
from .db import EntryStore
from .errors import StoreUnavailable, TimerAlreadyRunning
from .models import AutoPauseState, SessionState, TimeEntry, WindowDescriptor

logger = logging.getLogger(__name__)


class TickAction(str, Enum):
    UNCHANGED = "unchanged"
    STARTED = "started"
    SWITCHED = "switched"
    PAUSED = "paused"
    RESUMED = "resumed"
    DEFERRED = "deferred"


@dataclass(slots=True)
class TickResult:
    action: TickAction
    state: SessionState
    opened: Optional[TimeEntry] = None
    closed: Optional[TimeEntry] = None
    discarded: bool = False
    category: Optional[str] = None
    transition: Optional[IdleTransition] = None


class SessionStateMachine:
    """Owns the daemon's open entry and moves it between idle, tracking and auto-paused.

    In-memory state only advances after the corresponding store write has
    succeeded, so a tick that fails half-way is retried from the last durable
    state on the next tick.
    """

    def __init__(
        self,
        store: EntryStore,
        categorizer: Categorizer,
        config: TrackerConfig,
        *,
        monitor: Optional[AutoPauseMonitor] = None,
    ) -> None:
        self.store = store
        self.categorizer = categorizer
        self.config = config
        self.monitor = monitor or AutoPauseMonitor(config.idle_threshold_seconds)
        self.state = SessionState.IDLE
        self.current_entry_id: Optional[int] = None
        self.last_descriptor: Optional[WindowDescriptor] = None
        self.auto_pause: Optional[AutoPauseState] = None

    def tick(self, idle_seconds: float, descriptor: WindowDescriptor) -> TickResult:
        """Advance one poll and report the idle boundary crossed on this tick, if any.

        Transitions follow the current state and whether the user is idle now,
        not the crossings, so a pause or resume whose write failed is retried
        on the next tick even though the boundary was already crossed.
        """
        transition = self.monitor.evaluate(idle_seconds)
        if transition.crossed_into_idle:
            logger.debug("Idle threshold crossed (%ds idle)", idle_seconds)
        elif transition.crossed_into_active:
            logger.debug("Activity detected after idle period")
        result = self._advance(transition, idle_seconds, descriptor)
        result.transition = transition
        return result

    def _advance(
        self, transition: IdleTransition, idle_seconds: float, descriptor: WindowDescriptor
    ) -> TickResult:
        if transition.is_idle:
            if self.state is SessionState.AUTO_PAUSED:
                return self._result(TickAction.UNCHANGED)
            return self._enter_auto_pause(idle_seconds)

        resumed = False
        if self.state is SessionState.AUTO_PAUSED:
            self._leave_auto_pause()
            resumed = True

        result = self._observe(descriptor)
        if resumed and result.action in (TickAction.STARTED, TickAction.DEFERRED):
            result.action = TickAction.RESUMED
        return result

    def finalize(self) -> Optional[TimeEntry]:
        """Close the daemon's open entry (applying the discard rule) and reset."""
        closed: Optional[TimeEntry] = None
        if self.state is SessionState.AUTO_PAUSED:
            self._leave_auto_pause()
        elif self.state is SessionState.TRACKING:
            closed, _ = self._close_current()
        self.monitor.reset()
        return closed

    def _observe(self, descriptor: WindowDescriptor) -> TickResult:
        closed: Optional[TimeEntry] = None
        discarded = False
        if self.state is SessionState.TRACKING:
            if not self._current_still_open():
                logger.info("Tracked entry %s was closed elsewhere.", self.current_entry_id)
                self._reset_tracking()
            elif descriptor.is_unknown or descriptor.same_context(self.last_descriptor):
                return self._result(TickAction.UNCHANGED)
            else:
                closed, discarded = self._close_current()

        result = self._open(descriptor)
        if closed is not None or discarded:
            result.closed = closed
            result.discarded = discarded
            if result.action is TickAction.STARTED:
                result.action = TickAction.SWITCHED
        return result

    def _current_still_open(self) -> bool:
        if self.current_entry_id is None:
            return False
        entry = self.store.get_entry(self.current_entry_id)
        return entry is not None and entry.end_time is None

    def _open(self, descriptor: WindowDescriptor) -> TickResult:
        category = self.categorizer.categorize(descriptor)
        category_id = self.store.category_id_for(category) if category else None
        try:
            entry = self.store.open_entry(descriptor, category_id, is_manual=False)
        except TimerAlreadyRunning as exc:
            logger.debug("Not tracking %s: %s", descriptor.app_name or "unknown app", exc)
            return self._result(TickAction.DEFERRED)

        self.state = SessionState.TRACKING
        self.current_entry_id = entry.id
        self.last_descriptor = descriptor
        logger.info(
            "Tracking: %s -> %s", descriptor.app_name or "unknown app", category or "uncategorized"
        )
        return self._result(TickAction.STARTED, opened=entry, category=category)

    def _close_current(self) -> tuple[Optional[TimeEntry], bool]:
        """Stop the daemon's entry; delete it when shorter than the minimum."""
        entry_id = self.current_entry_id
        if entry_id is None:
            self._reset_tracking()
            return None, False
        closed = self.store.stop_entry(entry_id)
        self._reset_tracking()
        if closed is None:
            return None, False

        duration = closed.duration_seconds or 0
        if duration < self.config.min_entry_duration_seconds:
            try:
                self.store.delete_entry(closed.id)
            except StoreUnavailable:
                logger.warning("Could not discard short entry %s; keeping it.", closed.id)
                return closed, False
            logger.debug("Discarded short entry %s (%ss)", closed.id, duration)
            return closed, True
        logger.debug("Closed entry %s (%ss)", closed.id, duration)
        return closed, False

    def _reset_tracking(self) -> None:
        self.state = SessionState.IDLE
        self.current_entry_id = None
        self.last_descriptor = None

    def _enter_auto_pause(self, idle_seconds: float) -> TickResult:
        now = self.store.now()
        pre_pause_context = self.last_descriptor
        paused_entry_id = self.current_entry_id
        closed: Optional[TimeEntry] = None
        discarded = False
        foreign = False

        if self.state is SessionState.TRACKING:
            closed, discarded = self._close_current()
        elif self.config.auto_pause_enabled:
            active = self.store.get_active_entry()
            if active is not None and active.paused_at is None:
                self.store.pause_entry(active.id)
                paused_entry_id = active.id
                foreign = True

        self.state = SessionState.AUTO_PAUSED
        self.auto_pause = AutoPauseState(
            idle_since=now - timedelta(seconds=idle_seconds),
            paused_entry_id=paused_entry_id,
            pre_pause_context=pre_pause_context,
            foreign=foreign,
        )
        logger.info("Auto-paused (idle %dm)", int(idle_seconds) // 60)
        return self._result(TickAction.PAUSED, closed=closed, discarded=discarded)

    def _leave_auto_pause(self) -> None:
        pause = self.auto_pause
        if pause is not None and pause.foreign and pause.paused_entry_id is not None:
            self.store.resume_entry(pause.paused_entry_id)
        self.auto_pause = None
        self.state = SessionState.IDLE
        logger.info("Auto-resumed from pause")

    def _result(
        self,
        action: TickAction,
        *,
        opened: Optional[TimeEntry] = None,
        closed: Optional[TimeEntry] = None,
        discarded: bool = False,
        category: Optional[str] = None,
    ) -> TickResult:
        return TickResult(
            action=action,
            state=self.state,
            opened=opened,
            closed=closed,
            discarded=discarded,
            category=category,
        )
