"""Idle boundary detection for auto-pause and resume."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class IdleTransition:
    crossed_into_idle: bool
    crossed_into_active: bool
    is_idle: bool


class AutoPauseMonitor:
    """Compare each idle reading against the threshold and the previous tick.

    There is no hysteresis. Idle time grows monotonically during a continuous
    idle period and drops to zero on input, so the state does not flap in
    practice.
    """

    def __init__(self, idle_threshold_seconds: int) -> None:
        self.idle_threshold_seconds = idle_threshold_seconds
        self._was_idle = False

    @property
    def is_idle(self) -> bool:
        return self._was_idle

    def evaluate(self, idle_seconds: float) -> IdleTransition:
        idle = idle_seconds > self.idle_threshold_seconds
        transition = IdleTransition(
            crossed_into_idle=idle and not self._was_idle,
            crossed_into_active=self._was_idle and not idle,
            is_idle=idle,
        )
        self._was_idle = idle
        return transition

    def reset(self, idle: bool = False) -> None:
        self._was_idle = idle
