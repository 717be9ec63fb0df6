"""Production clock and run state."""

import logging

from .errors import ClockMisuse

logger = logging.getLogger(__name__)


class ProductionClock:
    """Simulated production time in minutes plus a run/pause flag.

    Time only moves forward, and only while running. ``advance(0)`` is
    accepted while running and changes nothing.
    """

    def __init__(self, tick_minutes: float = 1.0, running: bool = False):
        if tick_minutes <= 0:
            raise ValueError("tick_minutes must be positive")
        self.tick_minutes = tick_minutes
        self._production_time = 0.0
        self._running = running
        self._ticks = 0

    @property
    def production_time(self) -> float:
        return self._production_time

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def ticks(self) -> int:
        """Number of non-zero advances so far."""
        return self._ticks

    def check_advance(self, delta_minutes: float) -> None:
        """Raise ClockMisuse if ``advance(delta_minutes)`` would be rejected."""
        if not self._running:
            raise ClockMisuse("cannot advance production time while paused")
        if delta_minutes < 0:
            raise ClockMisuse(f"negative time step: {delta_minutes}")

    def advance(self, delta_minutes: float) -> float:
        """Move time forward and return the new production time."""
        self.check_advance(delta_minutes)
        if delta_minutes > 0:
            self._production_time += delta_minutes
            self._ticks += 1
        return self._production_time

    def pause(self) -> None:
        if self._running:
            logger.info(f"Clock paused at {self._production_time:.1f} min")
        self._running = False

    def resume(self) -> None:
        if not self._running:
            logger.info(f"Clock running from {self._production_time:.1f} min")
        self._running = True

    start = resume
