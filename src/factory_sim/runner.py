"""Real-time driver that ticks a world from a background thread."""

import logging
import threading
from typing import Callable, List, Optional

from .errors import ClockMisuse, InvariantViolation
from .events import SystemEvent
from .world import World

logger = logging.getLogger(__name__)

TickListener = Callable[[World, List[SystemEvent]], None]


class SimulationRunner:
    """Calls ``world.advance_tick`` at a fixed wall-clock pace.

    The runner only schedules ticks; the world's own lock serializes them with
    any external calls. Pausing the world makes the loop skip ticks without
    stopping the thread.
    """

    def __init__(self, world: World, on_tick: Optional[TickListener] = None):
        self.world = world
        self.on_tick = on_tick
        self._running = False
        self._stop_event = threading.Event()
        self._tick_thread: Optional[threading.Thread] = None
        self._ticks = 0
        self._errors = 0
        self._violation: Optional[InvariantViolation] = None

    @property
    def interval_seconds(self) -> float:
        sim = self.world.config.simulation
        return sim.tick_interval_ms / 1000.0 / sim.time_acceleration

    @property
    def ticks(self) -> int:
        return self._ticks

    @property
    def errors(self) -> int:
        return self._errors

    @property
    def violation(self) -> Optional[InvariantViolation]:
        """The invariant violation that stopped the runner, if any."""
        return self._violation

    def start(self) -> None:
        """Start ticking in a daemon thread and set the world running."""
        if self._running:
            return
        self.world.start()
        self._running = True
        self._stop_event.clear()
        self._tick_thread = threading.Thread(target=self._tick_loop, daemon=True)
        self._tick_thread.start()
        logger.info(f"Runner started, one tick every {self.interval_seconds:.3f}s")

    def stop(self) -> None:
        """Stop the loop; the world keeps its state and run flag."""
        self._running = False
        self._stop_event.set()
        if self._tick_thread:
            self._tick_thread.join(timeout=5)
        logger.info(f"Runner stopped after {self._ticks} ticks")

    def run_for(self, seconds: float) -> None:
        """Run in the foreground for ``seconds`` of wall time."""
        self.start()
        try:
            self._stop_event.wait(seconds)
        finally:
            self.stop()

    def _tick_loop(self) -> None:
        while self._running:
            try:
                self.step()
            except InvariantViolation:
                return
            self._stop_event.wait(self.interval_seconds)

    def step(self) -> List[SystemEvent]:
        """Run one tick if the world is running.

        Tick errors are logged and counted. An invariant violation stops the
        runner and is re-raised.
        """
        if not self.world.is_running:
            return []
        try:
            events = self.world.advance_tick()
        except ClockMisuse:
            # Paused between the check and the tick
            return []
        except InvariantViolation as e:
            logger.critical(f"Invariant violated, stopping runner: {e}")
            self._violation = e
            self._running = False
            self._stop_event.set()
            raise
        except Exception as e:
            self._errors += 1
            logger.error(f"Error in tick loop: {e}")
            return []

        self._ticks += 1
        if self.on_tick is not None:
            try:
                self.on_tick(self.world, events)
            except Exception as e:
                logger.error(f"Tick listener failed: {e}")
        return events
