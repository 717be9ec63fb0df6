"""Exceptions raised by the simulation engine."""


class SimulationError(Exception):
    """Base class for all engine errors."""


class ConfigError(SimulationError):
    """Configuration values are missing or inconsistent."""


class ClockMisuse(SimulationError):
    """Time was advanced while paused or by a negative amount."""


class InvalidTransition(SimulationError):
    """A state change was requested that the current state does not allow."""


class UnknownEntityError(SimulationError, KeyError):
    """A machine or task id does not exist in the world."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message
        return str(self.args[0]) if self.args else ""


class InvariantViolation(SimulationError, AssertionError):
    """World state broke one of its structural invariants (programming defect)."""


class InvalidTaskSpec(SimulationError, ValueError):
    """A task description was rejected before reaching the pool."""
