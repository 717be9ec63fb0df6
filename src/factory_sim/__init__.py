"""Factory Simulator - tick-driven production hall simulation engine."""

__version__ = "0.1.0"

from .config import Config
from .errors import ClockMisuse, InvalidTransition, SimulationError
from .models import MachineStatus, MachineType, TaskPriority, TaskSpec
from .world import World

__all__ = [
    "World",
    "Config",
    "TaskSpec",
    "TaskPriority",
    "MachineType",
    "MachineStatus",
    "SimulationError",
    "ClockMisuse",
    "InvalidTransition",
    "__version__",
]
