"""Task and machine state model.

A task is owned by exactly one container at a time: the task pool, a
machine queue, a machine's current-task slot, or the completed archive.
The containers themselves live on :class:`factory_sim.world.World`; this
module only defines the records and their local arithmetic.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

# Float slack when summing tick fractions up to a whole task
PROGRESS_EPSILON = 1e-9


# =============================================================================
# Enumerations
# =============================================================================


class TaskPriority(Enum):
    """Work order priority bands."""

    NORMAL = "normal"
    RUSH = "rush"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Ordering rank, lower is served first."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    TaskPriority.CRITICAL: 0,
    TaskPriority.RUSH: 1,
    TaskPriority.NORMAL: 2,
}


class MachineType(Enum):
    """Machine families."""

    CNC = "CNC"
    ASSEMBLY = "Assembly"
    TEST = "Test"
    PACKAGING = "Packaging"


class MachineStatus(Enum):
    """Machine operating states."""

    IDLE = "idle"
    PROCESSING = "processing"
    BREAKDOWN = "breakdown"
    MAINTENANCE = "maintenance"

    @property
    def available(self) -> bool:
        """Whether the machine may receive dispatched work."""
        return self in (MachineStatus.IDLE, MachineStatus.PROCESSING)


# =============================================================================
# Task
# =============================================================================


@dataclass
class Task:
    """A work order moving through the hall."""

    id: str
    display_name: str
    client_name: str
    task_type: str
    workload_minutes: float
    priority: TaskPriority = TaskPriority.NORMAL
    order_value: float = 0.0

    # Lifecycle (production minutes)
    sequence: int = 0
    created_at: float = 0.0
    started_at: Optional[float] = None
    completed_at: Optional[float] = None

    progress: float = 0.0
    remaining_minutes: float = 0.0
    assigned_machine: Optional[str] = None

    def __post_init__(self):
        if not self.remaining_minutes:
            self.remaining_minutes = self.workload_minutes

    @property
    def is_started(self) -> bool:
        """A started task has held a machine slot and may carry frozen progress."""
        return self.started_at is not None

    def recompute_remaining(self, multiplier: float) -> None:
        self.remaining_minutes = self.workload_minutes * multiplier * (1.0 - self.progress)

    def advance(self, delta_minutes: float, multiplier: float) -> None:
        """Add ``delta_minutes`` of processing on a machine with ``multiplier``."""
        effort = self.workload_minutes * multiplier
        if effort <= 0:
            self.progress = 1.0
        else:
            self.progress = min(1.0, self.progress + delta_minutes / effort)
        if self.progress > 1.0 - PROGRESS_EPSILON:
            self.progress = 1.0
        self.recompute_remaining(multiplier)

    def to_state_dict(self) -> Dict[str, Any]:
        """Plain dict view for external readers."""
        return {
            "id": self.id,
            "display_name": self.display_name,
            "client_name": self.client_name,
            "task_type": self.task_type,
            "priority": self.priority.value,
            "workload_minutes": self.workload_minutes,
            "order_value": self.order_value,
            "progress": round(self.progress, 4),
            "remaining_minutes": round(self.remaining_minutes, 2),
            "assigned_machine": self.assigned_machine,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }


# =============================================================================
# Machine
# =============================================================================


@dataclass
class Machine:
    """Runtime state for a machine in the hall."""

    id: str
    name: str
    type: MachineType
    effective_time_multiplier: float = 1.0
    base_time_multiplier: float = 1.0
    status: MachineStatus = MachineStatus.IDLE
    current_task: Optional[Task] = None
    queue: List[Task] = field(default_factory=list)

    # Accumulators
    completed_tasks: int = 0
    total_processing_time: float = 0.0
    breakdown_count: int = 0
    total_downtime: float = 0.0
    processing_since_maintenance: float = 0.0

    # Timers (production minutes)
    status_since: float = 0.0
    repair_due_at: Optional[float] = None
    maintenance_due_at: Optional[float] = None

    def hosted_tasks(self) -> List[Task]:
        """Current task (if any) followed by the queue."""
        if self.current_task is None:
            return list(self.queue)
        return [self.current_task] + self.queue

    def projected_load(self) -> float:
        """Minutes of work already committed to this machine."""
        return sum(task.remaining_minutes for task in self.hosted_tasks())

    def projected_completion(self, task: Task) -> float:
        """Minutes until ``task`` would finish if appended here."""
        return self.projected_load() + task.workload_minutes * self.effective_time_multiplier * (
            1.0 - task.progress
        )

    def set_multiplier(self, value: float) -> None:
        """Change speed and refresh remaining minutes on every hosted task."""
        self.effective_time_multiplier = value
        for task in self.hosted_tasks():
            task.recompute_remaining(value)

    def to_state_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "status": self.status.value,
            "effective_time_multiplier": round(self.effective_time_multiplier, 4),
            "current_task": self.current_task.id if self.current_task else None,
            "queue": [task.id for task in self.queue],
            "completed_tasks": self.completed_tasks,
            "total_processing_time": self.total_processing_time,
            "breakdown_count": self.breakdown_count,
            "total_downtime": self.total_downtime,
        }


def insert_by_priority(tasks: List[Task], task: Task) -> int:
    """Insert ``task`` into ``tasks`` keeping priority bands stable.

    Started tasks at the head of the list (work parked by a breakdown) are
    never overtaken. Within a band, arrival order is preserved. Returns the
    insertion index.
    """
    index = 0
    while index < len(tasks) and tasks[index].is_started:
        index += 1
    while index < len(tasks) and tasks[index].priority.rank <= task.priority.rank:
        index += 1
    tasks.insert(index, task)
    return index


@dataclass
class TaskSpec:
    """Caller-supplied description of a new work order."""

    display_name: str
    task_type: str
    workload_minutes: float
    client_name: str = ""
    priority: TaskPriority = TaskPriority.NORMAL
    order_value: float = 0.0
    id: Optional[str] = None  # Assigned by the world when omitted
