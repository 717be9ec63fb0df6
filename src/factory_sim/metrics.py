"""Metrics aggregation over world state.

Everything here is a pure function of the collections it is given, except
:class:`AnalyticsRecorder`, which owns the sampled snapshot history.

Hall load is the simple fleet fraction: the share of machines currently
processing, rounded to a whole percent. Queue depth and workload size do
not weigh in.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .models import Machine, MachineStatus, Task, TaskPriority


@dataclass(frozen=True)
class GlobalMetrics:
    """Point-in-time view of the hall, derived on demand."""

    hall_load: int
    in_progress_count: int
    waiting_count: int
    completed_count: int
    throughput: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hall_load": self.hall_load,
            "in_progress_count": self.in_progress_count,
            "waiting_count": self.waiting_count,
            "completed_count": self.completed_count,
            "throughput": self.throughput,
        }


@dataclass(frozen=True)
class AnalyticsSnapshot:
    """Sampled history entry."""

    production_time: float
    hall_load: int
    throughput: float
    waiting_tasks: int
    active_tasks: int
    completed_tasks: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "production_time": self.production_time,
            "hall_load": self.hall_load,
            "throughput": self.throughput,
            "waiting_tasks": self.waiting_tasks,
            "active_tasks": self.active_tasks,
            "completed_tasks": self.completed_tasks,
        }


@dataclass(frozen=True)
class MachineMetrics:
    """Per-machine figures for dashboards."""

    machine_id: str
    status: str
    utilization: int  # % of production time spent processing
    eta: int  # Minutes of committed work
    queue_length: int
    completed_tasks: int
    breakdown_count: int


def hall_load(machines: Sequence[Machine]) -> int:
    """Percentage of machines in ``processing``; 0 for an empty hall."""
    if not machines:
        return 0
    processing = sum(1 for m in machines if m.status == MachineStatus.PROCESSING)
    return round(100 * processing / len(machines))


def throughput(completed_count: int, production_time: float) -> float:
    """Completed tasks per production hour; 0 before any time has passed."""
    if production_time <= 0:
        return 0.0
    return round(completed_count / (production_time / 60.0), 2)


def compute_global_metrics(
    machines: Sequence[Machine],
    task_pool: Sequence[Task],
    completed: Sequence[Task],
    production_time: float,
) -> GlobalMetrics:
    in_progress = sum(1 for m in machines if m.current_task is not None)
    waiting = len(task_pool) + sum(len(m.queue) for m in machines)
    return GlobalMetrics(
        hall_load=hall_load(machines),
        in_progress_count=in_progress,
        waiting_count=waiting,
        completed_count=len(completed),
        throughput=throughput(len(completed), production_time),
    )


def machine_metrics(machine: Machine, production_time: float) -> MachineMetrics:
    if production_time > 0:
        utilization = round(100 * machine.total_processing_time / production_time)
    else:
        utilization = 0
    return MachineMetrics(
        machine_id=machine.id,
        status=machine.status.value,
        utilization=utilization,
        eta=round(machine.projected_load()),
        queue_length=len(machine.queue),
        completed_tasks=machine.completed_tasks,
        breakdown_count=machine.breakdown_count,
    )


def status_distribution(machines: Iterable[Machine]) -> Dict[str, int]:
    """Machine count per status; every status is present."""
    counts = {status.value: 0 for status in MachineStatus}
    for machine in machines:
        counts[machine.status.value] += 1
    return counts


def load_status(load: float) -> str:
    """Dashboard label for a hall load percentage."""
    if load > 85:
        return "Critical"
    if load > 70:
        return "High"
    if load > 40:
        return "Normal"
    return "Low"


def history_window(
    history: Sequence[AnalyticsSnapshot], production_time: float, window_minutes: float
) -> List[AnalyticsSnapshot]:
    """Snapshots taken within the last ``window_minutes``."""
    cutoff = production_time - window_minutes
    return [snap for snap in history if snap.production_time >= cutoff]


def summarize_history(history: Sequence[AnalyticsSnapshot]) -> Dict[str, Dict[str, float]]:
    """Min, max and average of hall load and throughput."""
    if not history:
        return {}
    summary = {}
    for name in ("hall_load", "throughput"):
        values = [getattr(snap, name) for snap in history]
        summary[name] = {
            "min": min(values),
            "max": max(values),
            "avg": sum(values) / len(values),
        }
    return summary


def completed_summary(completed: Sequence[Task]) -> Dict[str, Any]:
    """Revenue and priority mix of finished orders."""
    total_value = sum(task.order_value for task in completed)
    return {
        "total_tasks": len(completed),
        "total_revenue": total_value,
        "avg_task_value": total_value / len(completed) if completed else 0.0,
        "critical_tasks": sum(1 for t in completed if t.priority == TaskPriority.CRITICAL),
        "rush_tasks": sum(1 for t in completed if t.priority == TaskPriority.RUSH),
    }


class AnalyticsRecorder:
    """Samples global metrics into a bounded history at a fixed cadence."""

    def __init__(self, interval_minutes: float, limit: Optional[int] = None):
        self.interval_minutes = interval_minutes
        self.limit = limit
        self._history: List[AnalyticsSnapshot] = []
        self._next_sample_at = interval_minutes

    @property
    def history(self) -> List[AnalyticsSnapshot]:
        return list(self._history)

    def maybe_snapshot(
        self, metrics: GlobalMetrics, production_time: float
    ) -> Optional[AnalyticsSnapshot]:
        """Append a snapshot when the sampling interval has elapsed."""
        if production_time < self._next_sample_at:
            return None

        snapshot = AnalyticsSnapshot(
            production_time=production_time,
            hall_load=metrics.hall_load,
            throughput=metrics.throughput,
            waiting_tasks=metrics.waiting_count,
            active_tasks=metrics.in_progress_count,
            completed_tasks=metrics.completed_count,
        )
        self._history.append(snapshot)
        if self.limit is not None and len(self._history) > self.limit:
            del self._history[: len(self._history) - self.limit]

        # Skip sample points a large tick jumped over
        while self._next_sample_at <= production_time:
            self._next_sample_at += self.interval_minutes
        return snapshot
