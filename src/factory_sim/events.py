"""Append-only system event log.

Every state-changing occurrence in the hall is recorded as a
:class:`SystemEvent`. Payloads are tagged per event family so each event
only carries the fields that make sense for it:

- :class:`TaskEventData` for task lifecycle events
- :class:`MachineEventData` for breakdowns and repairs
- :class:`AlertEventData` for threshold and maintenance alerts
- :class:`RebalanceEventData` for load redistribution
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, Optional, Tuple, Union


class EventType(Enum):
    """Kinds of system events."""

    TASK_CREATED = "task_created"
    TASK_ASSIGNED = "task_assigned"
    TASK_STARTED = "task_started"
    TASK_COMPLETED = "task_completed"
    TASK_CANCELLED = "task_cancelled"
    MACHINE_BREAKDOWN = "machine_breakdown"
    MACHINE_REPAIRED = "machine_repaired"
    ALERT_SENT = "alert_sent"
    REBALANCE_TRIGGERED = "rebalance_triggered"


class Severity(Enum):
    """Event severity."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class Recipient(Enum):
    """Notification audiences."""

    TECHNICIAN = "technician"
    SUPERVISOR = "supervisor"
    MANAGER = "manager"
    QUALITY_CONTROL = "quality_control"


# =============================================================================
# Payload variants
# =============================================================================


@dataclass(frozen=True)
class TaskEventData:
    task_id: str
    machine_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"task_id": self.task_id, "machine_id": self.machine_id}


@dataclass(frozen=True)
class MachineEventData:
    machine_id: str
    task_id: Optional[str] = None  # Work parked on the machine, if any

    def to_dict(self) -> Dict[str, Any]:
        return {"machine_id": self.machine_id, "task_id": self.task_id}


@dataclass(frozen=True)
class AlertEventData:
    alert: str  # hall_load, waiting_backlog, maintenance_started, maintenance_finished
    value: Optional[float] = None
    threshold: Optional[float] = None
    machine_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert": self.alert,
            "value": self.value,
            "threshold": self.threshold,
            "machine_id": self.machine_id,
        }


@dataclass(frozen=True)
class RebalanceEventData:
    machine_type: str
    moved_task_ids: Tuple[str, ...] = ()
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "machine_type": self.machine_type,
            "moved_task_ids": list(self.moved_task_ids),
            "reason": self.reason,
        }


EventData = Union[TaskEventData, MachineEventData, AlertEventData, RebalanceEventData]

# Which payload family each event type carries
PAYLOAD_TYPES = {
    EventType.TASK_CREATED: TaskEventData,
    EventType.TASK_ASSIGNED: TaskEventData,
    EventType.TASK_STARTED: TaskEventData,
    EventType.TASK_COMPLETED: TaskEventData,
    EventType.TASK_CANCELLED: TaskEventData,
    EventType.MACHINE_BREAKDOWN: MachineEventData,
    EventType.MACHINE_REPAIRED: MachineEventData,
    EventType.ALERT_SENT: AlertEventData,
    EventType.REBALANCE_TRIGGERED: RebalanceEventData,
}


@dataclass(frozen=True)
class SystemEvent:
    """Immutable log entry."""

    id: str
    timestamp: float  # Production minutes
    type: EventType
    message: str
    severity: Severity
    data: EventData
    recipients: FrozenSet[Recipient] = field(default_factory=frozenset)

    def to_dict(self) -> Dict[str, Any]:
        data = self.data.to_dict()
        data["recipients"] = sorted(r.value for r in self.recipients)
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "type": self.type.value,
            "message": self.message,
            "severity": self.severity.value,
            "data": data,
        }


class EventLog:
    """Ordered, append-only event history.

    Entries are never removed or reordered. Timestamps must be
    non-decreasing.
    """

    def __init__(self):
        self._events: List[SystemEvent] = []
        self._counter = 0

    def record(
        self,
        timestamp: float,
        event_type: EventType,
        message: str,
        data: EventData,
        severity: Severity = Severity.INFO,
        recipients: Iterable[Recipient] = (),
    ) -> SystemEvent:
        """Append a new event and return it."""
        expected = PAYLOAD_TYPES[event_type]
        if not isinstance(data, expected):
            raise TypeError(
                f"{event_type.value} expects {expected.__name__}, got {type(data).__name__}"
            )
        if self._events and timestamp < self._events[-1].timestamp:
            raise ValueError(
                f"event timestamp {timestamp} precedes last entry {self._events[-1].timestamp}"
            )

        self._counter += 1
        event = SystemEvent(
            id=f"EVT_{self._counter:06d}",
            timestamp=timestamp,
            type=event_type,
            message=message,
            severity=severity,
            data=data,
            recipients=frozenset(recipients),
        )
        self._events.append(event)
        return event

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[SystemEvent]:
        return iter(tuple(self._events))

    def __getitem__(self, index):
        return self._events[index]

    def entries(self) -> Tuple[SystemEvent, ...]:
        """Snapshot of the full history."""
        return tuple(self._events)

    def by_type(self, event_type: EventType) -> List[SystemEvent]:
        return [e for e in self._events if e.type == event_type]

    def by_severity(self, severity: Severity) -> List[SystemEvent]:
        return [e for e in self._events if e.severity == severity]

    def for_recipient(self, recipient: Recipient) -> List[SystemEvent]:
        return [e for e in self._events if recipient in e.recipients]

    def since(self, timestamp: float) -> List[SystemEvent]:
        return [e for e in self._events if e.timestamp >= timestamp]

    def recent(self, count: int) -> List[SystemEvent]:
        if count <= 0:
            return []
        return self._events[-count:]

    def recipient_counts(self) -> Dict[str, int]:
        """Number of events addressed to each audience."""
        counts = {r.value: 0 for r in Recipient}
        for event in self._events:
            for recipient in event.recipients:
                counts[recipient.value] += 1
        return counts
