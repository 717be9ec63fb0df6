"""The simulation world: single owner of all mutable hall state.

One tick runs, in order:

1. clock advance (rejected before any mutation when paused or negative)
2. failure model: due repairs, maintenance ends, random breakdowns,
   scheduled maintenance starts
3. progress on every processing machine
4. completion of finished tasks
5. generated arrivals into the task pool
6. dispatch from the pool, then promotion of queue heads
7. rebalancing hook, followed by another promotion pass
8. threshold alerts
9. analytics snapshot when the sampling interval has elapsed

Events are appended in exactly that order. Every public method holds the
world lock, so external calls (breakdown toggles, task injection, pause)
never interleave with a tick.
"""

import logging
import random
import threading
from typing import Any, Dict, List, Optional, Tuple

from .alerts import AlertMonitor
from .clock import ProductionClock
from .config import Config
from .errors import InvalidTaskSpec, InvalidTransition, InvariantViolation, UnknownEntityError
from .events import EventData, EventLog, EventType, Recipient, Severity, SystemEvent, TaskEventData
from .failures import FailureModel
from .generators import TaskGenerator
from .metrics import (
    AnalyticsRecorder,
    AnalyticsSnapshot,
    GlobalMetrics,
    MachineMetrics,
    compute_global_metrics,
    hall_load,
    machine_metrics,
)
from .models import (
    Machine,
    MachineStatus,
    MachineType,
    Task,
    TaskPriority,
    TaskSpec,
    insert_by_priority,
)
from .scheduler import Dispatcher

logger = logging.getLogger(__name__)


class World:
    """Owns the clock, task pool, machines, archive, event log and history."""

    def __init__(self, config: Optional[Config] = None):
        self.config = config or Config.default()
        self.config.validate()
        sim = self.config.simulation

        self._lock = threading.RLock()
        self._rng = random.Random(sim.random_seed)

        self.clock = ProductionClock(tick_minutes=sim.tick_minutes)
        self.event_log = EventLog()
        self.dispatcher = Dispatcher(self.config.compatibility_predicate())
        self.failure_model = FailureModel(self.config.failures, self._rng)
        self.alerts = AlertMonitor(self.config.alerts)
        self.recorder = AnalyticsRecorder(sim.snapshot_interval_minutes, sim.history_limit)
        self.generator = TaskGenerator(
            self.config.task_templates,
            self._rng,
            seed=sim.random_seed,
            rate_per_hour=self.config.arrivals.rate_per_hour if self.config.arrivals.enabled else 0.0,
        )

        self.machines: List[Machine] = []
        self._machines_by_id: Dict[str, Machine] = {}
        self.task_pool: List[Task] = []
        self.completed_tasks: List[Task] = []

        self._task_counter = 0
        self._injected = 0
        self._cancelled = 0

        self._init_machines()

        for _ in range(self.config.arrivals.initial_tasks):
            self.inject_task(self.generator.generate())

        if sim.autostart:
            self.start()

    def _init_machines(self) -> None:
        for machine_config in self.config.machines:
            machine = Machine(
                id=machine_config.id,
                name=machine_config.name,
                type=MachineType(machine_config.machine_type),
                effective_time_multiplier=machine_config.time_multiplier,
                base_time_multiplier=machine_config.time_multiplier,
            )
            self.machines.append(machine)
            self._machines_by_id[machine.id] = machine
        logger.info(f"Initialized {len(self.machines)} machines")

    # -------------------------------------------------------------------------
    # Read accessors
    # -------------------------------------------------------------------------

    @property
    def production_time(self) -> float:
        return self.clock.production_time

    @property
    def is_running(self) -> bool:
        return self.clock.is_running

    @property
    def analytics_history(self) -> List[AnalyticsSnapshot]:
        return self.recorder.history

    @property
    def injected_count(self) -> int:
        return self._injected

    @property
    def cancelled_count(self) -> int:
        return self._cancelled

    def get_machine(self, machine_id: str) -> Machine:
        try:
            return self._machines_by_id[machine_id]
        except KeyError:
            raise UnknownEntityError(f"unknown machine '{machine_id}'") from None

    def find_task(self, task_id: str) -> Tuple[Task, str]:
        """Locate a task and name its container: pool, queue, current or completed."""
        with self._lock:
            for task in self.task_pool:
                if task.id == task_id:
                    return task, "pool"
            for machine in self.machines:
                if machine.current_task is not None and machine.current_task.id == task_id:
                    return machine.current_task, "current"
                for task in machine.queue:
                    if task.id == task_id:
                        return task, "queue"
            for task in self.completed_tasks:
                if task.id == task_id:
                    return task, "completed"
        raise UnknownEntityError(f"unknown task '{task_id}'")

    def global_metrics(self) -> GlobalMetrics:
        with self._lock:
            return compute_global_metrics(
                self.machines, self.task_pool, self.completed_tasks, self.production_time
            )

    def machine_metrics(self, machine_id: str) -> MachineMetrics:
        with self._lock:
            return machine_metrics(self.get_machine(machine_id), self.production_time)

    def state_dict(self) -> Dict[str, Any]:
        """Plain snapshot of the whole world for exporters and displays."""
        with self._lock:
            return {
                "production_time": self.production_time,
                "is_running": self.is_running,
                "metrics": self.global_metrics().to_dict(),
                "machines": [m.to_state_dict() for m in self.machines],
                "task_pool": [t.to_state_dict() for t in self.task_pool],
                "completed_tasks": [t.to_state_dict() for t in self.completed_tasks],
                "events": len(self.event_log),
                "snapshots": len(self.recorder.history),
            }

    # -------------------------------------------------------------------------
    # Run control
    # -------------------------------------------------------------------------

    def start(self) -> None:
        with self._lock:
            self.clock.start()

    def pause(self) -> None:
        with self._lock:
            self.clock.pause()

    # -------------------------------------------------------------------------
    # Event emission
    # -------------------------------------------------------------------------

    def emit(
        self,
        event_type: EventType,
        message: str,
        data: EventData,
        severity: Severity = Severity.INFO,
        recipients=(),
    ) -> SystemEvent:
        """Append an event stamped with the current production time."""
        event = self.event_log.record(
            self.production_time, event_type, message, data, severity, recipients
        )
        logger.debug(f"[{event.timestamp:.1f}] {event_type.value}: {message}")
        return event

    # -------------------------------------------------------------------------
    # Tick
    # -------------------------------------------------------------------------

    def advance_tick(self, delta_minutes: Optional[float] = None) -> List[SystemEvent]:
        """Advance the simulation by one tick and return the events it produced.

        ``delta_minutes`` defaults to the configured tick length. A zero delta
        changes nothing and records nothing.
        """
        if delta_minutes is None:
            delta_minutes = self.clock.tick_minutes

        with self._lock:
            self.clock.check_advance(delta_minutes)
            if delta_minutes == 0:
                return []

            first_event = len(self.event_log)
            load_before = hall_load(self.machines)
            self.clock.advance(delta_minutes)

            self.failure_model.step(self, load_before)
            finished = self._advance_progress(delta_minutes)
            self._complete(finished)

            for spec in self.generator.arrivals(delta_minutes):
                self._add_to_pool(spec)

            self.dispatcher.dispatch(self)
            self.dispatcher.promote(self)

            moved = self.dispatcher.rebalance(self, self.config.rebalance, hall_load(self.machines))
            if moved:
                self.dispatcher.promote(self)

            metrics = self.global_metrics()
            self.alerts.evaluate(self, metrics)
            self.recorder.maybe_snapshot(metrics, self.production_time)

            if __debug__:
                self.check_invariants()

            return list(self.event_log.entries()[first_event:])

    def _advance_progress(self, delta_minutes: float) -> List[Machine]:
        """Progress every processing machine; return those whose task finished."""
        finished = []
        for machine in self.machines:
            if machine.status != MachineStatus.PROCESSING:
                continue
            task = machine.current_task
            if task is None:
                raise InvariantViolation(f"machine {machine.id} is processing without a task")

            task.advance(delta_minutes, machine.effective_time_multiplier)
            machine.total_processing_time += delta_minutes
            machine.processing_since_maintenance += delta_minutes
            self.failure_model.recover(machine, delta_minutes)

            if task.progress >= 1.0:
                finished.append(machine)
        return finished

    def _complete(self, machines: List[Machine]) -> None:
        now = self.production_time
        for machine in machines:
            task = machine.current_task
            task.progress = 1.0
            task.remaining_minutes = 0.0
            task.completed_at = now
            task.assigned_machine = None

            machine.current_task = None
            machine.completed_tasks += 1
            machine.status = MachineStatus.IDLE
            machine.status_since = now
            self.completed_tasks.append(task)

            recipients = {Recipient.QUALITY_CONTROL}
            if task.priority == TaskPriority.CRITICAL:
                recipients.add(Recipient.MANAGER)
            self.emit(
                EventType.TASK_COMPLETED,
                f"{task.display_name} completed on {machine.name}",
                TaskEventData(task_id=task.id, machine_id=machine.id),
                recipients=recipients,
            )

    # -------------------------------------------------------------------------
    # External mutations
    # -------------------------------------------------------------------------

    def inject_task(self, spec: TaskSpec) -> Task:
        """Add a new task to the pool; it is dispatched on the next tick."""
        with self._lock:
            return self._add_to_pool(spec)

    def _add_to_pool(self, spec: TaskSpec) -> Task:
        if spec.workload_minutes <= 0:
            raise InvalidTaskSpec(f"workload must be positive, got {spec.workload_minutes}")
        if spec.order_value < 0:
            raise InvalidTaskSpec(f"order value must not be negative, got {spec.order_value}")

        if spec.id is not None and self._task_exists(spec.id):
            raise InvalidTaskSpec(f"task id '{spec.id}' already exists")

        self._task_counter += 1
        task_id = spec.id
        if not task_id:
            task_id = f"TASK-{self._task_counter:04d}"
            # Skip numbers already taken by caller-supplied ids
            while self._task_exists(task_id):
                self._task_counter += 1
                task_id = f"TASK-{self._task_counter:04d}"

        task = Task(
            id=task_id,
            display_name=spec.display_name,
            client_name=spec.client_name,
            task_type=spec.task_type,
            workload_minutes=spec.workload_minutes,
            priority=spec.priority,
            order_value=spec.order_value,
            sequence=self._task_counter,
            created_at=self.production_time,
        )
        insert_by_priority(self.task_pool, task)
        self._injected += 1

        critical = task.priority == TaskPriority.CRITICAL
        self.emit(
            EventType.TASK_CREATED,
            f"{task.display_name} ({task.priority.value}) for {task.client_name or 'internal'}",
            TaskEventData(task_id=task.id),
            severity=Severity.WARNING if critical else Severity.INFO,
            recipients=(Recipient.SUPERVISOR,) if critical else (),
        )
        return task

    def _task_exists(self, task_id: str) -> bool:
        try:
            self.find_task(task_id)
        except UnknownEntityError:
            return False
        return True

    def cancel_task(self, task_id: str) -> Task:
        """Remove a waiting task from the pool or a machine queue.

        Running, parked (frozen by a stop) and completed tasks cannot be
        cancelled.
        """
        with self._lock:
            task, location = self.find_task(task_id)
            if location == "completed":
                raise InvalidTransition(f"task {task_id} is already completed")
            if location == "current" or task.is_started:
                raise InvalidTransition(f"task {task_id} is in flight and cannot be cancelled")

            machine_id = task.assigned_machine
            if location == "pool":
                self.task_pool.remove(task)
            else:
                self.get_machine(machine_id).queue.remove(task)
            task.assigned_machine = None
            self._cancelled += 1

            self.emit(
                EventType.TASK_CANCELLED,
                f"{task.display_name} cancelled",
                TaskEventData(task_id=task.id, machine_id=machine_id),
                recipients=(Recipient.SUPERVISOR,),
            )
            return task

    def toggle_machine_breakdown(self, machine_id: str) -> MachineStatus:
        """Break an available machine, or repair a broken one.

        A repaired machine immediately resumes its parked task (or its queue
        head) instead of waiting for the next tick.
        """
        with self._lock:
            machine = self.get_machine(machine_id)
            status = self.failure_model.toggle(self, machine)
            if status == MachineStatus.IDLE:
                self.dispatcher.promote(self, [machine])
            return machine.status

    def start_maintenance(self, machine_id: str, duration_minutes: Optional[float] = None) -> None:
        with self._lock:
            machine = self.get_machine(machine_id)
            self.failure_model.start_maintenance(self, machine, duration_minutes)

    def end_maintenance(self, machine_id: str) -> None:
        with self._lock:
            machine = self.get_machine(machine_id)
            self.failure_model.end_maintenance(self, machine)
            self.dispatcher.promote(self, [machine])

    # -------------------------------------------------------------------------
    # Invariants
    # -------------------------------------------------------------------------

    def check_invariants(self) -> None:
        """Raise InvariantViolation when structural invariants do not hold."""
        seen: Dict[str, str] = {}

        def claim(task: Task, owner: str) -> None:
            if task.id in seen:
                raise InvariantViolation(f"task {task.id} held by both {seen[task.id]} and {owner}")
            seen[task.id] = owner

        for task in self.task_pool:
            claim(task, "pool")
        for machine in self.machines:
            processing = machine.status == MachineStatus.PROCESSING
            if processing != (machine.current_task is not None):
                raise InvariantViolation(
                    f"machine {machine.id} is {machine.status.value} "
                    f"with current task {machine.current_task and machine.current_task.id}"
                )
            if machine.current_task is not None:
                claim(machine.current_task, f"{machine.id}/current")
            for task in machine.queue:
                claim(task, f"{machine.id}/queue")
        for task in self.completed_tasks:
            claim(task, "completed")

        if len(seen) != self._injected - self._cancelled:
            raise InvariantViolation(
                f"{len(seen)} tasks tracked, expected {self._injected - self._cancelled}"
            )
