"""Dispatching, promotion and load rebalancing.

The dispatcher moves work from the task pool onto machine queues, promotes
queue heads into free machine slots, and optionally flattens queue skew.
Every operation takes the owning :class:`~factory_sim.world.World`
explicitly and reports transitions through ``world.emit``.

Machine selection compares projected completion time: the minutes of work
already committed to a machine plus the candidate task's effort on that
machine. Ties go to the shorter queue, then to the lower machine id.
"""

import logging
from statistics import pvariance
from typing import TYPE_CHECKING, Callable, Iterable, List, Optional, Tuple

from .events import EventType, RebalanceEventData, Recipient, Severity, TaskEventData
from .models import Machine, MachineStatus, MachineType, Task, insert_by_priority

if TYPE_CHECKING:
    from .config import RebalanceConfig
    from .world import World

logger = logging.getLogger(__name__)

Compatibility = Callable[[str, str], bool]


class Dispatcher:
    """Assignment policy for the machine hall."""

    def __init__(self, accepts: Compatibility):
        self._accepts = accepts

    def is_compatible(self, task: Task, machine: Machine) -> bool:
        return self._accepts(task.task_type, machine.type.value)

    def candidates(self, task: Task, machines: Iterable[Machine]) -> List[Machine]:
        """Compatible machines that can currently receive work."""
        return [m for m in machines if m.status.available and self.is_compatible(task, m)]

    @staticmethod
    def _rank(task: Task, machine: Machine) -> Tuple[float, int, str]:
        return (machine.projected_completion(task), len(machine.queue), machine.id)

    def select_machine(self, task: Task, machines: Iterable[Machine]) -> Optional[Machine]:
        """Best machine for ``task`` or None when nothing compatible is available."""
        options = self.candidates(task, machines)
        if not options:
            return None
        return min(options, key=lambda m: self._rank(task, m))

    # -------------------------------------------------------------------------
    # Pool -> queue
    # -------------------------------------------------------------------------

    def assign(self, world: "World", task: Task, machine: Machine) -> None:
        """Place ``task`` on ``machine``'s queue and record the assignment."""
        insert_by_priority(machine.queue, task)
        task.assigned_machine = machine.id
        task.recompute_remaining(machine.effective_time_multiplier)
        world.emit(
            EventType.TASK_ASSIGNED,
            f"{task.display_name} assigned to {machine.name}",
            TaskEventData(task_id=task.id, machine_id=machine.id),
        )

    def dispatch(self, world: "World") -> List[Tuple[Task, Machine]]:
        """Dispatch every pool task that has an available compatible machine.

        Tasks are visited in pool order (priority band, then arrival). Tasks
        without a candidate stay in the pool for a later tick.
        """
        assigned = []
        for task in list(world.task_pool):
            machine = self.select_machine(task, world.machines)
            if machine is None:
                logger.debug(f"No available machine for {task.id} ({task.task_type}), deferred")
                continue
            world.task_pool.remove(task)
            self.assign(world, task, machine)
            assigned.append((task, machine))
        return assigned

    # -------------------------------------------------------------------------
    # Queue -> current slot
    # -------------------------------------------------------------------------

    def promote(self, world: "World", machines: Optional[Iterable[Machine]] = None) -> List[Machine]:
        """Start the queue head on every idle machine with an empty slot."""
        promoted = []
        for machine in world.machines if machines is None else machines:
            if machine.status != MachineStatus.IDLE or machine.current_task is not None:
                continue
            if not machine.queue:
                continue

            task = machine.queue.pop(0)
            resumed = task.is_started
            machine.current_task = task
            machine.status = MachineStatus.PROCESSING
            machine.status_since = world.production_time
            if not resumed:
                task.started_at = world.production_time
            task.recompute_remaining(machine.effective_time_multiplier)

            verb = "resumed" if resumed else "started"
            world.emit(
                EventType.TASK_STARTED,
                f"{task.display_name} {verb} on {machine.name}",
                TaskEventData(task_id=task.id, machine_id=machine.id),
            )
            promoted.append(machine)
        return promoted

    # -------------------------------------------------------------------------
    # Rebalancing
    # -------------------------------------------------------------------------

    def rebalance(self, world: "World", policy: "RebalanceConfig", hall_load: float) -> List[Task]:
        """Redistribute queued, unstarted work when the hall is skewed.

        Runs per machine type. A type is considered when hall load exceeds the
        high-water mark or when the queue-length variance across its available
        machines exceeds the configured threshold. A task only moves when
        another machine strictly improves its projected completion time.
        """
        if not policy.enabled:
            return []

        overloaded = hall_load > policy.hall_load_threshold
        moved_all = []

        for machine_type in MachineType:
            group = [m for m in world.machines if m.type == machine_type and m.status.available]
            if len(group) < 2:
                continue

            variance = pvariance([len(m.queue) for m in group])
            if overloaded:
                reason = f"hall load {hall_load:.0f}% above {policy.hall_load_threshold:.0f}%"
            elif variance > policy.queue_variance_threshold:
                reason = (
                    f"queue variance {variance:.1f} above {policy.queue_variance_threshold:.1f}"
                )
            else:
                continue

            moves = self._flatten(world, group)
            if not moves:
                continue

            world.emit(
                EventType.REBALANCE_TRIGGERED,
                f"Rebalanced {len(moves)} {machine_type.value} task(s): {reason}",
                RebalanceEventData(
                    machine_type=machine_type.value,
                    moved_task_ids=tuple(task.id for task, _, _ in moves),
                    reason=reason,
                ),
                severity=Severity.WARNING,
                recipients=(Recipient.SUPERVISOR,),
            )
            for task, source, target in moves:
                world.emit(
                    EventType.TASK_ASSIGNED,
                    f"{task.display_name} moved from {source.name} to {target.name}",
                    TaskEventData(task_id=task.id, machine_id=target.id),
                )
                moved_all.append(task)

        return moved_all

    def _flatten(self, world: "World", group: List[Machine]) -> List[Tuple[Task, Machine, Machine]]:
        """Greedy single pass over movable tasks, highest priority first."""
        movable = [
            (task, machine)
            for machine in group
            for task in machine.queue
            if not task.is_started
        ]
        movable.sort(key=lambda pair: (pair[0].priority.rank, pair[0].sequence))

        moves = []
        for task, source in movable:
            index = source.queue.index(task)
            source.queue.pop(index)
            target = self.select_machine(task, world.machines)
            if target is None or target is source:
                source.queue.insert(index, task)
                continue
            if target.projected_completion(task) >= source.projected_completion(task):
                source.queue.insert(index, task)
                continue

            insert_by_priority(target.queue, task)
            task.assigned_machine = target.id
            task.recompute_remaining(target.effective_time_multiplier)
            moves.append((task, source, target))
            logger.debug(f"Rebalance: {task.id} {source.id} -> {target.id}")
        return moves

