"""Breakdown, repair and maintenance transitions.

Status transitions driven here:

- idle/processing -> breakdown: manual toggle or per-tick stochastic check
- breakdown -> idle: manual toggle or automatic repair timer
- idle/processing -> maintenance: manual, or scheduled after a configured
  amount of processing time (only once the machine is idle)
- maintenance -> idle: manual or when the maintenance window ends

A task in flight when a machine stops is parked at the head of that
machine's queue with its progress frozen; it is the first task promoted once
the machine is back. Maintenance never counts toward breakdown statistics.
"""

import logging
import random
from typing import TYPE_CHECKING, Optional

from .config import FailureConfig
from .errors import InvalidTransition
from .events import AlertEventData, EventType, MachineEventData, Recipient, Severity
from .models import Machine, MachineStatus, Task, TaskPriority

if TYPE_CHECKING:
    from .world import World

logger = logging.getLogger(__name__)


class FailureModel:
    """Drives machine availability from configuration and a seeded RNG."""

    def __init__(self, config: FailureConfig, rng: random.Random):
        self.config = config
        self._rng = rng

    # -------------------------------------------------------------------------
    # Per-tick step
    # -------------------------------------------------------------------------

    def breakdown_probability(self, hall_load: float) -> float:
        """Per-tick breakdown chance for one machine at ``hall_load`` percent."""
        p = self.config.breakdown_probability * (
            1.0 + self.config.load_sensitivity * hall_load / 100.0
        )
        return min(1.0, max(0.0, p))

    def step(self, world: "World", hall_load: float) -> None:
        """Apply timers, then random failures, then scheduled maintenance."""
        now = world.production_time

        for machine in world.machines:
            if (
                machine.status == MachineStatus.BREAKDOWN
                and machine.repair_due_at is not None
                and now >= machine.repair_due_at
            ):
                self.repair(world, machine, reason="repair timer elapsed")

        for machine in world.machines:
            if (
                machine.status == MachineStatus.MAINTENANCE
                and machine.maintenance_due_at is not None
                and now >= machine.maintenance_due_at
            ):
                self.end_maintenance(world, machine)

        probability = self.breakdown_probability(hall_load)
        if probability > 0:
            for machine in world.machines:
                if not machine.status.available:
                    continue
                if self._rng.random() < probability:
                    self.break_down(world, machine, reason="random failure")

        interval_hours = self.config.maintenance_interval_hours
        if interval_hours:
            for machine in world.machines:
                if (
                    machine.status == MachineStatus.IDLE
                    and machine.processing_since_maintenance >= interval_hours * 60.0
                ):
                    self.start_maintenance(
                        world, machine, duration_minutes=self.config.maintenance_minutes
                    )

    def recover(self, machine: Machine, delta_minutes: float) -> None:
        """Decay a post-repair speed penalty while the machine processes."""
        base = machine.base_time_multiplier
        if machine.effective_time_multiplier <= base:
            return
        step = base * self.config.penalty_recovery_per_hour * delta_minutes / 60.0
        machine.set_multiplier(max(base, machine.effective_time_multiplier - step))

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def toggle(self, world: "World", machine: Machine) -> MachineStatus:
        """Break an available machine or repair a broken one."""
        if machine.status == MachineStatus.BREAKDOWN:
            self.repair(world, machine, reason="manual repair")
        elif machine.status.available:
            self.break_down(world, machine, reason="manual breakdown")
        else:
            raise InvalidTransition(
                f"machine {machine.id} is in {machine.status.value}; cannot toggle breakdown"
            )
        return machine.status

    def break_down(self, world: "World", machine: Machine, reason: str = "") -> Optional[Task]:
        if not machine.status.available:
            raise InvalidTransition(
                f"machine {machine.id} is in {machine.status.value}; cannot break down"
            )

        parked = self._halt(world, machine, MachineStatus.BREAKDOWN)
        machine.breakdown_count += 1
        if self.config.auto_repair:
            low, high = self.config.repair_minutes
            machine.repair_due_at = world.production_time + self._rng.uniform(low, high)
        else:
            machine.repair_due_at = None

        recipients = {Recipient.TECHNICIAN, Recipient.SUPERVISOR}
        if parked is not None and parked.priority == TaskPriority.CRITICAL:
            recipients.add(Recipient.MANAGER)

        suffix = f", {parked.display_name} frozen at {parked.progress:.0%}" if parked else ""
        world.emit(
            EventType.MACHINE_BREAKDOWN,
            f"{machine.name} broke down ({reason}){suffix}",
            MachineEventData(machine_id=machine.id, task_id=parked.id if parked else None),
            severity=Severity.CRITICAL,
            recipients=recipients,
        )
        logger.warning(f"{machine.id} breakdown: {reason}")
        return parked

    def repair(self, world: "World", machine: Machine, reason: str = "") -> None:
        if machine.status != MachineStatus.BREAKDOWN:
            raise InvalidTransition(
                f"machine {machine.id} is {machine.status.value}, not in breakdown"
            )

        now = world.production_time
        machine.total_downtime += now - machine.status_since
        machine.status = MachineStatus.IDLE
        machine.status_since = now
        machine.repair_due_at = None

        low, high = self.config.repair_penalty
        penalty = self._rng.uniform(low, high) if high > 0 else 0.0
        machine.set_multiplier(machine.base_time_multiplier * (1.0 + penalty))

        head = machine.queue[0] if machine.queue and machine.queue[0].is_started else None
        world.emit(
            EventType.MACHINE_REPAIRED,
            f"{machine.name} repaired ({reason}), running at {machine.effective_time_multiplier:.2f}x",
            MachineEventData(machine_id=machine.id, task_id=head.id if head else None),
            severity=Severity.INFO,
            recipients=(Recipient.TECHNICIAN, Recipient.SUPERVISOR),
        )
        logger.info(f"{machine.id} repaired: {reason}")

    def start_maintenance(
        self, world: "World", machine: Machine, duration_minutes: Optional[float] = None
    ) -> Optional[Task]:
        if not machine.status.available:
            raise InvalidTransition(
                f"machine {machine.id} is in {machine.status.value}; cannot start maintenance"
            )

        parked = self._halt(world, machine, MachineStatus.MAINTENANCE)
        if duration_minutes is not None:
            machine.maintenance_due_at = world.production_time + duration_minutes
        else:
            machine.maintenance_due_at = None

        world.emit(
            EventType.ALERT_SENT,
            f"{machine.name} entered maintenance",
            AlertEventData(
                alert="maintenance_started",
                value=machine.processing_since_maintenance,
                threshold=duration_minutes,
                machine_id=machine.id,
            ),
            severity=Severity.INFO,
            recipients=(Recipient.TECHNICIAN,),
        )
        logger.info(f"{machine.id} maintenance started")
        return parked

    def end_maintenance(self, world: "World", machine: Machine) -> None:
        if machine.status != MachineStatus.MAINTENANCE:
            raise InvalidTransition(
                f"machine {machine.id} is {machine.status.value}, not in maintenance"
            )

        machine.status = MachineStatus.IDLE
        machine.status_since = world.production_time
        machine.maintenance_due_at = None
        machine.processing_since_maintenance = 0.0
        machine.set_multiplier(machine.base_time_multiplier)

        world.emit(
            EventType.ALERT_SENT,
            f"{machine.name} finished maintenance",
            AlertEventData(alert="maintenance_finished", machine_id=machine.id),
            severity=Severity.INFO,
            recipients=(Recipient.TECHNICIAN,),
        )
        logger.info(f"{machine.id} maintenance finished")

    @staticmethod
    def _halt(world: "World", machine: Machine, status: MachineStatus) -> Optional[Task]:
        """Stop the machine, parking any in-flight task at the queue head."""
        parked = machine.current_task
        if parked is not None:
            machine.queue.insert(0, parked)
            machine.current_task = None
        machine.status = status
        machine.status_since = world.production_time
        return parked
