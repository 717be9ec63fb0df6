"""Tests for the World aggregate and the tick pipeline."""

import pytest

from conftest import cnc, quiet_config, spec
from factory_sim.config import Config
from factory_sim.errors import (
    ClockMisuse,
    InvalidTaskSpec,
    InvalidTransition,
    InvariantViolation,
    UnknownEntityError,
)
from factory_sim.events import EventType, Recipient, Severity
from factory_sim.models import MachineStatus, TaskPriority, TaskSpec
from factory_sim.world import World


def tracked_tasks(world):
    count = len(world.task_pool) + len(world.completed_tasks)
    for machine in world.machines:
        count += len(machine.queue)
        if machine.current_task is not None:
            count += 1
    return count


def busy_config(seed=7):
    cfg = Config.default()
    cfg.simulation.random_seed = seed
    cfg.failures.breakdown_probability = 0.02
    cfg.arrivals.enabled = True
    cfg.arrivals.rate_per_hour = 30
    cfg.arrivals.initial_tasks = 5
    return cfg


class TestInjectTask:
    """Tests for adding work orders."""

    def test_assigns_sequential_ids(self, world):
        a = world.inject_task(spec("A"))
        b = world.inject_task(spec("B"))
        assert (a.id, b.id) == ("TASK-0001", "TASK-0002")
        assert world.task_pool == [a, b]
        assert a.progress == 0.0
        assert a.remaining_minutes == a.workload_minutes

    def test_emits_created_event(self, world):
        task = world.inject_task(spec("A"))
        event = world.event_log[-1]
        assert event.type == EventType.TASK_CREATED
        assert event.severity == Severity.INFO
        assert event.data.task_id == task.id

    def test_critical_task_alerts_supervisor(self, world):
        world.inject_task(spec("Hot", priority=TaskPriority.CRITICAL))
        event = world.event_log[-1]
        assert event.severity == Severity.WARNING
        assert event.recipients == frozenset({Recipient.SUPERVISOR})

    def test_explicit_id(self, world):
        task = world.inject_task(TaskSpec(display_name="X", task_type="CNC",
                                          workload_minutes=10, id="ORDER-7"))
        assert task.id == "ORDER-7"
        assert world.find_task("ORDER-7") == (task, "pool")

    def test_duplicate_id_rejected_without_side_effects(self, world):
        world.inject_task(TaskSpec(display_name="X", task_type="CNC",
                                   workload_minutes=10, id="ORDER-7"))
        events_before = len(world.event_log)
        with pytest.raises(InvalidTaskSpec):
            world.inject_task(TaskSpec(display_name="Y", task_type="CNC",
                                       workload_minutes=10, id="ORDER-7"))
        assert len(world.event_log) == events_before
        assert world.injected_count == 1
        assert world.inject_task(spec("Z")).id == "TASK-0002"

    def test_generated_id_skips_caller_supplied_id(self, single_cnc_world):
        taken = single_cnc_world.inject_task(TaskSpec(display_name="X", task_type="CNC",
                                                      workload_minutes=10, id="TASK-0002"))
        generated = single_cnc_world.inject_task(spec("Y"))
        assert generated.id == "TASK-0003"
        assert single_cnc_world.find_task("TASK-0002") == (taken, "pool")

        single_cnc_world.advance_tick()
        single_cnc_world.check_invariants()
        assert single_cnc_world.find_task(generated.id)[0] is generated

    @pytest.mark.parametrize("workload", [0, -5])
    def test_non_positive_workload_rejected(self, world, workload):
        with pytest.raises(InvalidTaskSpec):
            world.inject_task(spec(workload=workload))
        assert world.task_pool == []

    def test_negative_value_rejected(self, world):
        with pytest.raises(InvalidTaskSpec):
            world.inject_task(spec(value=-1))

    def test_invalid_spec_is_a_value_error(self, world):
        with pytest.raises(ValueError):
            world.inject_task(spec(workload=0))

    def test_allowed_while_paused(self, world):
        world.pause()
        world.inject_task(spec())
        assert len(world.task_pool) == 1

    def test_initial_tasks_seeded_from_templates(self):
        cfg = quiet_config()
        cfg.arrivals.initial_tasks = 4
        world = World(cfg)
        assert len(world.task_pool) == 4
        assert world.injected_count == 4


class TestCancelTask:
    """Tests for removing waiting work."""

    def test_cancel_from_pool(self, world):
        task = world.inject_task(spec())
        world.cancel_task(task.id)
        assert world.task_pool == []
        assert world.cancelled_count == 1
        event = world.event_log[-1]
        assert event.type == EventType.TASK_CANCELLED
        assert event.recipients == frozenset({Recipient.SUPERVISOR})

    def test_cancel_from_queue(self, single_cnc_world):
        single_cnc_world.inject_task(spec("A"))
        b = single_cnc_world.inject_task(spec("B"))
        single_cnc_world.advance_tick()
        assert single_cnc_world.find_task(b.id)[1] == "queue"

        single_cnc_world.cancel_task(b.id)
        assert single_cnc_world.get_machine("M1").queue == []
        assert b.assigned_machine is None
        assert single_cnc_world.event_log[-1].data.machine_id == "M1"
        single_cnc_world.check_invariants()

    def test_running_task_cannot_be_cancelled(self, single_cnc_world):
        task = single_cnc_world.inject_task(spec())
        single_cnc_world.advance_tick()
        with pytest.raises(InvalidTransition):
            single_cnc_world.cancel_task(task.id)

    def test_parked_task_cannot_be_cancelled(self, single_cnc_world):
        task = single_cnc_world.inject_task(spec())
        single_cnc_world.advance_tick()
        single_cnc_world.toggle_machine_breakdown("M1")
        with pytest.raises(InvalidTransition):
            single_cnc_world.cancel_task(task.id)

    def test_completed_task_cannot_be_cancelled(self, single_cnc_world):
        task = single_cnc_world.inject_task(spec(workload=1))
        single_cnc_world.advance_tick()
        single_cnc_world.advance_tick()
        assert single_cnc_world.find_task(task.id)[1] == "completed"
        with pytest.raises(InvalidTransition):
            single_cnc_world.cancel_task(task.id)

    def test_unknown_task(self, world):
        with pytest.raises(UnknownEntityError):
            world.cancel_task("TASK-9999")


class TestLookups:
    """Tests for machine and task lookups."""

    def test_unknown_machine_is_key_error(self, world):
        with pytest.raises(KeyError):
            world.get_machine("M99")
        with pytest.raises(UnknownEntityError):
            world.toggle_machine_breakdown("M99")

    def test_find_task_locations(self, single_cnc_world):
        a = single_cnc_world.inject_task(spec("A", workload=1))
        b = single_cnc_world.inject_task(spec("B"))
        c = single_cnc_world.inject_task(spec("C"))
        single_cnc_world.advance_tick()
        d = single_cnc_world.inject_task(spec("D"))
        single_cnc_world.advance_tick()

        assert single_cnc_world.find_task(a.id)[1] == "completed"
        assert single_cnc_world.find_task(b.id)[1] == "current"
        assert single_cnc_world.find_task(c.id)[1] == "queue"
        assert single_cnc_world.find_task(d.id)[1] == "queue"

    def test_state_dict(self, single_cnc_world):
        single_cnc_world.inject_task(spec())
        single_cnc_world.advance_tick()
        state = single_cnc_world.state_dict()
        assert state["production_time"] == 1.0
        assert state["is_running"] is True
        assert state["machines"][0]["status"] == "processing"
        assert state["metrics"]["hall_load"] == 100
        assert state["task_pool"] == []


class TestAdvanceTick:
    """Tests for clock handling in the tick pipeline."""

    def test_paused_world_rejects_tick(self, world):
        world.inject_task(spec())
        world.pause()
        events_before = len(world.event_log)
        with pytest.raises(ClockMisuse):
            world.advance_tick()
        assert world.production_time == 0.0
        assert len(world.event_log) == events_before
        assert len(world.task_pool) == 1

    def test_negative_delta_rejected(self, world):
        with pytest.raises(ClockMisuse):
            world.advance_tick(-1)
        assert world.production_time == 0.0

    def test_zero_delta_is_a_no_op(self, single_cnc_world):
        single_cnc_world.inject_task(spec())
        single_cnc_world.advance_tick()
        before = single_cnc_world.state_dict()
        assert single_cnc_world.advance_tick(0) == []
        assert single_cnc_world.state_dict() == before

    def test_default_delta_is_tick_length(self):
        cfg = quiet_config()
        cfg.simulation.tick_minutes = 2.5
        world = World(cfg)
        world.start()
        world.advance_tick()
        world.advance_tick()
        assert world.production_time == pytest.approx(5.0)

    def test_large_delta_completes_in_one_tick(self, single_cnc_world):
        task = single_cnc_world.inject_task(spec(workload=30))
        single_cnc_world.advance_tick()
        events = single_cnc_world.advance_tick(45)
        assert [e.type for e in events] == [EventType.TASK_COMPLETED]
        assert task.completed_at == pytest.approx(46.0)

    def test_returns_only_new_events(self, world):
        world.inject_task(spec())
        events = world.advance_tick()
        assert all(e.timestamp == 1.0 for e in events)
        assert EventType.TASK_CREATED not in [e.type for e in events]

    def test_autostart(self):
        cfg = quiet_config()
        cfg.simulation.autostart = True
        assert World(cfg).is_running is True

    def test_event_order_within_tick(self):
        cfg = quiet_config(machines=[cnc("M1"), cnc("M2")])
        cfg.failures.auto_repair = True
        cfg.failures.repair_minutes = (1.0, 1.0)
        world = World(cfg)
        world.start()

        a = world.inject_task(spec("A", workload=1))
        b = world.inject_task(spec("B", workload=50))
        world.advance_tick()
        assert world.get_machine("M1").current_task is a
        assert world.get_machine("M2").current_task is b

        world.toggle_machine_breakdown("M2")
        c = world.inject_task(spec("C", workload=10))
        events = world.advance_tick()

        assert [(e.type, e.data.to_dict().get("task_id")) for e in events] == [
            (EventType.MACHINE_REPAIRED, b.id),
            (EventType.TASK_COMPLETED, a.id),
            (EventType.TASK_ASSIGNED, c.id),
            (EventType.TASK_STARTED, c.id),
            (EventType.TASK_STARTED, b.id),
        ]
        assert "resumed" in events[-1].message


class TestCompletion:
    """Tests for finishing tasks."""

    def test_completed_task_is_archived(self, single_cnc_world):
        task = single_cnc_world.inject_task(spec(workload=3))
        for _ in range(4):
            single_cnc_world.advance_tick()

        machine = single_cnc_world.get_machine("M1")
        assert single_cnc_world.completed_tasks == [task]
        assert task.progress == 1.0
        assert task.remaining_minutes == 0.0
        assert task.completed_at == 4.0
        assert task.assigned_machine is None
        assert machine.status == MachineStatus.IDLE
        assert machine.completed_tasks == 1
        assert machine.total_processing_time == pytest.approx(3.0)

    def test_completion_recipients(self, single_cnc_world):
        single_cnc_world.inject_task(spec(workload=1, priority=TaskPriority.CRITICAL))
        single_cnc_world.advance_tick()
        events = single_cnc_world.advance_tick()
        assert events[0].type == EventType.TASK_COMPLETED
        assert events[0].recipients == frozenset({Recipient.QUALITY_CONTROL, Recipient.MANAGER})

    def test_next_queued_task_starts_same_tick(self, single_cnc_world):
        single_cnc_world.inject_task(spec("A", workload=2))
        b = single_cnc_world.inject_task(spec("B"))
        for _ in range(3):
            single_cnc_world.advance_tick()
        machine = single_cnc_world.get_machine("M1")
        assert machine.current_task is b
        assert b.started_at == 3.0

    def test_slow_machine_takes_longer(self):
        world = World(quiet_config(machines=[cnc("M1", multiplier=2.0)]))
        world.start()
        task = world.inject_task(spec(workload=5))
        for _ in range(10):
            world.advance_tick()
        assert task.completed_at is None
        world.advance_tick()
        assert task.completed_at == 11.0


class TestInvariants:
    """Properties that hold across long seeded runs."""

    def test_every_task_has_one_home(self):
        world = World(busy_config())
        world.start()
        for _ in range(300):
            world.advance_tick()
            world.check_invariants()
            assert tracked_tasks(world) == world.injected_count - world.cancelled_count

    def test_counts_survive_cancellations(self):
        cfg = busy_config()
        cfg.arrivals.rate_per_hour = 90
        world = World(cfg)
        world.start()
        for tick in range(120):
            world.advance_tick()
            if tick % 10:
                continue
            waiting = [t for m in world.machines for t in m.queue if not t.is_started]
            waiting.extend(world.task_pool)
            if waiting:
                world.cancel_task(waiting[-1].id)
        assert world.cancelled_count > 0
        assert tracked_tasks(world) == world.injected_count - world.cancelled_count

    def test_progress_never_decreases(self):
        world = World(busy_config(seed=11))
        world.start()
        seen = {}
        for _ in range(300):
            world.advance_tick()
            tasks = list(world.completed_tasks)
            for machine in world.machines:
                tasks.extend(machine.hosted_tasks())
            for task in tasks:
                assert 0.0 <= task.progress <= 1.0
                assert task.progress >= seen.get(task.id, 0.0)
                seen[task.id] = task.progress

    def test_processing_iff_current_task(self):
        world = World(busy_config(seed=3))
        world.start()
        for _ in range(200):
            world.advance_tick()
            for machine in world.machines:
                assert (machine.status == MachineStatus.PROCESSING) == (
                    machine.current_task is not None
                )

    def test_event_timestamps_non_decreasing(self):
        world = World(busy_config())
        world.start()
        for _ in range(200):
            world.advance_tick()
        stamps = [e.timestamp for e in world.event_log]
        assert stamps == sorted(stamps)

    def test_corrupted_state_detected(self, single_cnc_world):
        single_cnc_world.get_machine("M1").status = MachineStatus.PROCESSING
        with pytest.raises(InvariantViolation):
            single_cnc_world.check_invariants()

    def test_same_seed_same_history(self):
        def run():
            world = World(busy_config(seed=99))
            world.start()
            for _ in range(240):
                world.advance_tick()
            return [(e.type, e.timestamp, e.message) for e in world.event_log]

        assert run() == run()
