"""Shared fixtures for the simulator tests."""

import pytest

from factory_sim.config import Config, MachineConfig
from factory_sim.models import TaskPriority, TaskSpec
from factory_sim.world import World


def quiet_config(machines=None, seed=42):
    """Deterministic config: no random failures, no repair penalty, no rebalancing.

    The hall load alert is pushed to 100% so it never fires.
    """
    cfg = Config.default()
    cfg.simulation.random_seed = seed
    cfg.failures.breakdown_probability = 0.0
    cfg.failures.auto_repair = False
    cfg.failures.repair_penalty = (0.0, 0.0)
    cfg.rebalance.enabled = False
    cfg.alerts.hall_load_critical = 100.0
    cfg.arrivals.enabled = False
    if machines is not None:
        cfg.machines = machines
    return cfg


def cnc(machine_id="M1", multiplier=1.0):
    return MachineConfig(id=machine_id, name=f"CNC {machine_id}", machine_type="CNC",
                         time_multiplier=multiplier)


def spec(name="Part", workload=60.0, priority=TaskPriority.NORMAL, task_type="CNC", value=100.0):
    return TaskSpec(
        display_name=name,
        task_type=task_type,
        workload_minutes=workload,
        client_name="ACME",
        priority=priority,
        order_value=value,
    )


@pytest.fixture
def config():
    return quiet_config()


@pytest.fixture
def world(config):
    w = World(config)
    w.start()
    return w


@pytest.fixture
def single_cnc_world():
    w = World(quiet_config(machines=[cnc("M1")]))
    w.start()
    return w


@pytest.fixture
def twin_cnc_world():
    w = World(quiet_config(machines=[cnc("M1"), cnc("M2")]))
    w.start()
    return w
