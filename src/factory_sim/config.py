"""Configuration management for the simulator."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import yaml

from .errors import ConfigError


@dataclass
class SimulationConfig:
    """Clock, sampling and pacing parameters."""

    tick_minutes: float = 1.0  # Simulated minutes per tick
    tick_interval_ms: int = 1000  # Wall time between ticks in the runner
    time_acceleration: float = 1.0
    random_seed: Optional[int] = None
    snapshot_interval_minutes: float = 5.0
    history_limit: Optional[int] = 1000
    autostart: bool = False


@dataclass
class FailureConfig:
    """Breakdown, repair and maintenance policy."""

    breakdown_probability: float = 0.002  # Per machine per tick
    load_sensitivity: float = 0.0  # 0 = fixed probability
    auto_repair: bool = True
    repair_minutes: Tuple[float, float] = (15.0, 45.0)
    repair_penalty: Tuple[float, float] = (0.05, 0.20)
    penalty_recovery_per_hour: float = 0.10
    maintenance_interval_hours: Optional[float] = None  # None = no scheduled maintenance
    maintenance_minutes: float = 30.0


@dataclass
class RebalanceConfig:
    """Load flattening policy hook."""

    enabled: bool = True
    hall_load_threshold: float = 85.0
    queue_variance_threshold: float = 4.0


@dataclass
class AlertConfig:
    """Thresholds for edge-triggered alerts."""

    hall_load_critical: float = 85.0
    waiting_backlog: int = 15


@dataclass
class ArrivalConfig:
    """Generated work order arrivals."""

    enabled: bool = False
    rate_per_hour: float = 20.0
    initial_tasks: int = 0


@dataclass
class MachineConfig:
    """Machine definition."""

    id: str
    name: str
    machine_type: str  # CNC, Assembly, Test, Packaging
    time_multiplier: float = 1.0  # >1 slower, <1 faster


@dataclass
class TaskTemplateConfig:
    """Work order template used by the arrival generator."""

    name: str
    task_type: str
    workload_range: Tuple[float, float] = (20.0, 90.0)
    value_range: Tuple[float, float] = (500.0, 5000.0)
    priority_weights: Tuple[float, float, float] = (0.7, 0.2, 0.1)  # normal, rush, critical


MACHINE_TYPES = ("CNC", "Assembly", "Test", "Packaging")


@dataclass
class Config:
    """Main configuration container."""

    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    failures: FailureConfig = field(default_factory=FailureConfig)
    rebalance: RebalanceConfig = field(default_factory=RebalanceConfig)
    alerts: AlertConfig = field(default_factory=AlertConfig)
    arrivals: ArrivalConfig = field(default_factory=ArrivalConfig)
    machines: List[MachineConfig] = field(default_factory=list)
    task_templates: List[TaskTemplateConfig] = field(default_factory=list)
    compatibility: Dict[str, List[str]] = field(default_factory=dict)

    def compatibility_predicate(self) -> Callable[[str, str], bool]:
        """Build the (task_type, machine_type) -> bool predicate.

        Task types without an explicit entry are only accepted by the machine
        type of the same name.
        """
        table = {task_type: frozenset(types) for task_type, types in self.compatibility.items()}

        def accepts(task_type: str, machine_type: str) -> bool:
            allowed = table.get(task_type)
            if allowed is None:
                return task_type == machine_type
            return machine_type in allowed

        return accepts

    def validate(self) -> None:
        """Raise ConfigError on inconsistent values."""
        sim = self.simulation
        if sim.tick_minutes <= 0:
            raise ConfigError("simulation.tick_minutes must be positive")
        if sim.snapshot_interval_minutes <= 0:
            raise ConfigError("simulation.snapshot_interval_minutes must be positive")
        if sim.time_acceleration <= 0:
            raise ConfigError("simulation.time_acceleration must be positive")
        if sim.history_limit is not None and sim.history_limit < 1:
            raise ConfigError("simulation.history_limit must be at least 1")

        fail = self.failures
        if not 0.0 <= fail.breakdown_probability <= 1.0:
            raise ConfigError("failures.breakdown_probability must be within [0, 1]")
        if fail.load_sensitivity < 0:
            raise ConfigError("failures.load_sensitivity must not be negative")
        for name in ("repair_minutes", "repair_penalty"):
            low, high = getattr(fail, name)
            if low < 0 or high < low:
                raise ConfigError(f"failures.{name} must be a non-negative [min, max] range")

        ids = [m.id for m in self.machines]
        if len(ids) != len(set(ids)):
            raise ConfigError("machine ids must be unique")
        for machine in self.machines:
            if machine.machine_type not in MACHINE_TYPES:
                raise ConfigError(
                    f"machine '{machine.id}' has unknown type '{machine.machine_type}'"
                )
            if machine.time_multiplier <= 0:
                raise ConfigError(f"machine '{machine.id}' time_multiplier must be positive")

        for task_type, types in self.compatibility.items():
            unknown = [t for t in types if t not in MACHINE_TYPES]
            if unknown:
                raise ConfigError(f"compatibility for '{task_type}' names unknown types {unknown}")

        for template in self.task_templates:
            low, high = template.workload_range
            if low <= 0 or high < low:
                raise ConfigError(f"template '{template.name}' workload_range is invalid")
            if len(template.priority_weights) != 3 or sum(template.priority_weights) <= 0:
                raise ConfigError(f"template '{template.name}' needs three positive priority weights")

    @classmethod
    def from_yaml(cls, config_path: Path) -> "Config":
        """Load configuration from YAML file."""
        if not config_path.exists():
            return cls.default()

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        return cls._from_dict(data)

    @classmethod
    def from_env(cls, base: Optional["Config"] = None) -> "Config":
        """Apply environment variable overrides on top of ``base`` (or defaults)."""
        config = base or cls.default()

        seed = os.getenv("FACTORY_SIM_SEED")
        if seed:
            config.simulation.random_seed = int(seed)

        tick = os.getenv("FACTORY_SIM_TICK_MINUTES")
        if tick:
            config.simulation.tick_minutes = float(tick)

        probability = os.getenv("FACTORY_SIM_BREAKDOWN_PROBABILITY")
        if probability:
            config.failures.breakdown_probability = float(probability)

        rate = os.getenv("FACTORY_SIM_ARRIVAL_RATE")
        if rate:
            config.arrivals.rate_per_hour = float(rate)
            config.arrivals.enabled = True

        config.validate()
        return config

    @classmethod
    def default(cls) -> "Config":
        """Create default configuration with a sample machine hall."""
        config = cls()

        config.machines = [
            MachineConfig(id="M1", name="CNC Mill 5-Axis", machine_type="CNC", time_multiplier=1.0),
            MachineConfig(id="M2", name="CNC Lathe", machine_type="CNC", time_multiplier=1.2),
            MachineConfig(id="M3", name="Assembly Cell A", machine_type="Assembly", time_multiplier=0.9),
            MachineConfig(id="M4", name="Assembly Cell B", machine_type="Assembly", time_multiplier=1.1),
            MachineConfig(id="M5", name="Test Bench", machine_type="Test", time_multiplier=1.0),
            MachineConfig(id="M6", name="Packaging Line", machine_type="Packaging", time_multiplier=0.8),
        ]

        config.task_templates = [
            TaskTemplateConfig(name="Housing Machining", task_type="CNC", workload_range=(30, 120)),
            TaskTemplateConfig(name="Shaft Turning", task_type="CNC", workload_range=(20, 60)),
            TaskTemplateConfig(
                name="Gearbox Assembly", task_type="Assembly", workload_range=(40, 150),
                value_range=(2000.0, 12000.0),
            ),
            TaskTemplateConfig(name="Final Inspection", task_type="Test", workload_range=(10, 40)),
            TaskTemplateConfig(
                name="Export Crating", task_type="Packaging", workload_range=(10, 30),
                value_range=(200.0, 1500.0),
            ),
        ]

        config.compatibility = {machine_type: [machine_type] for machine_type in MACHINE_TYPES}

        return config

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create config from dictionary."""
        config = cls.default()

        if "simulation" in data:
            sim_data = data["simulation"] or {}
            config.simulation = SimulationConfig(
                tick_minutes=float(sim_data.get("tick_minutes", config.simulation.tick_minutes)),
                tick_interval_ms=int(
                    sim_data.get("tick_interval_ms", config.simulation.tick_interval_ms)
                ),
                time_acceleration=float(
                    sim_data.get("time_acceleration", config.simulation.time_acceleration)
                ),
                random_seed=sim_data.get("random_seed"),
                snapshot_interval_minutes=float(
                    sim_data.get(
                        "snapshot_interval_minutes", config.simulation.snapshot_interval_minutes
                    )
                ),
                history_limit=sim_data.get("history_limit", config.simulation.history_limit),
                autostart=bool(sim_data.get("autostart", config.simulation.autostart)),
            )

        if "failures" in data:
            fail_data = data["failures"] or {}
            defaults = config.failures
            config.failures = FailureConfig(
                breakdown_probability=float(
                    fail_data.get("breakdown_probability", defaults.breakdown_probability)
                ),
                load_sensitivity=float(fail_data.get("load_sensitivity", defaults.load_sensitivity)),
                auto_repair=bool(fail_data.get("auto_repair", defaults.auto_repair)),
                repair_minutes=_range(fail_data.get("repair_minutes", defaults.repair_minutes)),
                repair_penalty=_range(fail_data.get("repair_penalty", defaults.repair_penalty)),
                penalty_recovery_per_hour=float(
                    fail_data.get("penalty_recovery_per_hour", defaults.penalty_recovery_per_hour)
                ),
                maintenance_interval_hours=fail_data.get(
                    "maintenance_interval_hours", defaults.maintenance_interval_hours
                ),
                maintenance_minutes=float(
                    fail_data.get("maintenance_minutes", defaults.maintenance_minutes)
                ),
            )

        if "rebalance" in data:
            reb_data = data["rebalance"] or {}
            config.rebalance = RebalanceConfig(
                enabled=bool(reb_data.get("enabled", config.rebalance.enabled)),
                hall_load_threshold=float(
                    reb_data.get("hall_load_threshold", config.rebalance.hall_load_threshold)
                ),
                queue_variance_threshold=float(
                    reb_data.get(
                        "queue_variance_threshold", config.rebalance.queue_variance_threshold
                    )
                ),
            )

        if "alerts" in data:
            alert_data = data["alerts"] or {}
            config.alerts = AlertConfig(
                hall_load_critical=float(
                    alert_data.get("hall_load_critical", config.alerts.hall_load_critical)
                ),
                waiting_backlog=int(alert_data.get("waiting_backlog", config.alerts.waiting_backlog)),
            )

        if "arrivals" in data:
            arr_data = data["arrivals"] or {}
            config.arrivals = ArrivalConfig(
                enabled=bool(arr_data.get("enabled", config.arrivals.enabled)),
                rate_per_hour=float(arr_data.get("rate_per_hour", config.arrivals.rate_per_hour)),
                initial_tasks=int(arr_data.get("initial_tasks", config.arrivals.initial_tasks)),
            )

        if "machines" in data:
            config.machines = []
            for machine_id, machine_data in data["machines"].items():
                config.machines.append(
                    MachineConfig(
                        id=machine_id,
                        name=machine_data.get("name", machine_id),
                        machine_type=machine_data["type"],
                        time_multiplier=float(machine_data.get("time_multiplier", 1.0)),
                    )
                )

        if "task_templates" in data:
            config.task_templates = []
            for template_data in data["task_templates"]:
                config.task_templates.append(
                    TaskTemplateConfig(
                        name=template_data["name"],
                        task_type=template_data["task_type"],
                        workload_range=_range(template_data.get("workload_range", (20.0, 90.0))),
                        value_range=_range(template_data.get("value_range", (500.0, 5000.0))),
                        priority_weights=tuple(
                            float(w) for w in template_data.get("priority_weights", (0.7, 0.2, 0.1))
                        ),
                    )
                )

        if "compatibility" in data:
            config.compatibility = {
                task_type: list(types) for task_type, types in data["compatibility"].items()
            }

        config.validate()
        return config

    def to_yaml(self, path: Path) -> None:
        """Save configuration to YAML file."""
        data = {
            "simulation": {
                "tick_minutes": self.simulation.tick_minutes,
                "tick_interval_ms": self.simulation.tick_interval_ms,
                "time_acceleration": self.simulation.time_acceleration,
                "random_seed": self.simulation.random_seed,
                "snapshot_interval_minutes": self.simulation.snapshot_interval_minutes,
                "history_limit": self.simulation.history_limit,
                "autostart": self.simulation.autostart,
            },
            "failures": {
                "breakdown_probability": self.failures.breakdown_probability,
                "load_sensitivity": self.failures.load_sensitivity,
                "auto_repair": self.failures.auto_repair,
                "repair_minutes": list(self.failures.repair_minutes),
                "repair_penalty": list(self.failures.repair_penalty),
                "penalty_recovery_per_hour": self.failures.penalty_recovery_per_hour,
                "maintenance_interval_hours": self.failures.maintenance_interval_hours,
                "maintenance_minutes": self.failures.maintenance_minutes,
            },
            "rebalance": {
                "enabled": self.rebalance.enabled,
                "hall_load_threshold": self.rebalance.hall_load_threshold,
                "queue_variance_threshold": self.rebalance.queue_variance_threshold,
            },
            "alerts": {
                "hall_load_critical": self.alerts.hall_load_critical,
                "waiting_backlog": self.alerts.waiting_backlog,
            },
            "arrivals": {
                "enabled": self.arrivals.enabled,
                "rate_per_hour": self.arrivals.rate_per_hour,
                "initial_tasks": self.arrivals.initial_tasks,
            },
            "machines": {
                m.id: {
                    "name": m.name,
                    "type": m.machine_type,
                    "time_multiplier": m.time_multiplier,
                }
                for m in self.machines
            },
            "task_templates": [
                {
                    "name": t.name,
                    "task_type": t.task_type,
                    "workload_range": list(t.workload_range),
                    "value_range": list(t.value_range),
                    "priority_weights": list(t.priority_weights),
                }
                for t in self.task_templates
            ],
            "compatibility": {k: list(v) for k, v in self.compatibility.items()},
        }

        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)


def _range(value: Any) -> Tuple[float, float]:
    """Coerce a YAML list into a (min, max) tuple."""
    try:
        low, high = value
    except (TypeError, ValueError):
        raise ConfigError(f"expected a [min, max] pair, got {value!r}") from None
    return (float(low), float(high))
