"""Command-line interface for the factory simulator."""

import logging
import sys
from pathlib import Path
from typing import List, Optional

import click

from . import __version__
from .config import Config
from .errors import SimulationError
from .events import SystemEvent
from .metrics import completed_summary, load_status, status_distribution, summarize_history
from .runner import SimulationRunner
from .world import World

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def _load_config(config_path: Optional[Path], seed: Optional[int]) -> Config:
    """Config file (or defaults), then environment, then command-line overrides."""
    try:
        if config_path is not None:
            cfg = Config.from_yaml(config_path)
        else:
            cfg = Config.default()
        cfg = Config.from_env(cfg)
    except SimulationError as e:
        raise click.ClickException(str(e))

    if seed is not None:
        cfg.simulation.random_seed = seed
    return cfg


def _print_summary(world: World, recent_events: int) -> None:
    metrics = world.global_metrics()
    hours, minutes = divmod(int(world.production_time), 60)

    click.echo()
    click.echo(f"Production time: {hours}h {minutes:02d}m")
    click.echo(f"Hall load:       {metrics.hall_load}% ({load_status(metrics.hall_load)})")
    click.echo(f"Throughput:      {metrics.throughput}/hr")
    click.echo(
        f"Tasks:           {metrics.in_progress_count} active, "
        f"{metrics.waiting_count} waiting, {metrics.completed_count} done"
    )
    click.echo()

    click.echo(f"{'MACHINE':<8}{'TYPE':<11}{'STATUS':<13}{'SPEED':>7}{'UTIL':>7}{'QUEUE':>7}{'ETA':>7}{'DONE':>6}")
    for machine in world.machines:
        mm = world.machine_metrics(machine.id)
        click.echo(
            f"{machine.id:<8}{machine.type.value:<11}{machine.status.value:<13}"
            f"{machine.effective_time_multiplier:>6.2f}x{mm.utilization:>6}%"
            f"{mm.queue_length:>7}{mm.eta:>6}m{mm.completed_tasks:>6}"
        )
    click.echo()

    counts = status_distribution(world.machines)
    click.echo("Status mix: " + ", ".join(f"{k}={v}" for k, v in counts.items()))

    orders = completed_summary(world.completed_tasks)
    click.echo(
        f"Completed orders: {orders['total_tasks']} worth {orders['total_revenue']:,.2f} "
        f"({orders['critical_tasks']} critical, {orders['rush_tasks']} rush)"
    )

    history = summarize_history(world.analytics_history)
    if history:
        load = history["hall_load"]
        click.echo(
            f"Hall load over {len(world.analytics_history)} snapshots: "
            f"min {load['min']}%, max {load['max']}%, avg {load['avg']:.1f}%"
        )

    if recent_events:
        click.echo()
        click.echo(f"Last {recent_events} events:")
        for event in world.event_log.recent(recent_events):
            _echo_event(event)


def _echo_event(event: SystemEvent) -> None:
    recipients = ",".join(sorted(r.value for r in event.recipients))
    line = f"  [{event.timestamp:7.1f}] {event.severity.value:<8} {event.type.value:<20} {event.message}"
    if recipients:
        line += f"  -> {recipients}"
    click.echo(line)


@click.group()
@click.version_option(version=__version__)
def main():
    """Factory Simulator - tick-driven production hall simulation.

    Work orders wait in a task pool, get dispatched to CNC, Assembly, Test
    and Packaging machines, and are processed while machines break down,
    get repaired and go into maintenance.
    """
    pass


@main.command()
@click.option(
    "--output",
    "-o",
    type=click.Path(path_type=Path),
    default=Path("config"),
    help="Output directory for config files",
)
def init(output):
    """Generate a sample configuration file."""
    output.mkdir(parents=True, exist_ok=True)

    cfg = Config.default()
    config_path = output / "config.yaml"
    cfg.to_yaml(config_path)

    click.echo(f"Created: {config_path}")
    click.echo()
    click.echo("Edit the config file to customize:")
    click.echo("  - Machines and their speed multipliers")
    click.echo("  - Task templates and arrival rate")
    click.echo("  - Breakdown, repair and maintenance policy")
    click.echo()
    click.echo(f"Run with: factory-sim simulate --config {config_path}")


@main.command()
@click.option("--config", "-c", "config_path", type=click.Path(path_type=Path), default=None)
@click.option("--ticks", "-n", type=click.IntRange(min=0), default=480, help="Ticks to run")
@click.option("--seed", "-s", type=int, default=None, help="Random seed")
@click.option("--initial-tasks", type=click.IntRange(min=0), default=None, help="Tasks seeded at start")
@click.option("--arrival-rate", type=float, default=None, help="Generated orders per hour")
@click.option("--events", "recent_events", type=click.IntRange(min=0), default=15, help="Events to print")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Log every transition")
def simulate(config_path, ticks, seed, initial_tasks, arrival_rate, recent_events, verbose):
    """Run a headless batch simulation and print the resulting metrics."""
    if verbose:
        logging.getLogger("factory_sim").setLevel(logging.DEBUG)

    cfg = _load_config(config_path, seed)
    if initial_tasks is not None:
        cfg.arrivals.initial_tasks = initial_tasks
    if arrival_rate is not None:
        cfg.arrivals.rate_per_hour = arrival_rate
        cfg.arrivals.enabled = arrival_rate > 0

    try:
        world = World(cfg)
        world.start()
        for _ in range(ticks):
            world.advance_tick()
    except SimulationError as e:
        raise click.ClickException(str(e))

    _print_summary(world, recent_events)


@main.command()
@click.option("--config", "-c", "config_path", type=click.Path(path_type=Path), default=None)
@click.option("--duration", "-d", type=float, default=60.0, help="Wall-clock seconds to run")
@click.option("--acceleration", "-a", type=float, default=None, help="Time acceleration factor")
@click.option("--seed", "-s", type=int, default=None, help="Random seed")
def run(config_path, duration, acceleration, seed):
    """Run the simulation in real time, streaming events as they happen."""
    cfg = _load_config(config_path, seed)
    if acceleration is not None:
        cfg.simulation.time_acceleration = acceleration
    if not cfg.arrivals.enabled and not cfg.arrivals.initial_tasks:
        cfg.arrivals.enabled = True

    try:
        world = World(cfg)
    except SimulationError as e:
        raise click.ClickException(str(e))

    def on_tick(world: World, events: List[SystemEvent]) -> None:
        for event in events:
            _echo_event(event)

    runner = SimulationRunner(world, on_tick=on_tick)
    try:
        runner.run_for(duration)
    except KeyboardInterrupt:
        runner.stop()
        click.echo("\nInterrupted")

    _print_summary(world, recent_events=0)
    if runner.violation is not None:
        click.echo(f"Simulation halted: {runner.violation}", err=True)
        sys.exit(1)
    if runner.errors:
        click.echo(f"{runner.errors} tick(s) failed, see log", err=True)
        sys.exit(1)


@main.command()
@click.option("--config", "-c", "config_path", type=click.Path(path_type=Path), default=None)
def status(config_path):
    """Show the configured machine hall and policies."""
    cfg = _load_config(config_path, None)

    click.echo("Factory Simulator")
    click.echo("=" * 40)
    click.echo()
    click.echo("Machines:")
    for machine in cfg.machines:
        click.echo(f"  {machine.id:<6} {machine.machine_type:<10} {machine.time_multiplier:.2f}x  {machine.name}")
    click.echo()
    click.echo("Compatibility (task type -> machine types):")
    for task_type, types in cfg.compatibility.items():
        click.echo(f"  {task_type:<10} -> {', '.join(types)}")
    click.echo()

    sim = cfg.simulation
    fail = cfg.failures
    click.echo("Clock:")
    click.echo(f"  {sim.tick_minutes} min per tick, snapshot every {sim.snapshot_interval_minutes} min")
    click.echo(f"  Seed: {sim.random_seed if sim.random_seed is not None else 'random'}")
    click.echo("Failures:")
    click.echo(
        f"  p(breakdown)={fail.breakdown_probability} per tick, load sensitivity {fail.load_sensitivity}"
    )
    if fail.auto_repair:
        click.echo(f"  Auto repair after {fail.repair_minutes[0]:.0f}-{fail.repair_minutes[1]:.0f} min")
    else:
        click.echo("  Manual repair only")
    if fail.maintenance_interval_hours:
        click.echo(
            f"  Maintenance every {fail.maintenance_interval_hours}h of processing, "
            f"{fail.maintenance_minutes:.0f} min"
        )
    click.echo("Rebalancing:")
    if cfg.rebalance.enabled:
        click.echo(
            f"  hall load > {cfg.rebalance.hall_load_threshold:.0f}% "
            f"or queue variance > {cfg.rebalance.queue_variance_threshold}"
        )
    else:
        click.echo("  disabled")


if __name__ == "__main__":
    main()
