"""CLI entrypoint for thermal-scheduler."""

from pathlib import Path

import rich_click as click

from thermal_scheduler import __version__
from thermal_scheduler.supervisor.contracts import InvalidProfileError
from thermal_scheduler.supervisor.controllers import (
    CheckpointsCommand,
    DecisionsListCommand,
    DecisionsStatsCommand,
    EpisodesCommand,
    ForecastCommand,
    ProfileSetCommand,
    ProfileShowCommand,
    SupervisorCliController,
    TraceCommand,
)
from thermal_scheduler.supervisor.profiles import GENERIC_PROFILE

click.rich_click.USE_MARKDOWN = True
CONTROLLER = SupervisorCliController()


@click.group()
@click.version_option(version=__version__, prog_name="thermal-scheduler")
def thermal_scheduler() -> None:
    """Thermal-aware task scheduling CLI."""


@thermal_scheduler.command("forecast")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", default="cli-forecast", show_default=True, help="Task identifier.")
@click.option("--category", required=True, help="Task category, for example video-encoding.")
@click.option(
    "--power-watts",
    type=click.FloatRange(min=0),
    default=None,
    help="Declared task power draw (defaults to 50 W).",
)
@click.option(
    "--duration-seconds",
    type=click.IntRange(min=1),
    default=None,
    help="Declared task duration (defaults to one hour).",
)
@click.option("--segmentable", is_flag=True, default=False, help="Task can be split.")
@click.option(
    "--temperature",
    type=float,
    default=None,
    help="Current device temperature in °C; omitted means telemetry unavailable.",
)
@click.option("--device-id", default=None, help="Device profile to use.")
def forecast(  # noqa: PLR0913
    db_path: Path | None,
    task_id: str,
    category: str,
    power_watts: float | None,
    duration_seconds: int | None,
    segmentable: bool,
    temperature: float | None,
    device_id: str | None,
) -> None:
    """Forecast peak temperature for a task and print the verdict."""

    _emit_lines(
        CONTROLLER.forecast(
            ForecastCommand(
                db_path=db_path,
                task_id=task_id,
                category=category,
                power_watts=power_watts,
                duration_seconds=duration_seconds,
                segmentable=segmentable,
                temperature=temperature,
                device_id=device_id,
            ),
        ),
    )


@thermal_scheduler.group()
def profile() -> None:
    """Device thermal profile commands."""


@profile.command("set")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--device-id", required=True, help="Device identifier.")
@click.option("--name", default=GENERIC_PROFILE.name, show_default=True, help="Display name.")
@click.option(
    "--thermal-mass",
    type=float,
    default=GENERIC_PROFILE.thermal_mass,
    show_default=True,
    help="Relative heat capacity; higher heats slower.",
)
@click.option(
    "--cooling-rate",
    type=float,
    default=GENERIC_PROFILE.cooling_rate,
    show_default=True,
    help="Passive cooling in °C per minute.",
)
@click.option(
    "--cooling-effectiveness",
    type=float,
    default=GENERIC_PROFILE.cooling_effectiveness,
    show_default=True,
)
@click.option(
    "--thermal-efficiency",
    type=float,
    default=GENERIC_PROFILE.thermal_efficiency,
    show_default=True,
)
@click.option("--optimal-max", type=float, default=GENERIC_PROFILE.optimal_max, show_default=True)
@click.option("--safe-max", type=float, default=GENERIC_PROFILE.safe_max, show_default=True)
@click.option("--warning-max", type=float, default=GENERIC_PROFILE.warning_max, show_default=True)
@click.option("--critical", type=float, default=GENERIC_PROFILE.critical, show_default=True)
def profile_set(  # noqa: PLR0913
    db_path: Path | None,
    device_id: str,
    name: str,
    thermal_mass: float,
    cooling_rate: float,
    cooling_effectiveness: float,
    thermal_efficiency: float,
    optimal_max: float,
    safe_max: float,
    warning_max: float,
    critical: float,
) -> None:
    """Create or replace a device thermal profile."""

    try:
        lines = CONTROLLER.profile_set(
            ProfileSetCommand(
                db_path=db_path,
                device_id=device_id,
                name=name,
                thermal_mass=thermal_mass,
                cooling_rate=cooling_rate,
                cooling_effectiveness=cooling_effectiveness,
                thermal_efficiency=thermal_efficiency,
                optimal_max=optimal_max,
                safe_max=safe_max,
                warning_max=warning_max,
                critical=critical,
            ),
        )
    except InvalidProfileError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@profile.command("show")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--device-id", default=None, help="Device identifier (defaults to configured).")
def profile_show(db_path: Path | None, device_id: str | None) -> None:
    """Show the stored profile of a device, or the generic fallback."""

    _emit_lines(CONTROLLER.profile_show(ProfileShowCommand(db_path=db_path, device_id=device_id)))


@thermal_scheduler.group(invoke_without_command=True)
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", default=None, help="Only decisions for this task.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=20,
    show_default=True,
    help="Maximum decisions to print.",
)
@click.pass_context
def decisions(
    ctx: click.Context,
    db_path: Path | None,
    task_id: str | None,
    limit: int,
) -> None:
    """List scheduling decisions, newest first."""

    if ctx.invoked_subcommand is not None:
        return
    _emit_lines(
        CONTROLLER.decisions(
            DecisionsListCommand(db_path=db_path, task_id=task_id, limit=limit),
        ),
    )


@decisions.command("stats")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--hours",
    type=click.IntRange(min=1),
    default=24,
    show_default=True,
    help="Time window for aggregation.",
)
def decisions_stats(db_path: Path | None, hours: int) -> None:
    """Show verdict and abort statistics for a time window."""

    _emit_lines(CONTROLLER.decisions_stats(DecisionsStatsCommand(db_path=db_path, hours=hours)))


@thermal_scheduler.command("episodes")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", default=None, help="Only episodes for this task.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=20,
    show_default=True,
    help="Maximum episodes to print.",
)
def episodes(db_path: Path | None, task_id: str | None, limit: int) -> None:
    """List thermal/power abort episodes."""

    _emit_lines(
        CONTROLLER.episodes(EpisodesCommand(db_path=db_path, task_id=task_id, limit=limit)),
    )


@thermal_scheduler.command("checkpoints")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", required=True, help="Task identifier.")
def checkpoints(db_path: Path | None, task_id: str) -> None:
    """List checkpoints of a task in sequence order."""

    _emit_lines(CONTROLLER.checkpoints(CheckpointsCommand(db_path=db_path, task_id=task_id)))


@thermal_scheduler.command("trace")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", required=True, help="Task identifier.")
def trace(db_path: Path | None, task_id: str) -> None:
    """Print the recorded temperature trace of a task."""

    _emit_lines(CONTROLLER.trace(TraceCommand(db_path=db_path, task_id=task_id)))


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    thermal_scheduler()
