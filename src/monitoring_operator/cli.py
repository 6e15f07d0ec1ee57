"""Monitoring operator CLI.

Usage:
    monitoring-operator run                         # Control loop until SIGTERM
    monitoring-operator reconcile --task NAME       # One pass, exit 1 on failure
    monitoring-operator plan thanos-querier         # Print the ordered steps
    monitoring-operator plan NAME --teardown        # Print the teardown steps
    monitoring-operator validate-config FILE        # Validate a monitoring config
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import click

from .components import TASK_CLASSES
from .config import ConfigurationError, OperatorConfig
from .config_loader import ConfigLoadError, load_monitoring_config
from .errors import OrderingError
from .main import build_runner, main, setup_logging
from .manifests import ManifestFactory
from .runner import UnknownTaskError
from .steps import Direction, ReadStep, check_ordering

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
TASK_NAMES = tuple(task_class.name for task_class in TASK_CLASSES)

# Generated secret material is never rendered
PLAN_TOKEN_PLACEHOLDER = "<generated>"


def load_settings() -> OperatorConfig:
    """Operator settings from the environment.

    Raises:
        click.ClickException: If the settings are invalid.
    """
    try:
        return OperatorConfig.from_env()
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e


@click.group()
@click.version_option(version="0.1.0", prog_name="monitoring-operator")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Log level",
)
@click.pass_context
def cli(ctx: click.Context, log_level: str) -> None:
    """Monitoring stack operator.

    Settings are read from the environment (OPERATOR_NAMESPACE,
    MONITORING_CONFIG_FILE, RECONCILE_INTERVAL, ...).
    """
    ctx.ensure_object(dict)
    ctx.obj["log_level"] = log_level.upper()


@cli.command("run")
@click.pass_context
def run_cmd(ctx: click.Context) -> None:
    """Run the reconciliation loop until SIGTERM or SIGINT."""
    sys.exit(asyncio.run(main(ctx.obj["log_level"])))


@cli.command()
@click.option(
    "--task",
    "-t",
    "task_names",
    multiple=True,
    type=click.Choice(TASK_NAMES),
    help="Task to run (repeatable, default: all)",
)
@click.pass_context
def reconcile(ctx: click.Context, task_names: tuple[str, ...]) -> None:
    """Run one reconciliation pass and exit."""
    setup_logging(ctx.obj["log_level"])
    settings = load_settings()
    try:
        runner = build_runner(settings)
    except Exception as e:
        raise click.ClickException(f"Failed to initialize operator: {e}") from e

    try:
        report = asyncio.run(runner.run_once(list(task_names) or None))
    except UnknownTaskError as e:
        raise click.ClickException(f"Unknown task: {e}") from e

    for name, result in report.results.items():
        if result.succeeded:
            click.secho(f"✓ {name} ({result.duration_seconds:.1f}s)", fg="green")
        else:
            click.secho(f"✗ {name}: {result.error}", fg="red")

    if not report.succeeded:
        sys.exit(1)


@cli.command()
@click.argument("task_name", type=click.Choice(TASK_NAMES))
@click.option("--teardown", is_flag=True, help="Show the teardown sequence")
@click.option(
    "--config",
    "config_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Monitoring config (default: MONITORING_CONFIG_FILE)",
)
def plan(task_name: str, teardown: bool, config_file: Path | None) -> None:
    """Print the ordered steps a task would execute.

    Nothing is read from or written to the cluster.
    """
    settings = load_settings()
    try:
        monitoring = load_monitoring_config(config_file or settings.config_file)
    except ConfigLoadError as e:
        raise click.ClickException(str(e)) from e

    task_class = next(t for t in TASK_CLASSES if t.name == task_name)
    direction = Direction.TEARING_DOWN if teardown else Direction.CONVERGING
    factory = ManifestFactory(settings, monitoring, token_source=lambda _: PLAN_TOKEN_PLACEHOLDER)
    sequence = task_class.sequence(factory, direction)

    enabled = task_class.is_enabled(monitoring)
    click.echo(f"{task_name}: {direction.value} (enabled in config: {'yes' if enabled else 'no'})")

    for index, (step, resource) in enumerate(sequence.plan(), start=1):
        if isinstance(step, ReadStep):
            click.echo(f"{index:3}. read    {step.namespace}/{step.secret_name}[{step.key}]")
        else:
            click.echo(f"{index:3}. {step.verb.value:<17} {resource}")

    try:
        check_ordering(sequence)
    except OrderingError as e:
        raise click.ClickException(f"Ordering violation: {e}") from e
    click.secho("✓ Dependency ordering verified", fg="green")


@cli.command("validate-config")
@click.argument("config_file", type=click.Path(dir_okay=False, path_type=Path))
def validate_config(config_file: Path) -> None:
    """Validate a monitoring config file (YAML or ConfigMap manifest)."""
    try:
        monitoring = load_monitoring_config(config_file)
    except ConfigLoadError as e:
        raise click.ClickException(str(e)) from e

    click.secho(f"✓ {config_file} is valid", fg="green")
    for task_class in TASK_CLASSES:
        state = "enabled" if task_class.is_enabled(monitoring) else "disabled"
        click.echo(f"  {task_class.name}: {state}")


if __name__ == "__main__":
    cli()
