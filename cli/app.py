from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Optional

import typer

from app.main import ServiceRuntime
from broker.mock_broker import MockIoTBroker
from broker.subscriber import BrokerUnavailableError
from cli.render import render_alerts, render_history, render_stats, render_twin
from datastore.mock_dynamodb import MockDynamoDBTable
from logging_config import configure_logging
from models.records import Alert
from settings import get_settings


class Attribute(str, Enum):
    temperature = "temperature"
    humidity = "humidity"
    vibration = "vibration"


@dataclass
class CLIState:
    runtime: ServiceRuntime


app = typer.Typer(
    help="Utilities for feeding and inspecting the factory sensor twin.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def build_runtime(table_path: Optional[Path] = None) -> ServiceRuntime:
    settings = get_settings()
    if table_path is not None:
        settings = replace(settings, table_persistence_path=str(table_path))
    persistence = (
        Path(settings.table_persistence_path) if settings.table_persistence_path else None
    )
    table = MockDynamoDBTable(name=settings.table_name, persistence_path=persistence)
    return ServiceRuntime(settings=settings, table=table, broker=MockIoTBroker())


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=1)
    return state


@app.callback()
def main(
    ctx: typer.Context,
    table_path: Optional[Path] = typer.Option(
        None,
        "--table-path",
        "-t",
        help="JSON file backing the sensor table (defaults to SENSOR_TABLE_PERSISTENCE_PATH).",
    ),
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Logging level (defaults to LOG_LEVEL env or INFO).",
    ),
) -> None:
    """Entry point for the CLI."""
    configure_logging(log_level.upper() if log_level else None)
    ctx.obj = CLIState(runtime=build_runtime(table_path))


@app.command("ingest")
def ingest_command(
    ctx: typer.Context,
    file: Path = typer.Argument(
        ..., exists=True, dir_okay=False, readable=True, help="JSON-lines file of sensor messages."
    ),
) -> None:
    """Publish every line of FILE to the sensor topic and report the outcome."""
    runtime = _get_state(ctx).runtime
    alerts: list[Alert] = []
    runtime.pipeline.add_alert_handler(alerts.append)

    try:
        runtime.start()
    except BrokerUnavailableError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc

    published = 0
    try:
        with file.open("r", encoding="utf-8") as handle:
            for line in handle:
                message = line.strip()
                if not message:
                    continue
                runtime.broker.publish(runtime.settings.topic, message)
                published += 1
    finally:
        runtime.stop(drain=True)

    typer.secho(
        f"Published {published} messages to {runtime.settings.topic}",
        fg=typer.colors.GREEN,
    )
    typer.echo()
    render_twin(runtime.twin.snapshot())
    render_stats(runtime.pipeline.stats)
    render_alerts(alerts)


@app.command("history")
def history_command(
    ctx: typer.Context,
    attribute: Attribute = typer.Argument(..., help="Reading attribute to list."),
    limit: Optional[int] = typer.Option(
        None,
        "--limit",
        "-n",
        min=1,
        help="Number of values to show (defaults to HISTORY_WINDOW).",
    ),
) -> None:
    """Show the most recent stored values of ATTRIBUTE."""
    runtime = _get_state(ctx).runtime
    count = limit if limit is not None else runtime.settings.history_window
    values = runtime.history.recent_values(attribute.value, count)
    render_history(attribute.value, values)
