from __future__ import annotations

from typing import Any, Iterable, Sequence

import typer

from models.records import Alert, TwinState
from services.pipeline import IngestionStats


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def _format_mapping(values: dict[str, float]) -> str:
    return ", ".join(f"{key}={value:.3f}" for key, value in values.items())


def render_twin(state: TwinState) -> None:
    echo_heading("Digital Twin")
    echo_key_values(
        [
            ("updates", state.updates),
            ("current_temp", state.current_temp),
            ("current_humidity", state.current_humidity),
            ("current_vibration", state.current_vibration),
            ("accumulated_wear", round(state.accumulated_wear, 6)),
            ("energy_efficiency", state.energy_efficiency),
        ]
    )


def render_stats(stats: IngestionStats) -> None:
    typer.echo()
    echo_heading("Ingestion")
    echo_key_values(
        [
            ("received", stats.received),
            ("processed", stats.processed),
            ("dropped", stats.dropped),
            ("duplicates", stats.duplicates),
            ("alerts", stats.alerts),
            ("persist_failures", stats.persist_failures),
        ]
    )


def render_alerts(alerts: Sequence[Alert]) -> None:
    typer.echo()
    echo_heading("Alerts")
    if not alerts:
        typer.echo("No alerts raised.")
        return
    for alert in alerts:
        typer.echo(
            f"  - {alert.timestamp} {alert.kind.value}: "
            f"observed [{_format_mapping(alert.observed)}] "
            f"reference [{_format_mapping(alert.reference)}]"
        )


def render_history(attribute: str, values: Sequence[float]) -> None:
    echo_heading(f"Recent {attribute} (newest first)")
    if not values:
        typer.echo("No history available.")
        return
    for index, value in enumerate(values, start=1):
        typer.echo(f"  {index}. {value}")
