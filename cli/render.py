from __future__ import annotations

from typing import Any, Iterable

import typer

from app.presentation import format_temperature, format_time_label
from app.schemas import DashboardView
from models.readings import Reading


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def render_reading(reading: Reading) -> None:
    echo_heading("Reading")
    echo_key_values(
        [
            ("temperature", format_temperature(reading.temperature)),
            ("timestamp", reading.timestamp),
            ("time", format_time_label(reading.timestamp)),
        ]
    )


def render_view(view: DashboardView) -> None:
    echo_heading(f"Temperature Monitoring System · {view.device_address}")

    if view.show_error:
        typer.secho(f"Connection Error: {view.error_message}", fg=typer.colors.RED)

    if view.show_loading:
        typer.echo("Loading...")
    elif view.latest_temperature is not None:
        typer.echo(f"Current Temperature: {view.latest_temperature} {view.unit}")
    else:
        typer.echo("No Data")

    if view.show_no_data:
        typer.echo("Waiting for temperature data...")

    if view.show_chart:
        typer.echo()
        echo_heading("Temperature History")
        for point in view.chart_points:
            typer.echo(f"  {point.label}  {format_temperature(point.temperature)} {view.unit}")
    typer.echo()
