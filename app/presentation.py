"""Projection of polling state into what the dashboard shows."""

from __future__ import annotations

from datetime import datetime, tzinfo
from typing import Optional

from app.schemas import ChartPoint, DashboardView
from services.poller import PollingSnapshot

CHART_PADDING = 5.0


def unreachable_message(device_address: str) -> str:
    return (
        f"Cannot reach device at {device_address}. Check that the device is powered on, "
        "connected to the network, and that the address is correct."
    )


def format_temperature(value: float) -> str:
    return f"{value:.2f}"


def format_time_label(timestamp_ms: int, tz: Optional[tzinfo] = None) -> str:
    """Clock time of ``timestamp_ms``; the raw value when no date can hold it."""
    try:
        moment = datetime.fromtimestamp(timestamp_ms / 1000, tz=tz)
    except (ValueError, OverflowError, OSError):
        return str(timestamp_ms)
    return moment.strftime("%H:%M:%S")


def build_dashboard_view(
    snapshot: PollingSnapshot,
    device_address: str,
    tz: Optional[tzinfo] = None,
) -> DashboardView:
    """Decide what the dashboard displays for ``snapshot``.

    Stale readings stay visible alongside the error banner; the "no data"
    message only appears once loading is over, nothing has arrived and there
    is no error to report instead. ``tz`` defaults to local time for labels.
    """
    history = snapshot.history
    has_error = snapshot.last_error is not None

    points = [
        ChartPoint(
            timestamp=reading.timestamp,
            label=format_time_label(reading.timestamp, tz),
            temperature=reading.temperature,
        )
        for reading in history
    ]
    y_min = y_max = None
    if history:
        temperatures = [reading.temperature for reading in history]
        y_min = min(temperatures) - CHART_PADDING
        y_max = max(temperatures) + CHART_PADDING

    latest = snapshot.latest
    return DashboardView(
        device_address=device_address,
        show_loading=snapshot.is_loading,
        show_no_data=not snapshot.is_loading and not history and not has_error,
        show_error=has_error,
        error_message=unreachable_message(device_address) if has_error else None,
        latest_temperature=format_temperature(latest.temperature) if latest else None,
        show_chart=bool(history),
        chart_points=points,
        y_min=y_min,
        y_max=y_max,
    )
