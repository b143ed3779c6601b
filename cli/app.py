from __future__ import annotations

import asyncio
import dataclasses
from dataclasses import dataclass
from typing import Optional

import typer
import uvicorn

from app.presentation import build_dashboard_view
from cli.render import render_reading, render_view
from logging_config import configure_logging
from models.readings import Reading
from services.fetcher import FetchError, ReadingFetcher
from services.poller import PollingLoop, PollingSnapshot
from settings import Settings, get_settings


@dataclass
class CLIState:
    settings: Settings


app = typer.Typer(
    help="Operate the device temperature dashboard.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        typer.secho("CLI state is uninitialized.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    return state


@app.callback()
def main(
    ctx: typer.Context,
    device: Optional[str] = typer.Option(
        None,
        "--device",
        "-d",
        help="Device address, host or host:port (defaults to DEVICE_ADDRESS env).",
    ),
    interval_ms: Optional[int] = typer.Option(
        None,
        "--interval-ms",
        min=1,
        help="Milliseconds between polls (defaults to POLL_INTERVAL_MS env or 5000).",
    ),
    capacity: Optional[int] = typer.Option(
        None,
        "--capacity",
        min=1,
        help="Number of readings kept in the history window.",
    ),
) -> None:
    """Entry point for the CLI."""
    configure_logging()
    settings = get_settings()
    overrides = {
        "device_address": device,
        "poll_interval_ms": interval_ms,
        "history_capacity": capacity,
    }
    settings = dataclasses.replace(
        settings, **{key: value for key, value in overrides.items() if value is not None}
    )
    ctx.obj = CLIState(settings=settings)


@app.command("serve")
def serve_command(
    ctx: typer.Context,
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind."),
    port: int = typer.Option(8000, "--port", "-p", help="Port to listen on."),
) -> None:
    """Run the web dashboard."""
    # app.main builds its module-level app on import.
    from app.main import create_app

    settings = _get_state(ctx).settings
    typer.echo(f"Serving dashboard for {settings.device_url} on http://{host}:{port}/")
    uvicorn.run(create_app(settings), host=host, port=port, log_config=None)


async def _read_once(settings: Settings) -> Reading:
    fetcher = ReadingFetcher(settings.device_url)
    try:
        return await fetcher.fetch()
    finally:
        await fetcher.aclose()


@app.command("read")
def read_command(ctx: typer.Context) -> None:
    """Fetch a single reading from the device."""
    settings = _get_state(ctx).settings
    try:
        reading = asyncio.run(_read_once(settings))
    except FetchError as exc:
        typer.secho(f"{exc.message} ({settings.device_url})", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc
    render_reading(reading)


async def _watch(settings: Settings, updates: Optional[int]) -> None:
    fetcher = ReadingFetcher(settings.device_url)
    poller = PollingLoop(
        fetcher.fetch,
        interval=settings.poll_interval,
        capacity=settings.history_capacity,
    )
    snapshots: asyncio.Queue[PollingSnapshot] = asyncio.Queue()
    poller.add_listener(snapshots.put_nowait)
    await poller.start()
    settled = 0
    try:
        while updates is None or settled < updates:
            snapshot = await snapshots.get()
            render_view(build_dashboard_view(snapshot, settings.device_address))
            if not snapshot.is_loading:
                settled += 1
    finally:
        await poller.stop(cancel_pending=True)
        await fetcher.aclose()


@app.command("watch")
def watch_command(
    ctx: typer.Context,
    updates: Optional[int] = typer.Option(
        None,
        "--updates",
        "-n",
        min=1,
        help="Stop after this many completed polls (runs until interrupted by default).",
    ),
) -> None:
    """Poll the device and print the dashboard after every change."""
    settings = _get_state(ctx).settings
    typer.echo(
        f"Watching {settings.device_url} every {settings.poll_interval:g}s "
        f"(history={settings.history_capacity})"
    )
    try:
        asyncio.run(_watch(settings, updates))
    except KeyboardInterrupt:
        typer.echo("Stopped.")
