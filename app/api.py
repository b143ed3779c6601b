"""HTTP route definitions for the service."""

from __future__ import annotations

from uuid import uuid4

from fastapi import APIRouter, Depends, status
from fastapi.responses import StreamingResponse

from app.events import SnapshotBroadcaster, build_default_broadcaster
from app.presentation import build_dashboard_view
from app.schemas import DashboardView, StateResponse
from services.poller import PollingLoop, build_default_poller
from settings import Settings, get_settings

router = APIRouter()


def get_poller(settings: Settings = Depends(get_settings)) -> PollingLoop:
    return build_default_poller(settings)


def get_broadcaster(settings: Settings = Depends(get_settings)) -> SnapshotBroadcaster:
    return build_default_broadcaster(settings)


@router.get(
    "/api/state",
    response_model=StateResponse,
    summary="Current reading history and acquisition state.",
)
async def get_state(
    poller: PollingLoop = Depends(get_poller),
    settings: Settings = Depends(get_settings),
) -> StateResponse:
    return StateResponse.from_snapshot(poller.snapshot(), settings.device_address)


@router.get(
    "/api/view",
    response_model=DashboardView,
    summary="What the dashboard currently displays.",
)
async def get_view(
    poller: PollingLoop = Depends(get_poller),
    settings: Settings = Depends(get_settings),
) -> DashboardView:
    return build_dashboard_view(poller.snapshot(), settings.device_address)


@router.post(
    "/api/refresh",
    response_model=StateResponse,
    summary="Read the device now instead of waiting for the next tick.",
)
async def refresh(
    poller: PollingLoop = Depends(get_poller),
    settings: Settings = Depends(get_settings),
) -> StateResponse:
    snapshot = await poller.force_refresh()
    return StateResponse.from_snapshot(snapshot, settings.device_address)


@router.get(
    "/api/events",
    summary="Server-sent events carrying a dashboard view on every state change.",
)
async def events(
    poller: PollingLoop = Depends(get_poller),
    broadcaster: SnapshotBroadcaster = Depends(get_broadcaster),
) -> StreamingResponse:
    stream = broadcaster.stream(str(uuid4()), initial=poller.snapshot())
    return StreamingResponse(
        stream,
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck(poller: PollingLoop = Depends(get_poller)) -> dict[str, str]:
    return {"status": "ok", "polling": "running" if poller.running else "stopped"}
