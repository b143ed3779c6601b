from __future__ import annotations

from pathlib import Path

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from app.presentation import build_dashboard_view
from services.poller import PollingLoop, build_default_poller
from settings import Settings, get_settings


templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent / "templates"))


def get_poller(settings: Settings = Depends(get_settings)) -> PollingLoop:
    return build_default_poller(settings)


router = APIRouter(include_in_schema=False)


@router.get("/", name="dashboard", response_class=HTMLResponse)
async def dashboard(
    request: Request,
    poller: PollingLoop = Depends(get_poller),
    settings: Settings = Depends(get_settings),
) -> HTMLResponse:
    view = build_dashboard_view(poller.snapshot(), settings.device_address)
    return templates.TemplateResponse(
        request,
        "dashboard.html",
        {
            "view": view,
            "interval_ms": settings.poll_interval_ms,
            "capacity": settings.history_capacity,
        },
    )
