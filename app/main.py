from __future__ import annotations
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from app.api import router
from app.events import build_default_broadcaster
from app.web import router as web_router
from logging_config import configure_logging
from services.fetcher import build_default_fetcher
from services.poller import build_default_poller
from settings import Settings, get_settings


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings: Settings = app.state.settings
    poller = build_default_poller(settings)
    broadcaster = build_default_broadcaster(settings)
    unsubscribe = poller.add_listener(broadcaster.publish)
    await poller.start()
    try:
        yield
    finally:
        unsubscribe()
        await poller.stop(cancel_pending=True)
        broadcaster.close()
        await build_default_fetcher(settings.device_url).aclose()
        build_default_poller.cache_clear()
        build_default_broadcaster.cache_clear()
        build_default_fetcher.cache_clear()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the service; ``settings`` defaults to the environment."""
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    app = FastAPI(
        title="Device Temperature Dashboard",
        description="Polls an embedded temperature sensor and charts its recent readings.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.dependency_overrides[get_settings] = lambda: settings
    static_dir = Path(__file__).resolve().parent.parent / "static"
    app.mount("/static", StaticFiles(directory=static_dir), name="static")
    app.include_router(router)
    app.include_router(web_router)
    return app

app = create_app()
