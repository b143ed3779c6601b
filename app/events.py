"""Server-sent-events fan-out of dashboard views."""

from __future__ import annotations

import asyncio
import itertools
import logging
from functools import lru_cache
from typing import AsyncIterator, Dict, Optional

from app.presentation import build_dashboard_view
from app.schemas import DashboardView
from services.poller import PollingSnapshot
from settings import Settings, get_settings

logger = logging.getLogger(__name__)

VIEW_EVENT = "view"
HEARTBEAT_FRAME = ": heartbeat\n\n"


def format_sse(data: str, event: Optional[str] = None, id_value: Optional[str] = None) -> str:
    """Encode one SSE frame; multi-line payloads become several ``data:`` lines."""
    lines = []
    if id_value is not None:
        lines.append(f"id: {id_value}")
    if event:
        lines.append(f"event: {event}")
    for line in data.splitlines() or [""]:
        lines.append(f"data: {line}")
    return "\n".join(lines) + "\n\n"


class SnapshotBroadcaster:
    """Turns polling snapshots into view frames and pushes them to every subscriber.

    Each subscriber owns a bounded queue; one that falls ``queue_maxsize``
    frames behind is dropped and its stream ends.
    """

    def __init__(
        self,
        device_address: str,
        heartbeat_interval: float = 15.0,
        queue_maxsize: int = 16,
    ) -> None:
        self.device_address = device_address
        self._heartbeat_interval = heartbeat_interval
        self._queue_maxsize = queue_maxsize
        self._subscribers: Dict[str, asyncio.Queue[Optional[str]]] = {}
        self._ids = itertools.count(1)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def render(self, snapshot: PollingSnapshot) -> DashboardView:
        return build_dashboard_view(snapshot, self.device_address)

    def frame_for(self, snapshot: PollingSnapshot) -> str:
        view = self.render(snapshot)
        return format_sse(view.model_dump_json(), event=VIEW_EVENT, id_value=str(next(self._ids)))

    def publish(self, snapshot: PollingSnapshot) -> int:
        """Queue a frame for every subscriber; returns how many received it."""
        if not self._subscribers:
            return 0
        frame = self.frame_for(snapshot)
        deliveries = 0
        for client_id, queue in list(self._subscribers.items()):
            try:
                queue.put_nowait(frame)
            except asyncio.QueueFull:
                logger.warning("Dropping slow SSE subscriber", extra={"client_id": client_id})
                self._drop(client_id)
                continue
            deliveries += 1
        return deliveries

    def close(self) -> None:
        """End every open stream."""
        for client_id in list(self._subscribers):
            self._drop(client_id)

    async def stream(
        self, client_id: str, initial: Optional[PollingSnapshot] = None
    ) -> AsyncIterator[str]:
        queue: asyncio.Queue[Optional[str]] = asyncio.Queue(maxsize=self._queue_maxsize)
        self._subscribers[client_id] = queue
        logger.info(
            "SSE subscriber added",
            extra={"client_id": client_id, "subscribers": len(self._subscribers)},
        )
        try:
            if initial is not None:
                yield self.frame_for(initial)
            while True:
                try:
                    frame = await asyncio.wait_for(queue.get(), timeout=self._heartbeat_interval)
                except asyncio.TimeoutError:
                    yield HEARTBEAT_FRAME
                    continue
                if frame is None:
                    break
                yield frame
        finally:
            if self._subscribers.get(client_id) is queue:
                del self._subscribers[client_id]
            logger.info(
                "SSE subscriber removed",
                extra={"client_id": client_id, "subscribers": len(self._subscribers)},
            )

    def _drop(self, client_id: str) -> None:
        queue = self._subscribers.pop(client_id, None)
        if queue is None:
            return
        # Free one slot so the end-of-stream marker always fits.
        if queue.full():
            queue.get_nowait()
        queue.put_nowait(None)


@lru_cache
def build_default_broadcaster(settings: Optional[Settings] = None) -> SnapshotBroadcaster:
    settings = settings or get_settings()
    return SnapshotBroadcaster(
        device_address=settings.device_address,
        heartbeat_interval=settings.sse_heartbeat_seconds,
    )
