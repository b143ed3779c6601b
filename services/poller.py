"""Fixed-interval polling loop that maintains the reading history."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Awaitable, Callable, List, Optional

from models.history import DEFAULT_CAPACITY, ReadingHistory
from models.readings import Reading
from services.fetcher import FetchError, build_default_fetcher
from settings import Settings, get_settings

logger = logging.getLogger(__name__)

FetchFn = Callable[[], Awaitable[Reading]]
DEFAULT_INTERVAL = 5.0


@dataclass(frozen=True)
class PollingSnapshot:
    """Immutable copy of the loop state handed to subscribers."""

    history: tuple[Reading, ...] = ()
    latest: Optional[Reading] = None
    is_loading: bool = True
    last_error: Optional[FetchError] = None


Listener = Callable[[PollingSnapshot], None]


class PollingLoop:
    """Drives ``fetch`` on a fixed-rate timer and keeps the latest readings.

    At most one fetch is outstanding at any time: a tick that fires while a
    fetch is still running is skipped, and :meth:`force_refresh` joins the
    running fetch instead of starting another. After :meth:`stop` the timer is
    cancelled and any late result is discarded.
    """

    def __init__(
        self,
        fetch: FetchFn,
        interval: float = DEFAULT_INTERVAL,
        capacity: int = DEFAULT_CAPACITY,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"Polling interval must be positive, got {interval}.")
        self._fetch = fetch
        self.interval = interval
        self._history = ReadingHistory(capacity)
        self._latest: Optional[Reading] = None
        self._is_loading = True
        self._last_error: Optional[FetchError] = None
        self._attempted = False

        self._listeners: List[Listener] = []
        self._timer: Optional[asyncio.Task[None]] = None
        self._inflight: Optional[asyncio.Task[None]] = None
        self._stop = asyncio.Event()
        self._started = False
        self._closed = False

    @property
    def capacity(self) -> int:
        return self._history.capacity

    @property
    def history(self) -> tuple[Reading, ...]:
        return self._history.snapshot()

    @property
    def latest(self) -> Optional[Reading]:
        return self._latest

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def last_error(self) -> Optional[FetchError]:
        return self._last_error

    @property
    def running(self) -> bool:
        return self._started and not self._closed

    def snapshot(self) -> PollingSnapshot:
        return PollingSnapshot(
            history=self._history.snapshot(),
            latest=self._latest,
            is_loading=self._is_loading,
            last_error=self._last_error,
        )

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` for every state snapshot; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def start(self) -> None:
        if self._started:
            raise RuntimeError("Polling loop has already been started.")
        self._started = True
        self._stop.clear()
        self._timer = asyncio.create_task(self._run(), name="polling_loop")

    async def stop(self, cancel_pending: bool = False) -> None:
        """Stop ticking; late results from an outstanding fetch are dropped."""
        if self._closed:
            return
        self._closed = True
        self._stop.set()
        if self._timer is not None:
            self._timer.cancel()
            try:
                await self._timer
            except asyncio.CancelledError:
                pass
            self._timer = None
        if cancel_pending and self._inflight is not None:
            pending = self._inflight
            pending.cancel()
            await asyncio.wait([pending])
        logger.info("Polling loop stopped", extra={"history_size": len(self._history)})

    async def force_refresh(self) -> PollingSnapshot:
        """Fetch now (or join the outstanding fetch) and return the settled state."""
        task = self._trigger(join=True)
        if task is not None:
            await asyncio.shield(task)
        return self.snapshot()

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        logger.info(
            "Polling loop started (interval=%ss capacity=%s)",
            self.interval,
            self.capacity,
        )
        next_tick = loop.time()
        while not self._stop.is_set():
            if self._trigger(join=False) is None:
                logger.debug("Skipping tick; previous fetch still in flight")
            next_tick += self.interval
            try:
                await asyncio.wait_for(
                    self._stop.wait(), timeout=max(0.0, next_tick - loop.time())
                )
            except asyncio.TimeoutError:
                pass

    def _trigger(self, join: bool) -> Optional[asyncio.Task[None]]:
        """Start a fetch unless one is running; return the task to wait on.

        An outstanding fetch is returned when ``join`` is set and skipped
        otherwise. Returns ``None`` once the loop is closed.
        """
        if self._closed:
            return None
        if self._inflight is not None:
            return self._inflight if join else None

        if not self._attempted:
            self._attempted = True
            self._is_loading = True
            self._emit()

        task = asyncio.create_task(self._fetch_once(), name="polling_fetch")
        self._inflight = task
        task.add_done_callback(self._on_fetch_done)
        return task

    async def _fetch_once(self) -> None:
        try:
            reading = await self._fetch()
        except FetchError as exc:
            self._settle_failure(exc)
        except Exception:
            self._settle_unexpected()
            raise
        else:
            self._settle_success(reading)

    def _on_fetch_done(self, task: asyncio.Task[None]) -> None:
        if self._inflight is task:
            self._inflight = None
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Unexpected error while polling device", exc_info=exc)

    def _settle_success(self, reading: Reading) -> None:
        if self._closed:
            logger.debug("Discarding reading that arrived after shutdown")
            return
        self._last_error = None
        self._latest = reading
        self._history.append(reading)
        self._is_loading = False
        logger.debug(
            "Reading received",
            extra={"temperature": reading.temperature, "history_size": len(self._history)},
        )
        self._emit()

    def _settle_failure(self, error: FetchError) -> None:
        if self._closed:
            logger.debug("Discarding fetch error that arrived after shutdown")
            return
        self._last_error = error
        self._is_loading = False
        logger.warning("Polling attempt failed: %s", error.message, extra={"error_kind": error.kind})
        self._emit()

    def _settle_unexpected(self) -> None:
        """End the loading phase without touching history or the last error."""
        if self._closed or not self._is_loading:
            return
        self._is_loading = False
        self._emit()

    def _emit(self) -> None:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Snapshot listener %r failed", listener)


@lru_cache
def build_default_poller(settings: Optional[Settings] = None) -> PollingLoop:
    """Factory that wires the loop to the configured device."""
    settings = settings or get_settings()
    fetcher = build_default_fetcher(settings.device_url)
    return PollingLoop(
        fetcher.fetch,
        interval=settings.poll_interval,
        capacity=settings.history_capacity,
    )
