from __future__ import annotations

import asyncio
import logging
from typing import Iterable, List, Union

import httpx
import pytest

from models.readings import Reading
from services.fetcher import FetchError, HttpStatusError, MalformedBodyError, NetworkError, ReadingFetcher
from services.poller import PollingLoop, PollingSnapshot

Outcome = Union[Reading, BaseException]


class ScriptedFetch:
    """Returns (or raises) the scripted outcomes in order."""

    def __init__(self, outcomes: Iterable[Outcome]) -> None:
        self._outcomes = list(outcomes)
        self.calls = 0

    async def __call__(self) -> Reading:
        self.calls += 1
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class GatedFetch:
    """Blocks every call until ``gate`` is set."""

    def __init__(self, temperature: float = 30.0) -> None:
        self.gate = asyncio.Event()
        self.returned = asyncio.Event()
        self.calls = 0
        self._temperature = temperature

    async def __call__(self) -> Reading:
        self.calls += 1
        await self.gate.wait()
        self.returned.set()
        return Reading(temperature=self._temperature, timestamp=self.calls)


def _reading(temperature: float, timestamp: int = 0) -> Reading:
    return Reading(temperature=temperature, timestamp=timestamp)


def _temperatures(readings: Iterable[Reading]) -> List[float]:
    return [reading.temperature for reading in readings]


def test_history_keeps_most_recent_readings_in_arrival_order() -> None:
    async def run() -> None:
        fetch = ScriptedFetch([_reading(20.0, 1), _reading(21.0, 2), _reading(22.0, 3), _reading(23.0, 4)])
        poller = PollingLoop(fetch, interval=3600, capacity=3)

        for _ in range(3):
            await poller.force_refresh()
        assert _temperatures(poller.history) == [20.0, 21.0, 22.0]

        snapshot = await poller.force_refresh()
        assert _temperatures(snapshot.history) == [21.0, 22.0, 23.0]
        assert snapshot.latest == _reading(23.0, 4)

    asyncio.run(run())


def test_history_length_is_bounded_for_every_capacity() -> None:
    async def run(capacity: int, successes: int) -> None:
        readings = [_reading(float(index), index) for index in range(successes)]
        poller = PollingLoop(ScriptedFetch(readings), interval=3600, capacity=capacity)
        for _ in range(successes):
            await poller.force_refresh()
        assert len(poller.history) == min(successes, capacity)
        assert list(poller.history) == readings[-capacity:]

    for capacity in (1, 2, 5):
        for successes in (0, 1, capacity, capacity + 3):
            asyncio.run(run(capacity, successes))


def test_first_failure_sets_error_and_clears_loading() -> None:
    async def run() -> PollingSnapshot:
        poller = PollingLoop(ScriptedFetch([HttpStatusError(500)]), interval=3600)
        assert poller.is_loading is True
        return await poller.force_refresh()

    snapshot = asyncio.run(run())

    assert snapshot.is_loading is False
    assert snapshot.latest is None
    assert snapshot.history == ()
    assert isinstance(snapshot.last_error, HttpStatusError)
    assert snapshot.last_error.status_code == 500


def test_failure_preserves_stale_data() -> None:
    async def run() -> PollingLoop:
        fetch = ScriptedFetch([_reading(20.0, 1), MalformedBodyError("bad"), NetworkError(OSError("down"))])
        poller = PollingLoop(fetch, interval=3600, capacity=5)
        await poller.force_refresh()
        await poller.force_refresh()
        before = poller.snapshot()
        await poller.force_refresh()
        assert poller.latest == before.latest
        assert poller.history == before.history
        return poller

    poller = asyncio.run(run())

    assert poller.latest == _reading(20.0, 1)
    assert _temperatures(poller.history) == [20.0]
    assert isinstance(poller.last_error, NetworkError)


def test_success_after_failure_clears_error() -> None:
    async def run() -> PollingLoop:
        poller = PollingLoop(ScriptedFetch([HttpStatusError(503), _reading(18.5, 7)]), interval=3600)
        await poller.force_refresh()
        assert poller.last_error is not None
        await poller.force_refresh()
        return poller

    poller = asyncio.run(run())

    assert poller.last_error is None
    assert poller.latest == _reading(18.5, 7)


def test_loading_is_only_reported_for_the_first_attempt() -> None:
    async def run() -> List[PollingSnapshot]:
        poller = PollingLoop(
            ScriptedFetch([HttpStatusError(500), _reading(20.0), _reading(21.0)]),
            interval=3600,
        )
        snapshots: List[PollingSnapshot] = []
        poller.add_listener(snapshots.append)
        for _ in range(3):
            await poller.force_refresh()
        return snapshots

    snapshots = asyncio.run(run())

    assert [snapshot.is_loading for snapshot in snapshots] == [True, False, False, False]
    assert snapshots[0].history == ()
    assert _temperatures(snapshots[-1].history) == [20.0, 21.0]


def test_start_fetches_immediately_and_then_on_every_tick() -> None:
    async def run() -> int:
        fetch = ScriptedFetch([_reading(float(index)) for index in range(100)])
        poller = PollingLoop(fetch, interval=0.02, capacity=3)
        await poller.start()
        await asyncio.sleep(0.15)
        await poller.stop()
        return fetch.calls

    calls = asyncio.run(run())

    assert calls >= 3


def test_tick_is_skipped_while_fetch_is_in_flight() -> None:
    async def run() -> None:
        fetch = GatedFetch()
        poller = PollingLoop(fetch, interval=0.01, capacity=3)
        await poller.start()
        await asyncio.sleep(0.1)
        assert fetch.calls == 1

        fetch.gate.set()
        await asyncio.sleep(0.1)
        await poller.stop()
        assert fetch.calls > 1
        assert len(poller.history) == 3

    asyncio.run(run())


def test_force_refresh_joins_outstanding_fetch() -> None:
    async def run() -> None:
        fetch = GatedFetch(temperature=24.0)
        poller = PollingLoop(fetch, interval=3600)

        first = asyncio.create_task(poller.force_refresh())
        second = asyncio.create_task(poller.force_refresh())
        await asyncio.sleep(0)
        fetch.gate.set()
        snapshots = await asyncio.gather(first, second)

        assert fetch.calls == 1
        assert snapshots[0] == snapshots[1]
        assert _temperatures(snapshots[0].history) == [24.0]

    asyncio.run(run())


def test_result_arriving_after_stop_is_discarded() -> None:
    async def run() -> None:
        fetch = GatedFetch()
        poller = PollingLoop(fetch, interval=3600)
        snapshots: List[PollingSnapshot] = []
        poller.add_listener(snapshots.append)

        await poller.start()
        await asyncio.sleep(0.01)
        assert fetch.calls == 1

        await poller.stop()
        fetch.gate.set()
        await fetch.returned.wait()
        await asyncio.sleep(0)

        assert poller.latest is None
        assert poller.history == ()
        assert poller.last_error is None
        assert poller.is_loading is True
        assert len(snapshots) == 1
        assert poller.running is False

    asyncio.run(run())


def test_stop_can_cancel_outstanding_fetch() -> None:
    async def run() -> None:
        fetch = GatedFetch()
        poller = PollingLoop(fetch, interval=3600)
        await poller.start()
        await asyncio.sleep(0.01)

        await poller.stop(cancel_pending=True)

        assert fetch.returned.is_set() is False
        assert poller.history == ()

    asyncio.run(run())


def test_force_refresh_after_stop_does_not_fetch() -> None:
    async def run() -> None:
        fetch = ScriptedFetch([_reading(20.0)])
        poller = PollingLoop(fetch, interval=3600)
        await poller.stop()

        snapshot = await poller.force_refresh()

        assert fetch.calls == 0
        assert snapshot.history == ()

    asyncio.run(run())


def test_start_twice_is_rejected() -> None:
    async def run() -> None:
        poller = PollingLoop(ScriptedFetch([_reading(1.0)]), interval=3600)
        await poller.start()
        try:
            with pytest.raises(RuntimeError):
                await poller.start()
        finally:
            await poller.stop(cancel_pending=True)

    asyncio.run(run())


def test_invalid_configuration_is_rejected() -> None:
    with pytest.raises(ValueError):
        PollingLoop(ScriptedFetch([]), interval=0)
    with pytest.raises(ValueError):
        PollingLoop(ScriptedFetch([]), interval=1, capacity=0)


def test_failing_listener_does_not_block_others(caplog) -> None:
    received: List[PollingSnapshot] = []

    def broken(_snapshot: PollingSnapshot) -> None:
        raise RuntimeError("listener bug")

    async def run() -> None:
        poller = PollingLoop(ScriptedFetch([_reading(20.0)]), interval=3600)
        poller.add_listener(broken)
        poller.add_listener(received.append)
        await poller.force_refresh()

    with caplog.at_level(logging.ERROR, logger="services.poller"):
        asyncio.run(run())

    assert len(received) == 2
    assert any("listener" in record.getMessage() for record in caplog.records)


def test_removed_listener_stops_receiving() -> None:
    received: List[PollingSnapshot] = []

    async def run() -> None:
        poller = PollingLoop(ScriptedFetch([_reading(20.0), _reading(21.0)]), interval=3600)
        remove = poller.add_listener(received.append)
        await poller.force_refresh()
        remove()
        await poller.force_refresh()

    asyncio.run(run())

    assert [snapshot.is_loading for snapshot in received] == [True, False]


def test_unexpected_fetch_error_ends_loading_without_recording_an_error(caplog) -> None:
    received: List[PollingSnapshot] = []

    async def run() -> PollingLoop:
        poller = PollingLoop(ScriptedFetch([RuntimeError("bug")]), interval=3600)
        poller.add_listener(received.append)
        with pytest.raises(RuntimeError):
            await poller.force_refresh()
        return poller

    with caplog.at_level(logging.ERROR, logger="services.poller"):
        poller = asyncio.run(run())

    assert poller.is_loading is False
    assert poller.last_error is None
    assert poller.history == ()
    assert [snapshot.is_loading for snapshot in received] == [True, False]
    assert any(record.exc_info for record in caplog.records)


def test_all_fetch_errors_are_surfaced_the_same_way() -> None:
    errors: List[FetchError] = [HttpStatusError(404), NetworkError(OSError("x")), MalformedBodyError("y")]

    async def run(error: FetchError) -> PollingSnapshot:
        poller = PollingLoop(ScriptedFetch([error]), interval=3600)
        return await poller.force_refresh()

    for error in errors:
        snapshot = asyncio.run(run(error))
        assert snapshot.last_error is error
        assert snapshot.is_loading is False


@pytest.mark.parametrize(
    "failure",
    [HttpStatusError(500), NetworkError(OSError("refused")), MalformedBodyError("bad"), RuntimeError("bug")],
    ids=["http_status", "network", "malformed_body", "unexpected"],
)
def test_first_timer_attempt_always_clears_loading(failure: BaseException) -> None:
    async def run() -> PollingLoop:
        poller = PollingLoop(ScriptedFetch([failure]), interval=3600)
        await poller.start()
        await asyncio.sleep(0.01)
        await poller.stop()
        return poller

    poller = asyncio.run(run())

    assert poller.is_loading is False
    assert poller.history == ()
    if isinstance(failure, FetchError):
        assert poller.last_error is failure
    else:
        assert poller.last_error is None


def test_oversized_device_number_is_reported_as_malformed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b'{"temperature": 1' + b"0" * 400 + b"}")

    async def run() -> PollingSnapshot:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        fetcher = ReadingFetcher("http://device.local/api/temperature", client=client)
        try:
            return await PollingLoop(fetcher.fetch, interval=3600).force_refresh()
        finally:
            await fetcher.aclose()

    snapshot = asyncio.run(run())

    assert snapshot.is_loading is False
    assert isinstance(snapshot.last_error, MalformedBodyError)
    assert snapshot.history == ()
