"""Single-shot retrieval of temperature readings from the device."""

from __future__ import annotations

import json
import logging
import math
from functools import lru_cache
from typing import Any, Callable, Optional

import httpx

from models.readings import Reading, now_ms
from settings import get_settings

logger = logging.getLogger(__name__)

# Timestamps are epoch milliseconds stored as a signed 64-bit integer.
TIMESTAMP_MIN = -(2**63)
TIMESTAMP_MAX = 2**63 - 1


class FetchError(Exception):
    """Base class for every way a reading request can fail."""

    kind = "fetch_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class HttpStatusError(FetchError):
    """The device answered with a non-2xx status."""

    kind = "http_status"

    def __init__(self, status_code: int) -> None:
        super().__init__(f"Device responded with HTTP status {status_code}.")
        self.status_code = status_code


class NetworkError(FetchError):
    """The request never produced a response (DNS, refused, timeout...)."""

    kind = "network"

    def __init__(self, cause: BaseException) -> None:
        detail = str(cause) or type(cause).__name__
        super().__init__(f"Network error while contacting device: {detail}")
        self.cause = cause


class MalformedBodyError(FetchError):
    """The response body is not a usable reading payload."""

    kind = "malformed_body"

    def __init__(self, reason: str) -> None:
        super().__init__(f"Malformed reading payload: {reason}")
        self.reason = reason


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_finite(value: Any) -> bool:
    try:
        return math.isfinite(value)
    except OverflowError:
        # JSON integers are unbounded.
        return False


def parse_reading(body: bytes, received_at: int) -> Reading:
    """Turn a raw response body into a :class:`Reading`.

    ``received_at`` is used when the payload carries no ``timestamp``.
    """
    try:
        payload = json.loads(body)
    except ValueError as exc:
        raise MalformedBodyError("body is not valid JSON") from exc

    if not isinstance(payload, dict):
        raise MalformedBodyError("body is not a JSON object")

    if "temperature" not in payload:
        raise MalformedBodyError("missing 'temperature' field")
    temperature = payload["temperature"]
    if not _is_number(temperature) or not _is_finite(temperature):
        raise MalformedBodyError("'temperature' is not a finite number")

    timestamp = payload.get("timestamp")
    if timestamp is None:
        timestamp = received_at
    elif not _is_number(timestamp) or not _is_finite(timestamp):
        raise MalformedBodyError("'timestamp' is not a number")
    timestamp = int(timestamp)
    if not TIMESTAMP_MIN <= timestamp <= TIMESTAMP_MAX:
        raise MalformedBodyError("'timestamp' is out of range")

    return Reading(temperature=float(temperature), timestamp=timestamp)


async def fetch_reading(
    client: httpx.AsyncClient,
    url: str,
    clock: Callable[[], int] = now_ms,
) -> Reading:
    """Issue one GET against ``url`` and return the parsed reading.

    Raises one of the :class:`FetchError` subclasses on failure.
    """
    try:
        try:
            response = await client.get(url)
        except httpx.RequestError as exc:
            raise NetworkError(exc) from exc

        if not response.is_success:
            raise HttpStatusError(response.status_code)

        return parse_reading(response.content, received_at=clock())
    except FetchError as exc:
        logger.warning(
            "Error fetching temperature from device: %s",
            exc.message,
            extra={
                "device_url": url,
                "error_kind": exc.kind,
                "status_code": getattr(exc, "status_code", None),
            },
        )
        raise


class ReadingFetcher:
    """Owns the HTTP client used to talk to one device endpoint."""

    def __init__(
        self,
        url: str,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.url = url
        self._clock = clock
        self._client = client or httpx.AsyncClient()

    async def fetch(self) -> Reading:
        return await fetch_reading(self._client, self.url, clock=self._clock)

    async def aclose(self) -> None:
        await self._client.aclose()


@lru_cache
def build_default_fetcher(url: Optional[str] = None) -> ReadingFetcher:
    return ReadingFetcher(url or get_settings().device_url)
