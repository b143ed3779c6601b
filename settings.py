from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache


_DEVICE_ADDRESS_ENV = "DEVICE_ADDRESS"
_POLL_INTERVAL_ENV = "POLL_INTERVAL_MS"
_HISTORY_CAPACITY_ENV = "HISTORY_CAPACITY"
_HEARTBEAT_ENV = "SSE_HEARTBEAT_SECONDS"
_LOG_LEVEL_ENV = "LOG_LEVEL"

DEFAULT_DEVICE_ADDRESS = "172.20.10.2"
TEMPERATURE_PATH = "/api/temperature"


@dataclass(frozen=True)
class Settings:
    device_address: str
    poll_interval_ms: int
    history_capacity: int
    sse_heartbeat_seconds: float
    log_level: str

    @property
    def device_url(self) -> str:
        return build_device_url(self.device_address)

    @property
    def poll_interval(self) -> float:
        """Tick interval in seconds."""
        return self.poll_interval_ms / 1000.0


def build_device_url(address: str) -> str:
    base = address.strip().rstrip("/")
    if "://" not in base:
        base = f"http://{base}"
    return f"{base}{TEMPERATURE_PATH}"


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_positive_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        device_address=_read_str_env(_DEVICE_ADDRESS_ENV, DEFAULT_DEVICE_ADDRESS),
        poll_interval_ms=_read_positive_int(_POLL_INTERVAL_ENV, 5000),
        history_capacity=_read_positive_int(_HISTORY_CAPACITY_ENV, 20),
        sse_heartbeat_seconds=_read_positive_float(_HEARTBEAT_ENV, 15.0),
        log_level=_read_log_level("INFO"),
    )
