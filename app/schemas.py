"""Pydantic schemas for the HTTP API layer."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from models.readings import Reading
from services.fetcher import FetchError
from services.poller import PollingSnapshot


class ReadingOut(BaseModel):
    """One temperature sample as exposed over HTTP."""

    temperature: float
    timestamp: int = Field(..., description="Epoch milliseconds.")

    @classmethod
    def from_reading(cls, reading: Reading) -> "ReadingOut":
        return cls(temperature=reading.temperature, timestamp=reading.timestamp)


class FetchErrorOut(BaseModel):
    """The most recent failure to read from the device."""

    kind: str = Field(..., description="One of http_status, network, malformed_body.")
    message: str
    status_code: Optional[int] = None

    @classmethod
    def from_error(cls, error: FetchError) -> "FetchErrorOut":
        return cls(
            kind=error.kind,
            message=error.message,
            status_code=getattr(error, "status_code", None),
        )


class StateResponse(BaseModel):
    """Raw polling state: bounded history plus acquisition flags."""

    device_address: str
    history: List[ReadingOut] = Field(default_factory=list)
    latest: Optional[ReadingOut] = None
    is_loading: bool
    last_error: Optional[FetchErrorOut] = None

    @classmethod
    def from_snapshot(cls, snapshot: PollingSnapshot, device_address: str) -> "StateResponse":
        return cls(
            device_address=device_address,
            history=[ReadingOut.from_reading(reading) for reading in snapshot.history],
            latest=ReadingOut.from_reading(snapshot.latest) if snapshot.latest else None,
            is_loading=snapshot.is_loading,
            last_error=(
                FetchErrorOut.from_error(snapshot.last_error) if snapshot.last_error else None
            ),
        )


class ChartPoint(BaseModel):
    timestamp: int
    label: str
    temperature: float


class DashboardView(BaseModel):
    """Everything the dashboard needs to draw itself, already decided."""

    device_address: str
    unit: str = "°C"
    show_loading: bool
    show_no_data: bool
    show_error: bool
    error_message: Optional[str] = None
    latest_temperature: Optional[str] = Field(
        default=None, description="Latest temperature with two decimals."
    )
    show_chart: bool
    chart_points: List[ChartPoint] = Field(default_factory=list)
    y_min: Optional[float] = None
    y_max: Optional[float] = None
