"""Typed live-feed payloads — the contract between the simulator feed and the monitor.

Raw simulator dictionaries never travel past the adapter layer.  Everything
the Session Monitor consumes is one of these validated, immutable models.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator

_LICENSE_RE = re.compile(r"^(Pro|[RDCBA])\s*([0-9]+(?:\.[0-9]+)?)?", re.IGNORECASE)


# ── Session info ─────────────────────────────────────────────────────────────

class RosterEntry(BaseModel):
    """One participant in the live roster."""

    car_slot: int = Field(..., ge=0)
    participant_id: int
    display_name: str = Field(..., min_length=1)
    irating: int = 0
    license_string: str = ""
    car_number: str = ""
    grid_position: Optional[int] = None

    model_config = {"frozen": True}

    @property
    def license_class(self) -> str:
        match = _LICENSE_RE.match(self.license_string.strip())
        if not match:
            return "?"
        letter = match.group(1)
        return "Pro" if letter.lower() == "pro" else letter.upper()

    @property
    def safety_rating(self) -> Optional[float]:
        match = _LICENSE_RE.match(self.license_string.strip())
        if not match or match.group(2) is None:
            return None
        return float(match.group(2))

    @property
    def car_number_sort_key(self) -> int:
        try:
            return int(self.car_number)
        except ValueError:
            return 999


class SessionEntry(BaseModel):
    session_num: int
    session_type: str = ""

    model_config = {"frozen": True}


class SessionInfoUpdate(BaseModel):
    """Slow-changing session description: event, track, roster, session list."""

    event_id: Optional[int] = None
    track_name: str = ""
    series_name: str = ""
    roster: list[RosterEntry] = Field(default_factory=list)
    sessions: list[SessionEntry] = Field(default_factory=list)
    current_session_num: Optional[int] = None
    live_incidents: dict[int, int] = Field(
        default_factory=dict,
        description="car slot → incident points accrued in the current session",
    )

    model_config = {"frozen": True}


# ── Telemetry ────────────────────────────────────────────────────────────────

class CarTelemetry(BaseModel):
    car_slot: int = Field(..., ge=0)
    lap: int = Field(..., description="Negative when the car is not on track")
    track_fraction: float = Field(..., description="Lap distance fraction in [0, 1)")
    class_position: int = 0
    on_pit_road: bool = False

    model_config = {"frozen": True}


class TelemetryUpdate(BaseModel):
    """High-rate positional sample of the whole field."""

    cars: list[CarTelemetry] = Field(default_factory=list)
    local_incident_count: Optional[int] = Field(
        None, ge=0, description="Monotonically non-decreasing incident counter of the local car"
    )
    local_last_lap_time: Optional[float] = None
    event_ended: bool = False

    model_config = {"frozen": True}

    def by_slot(self) -> dict[int, CarTelemetry]:
        return {car.car_slot: car for car in self.cars}


# ── Event envelope ───────────────────────────────────────────────────────────

class FeedEventKind(str, Enum):
    CONNECT_ATTEMPT = "connect_attempt"
    CONNECTED = "connected"
    SESSION_INFO = "session_info"
    TELEMETRY = "telemetry"
    DISCONNECTED = "disconnected"


class FeedEvent(BaseModel):
    """One message on the Session Monitor's queue."""

    kind: FeedEventKind
    session_info: Optional[SessionInfoUpdate] = None
    telemetry: Optional[TelemetryUpdate] = None

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def payload_matches_kind(self) -> "FeedEvent":
        if self.kind == FeedEventKind.SESSION_INFO and self.session_info is None:
            raise ValueError("session_info event requires a session_info payload")
        if self.kind == FeedEventKind.TELEMETRY and self.telemetry is None:
            raise ValueError("telemetry event requires a telemetry payload")
        return self

    @classmethod
    def connect_attempt(cls) -> "FeedEvent":
        return cls(kind=FeedEventKind.CONNECT_ATTEMPT)

    @classmethod
    def connected(cls) -> "FeedEvent":
        return cls(kind=FeedEventKind.CONNECTED)

    @classmethod
    def disconnected(cls) -> "FeedEvent":
        return cls(kind=FeedEventKind.DISCONNECTED)

    @classmethod
    def of_session_info(cls, update: SessionInfoUpdate) -> "FeedEvent":
        return cls(kind=FeedEventKind.SESSION_INFO, session_info=update)

    @classmethod
    def of_telemetry(cls, update: TelemetryUpdate) -> "FeedEvent":
        return cls(kind=FeedEventKind.TELEMETRY, telemetry=update)
