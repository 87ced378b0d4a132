"""Alert events and live proximity readings produced for the Alert Dispatcher."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from racesafe.domain.enums import (
    AlertCategory,
    AlertKind,
    Direction,
    RiskLabel,
    RiskLevel,
    SessionType,
)
from racesafe.foundation.clock import utc_now

_CATEGORY = {
    AlertKind.DANGER: AlertCategory.DANGER,
    AlertKind.WARNING: AlertCategory.DANGER,
    AlertKind.CLEAR: AlertCategory.DANGER,
    AlertKind.INCIDENT: AlertCategory.INCIDENT,
}


def category_of(kind: AlertKind) -> AlertCategory:
    return _CATEGORY[kind]


class Alert(BaseModel):
    """A discrete alert.  Rendering (audio, console) is the dispatcher's job."""

    kind: AlertKind
    message: str
    session_type: SessionType
    car_slot: Optional[int] = None
    car_number: Optional[str] = None
    detail: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)

    model_config = {"frozen": True}

    @property
    def category(self) -> AlertCategory:
        return category_of(self.kind)


class NearbyCar(BaseModel):
    """A car within the proximity window of the local participant on one tick."""

    car_slot: int
    car_number: str
    gap_seconds: float = Field(..., ge=0.0)
    direction: Direction
    label: RiskLabel = RiskLabel.UNKNOWN
    risk_level: Optional[RiskLevel] = None
    avg_incidents: Optional[float] = None
    top_pattern: Optional[str] = None
    session_incidents: int = 0

    model_config = {"frozen": True}
