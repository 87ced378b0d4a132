"""Historical records — what Historical Record Access hands back.

These are immutable once fetched.  A RaceRecord is one completed event for
one participant; a LapIncidentSample is one lap of one race and only lives
for the duration of a single analysis call.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from racesafe.foundation.clock import ensure_utc


class RaceRecord(BaseModel):
    """One completed race for a participant."""

    event_id: int = Field(..., description="Subsession identifier")
    start_time: datetime = Field(..., description="Session start (UTC-aware)")
    track_id: Optional[int] = None
    track_name: str = ""
    series_id: Optional[int] = None
    series_name: str = ""
    start_position: Optional[int] = None
    finish_position: Optional[int] = None
    incidents: int = Field(0, ge=0, description="Incident points accrued in the race")
    strength_of_field: int = 0
    irating_before: Optional[int] = None
    irating_after: Optional[int] = None
    sub_level_before: Optional[int] = Field(
        None, description="Safety sub-level before the race (SR x 100)"
    )
    sub_level_after: Optional[int] = Field(
        None, description="Safety sub-level after the race (SR x 100)"
    )
    laps_completed: int = 0

    model_config = {"frozen": True}

    @field_validator("start_time")
    @classmethod
    def start_time_must_be_aware(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @property
    def sub_level_delta(self) -> Optional[int]:
        if self.sub_level_before is None or self.sub_level_after is None:
            return None
        return self.sub_level_after - self.sub_level_before


class LapIncidentSample(BaseModel):
    """One lap of a race: the cumulative incident count at that lap."""

    lap_number: int
    cumulative_incidents: int = Field(..., ge=0)
    lap_time: Optional[float] = None
    session_time: Optional[float] = None

    model_config = {"frozen": True}


class LicenseEntry(BaseModel):
    """One license category held by a participant."""

    category_id: int
    category: str = ""
    license_class: str = Field("", description="Group name, e.g. 'Class A' or 'Rookie'")
    safety_rating: float = 0.0
    irating: int = 0

    model_config = {"frozen": True}


class ParticipantIdentity(BaseModel):
    participant_id: int
    display_name: str
    licenses: list[LicenseEntry] = Field(default_factory=list)

    model_config = {"frozen": True}

    def primary_license(self) -> Optional[LicenseEntry]:
        """Sports car first, then formula car, then anything with an iRating."""
        by_category = {lic.category_id: lic for lic in self.licenses}
        for category_id in (5, 6):
            if category_id in by_category:
                return by_category[category_id]
        for lic in self.licenses:
            if lic.irating > 0:
                return lic
        return None


class EventResultEntry(BaseModel):
    participant_id: int
    display_name: str = ""
    start_position: Optional[int] = None
    finish_position: Optional[int] = None
    incidents: int = 0

    model_config = {"frozen": True}


class EventResults(BaseModel):
    """Field roster of a completed event with per-participant positions."""

    event_id: int
    series_name: str = "Unknown Series"
    track_name: str = "Unknown Track"
    strength_of_field: int = 0
    entries: list[EventResultEntry] = Field(default_factory=list)

    model_config = {"frozen": True}
