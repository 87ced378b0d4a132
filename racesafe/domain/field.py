"""FieldSnapshot — the Grid Analyzer's view of a whole field."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from racesafe.domain.enums import FieldRecommendation, RiskLabel, RiskLevel
from racesafe.domain.profile import RiskProfile


class UserProfile(BaseModel):
    """The local participant's context for the field recommendation."""

    participant_id: Optional[int] = None
    safety_rating: Optional[float] = None
    sr_floor: float = 2.0
    irating: int = 0
    starting_position: Optional[int] = None

    model_config = {"frozen": True}

    @property
    def sr_buffer(self) -> Optional[float]:
        """Distance between the user's safety rating and their floor."""
        if self.safety_rating is None:
            return None
        return self.safety_rating - self.sr_floor


class GridEntry(BaseModel):
    """One slot of the field: who is there and what we know about them.

    `profile` is None for the local participant and for anyone whose
    analysis failed; `label` says which.
    """

    position: int
    participant_id: int
    display_name: str = ""
    car_slot: Optional[int] = None
    car_number: str = ""
    irating: int = 0
    license_class: str = "?"
    safety_rating: Optional[float] = None
    profile: Optional[RiskProfile] = None
    label: RiskLabel = RiskLabel.UNKNOWN
    is_local: bool = False

    model_config = {"frozen": True}

    @property
    def risk_level(self) -> Optional[RiskLevel]:
        return self.profile.risk_level if self.profile else None

    @property
    def risk_score(self) -> Optional[float]:
        return self.profile.risk_score if self.profile else None


class FieldAnalysis(BaseModel):
    overall_risk_score: float = Field(..., ge=0.0, le=10.0)
    high_risk_count: int = 0
    clean_count: int = 0
    analyzed_count: int = 0
    recommendation: FieldRecommendation

    model_config = {"frozen": True}


class FieldSnapshot(BaseModel):
    event_id: Optional[int] = None
    track_name: str = ""
    series_name: str = ""
    strength_of_field: int = 0
    grid: list[GridEntry] = Field(default_factory=list)
    analysis: FieldAnalysis

    model_config = {"frozen": True}

    def entries_at(self, level: RiskLevel) -> list[GridEntry]:
        return [e for e in self.grid if e.risk_level == level]
