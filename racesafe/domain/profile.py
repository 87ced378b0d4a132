"""RiskProfile — the central output of the Risk Analysis Engine.

A profile is built fresh per analysis call and never mutated afterwards.
Everything in it is derived deterministically from historical records.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, model_validator

from racesafe.domain.enums import RiskLevel, SafetyRatingTrend

TIMING_EPSILON = 1e-6


class IncidentTiming(BaseModel):
    """Fraction of incident points in each race window.

    The three fractions sum to 1.0.  When no incident points were observed
    the split is uniform, which is a defined fallback rather than an error.
    """

    lap1_2: float = Field(..., ge=0.0, le=1.0, description="First two laps")
    mid_race: float = Field(..., ge=0.0, le=1.0, description="Between the opening laps and the finish")
    final_lap: float = Field(..., ge=0.0, le=1.0, description="Last one or two laps")

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def fractions_sum_to_one(self) -> "IncidentTiming":
        total = self.lap1_2 + self.mid_race + self.final_lap
        if abs(total - 1.0) > TIMING_EPSILON:
            raise ValueError(f"timing fractions must sum to 1.0 (got {total:.6f})")
        return self

    @classmethod
    def uniform(cls) -> "IncidentTiming":
        third = 1.0 / 3.0
        return cls(lap1_2=third, mid_race=third, final_lap=1.0 - 2 * third)


class IncidentTypeBreakdown(BaseModel):
    """Estimated incident counts by severity.

    An estimate: only cumulative point deltas are observable, so each delta
    is decomposed greedily, heaviest category first.
    """

    contact_4x: int = Field(0, ge=0, description="Heavy contact (4 points)")
    lost_control_2x: int = Field(0, ge=0, description="Spin or wall hit (2 points)")
    off_track_1x: int = Field(0, ge=0, description="Track departure (1 point)")

    model_config = {"frozen": True}

    @property
    def total(self) -> int:
        """Number of estimated incidents."""
        return self.contact_4x + self.lost_control_2x + self.off_track_1x

    @property
    def weighted_points(self) -> int:
        return 4 * self.contact_4x + 2 * self.lost_control_2x + self.off_track_1x

    def __add__(self, other: "IncidentTypeBreakdown") -> "IncidentTypeBreakdown":
        return IncidentTypeBreakdown(
            contact_4x=self.contact_4x + other.contact_4x,
            lost_control_2x=self.lost_control_2x + other.lost_control_2x,
            off_track_1x=self.off_track_1x + other.off_track_1x,
        )


class RiskProfile(BaseModel):
    """Immutable risk assessment of one participant."""

    participant_id: int
    display_name: str
    irating: int = 0
    license_class: str = "Unknown"
    safety_rating: float = 0.0

    avg_incidents_per_race: float = Field(..., ge=0.0, description="Mean over the 30-day window")
    race_count: int = Field(..., ge=0, description="Races in the 30-day window")
    recent_race_count: int = Field(0, ge=0, description="Races in the 7-day window")
    recent_avg_incidents: float = Field(0.0, ge=0.0)
    last_race_incidents: int = Field(0, ge=0)

    incident_timing: IncidentTiming
    incident_types: IncidentTypeBreakdown

    risk_score: float = Field(..., ge=0.0, le=10.0)
    sr_trend: SafetyRatingTrend
    risk_level: RiskLevel
    patterns: list[str] = Field(default_factory=list)
    recommendation: str = ""

    model_config = {"frozen": True}
