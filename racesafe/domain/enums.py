"""Controlled enumerations for the racesafe domain.

Every categorical field in the domain MUST reference an enum defined here.
Free-form strings are not acceptable for classification fields.
"""

from __future__ import annotations

from enum import Enum


class RiskLevel(str, Enum):
    """Decision-level risk classification of a participant."""

    LOW = "LOW"
    MODERATE = "MODERATE"
    HIGH = "HIGH"


class RiskLabel(str, Enum):
    """Display label for a grid slot.

    Superset of RiskLevel: EXTREME is a presentation band above HIGH,
    UNKNOWN marks a participant that could not be analysed, YOU marks the
    local participant.  Decision logic never reads this.
    """

    LOW = "LOW"
    MODERATE = "MODERATE"
    HIGH = "HIGH"
    EXTREME = "EXTREME"
    UNKNOWN = "UNKNOWN"
    YOU = "YOU"


class SafetyRatingTrend(str, Enum):
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


class FieldRecommendation(str, Enum):
    """Strategic posture recommended for a whole field."""

    CONSERVATIVE = "CONSERVATIVE"
    MODERATE = "MODERATE"
    AGGRESSIVE = "AGGRESSIVE"


class SessionPhase(str, Enum):
    """Session Monitor states."""

    WAITING = "WAITING"
    CONNECTING = "CONNECTING"
    PRE_RACE = "PRE_RACE"
    RACING = "RACING"
    POST_RACE = "POST_RACE"


class SessionType(str, Enum):
    PRACTICE = "practice"
    QUALIFY = "qualify"
    RACE = "race"
    WARMUP = "warmup"


class AlertKind(str, Enum):
    DANGER = "danger"
    WARNING = "warning"
    INCIDENT = "incident"
    CLEAR = "clear"


class AlertCategory(str, Enum):
    """Configuration category an alert kind is gated by."""

    DANGER = "danger"
    INCIDENT = "incident"


class Direction(str, Enum):
    AHEAD = "AHEAD"
    BEHIND = "BEHIND"
