"""Risk score, classification and pattern derivation.

Pure functions: no I/O, no state.

Score formula (0–10):
    base from average incidents per race `a`
      a <= 2      : 1.5 * a
      2 < a <= 5  : 3 + (a - 2)
      a > 5       : 6 + min((a - 5) * 0.8, 4)
    timing modifier (additive)
      opening laps share > 0.4 : +1.5    (> 0.3 : +0.5)
      final laps share   > 0.3 : +1.0    (> 0.25: +0.5)
    score = clamp(base + modifier, 0, 10), one decimal
"""

from __future__ import annotations

from collections.abc import Sequence

from racesafe.domain.enums import RiskLabel, RiskLevel, SafetyRatingTrend
from racesafe.domain.profile import IncidentTiming, IncidentTypeBreakdown
from racesafe.domain.records import RaceRecord

MODERATE_THRESHOLD = 4.0
HIGH_THRESHOLD = 7.0
DEFAULT_EXTREME_THRESHOLD = 8.0

MAX_SCORE = 10.0


# ── Score ────────────────────────────────────────────────────────────────────

def _base_score(avg_incidents: float) -> float:
    if avg_incidents <= 2:
        return avg_incidents * 1.5
    if avg_incidents <= 5:
        return 3.0 + (avg_incidents - 2.0)
    return 6.0 + min((avg_incidents - 5.0) * 0.8, 4.0)


def _timing_modifier(timing: IncidentTiming) -> float:
    modifier = 0.0

    if timing.lap1_2 > 0.4:
        modifier += 1.5
    elif timing.lap1_2 > 0.3:
        modifier += 0.5

    if timing.final_lap > 0.3:
        modifier += 1.0
    elif timing.final_lap > 0.25:
        modifier += 0.5

    return modifier


def calculate_risk_score(avg_incidents: float, timing: IncidentTiming) -> float:
    """Risk score in [0, 10], monotonically non-decreasing in avg_incidents."""
    raw = _base_score(max(avg_incidents, 0.0)) + _timing_modifier(timing)
    return round(max(0.0, min(raw, MAX_SCORE)), 1)


# ── Classification ───────────────────────────────────────────────────────────

def classify_risk(risk_score: float) -> RiskLevel:
    if risk_score < MODERATE_THRESHOLD:
        return RiskLevel.LOW
    if risk_score < HIGH_THRESHOLD:
        return RiskLevel.MODERATE
    return RiskLevel.HIGH


def display_label(
    risk_score: float,
    extreme_threshold: float = DEFAULT_EXTREME_THRESHOLD,
) -> RiskLabel:
    """Presentation band: HIGH scores at or above the threshold show as EXTREME."""
    level = classify_risk(risk_score)
    if level == RiskLevel.HIGH and risk_score >= extreme_threshold:
        return RiskLabel.EXTREME
    return RiskLabel(level.value)


def field_risk_label(overall_score: float) -> str:
    if overall_score >= 7:
        return "HIGH RISK RACE"
    if overall_score >= 5:
        return "MODERATE RISK"
    return "LOW RISK"


# ── Safety rating trend ──────────────────────────────────────────────────────

def calculate_sr_trend(
    races: Sequence[RaceRecord],
    sample_size: int = 5,
    min_races: int = 3,
    threshold: float = 5.0,
) -> SafetyRatingTrend:
    """Trend of safety sub-level deltas over the most recent races.

    `races` must be ordered most-recent-first.
    """
    if len(races) < min_races:
        return SafetyRatingTrend.STABLE

    deltas = [
        race.sub_level_delta
        for race in races[:sample_size]
        if race.sub_level_delta is not None
    ]
    if not deltas:
        return SafetyRatingTrend.STABLE

    mean_delta = sum(deltas) / len(deltas)
    if mean_delta > threshold:
        return SafetyRatingTrend.IMPROVING
    if mean_delta < -threshold:
        return SafetyRatingTrend.DECLINING
    return SafetyRatingTrend.STABLE


# ── Patterns & recommendation ────────────────────────────────────────────────

def has_early_clustering(timing: IncidentTiming) -> bool:
    return timing.lap1_2 >= 0.4


def has_late_clustering(timing: IncidentTiming) -> bool:
    return timing.final_lap >= 0.3


def identify_patterns(
    avg_incidents: float,
    timing: IncidentTiming,
    sr_trend: SafetyRatingTrend,
    incident_types: IncidentTypeBreakdown | None = None,
) -> list[str]:
    """Human-readable observations derived from the aggregates."""
    patterns: list[str] = []

    if avg_incidents >= 8:
        patterns.append(f"Very high incident rate: {avg_incidents:.1f} avg per race")
    elif avg_incidents >= 6:
        patterns.append(f"High incident rate: {avg_incidents:.1f} avg per race")
    elif avg_incidents <= 2:
        patterns.append(f"Clean racer: {avg_incidents:.1f} avg incidents per race")

    if timing.lap1_2 >= 0.5:
        patterns.append(
            f"Aggressive start (T1 aggressor): {round(timing.lap1_2 * 100)}% of incidents in lap 1-2"
        )
    elif timing.lap1_2 >= 0.4:
        patterns.append(f"Lap 1 risk: {round(timing.lap1_2 * 100)}% of incidents early")

    if timing.final_lap >= 0.4:
        patterns.append(
            f"Final lap desperado: {round(timing.final_lap * 100)}% of incidents in final lap"
        )
    elif timing.final_lap >= 0.3:
        patterns.append(f"Late race risk: {round(timing.final_lap * 100)}% of incidents near finish")

    if sr_trend == SafetyRatingTrend.DECLINING:
        patterns.append("Declining SR trend over recent races")
    elif sr_trend == SafetyRatingTrend.IMPROVING:
        patterns.append("Improving SR trend - getting cleaner")

    if incident_types is not None and incident_types.total > 0:
        total = incident_types.total
        contact_rate = incident_types.contact_4x / total
        lost_control_rate = incident_types.lost_control_2x / total

        if contact_rate >= 0.5 and incident_types.contact_4x >= 3:
            patterns.append(
                f"Contact-prone: {incident_types.contact_4x} heavy contacts (4x) - "
                f"{round(contact_rate * 100)}% of incidents"
            )
        elif incident_types.contact_4x >= 5:
            patterns.append(f"High contact count: {incident_types.contact_4x} heavy contacts (4x)")

        if lost_control_rate >= 0.5 and incident_types.lost_control_2x >= 3:
            patterns.append(
                f"Car control issues: {incident_types.lost_control_2x} spins/wall hits (2x) - "
                f"{round(lost_control_rate * 100)}% of incidents"
            )

        if incident_types.off_track_1x >= 10:
            patterns.append(f"Track limit issues: {incident_types.off_track_1x} off-tracks (1x)")

    return patterns


def generate_recommendation(risk_level: RiskLevel, timing: IncidentTiming) -> str:
    early = has_early_clustering(timing)
    late = has_late_clustering(timing)

    if risk_level == RiskLevel.HIGH:
        if early:
            return "Avoid close racing in turn 1 - let them go, collect later"
        if late:
            return "Be extra cautious in final laps - maintain safe distance"
        return "Avoid wheel-to-wheel battles - let them pass if pressured"

    if risk_level == RiskLevel.MODERATE:
        if early:
            return "Exercise caution at race start, safe to race mid-race"
        return "Reasonable to race with - stay alert but not overly cautious"

    return "Safe to race wheel-to-wheel - clean driver"
