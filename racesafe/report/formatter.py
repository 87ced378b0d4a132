"""Plain-text rendering for the status sink and the pre-race report.

Deterministic and side-effect free: every function returns a string (or
list of strings) and the caller decides where it goes.  No colour codes;
sinks that want colour can key off the labels.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Optional

from racesafe.core.scoring import field_risk_label
from racesafe.domain.alerts import NearbyCar
from racesafe.domain.enums import Direction, FieldRecommendation, RiskLevel
from racesafe.domain.field import FieldSnapshot, GridEntry, UserProfile

RECKLESS_SESSION_INCIDENTS = 6
ROOKIE_WARNING_SHARE = 0.30
INEXPERIENCED_WARNING_SHARE = 0.40
INEXPERIENCED_RACE_COUNT = 5
HIGH_SOF = 2200

LICENSE_ORDER = ("Pro", "A", "B", "C", "D", "R")

_STRATEGY = {
    FieldRecommendation.CONSERVATIVE: (
        "Let high-risk drivers settle in first 3 laps",
        "Avoid wheel-to-wheel battles unless against clean racers",
        "Prioritize finishing clean over positions",
        "Keep safe distance in braking zones",
    ),
    FieldRecommendation.MODERATE: (
        "Race normally but stay alert around flagged drivers",
        "Push for positions against clean racers",
        "Exercise caution on lap 1 and final laps",
    ),
    FieldRecommendation.AGGRESSIVE: (
        "Field is relatively clean - race for positions",
        "Good opportunity to gain iRating",
        "Still maintain awareness of any flagged drivers",
    ),
}

_HEADLINE = {
    FieldRecommendation.CONSERVATIVE: "CONSERVATIVE - Let the field settle, prioritize clean finish",
    FieldRecommendation.MODERATE: "MODERATE - Race normally but stay alert around flagged drivers",
    FieldRecommendation.AGGRESSIVE: "AGGRESSIVE OK - Field is clean, good opportunity for gains",
}


# ── Live status ──────────────────────────────────────────────────────────────

def format_session_incidents(count: int) -> str:
    if count >= 8:
        return f"({count}x!)"
    return f"({count}x)"


def _format_neighbour(arrow: str, car: Optional[NearbyCar]) -> str:
    if car is None:
        return f"{arrow} Clear"
    return (
        f"{arrow} #{car.car_number} {car.gap_seconds:.1f}s "
        f"{format_session_incidents(car.session_incidents)} [{car.label.value}]"
    )


def format_status_line(
    lap: int,
    position: int,
    total_cars: int,
    incidents: int,
    nearby: list[NearbyCar],
) -> str:
    """One-line tick summary: lap, position, own incidents, closest ahead/behind.

    `nearby` must be sorted by gap.  Unanalysed cars show [UNKNOWN].
    """
    ahead = next((c for c in nearby if c.direction == Direction.AHEAD), None)
    behind = next((c for c in nearby if c.direction == Direction.BEHIND), None)
    return " | ".join((
        f"Lap {lap}",
        f"P{position}/{total_cars}",
        f"{incidents}x",
        _format_neighbour("↑", ahead),
        _format_neighbour("↓", behind),
    ))


# ── Alert text ───────────────────────────────────────────────────────────────

def _session_note(car: NearbyCar) -> str:
    note = f" - {car.session_incidents}x this race" if car.session_incidents > 0 else " - clean so far"
    if car.session_incidents >= RECKLESS_SESSION_INCIDENTS:
        note += " RECKLESS TODAY!"
    return note


def _avg_note(car: NearbyCar) -> str:
    if car.avg_incidents is None:
        return ""
    return f" ({car.avg_incidents:.1f} avg inc/race)"


def danger_message(car: NearbyCar) -> str:
    return f"DANGER: #{car.car_number} {car.direction.value} - HIGH RISK{_avg_note(car)}{_session_note(car)}"


def warning_message(car: NearbyCar) -> str:
    return f"CAUTION: #{car.car_number} {car.direction.value} - MODERATE RISK{_avg_note(car)}{_session_note(car)}"


def incident_message(delta: int, session_total: int) -> str:
    return f"+{delta}x INCIDENT (Session total: {session_total}x)"


def clear_message() -> str:
    return "Danger zone clear"


def post_race_summary(incidents: int) -> str:
    if incidents == 0:
        verdict = "Perfect race - no incidents!"
    elif incidents <= 4:
        verdict = "Clean race - well done!"
    elif incidents <= 8:
        verdict = "Room for improvement"
    else:
        verdict = "Rough race - review what went wrong"
    return f"CHECKERED FLAG! Your session incidents: {incidents}x. {verdict}"


# ── Field statistics ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class FieldStats:
    strength_of_field: int
    average_sr: float
    license_breakdown: dict[str, int] = field(default_factory=dict)
    rookie_count: int = 0
    inexperienced_count: int = 0
    field_size: int = 0


def calculate_field_stats(grid: list[GridEntry]) -> FieldStats:
    ratings = [e.irating for e in grid if e.irating > 0]
    sof = round(sum(ratings) / len(ratings)) if ratings else 0

    breakdown = Counter(e.license_class or "?" for e in grid)
    srs = [e.safety_rating for e in grid if e.safety_rating]
    inexperienced = sum(
        1 for e in grid
        if not e.is_local and e.profile is not None and 0 < e.profile.race_count < INEXPERIENCED_RACE_COUNT
    )
    return FieldStats(
        strength_of_field=sof,
        average_sr=sum(srs) / len(srs) if srs else 0.0,
        license_breakdown=dict(breakdown),
        rookie_count=breakdown.get("R", 0),
        inexperienced_count=inexperienced,
        field_size=len(grid),
    )


def field_warnings(stats: FieldStats) -> list[str]:
    warnings: list[str] = []
    if stats.field_size == 0:
        return warnings

    rookie_share = stats.rookie_count / stats.field_size
    if rookie_share >= ROOKIE_WARNING_SHARE:
        warnings.append(
            f"WARNING: {stats.rookie_count} Rookies ({rookie_share * 100:.0f}%) - expect unpredictable behavior"
        )

    inexperienced_share = stats.inexperienced_count / stats.field_size
    if inexperienced_share >= INEXPERIENCED_WARNING_SHARE:
        warnings.append(
            f"WARNING: {stats.inexperienced_count} drivers with <{INEXPERIENCED_RACE_COUNT} races "
            f"({inexperienced_share * 100:.0f}%) - inconsistent pace/braking likely"
        )

    if stats.strength_of_field >= HIGH_SOF:
        warnings.append(
            f"NOTE: High SOF ({stats.strength_of_field}) - expect competitive but cleaner racing"
        )
    return warnings


def strategy_bullets(recommendation: FieldRecommendation) -> list[str]:
    return list(_STRATEGY[recommendation])


# ── Pre-race report ──────────────────────────────────────────────────────────

def _pad(text: str, width: int) -> str:
    return text[:width].ljust(width)


def _truncate(text: str, width: int) -> str:
    return text if len(text) <= width else text[: width - 2] + ".."


def _table_order(entry: GridEntry) -> tuple[int, float]:
    if entry.is_local:
        return (0, 0.0)
    return (1, -(entry.risk_score if entry.risk_score is not None else -1.0))


def format_grid_table(grid: list[GridEntry]) -> str:
    """Local participant first, then by descending risk score."""
    header = (
        _pad("Car#", 6) + _pad("SR", 6) + _pad("iRating", 8) + _pad("Races", 6)
        + _pad("Inc/Race", 9) + _pad("4x", 5) + _pad("2x", 5) + _pad("1x", 5)
        + _pad("Risk", 15) + "Notes"
    )
    lines = ["GRID ANALYSIS", "=" * 110, header, "-" * 110]

    for entry in sorted(grid, key=_table_order):
        profile = entry.profile
        sr = f"{entry.safety_rating:.2f}" if entry.safety_rating is not None else "?"
        if entry.is_local:
            risk = "YOU"
        elif profile is not None:
            risk = f"{entry.label.value} ({profile.risk_score})"
        else:
            risk = entry.label.value

        types = profile.incident_types if profile else None
        lines.append(
            _pad(f"#{entry.car_number or entry.position}", 6)
            + _pad(sr, 6)
            + _pad(str(entry.irating), 8)
            + _pad(str(profile.race_count) if profile else "-", 6)
            + _pad(f"{profile.avg_incidents_per_race:.1f}" if profile else "-", 9)
            + _pad(str(types.contact_4x) if types else "-", 5)
            + _pad(str(types.lost_control_2x) if types else "-", 5)
            + _pad(str(types.off_track_1x) if types else "-", 5)
            + _pad(risk, 15)
            + (_truncate(profile.patterns[0], 40) if profile and profile.patterns else "")
        )

    lines.append("-" * 110)
    return "\n".join(lines)


def format_field_summary(snapshot: FieldSnapshot) -> str:
    stats = calculate_field_stats(snapshot.grid)
    analysis = snapshot.analysis
    high = snapshot.entries_at(RiskLevel.HIGH)
    moderate = snapshot.entries_at(RiskLevel.MODERATE)
    low = snapshot.entries_at(RiskLevel.LOW)
    unknown = [e for e in snapshot.grid if e.profile is None and not e.is_local]

    licenses = " | ".join(
        f"{cls}: {stats.license_breakdown[cls]}"
        for cls in LICENSE_ORDER
        if stats.license_breakdown.get(cls)
    )

    lines = [
        "FIELD & RISK SUMMARY",
        "=" * 80,
        "FIELD COMPOSITION:",
        f"  SOF: {snapshot.strength_of_field or stats.strength_of_field} | Avg SR: {stats.average_sr:.2f}",
        f"  Licenses: {licenses or 'Unknown'}",
        "",
        "RISK BREAKDOWN:",
        f"  Overall Grid Risk: {analysis.overall_risk_score:.1f}/10 ({field_risk_label(analysis.overall_risk_score)})",
        f"  High Risk: {len(high)} | Moderate: {len(moderate)} | Low Risk: {len(low)} | Unknown: {len(unknown)}",
    ]

    if high:
        lines.append("")
        lines.append("CARS TO AVOID:")
        for entry in high[:5]:
            pattern = f" - {entry.profile.patterns[0]}" if entry.profile.patterns else ""
            lines.append(f"  #{entry.car_number or entry.position} ({entry.profile.avg_incidents_per_race} avg inc){pattern}")

    if low:
        lines.append("")
        lines.append("SAFE TO RACE WITH:")
        for entry in low[:3]:
            lines.append(f"  #{entry.car_number or entry.position} ({entry.profile.avg_incidents_per_race} avg inc)")

    lines.append("")
    lines.append("STRATEGY:")
    lines.append(f"  {_HEADLINE[analysis.recommendation]}")
    for warning in field_warnings(stats):
        lines.append(f"  {warning}")
    for bullet in strategy_bullets(analysis.recommendation):
        lines.append(f"  - {bullet}")
    lines.append("=" * 80)
    return "\n".join(lines)


def format_field_report(snapshot: FieldSnapshot) -> str:
    return format_grid_table(snapshot.grid) + "\n\n" + format_field_summary(snapshot)


def format_event_analysis(snapshot: FieldSnapshot, user: Optional[UserProfile] = None) -> str:
    """Report for a completed event looked up by id."""
    analysis = snapshot.analysis
    lines = [
        "RACE ANALYSIS",
        "=" * 60,
        f"Session: {snapshot.series_name} @ {snapshot.track_name}",
        f"Strength of Field: {snapshot.strength_of_field}",
        f"Grid Size: {len(snapshot.grid)} drivers",
        "",
        f"OVERALL RISK: {analysis.overall_risk_score}/10 ({field_risk_label(analysis.overall_risk_score)})",
    ]

    high = snapshot.entries_at(RiskLevel.HIGH)
    if high:
        lines.append("")
        lines.append("HIGH RISK DRIVERS (Avoid if possible):")
        for entry in high:
            profile = entry.profile
            lines.append(f"  - P{entry.position}: {entry.display_name}")
            lines.append(f"    Risk: {profile.risk_score}/10 | {profile.avg_incidents_per_race} avg incidents")
            if profile.patterns:
                lines.append(f"    {', '.join(profile.patterns[:2])}")

    clean = snapshot.entries_at(RiskLevel.LOW)
    if clean:
        lines.append("")
        lines.append("CLEAN RACERS (Safe to battle):")
        for entry in clean[:5]:
            lines.append(
                f"  - P{entry.position}: {entry.display_name} ({entry.profile.avg_incidents_per_race} avg incidents)"
            )

    lines.extend(["", "-" * 60, "STRATEGIC RECOMMENDATION", "-" * 60])
    if user is not None and user.safety_rating is not None:
        lines.append(f"Your SR: {user.safety_rating} (Goal: maintain above {user.sr_floor})")
    if user is not None:
        lines.append(f"Starting Position: P{user.starting_position or '?'}")
    lines.append(f"Recommended Approach: {analysis.recommendation.value}")
    lines.append("Strategy:")
    lines.extend(f"  - {bullet}" for bullet in strategy_bullets(analysis.recommendation))
    return "\n".join(lines)
