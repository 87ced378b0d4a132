"""ProximityDetector — per-tick gaps, danger zone edges and incident deltas.

evaluate() is a pure function of (previous tick state, telemetry update):
it never touches the SessionContext.  The Session Monitor applies the
returned TickResult, so every tick is processed to completion before the
next one is looked at.

Gap model:
    diff = other.track_fraction - local.track_fraction, wrapped into
    [-0.5, 0.5]; gap_seconds = |diff| * lap_seconds; AHEAD when diff > 0.
    Cars on pit road, off track (lap < 0) or beyond the nearby window are
    ignored.

Edge triggering:
    in_zone(tick) = {HIGH cars with gap < danger_zone_seconds}.  An alert
    fires for slots in in_zone(tick) - in_zone(tick-1).  The set replaces
    the previous one every tick, so a car that stays close alerts once and
    a car that leaves and comes back alerts again.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Optional

from racesafe.domain.alerts import Alert, NearbyCar
from racesafe.domain.enums import AlertKind, Direction, RiskLevel, SessionType
from racesafe.domain.feed import RosterEntry, TelemetryUpdate
from racesafe.report.formatter import (
    clear_message,
    danger_message,
    format_status_line,
    incident_message,
    warning_message,
)
from racesafe.store.profile_cache import ProfileCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProximityConfig:
    danger_zone_seconds: float = 1.5
    nearby_window_seconds: float = 5.0
    estimated_lap_seconds: float = 90.0
    warn_on_moderate: bool = True


@dataclass(frozen=True)
class TickState:
    """What the detector needs to remember between ticks."""

    local_slot: Optional[int] = None
    danger_zone: frozenset[int] = frozenset()
    warning_zone: frozenset[int] = frozenset()
    incident_baseline: Optional[int] = None
    local_incidents: int = 0


@dataclass
class TickResult:
    state: TickState
    nearby: list[NearbyCar] = field(default_factory=list)
    alerts: list[Alert] = field(default_factory=list)
    status_line: Optional[str] = None
    incident_delta: int = 0


def wrapped_gap(other_fraction: float, local_fraction: float, lap_seconds: float) -> tuple[float, Direction]:
    diff = other_fraction - local_fraction
    if diff > 0.5:
        diff -= 1.0
    elif diff < -0.5:
        diff += 1.0
    direction = Direction.AHEAD if diff > 0 else Direction.BEHIND
    return abs(diff * lap_seconds), direction


class ProximityDetector:
    def __init__(self, config: ProximityConfig | None = None) -> None:
        self._config = config or ProximityConfig()

    @property
    def config(self) -> ProximityConfig:
        return self._config

    def lap_seconds(self, update: TelemetryUpdate) -> float:
        last = update.local_last_lap_time
        if last is not None and last > 0:
            return last
        return self._config.estimated_lap_seconds

    # ── Public API ───────────────────────────────────────────────────────

    def evaluate(
        self,
        previous: TickState,
        update: TelemetryUpdate,
        cache: ProfileCache,
        roster: Mapping[int, RosterEntry],
        live_incidents: Mapping[int, int],
        session_type: SessionType,
    ) -> TickResult:
        alerts: list[Alert] = []

        baseline, total, delta = self._advance_incidents(previous, update.local_incident_count)
        if delta > 0:
            alerts.append(Alert(
                kind=AlertKind.INCIDENT,
                message=incident_message(delta, total),
                session_type=session_type,
                car_slot=previous.local_slot,
            ))

        cars = update.by_slot()
        local = cars.get(previous.local_slot) if previous.local_slot is not None else None

        if local is None or local.lap < 0:
            # Local car not on track: keep the zone sets, no status line.
            state = TickState(
                local_slot=previous.local_slot,
                danger_zone=previous.danger_zone,
                warning_zone=previous.warning_zone,
                incident_baseline=baseline,
                local_incidents=total,
            )
            return TickResult(state=state, alerts=alerts, incident_delta=delta)

        nearby = self.find_nearby(update, local.car_slot, cache, roster, live_incidents)

        danger_zone = self._in_zone(nearby, RiskLevel.HIGH)
        for car in nearby:
            if car.car_slot in danger_zone and car.car_slot not in previous.danger_zone:
                alerts.append(Alert(
                    kind=AlertKind.DANGER,
                    message=danger_message(car),
                    session_type=session_type,
                    car_slot=car.car_slot,
                    car_number=car.car_number,
                    detail=car.top_pattern,
                ))

        warning_zone: frozenset[int] = frozenset()
        if self._config.warn_on_moderate:
            warning_zone = self._in_zone(nearby, RiskLevel.MODERATE)
            for car in nearby:
                if car.car_slot in warning_zone and car.car_slot not in previous.warning_zone:
                    alerts.append(Alert(
                        kind=AlertKind.WARNING,
                        message=warning_message(car),
                        session_type=session_type,
                        car_slot=car.car_slot,
                        car_number=car.car_number,
                    ))

        if previous.danger_zone and not danger_zone:
            alerts.append(Alert(kind=AlertKind.CLEAR, message=clear_message(), session_type=session_type))

        status = format_status_line(
            lap=local.lap,
            position=local.class_position,
            total_cars=len(roster),
            incidents=total,
            nearby=nearby,
        )
        state = TickState(
            local_slot=previous.local_slot,
            danger_zone=danger_zone,
            warning_zone=warning_zone,
            incident_baseline=baseline,
            local_incidents=total,
        )
        return TickResult(state=state, nearby=nearby, alerts=alerts, status_line=status, incident_delta=delta)

    def find_nearby(
        self,
        update: TelemetryUpdate,
        local_slot: int,
        cache: ProfileCache,
        roster: Mapping[int, RosterEntry],
        live_incidents: Mapping[int, int],
    ) -> list[NearbyCar]:
        """Cars within the nearby window, closest first."""
        cars = update.by_slot()
        local = cars[local_slot]
        lap_seconds = self.lap_seconds(update)
        nearby: list[NearbyCar] = []

        for slot, car in cars.items():
            if slot == local_slot or car.lap < 0 or car.on_pit_road:
                continue
            entry = cache.get(slot)
            known = roster.get(slot)
            if entry is None and known is None:
                continue

            gap, direction = wrapped_gap(car.track_fraction, local.track_fraction, lap_seconds)
            if gap > self._config.nearby_window_seconds:
                continue

            profile = entry.profile if entry is not None else None
            nearby.append(NearbyCar(
                car_slot=slot,
                car_number=(entry.car_number if entry and entry.car_number else None)
                or (known.car_number if known and known.car_number else str(slot)),
                gap_seconds=gap,
                direction=direction,
                label=cache.label_of(slot),
                risk_level=profile.risk_level if profile else None,
                avg_incidents=profile.avg_incidents_per_race if profile else None,
                top_pattern=profile.patterns[0] if profile and profile.patterns else None,
                session_incidents=live_incidents.get(slot, 0),
            ))

        nearby.sort(key=lambda c: c.gap_seconds)
        return nearby

    # ── Internals ────────────────────────────────────────────────────────

    def _in_zone(self, nearby: list[NearbyCar], level: RiskLevel) -> frozenset[int]:
        return frozenset(
            car.car_slot
            for car in nearby
            if car.risk_level == level and car.gap_seconds < self._config.danger_zone_seconds
        )

    @staticmethod
    def _advance_incidents(previous: TickState, reading: Optional[int]) -> tuple[Optional[int], int, int]:
        """(new baseline, new running total, delta this tick)."""
        baseline = previous.incident_baseline
        total = previous.local_incidents
        if reading is None:
            return baseline, total, 0
        if baseline is None or reading < baseline:
            if baseline is not None:
                logger.info("Incident counter went backwards (%d -> %d); re-baselining", baseline, reading)
            return reading, total, 0
        delta = reading - baseline
        return reading, total + delta, delta
