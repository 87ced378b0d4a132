"""Tests for ProximityDetector: gaps, edge-triggered danger, incident deltas."""

from __future__ import annotations

import pytest

from racesafe.domain.enums import AlertKind, Direction, RiskLabel, RiskLevel, SafetyRatingTrend, SessionType
from racesafe.domain.feed import CarTelemetry, RosterEntry, TelemetryUpdate
from racesafe.domain.field import GridEntry
from racesafe.domain.profile import IncidentTiming, IncidentTypeBreakdown, RiskProfile
from racesafe.monitor.proximity import ProximityConfig, ProximityDetector, TickState, wrapped_gap
from racesafe.store.profile_cache import ProfileCache

LOCAL = 0
LAP = 100.0


def _profile(level: RiskLevel, score: float) -> RiskProfile:
    return RiskProfile(
        participant_id=1,
        display_name="x",
        avg_incidents_per_race=score,
        race_count=5,
        incident_timing=IncidentTiming.uniform(),
        incident_types=IncidentTypeBreakdown(),
        risk_score=score,
        sr_trend=SafetyRatingTrend.STABLE,
        risk_level=level,
        patterns=["Aggressive start (T1 aggressor): 60% of incidents in lap 1-2"],
    )


def _setup() -> tuple[ProfileCache, dict[int, RosterEntry]]:
    cache = ProfileCache()
    cache.put(GridEntry(position=1, participant_id=10, car_slot=LOCAL, car_number="1",
                        is_local=True, label=RiskLabel.YOU))
    cache.put(GridEntry(position=2, participant_id=11, car_slot=1, car_number="11",
                        profile=_profile(RiskLevel.HIGH, 8.4), label=RiskLabel.EXTREME))
    cache.put(GridEntry(position=3, participant_id=12, car_slot=2, car_number="22",
                        profile=_profile(RiskLevel.MODERATE, 5.0), label=RiskLabel.MODERATE))
    cache.put(GridEntry(position=4, participant_id=13, car_slot=3, car_number="33"))
    roster = {
        slot: RosterEntry(car_slot=slot, participant_id=10 + slot, display_name=f"D{slot}", car_number=num)
        for slot, num in ((0, "1"), (1, "11"), (2, "22"), (3, "33"))
    }
    return cache, roster


def _frame(fractions: dict[int, float], incidents: int | None = None, pit: set[int] = frozenset(),
           lap: int = 3) -> TelemetryUpdate:
    return TelemetryUpdate(
        cars=[
            CarTelemetry(car_slot=slot, lap=lap, track_fraction=frac, class_position=slot + 1,
                         on_pit_road=slot in pit)
            for slot, frac in fractions.items()
        ],
        local_incident_count=incidents,
        local_last_lap_time=LAP,
    )


def _run(detector, frames, state=None):
    cache, roster = _setup()
    state = state or TickState(local_slot=LOCAL)
    results = []
    for frame in frames:
        result = detector.evaluate(state, frame, cache, roster, {1: 3}, SessionType.RACE)
        results.append(result)
        state = result.state
    return results


class TestGap:
    def test_wraps_across_start_finish(self):
        gap, direction = wrapped_gap(0.02, 0.98, 100.0)
        assert gap == pytest.approx(4.0)
        assert direction == Direction.AHEAD

        gap, direction = wrapped_gap(0.97, 0.01, 100.0)
        assert gap == pytest.approx(4.0)
        assert direction == Direction.BEHIND

    def test_lap_seconds_fallback(self):
        detector = ProximityDetector(ProximityConfig(estimated_lap_seconds=95.0))
        assert detector.lap_seconds(TelemetryUpdate(local_last_lap_time=-1.0)) == 95.0
        assert detector.lap_seconds(TelemetryUpdate(local_last_lap_time=88.0)) == 88.0


class TestNearby:
    def test_window_pit_and_ordering(self):
        cache, roster = _setup()
        frame = _frame({LOCAL: 0.50, 1: 0.51, 2: 0.47, 3: 0.60}, pit={3})
        nearby = ProximityDetector().find_nearby(frame, LOCAL, cache, roster, {1: 3})

        assert [c.car_slot for c in nearby] == [1, 2]
        assert nearby[0].direction == Direction.AHEAD
        assert nearby[0].gap_seconds == pytest.approx(1.0)
        assert nearby[0].session_incidents == 3
        assert nearby[1].direction == Direction.BEHIND
        assert nearby[1].label == RiskLabel.MODERATE

    def test_unanalysed_car_is_unknown(self):
        cache, roster = _setup()
        nearby = ProximityDetector().find_nearby(_frame({LOCAL: 0.5, 3: 0.52}), LOCAL, cache, roster, {})
        assert nearby[0].label == RiskLabel.UNKNOWN
        assert nearby[0].risk_level is None
        assert nearby[0].car_number == "33"


class TestDangerEdges:
    def test_fires_once_while_inside_and_again_on_reentry(self):
        frames = [
            _frame({LOCAL: 0.50, 1: 0.52}),   # 2.0s: outside
            _frame({LOCAL: 0.50, 1: 0.51}),   # 1.0s: enter
            _frame({LOCAL: 0.50, 1: 0.505}),  # 0.5s: still inside
            _frame({LOCAL: 0.50, 1: 0.52}),   # leave
            _frame({LOCAL: 0.50, 1: 0.51}),   # re-enter
        ]
        results = _run(ProximityDetector(), frames)
        kinds = [[a.kind for a in r.alerts] for r in results]
        assert kinds == [
            [],
            [AlertKind.DANGER],
            [],
            [AlertKind.CLEAR],
            [AlertKind.DANGER],
        ]
        danger = results[1].alerts[0]
        assert danger.car_number == "11"
        assert danger.detail.startswith("Aggressive start")
        assert "3x this race" in danger.message

    def test_exactly_threshold_is_outside(self):
        results = _run(ProximityDetector(), [_frame({LOCAL: 0.50, 1: 0.515})])
        assert results[0].alerts == []

    def test_moderate_warning_is_edge_triggered_and_optional(self):
        frames = [_frame({LOCAL: 0.50, 2: 0.49}), _frame({LOCAL: 0.50, 2: 0.49})]
        results = _run(ProximityDetector(), frames)
        assert [a.kind for a in results[0].alerts] == [AlertKind.WARNING]
        assert results[1].alerts == []

        quiet = _run(ProximityDetector(ProximityConfig(warn_on_moderate=False)), frames)
        assert quiet[0].alerts == []

    def test_local_off_track_keeps_zone(self):
        frames = [
            _frame({LOCAL: 0.50, 1: 0.51}),
            _frame({LOCAL: 0.50, 1: 0.51}, lap=-1),
            _frame({LOCAL: 0.50, 1: 0.51}),
        ]
        results = _run(ProximityDetector(), frames)
        assert results[1].status_line is None
        assert results[1].state.danger_zone == frozenset({1})
        assert results[2].alerts == []


class TestIncidents:
    def test_first_reading_is_baseline(self):
        results = _run(ProximityDetector(), [_frame({LOCAL: 0.5}, incidents=4)])
        assert results[0].alerts == []
        assert results[0].state.incident_baseline == 4
        assert results[0].state.local_incidents == 0

    def test_alert_once_per_increase(self):
        frames = [
            _frame({LOCAL: 0.5}, incidents=0),
            _frame({LOCAL: 0.5}, incidents=2),
            _frame({LOCAL: 0.5}, incidents=2),
            _frame({LOCAL: 0.5}, incidents=6),
        ]
        results = _run(ProximityDetector(), frames)
        messages = [[a.message for a in r.alerts] for r in results]
        assert messages == [
            [],
            ["+2x INCIDENT (Session total: 2x)"],
            [],
            ["+4x INCIDENT (Session total: 6x)"],
        ]
        assert results[-1].incident_delta == 4

    def test_counter_reset_rebaselines_silently(self):
        frames = [
            _frame({LOCAL: 0.5}, incidents=0),
            _frame({LOCAL: 0.5}, incidents=3),
            _frame({LOCAL: 0.5}, incidents=0),
            _frame({LOCAL: 0.5}, incidents=1),
        ]
        results = _run(ProximityDetector(), frames)
        assert results[2].alerts == []
        assert results[3].state.local_incidents == 4

    def test_missing_reading_keeps_state(self):
        results = _run(ProximityDetector(), [_frame({LOCAL: 0.5}, incidents=2), _frame({LOCAL: 0.5})])
        assert results[1].state.incident_baseline == 2


class TestStatus:
    def test_status_line_uses_roster_size(self):
        results = _run(ProximityDetector(), [_frame({LOCAL: 0.50, 1: 0.51}, incidents=0)])
        assert results[0].status_line.startswith("Lap 3 | P1/4 | 0x | ↑ #11 1.0s (3x) [EXTREME]")
        assert results[0].status_line.endswith("↓ Clear")
