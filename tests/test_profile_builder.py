"""Tests for RiskProfileBuilder against an in-memory history."""

from __future__ import annotations

import pytest

from racesafe.core.profile_builder import AnalysisWindows, RiskProfileBuilder
from racesafe.domain.enums import RiskLevel, SafetyRatingTrend
from racesafe.domain.profile import IncidentTiming, IncidentTypeBreakdown
from racesafe.domain.records import LicenseEntry, ParticipantIdentity
from racesafe.errors import AuthError, NoHistoryError, TransientFetchError

from tests.fakes import FakeHistory, laps, race

PID = 4242


def _aggressive_history() -> FakeHistory:
    """Ten races averaging 8.5x, half of the lap-level points in laps 1-2."""
    races = [race(100 + i, 8 if i % 2 else 9, days_ago=i + 1) for i in range(10)]
    series = {(r.event_id, PID): laps(0, 2, 2, 2, 4, 4, 4, 4, 4, 4) for r in races}
    identity = ParticipantIdentity(
        participant_id=PID,
        display_name="Sam Sender",
        licenses=[
            LicenseEntry(category_id=1, category="oval", license_class="Class D", safety_rating=1.2, irating=900),
            LicenseEntry(category_id=5, category="sports_car", license_class="Class B", safety_rating=2.61, irating=1750),
        ],
    )
    return FakeHistory(races={PID: races}, lap_series=series, identities={PID: identity})


class TestBuild:
    @pytest.mark.asyncio
    async def test_aggressive_starter_is_high_risk(self):
        profile = await RiskProfileBuilder(_aggressive_history()).build(PID)

        assert profile.avg_incidents_per_race == 8.5
        assert profile.race_count == 10
        assert profile.incident_timing.lap1_2 == pytest.approx(0.5)
        assert profile.risk_level == RiskLevel.HIGH
        assert profile.risk_score >= 7
        assert any("aggressive start" in p.lower() for p in profile.patterns)

    @pytest.mark.asyncio
    async def test_identity_uses_primary_license(self):
        profile = await RiskProfileBuilder(_aggressive_history()).build(PID)
        assert profile.display_name == "Sam Sender"
        assert profile.irating == 1750
        assert profile.license_class == "Class B"
        assert profile.safety_rating == 2.61

    @pytest.mark.asyncio
    async def test_recent_window_and_last_race(self):
        races = [race(1, 2, days_ago=1), race(2, 6, days_ago=3), race(3, 10, days_ago=20)]
        history = FakeHistory(races={PID: races})
        profile = await RiskProfileBuilder(history).build(PID)

        assert profile.recent_race_count == 2
        assert profile.recent_avg_incidents == 4.0
        assert profile.last_race_incidents == 2
        assert profile.avg_incidents_per_race == 6.0

    @pytest.mark.asyncio
    async def test_all_lap_fetches_failing_is_not_fatal(self):
        history = _aggressive_history()
        history.failing_laps = True
        profile = await RiskProfileBuilder(history).build(PID)

        assert profile.incident_timing == IncidentTiming.uniform()
        assert profile.incident_types == IncidentTypeBreakdown()
        assert profile.avg_incidents_per_race == 8.5

    @pytest.mark.asyncio
    async def test_deep_analysis_limited_to_sample(self):
        history = _aggressive_history()
        await RiskProfileBuilder(history, AnalysisWindows(deep_analysis_races=3)).build(PID)
        assert sum(1 for call, _ in history.calls if call == "laps") == 3

    @pytest.mark.asyncio
    async def test_deep_races_override(self):
        history = _aggressive_history()
        await RiskProfileBuilder(history).build(PID, deep_races=1)
        assert sum(1 for call, _ in history.calls if call == "laps") == 1

    @pytest.mark.asyncio
    async def test_unknown_identity_falls_back(self):
        history = FakeHistory(races={PID: [race(1, 0)]})
        profile = await RiskProfileBuilder(history).build(PID)
        assert profile.display_name == f"Driver {PID}"
        assert profile.license_class == "Unknown"
        assert profile.sr_trend == SafetyRatingTrend.STABLE


class TestHistoryWindow:
    @pytest.mark.asyncio
    async def test_no_races_raises_no_history(self):
        with pytest.raises(NoHistoryError) as excinfo:
            await RiskProfileBuilder(FakeHistory()).build(PID)
        assert excinfo.value.participant_id == PID

    @pytest.mark.asyncio
    async def test_races_outside_window_are_ignored_by_search(self):
        history = FakeHistory(races={PID: [race(1, 4, days_ago=45)]})
        history.failing_recent = {PID}
        with pytest.raises(NoHistoryError):
            await RiskProfileBuilder(history).build(PID)

    @pytest.mark.asyncio
    async def test_search_failure_falls_back_to_recent(self):
        history = FakeHistory(races={PID: [race(1, 3)]})
        history.failing_search = {PID}
        profile = await RiskProfileBuilder(history).build(PID)
        assert profile.race_count == 1
        assert ("recent", PID) in history.calls

    @pytest.mark.asyncio
    async def test_both_lookups_failing_is_transient(self):
        history = FakeHistory(races={PID: [race(1, 3)]})
        history.failing_search = {PID}
        history.failing_recent = {PID}
        with pytest.raises(TransientFetchError):
            await RiskProfileBuilder(history).build(PID)

    @pytest.mark.asyncio
    async def test_auth_error_propagates(self):
        history = FakeHistory(races={PID: [race(1, 3)]})
        history.auth_failing = {PID}
        with pytest.raises(AuthError):
            await RiskProfileBuilder(history).build(PID)

    @pytest.mark.asyncio
    async def test_races_sorted_most_recent_first(self):
        history = FakeHistory(races={PID: [race(1, 9, days_ago=10), race(2, 1, days_ago=2)]})
        profile = await RiskProfileBuilder(history).build(PID)
        assert profile.last_race_incidents == 1
