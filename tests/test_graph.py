"""Tests for the LangGraph pre-race pipeline.

Tests roster assembly, routing on authentication, the analyze and skip
branches end to end, and cancellation propagating out of the graph.
"""

from __future__ import annotations

import asyncio

import pytest

from racesafe.core.grid import BatchPolicy, GridAnalyzer
from racesafe.core.profile_builder import RiskProfileBuilder
from racesafe.domain.enums import FieldRecommendation, RiskLabel
from racesafe.domain.feed import RosterEntry
from racesafe.domain.field import UserProfile
from racesafe.errors import AnalysisCancelled
from racesafe.graph.builder import build_pre_race_graph
from racesafe.graph.nodes import assemble_roster, mark_all_unknown, route_analysis
from racesafe.graph.runner import run_pre_race

from tests.fakes import FakeHistory, race


# ── Helpers ──────────────────────────────────────────────────────────────────

def _roster() -> list[RosterEntry]:
    return [
        RosterEntry(car_slot=5, participant_id=3, display_name="Cee", car_number="30", irating=1800),
        RosterEntry(car_slot=2, participant_id=1, display_name="Ay", car_number="4", license_string="C 3.20"),
        RosterEntry(car_slot=7, participant_id=2, display_name="Bee", car_number="A1"),
    ]


def _analyzer(history: FakeHistory) -> GridAnalyzer:
    return GridAnalyzer(RiskProfileBuilder(history), BatchPolicy(size=2, pause_seconds=0))


# ── Nodes ────────────────────────────────────────────────────────────────────

class TestNodes:
    def test_assemble_roster_orders_by_car_number(self):
        state = {
            "roster": [r.model_dump() for r in _roster()],
            "user": UserProfile(participant_id=1).model_dump(),
        }
        entries = assemble_roster(state)["entries"]

        assert [e["car_number"] for e in entries] == ["4", "30", "A1"]
        assert [e["position"] for e in entries] == [1, 2, 3]
        assert entries[0]["is_local"] is True
        assert entries[0]["label"] == RiskLabel.YOU
        assert entries[0]["license_class"] == "C"
        assert entries[0]["safety_rating"] == 3.2

    def test_grid_position_wins_when_known(self):
        roster = [RosterEntry(car_slot=1, participant_id=9, display_name="P", car_number="9", grid_position=12)]
        entries = assemble_roster({"roster": [r.model_dump() for r in roster], "user": {}})["entries"]
        assert entries[0]["position"] == 12

    def test_route(self):
        assert route_analysis({"authenticated": True}) == "analyze"
        assert route_analysis({"authenticated": False}) == "skip"
        assert route_analysis({}) == "skip"

    def test_mark_all_unknown_keeps_local(self):
        state = {
            "roster": [r.model_dump() for r in _roster()],
            "user": UserProfile(participant_id=1).model_dump(),
        }
        state["entries"] = assemble_roster(state)["entries"]
        labels = [e["label"] for e in mark_all_unknown(state)["entries"]]
        assert labels == [RiskLabel.YOU, RiskLabel.UNKNOWN, RiskLabel.UNKNOWN]


# ── End to end ───────────────────────────────────────────────────────────────

class TestPreRaceGraph:
    @pytest.mark.asyncio
    async def test_analyze_branch(self):
        history = FakeHistory(races={2: [race(1, 0)], 3: [race(2, 9)]})
        graph = build_pre_race_graph(_analyzer(history))
        snapshot = await run_pre_race(
            graph, _roster(), UserProfile(participant_id=1),
            authenticated=True, event_id=88, track_name="Imola", series_name="F4",
        )

        assert snapshot.event_id == 88
        assert snapshot.track_name == "Imola"
        by_slot = {e.car_slot: e for e in snapshot.grid}
        assert by_slot[2].label == RiskLabel.YOU
        assert by_slot[7].label == RiskLabel.LOW
        assert by_slot[5].label == RiskLabel.EXTREME
        assert snapshot.analysis.analyzed_count == 2
        assert snapshot.strength_of_field == 1800

    @pytest.mark.asyncio
    async def test_skip_branch_makes_no_lookups(self):
        history = FakeHistory(races={2: [race(1, 0)]})
        graph = build_pre_race_graph(_analyzer(history))
        snapshot = await run_pre_race(graph, _roster(), UserProfile(participant_id=1), authenticated=False)

        assert history.calls == []
        assert snapshot.analysis.analyzed_count == 0
        assert snapshot.analysis.overall_risk_score == 5.0
        assert snapshot.analysis.recommendation == FieldRecommendation.MODERATE

    @pytest.mark.asyncio
    async def test_stop_cancels_run(self):
        stop = asyncio.Event()
        stop.set()
        graph = build_pre_race_graph(_analyzer(FakeHistory()), stop=stop)
        with pytest.raises(AnalysisCancelled):
            await run_pre_race(graph, _roster(), UserProfile(), authenticated=True)
