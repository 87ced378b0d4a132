"""Graph runner — clean interface for invoking the pre-race graph.

Usage:
    graph = build_pre_race_graph(analyzer, stop)
    snapshot = await run_pre_race(graph, roster, user, authenticated=True)

Seeds the initial state, invokes LangGraph and returns the validated
FieldSnapshot.  No side effects beyond the historical lookups.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any, Optional

from racesafe.domain.feed import RosterEntry
from racesafe.domain.field import FieldSnapshot, UserProfile
from racesafe.graph.state import PreRaceState

logger = logging.getLogger(__name__)


async def run_pre_race(
    graph: Any,
    roster: Iterable[RosterEntry],
    user: UserProfile,
    *,
    authenticated: bool,
    event_id: Optional[int] = None,
    track_name: str = "",
    series_name: str = "",
) -> FieldSnapshot:
    """Invoke the compiled pre-race graph for one event.

    Raises:
        AnalysisCancelled: The stop signal was set during field analysis.
    """
    initial_state: PreRaceState = {
        "event_id": event_id,
        "track_name": track_name,
        "series_name": series_name,
        "roster": [r.model_dump() for r in roster],
        "user": user.model_dump(),
        "authenticated": authenticated,
        "entries": [],
    }

    logger.info(
        "Running pre-race analysis: %d participants at %s (authenticated=%s)",
        len(initial_state["roster"]),
        track_name or "unknown track",
        authenticated,
    )

    final_state = await graph.ainvoke(initial_state)
    snapshot = FieldSnapshot.model_validate(final_state["snapshot"])

    logger.info(
        "Pre-race analysis complete: overall=%.1f high=%d clean=%d analysed=%d recommendation=%s",
        snapshot.analysis.overall_risk_score,
        snapshot.analysis.high_risk_count,
        snapshot.analysis.clean_count,
        snapshot.analysis.analyzed_count,
        snapshot.analysis.recommendation.value,
    )
    return snapshot
