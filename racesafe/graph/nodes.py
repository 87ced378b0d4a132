"""Pre-race graph nodes.

Each node:
    - Receives the full PreRaceState
    - Returns a partial dict update
    - Touches historical data only through the GridAnalyzer captured by
      its factory (analyze_field)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from racesafe.core.grid import GridAnalyzer, mark_unknown
from racesafe.domain.enums import RiskLabel
from racesafe.domain.feed import RosterEntry
from racesafe.domain.field import GridEntry, UserProfile
from racesafe.graph.state import PreRaceState

logger = logging.getLogger(__name__)


def _entries(state: PreRaceState) -> list[GridEntry]:
    return [GridEntry.model_validate(e) for e in state.get("entries", [])]


def _dump(entries: list[GridEntry]) -> list[dict]:
    return [e.model_dump() for e in entries]


def _user(state: PreRaceState) -> UserProfile:
    return UserProfile.model_validate(state.get("user") or {})


# ── 1. assemble_roster ──────────────────────────────────────────────────────

def assemble_roster(state: PreRaceState) -> dict:
    """Roster → GridEntries ordered by car number; the local participant flagged."""
    roster = [RosterEntry.model_validate(r) for r in state.get("roster", [])]
    roster.sort(key=lambda r: (r.car_number_sort_key, r.car_slot))
    local_id = _user(state).participant_id

    entries = []
    for index, driver in enumerate(roster):
        is_local = local_id is not None and driver.participant_id == local_id
        entries.append(GridEntry(
            position=driver.grid_position or index + 1,
            participant_id=driver.participant_id,
            display_name=driver.display_name,
            car_slot=driver.car_slot,
            car_number=driver.car_number,
            irating=driver.irating,
            license_class=driver.license_class,
            safety_rating=driver.safety_rating,
            label=RiskLabel.YOU if is_local else RiskLabel.UNKNOWN,
            is_local=is_local,
        ))

    logger.info("Assembled %d grid entries", len(entries))
    return {"entries": _dump(entries)}


# ── 2. route ────────────────────────────────────────────────────────────────

def route_analysis(state: PreRaceState) -> str:
    """'analyze' when historical lookups are available, else 'skip'."""
    if not state.get("authenticated", False):
        logger.warning("Historical data unavailable: field will be marked UNKNOWN")
        return "skip"
    return "analyze"


# ── 3a. analyze_field ───────────────────────────────────────────────────────

def make_analyze_field(analyzer: GridAnalyzer, stop: Optional[asyncio.Event] = None):
    """Node factory: batched profile lookups through the GridAnalyzer.

    AnalysisCancelled raised by the analyzer propagates out of the graph
    invocation; no snapshot is produced for a cancelled run.
    """

    async def analyze_field(state: PreRaceState) -> dict:
        entries = _entries(state)
        assessed = await analyzer.analyze_entries(entries, stop=stop)
        return {"entries": _dump(assessed)}

    return analyze_field


# ── 3b. mark_all_unknown ────────────────────────────────────────────────────

def mark_all_unknown(state: PreRaceState) -> dict:
    return {"entries": _dump([mark_unknown(e) for e in _entries(state)])}


# ── 4. aggregate_field ──────────────────────────────────────────────────────

def make_aggregate_field(analyzer: GridAnalyzer):
    def aggregate_field(state: PreRaceState) -> dict:
        snapshot = analyzer.build_snapshot(
            _entries(state),
            user=_user(state),
            event_id=state.get("event_id"),
            track_name=state.get("track_name", ""),
            series_name=state.get("series_name", ""),
        )
        return {"snapshot": snapshot.model_dump()}

    return aggregate_field
