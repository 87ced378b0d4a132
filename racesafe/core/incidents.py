"""Incident Pattern Estimator — when and how a participant picks up incidents.

Only cumulative incident points per lap are observable.  For each adjacent
lap pair the positive delta is attributed to a race window (opening laps,
mid-race, final laps) and decomposed into estimated severities.

The severity decomposition is a heuristic: a 4-point delta could be one
heavy contact or two spins.  The greedy heaviest-first policy is kept for
compatibility; its output is an estimate, not an incident classification.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from racesafe.domain.profile import IncidentTiming, IncidentTypeBreakdown
from racesafe.domain.records import LapIncidentSample

logger = logging.getLogger(__name__)

OPENING_LAPS = 2


def estimate_incident_types(lap_delta: int) -> IncidentTypeBreakdown:
    """Greedy decomposition of a lap's incident delta into 4x/2x/1x counts.

    Non-positive deltas contribute nothing.
    """
    if lap_delta <= 0:
        return IncidentTypeBreakdown()

    remaining = lap_delta
    contact = 0
    lost_control = 0

    while remaining >= 4:
        contact += 1
        remaining -= 4

    while remaining >= 2:
        lost_control += 1
        remaining -= 2

    return IncidentTypeBreakdown(
        contact_4x=contact,
        lost_control_2x=lost_control,
        off_track_1x=remaining,
    )


class IncidentPatternEstimator:
    """Accumulates incident timing and type estimates across races.

    Args:
        final_lap_window: How many laps at the end of a race count as the
            "final lap" window (1 = last lap only, 2 = last two laps).
    """

    __slots__ = (
        "_final_lap_window",
        "_opening_points",
        "_mid_points",
        "_final_points",
        "_types",
        "races_analyzed",
    )

    def __init__(self, final_lap_window: int = 2) -> None:
        if final_lap_window < 1:
            raise ValueError("final_lap_window must be at least 1")
        self._final_lap_window = final_lap_window
        self._opening_points = 0
        self._mid_points = 0
        self._final_points = 0
        self._types = IncidentTypeBreakdown()
        self.races_analyzed = 0

    # ── Accumulation ─────────────────────────────────────────────────────

    def add_race(self, laps: Sequence[LapIncidentSample]) -> None:
        """Fold one race's lap series into the running totals."""
        if not laps:
            return

        ordered = sorted(laps, key=lambda lap: lap.lap_number)
        total_laps = len(ordered)
        final_start = total_laps - (self._final_lap_window - 1)

        for previous, current in zip(ordered, ordered[1:]):
            delta = current.cumulative_incidents - previous.cumulative_incidents
            if delta <= 0:
                continue

            if current.lap_number <= OPENING_LAPS:
                self._opening_points += delta
            elif current.lap_number >= final_start:
                self._final_points += delta
            else:
                self._mid_points += delta

            self._types = self._types + estimate_incident_types(delta)

        self.races_analyzed += 1

    def add_races(self, races: Iterable[Sequence[LapIncidentSample]]) -> None:
        for laps in races:
            self.add_race(laps)

    # ── Results ──────────────────────────────────────────────────────────

    @property
    def total_points(self) -> int:
        return self._opening_points + self._mid_points + self._final_points

    def timing(self) -> IncidentTiming:
        """Normalised timing split; uniform when no incidents were observed."""
        total = self.total_points
        if total == 0:
            return IncidentTiming.uniform()

        lap1_2 = self._opening_points / total
        final_lap = self._final_points / total
        return IncidentTiming(
            lap1_2=lap1_2,
            mid_race=max(0.0, 1.0 - lap1_2 - final_lap),
            final_lap=final_lap,
        )

    def breakdown(self) -> IncidentTypeBreakdown:
        return self._types
