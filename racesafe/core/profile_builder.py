"""RiskProfileBuilder — turns a participant's race history into a RiskProfile.

Steps:
    1. Fetch every race in the trailing history window (date-ranged search),
       falling back to the recent-races endpoint when the search is empty.
    2. Average incidents over the whole window, not just the deep sample.
    3. Recent (7-day) average and last-race incidents.
    4. Deep-analyse the newest N races lap by lap for timing and types;
       races whose lap data cannot be fetched are skipped.
    5. Safety-rating trend, risk score, classification, patterns.

Only AuthError and NoHistoryError escape from build(); a TransientFetchError
escapes only when both race lookups failed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from racesafe.core.incidents import IncidentPatternEstimator
from racesafe.core.scoring import (
    calculate_risk_score,
    calculate_sr_trend,
    classify_risk,
    generate_recommendation,
    identify_patterns,
)
from racesafe.domain.profile import RiskProfile
from racesafe.domain.records import ParticipantIdentity, RaceRecord
from racesafe.errors import NoHistoryError, TransientFetchError
from racesafe.foundation.clock import days_before, utc_now
from racesafe.history.base import HistoricalRecordAccess

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnalysisWindows:
    """Lookback windows and sample sizes for profile building."""

    history_days: int = 30
    recent_days: int = 7
    deep_analysis_races: int = 10
    final_lap_window: int = 2
    sr_trend_races: int = 5
    sr_trend_min_races: int = 3
    sr_trend_threshold: float = 5.0


class RiskProfileBuilder:
    """Builds RiskProfiles from Historical Record Access.

    Stateless across calls: each build() fetches and derives everything
    afresh.  Safe to run concurrently for different participants.
    """

    def __init__(
        self,
        history: HistoricalRecordAccess,
        windows: AnalysisWindows | None = None,
    ) -> None:
        self._history = history
        self._windows = windows or AnalysisWindows()

    @property
    def windows(self) -> AnalysisWindows:
        return self._windows

    @property
    def history(self) -> HistoricalRecordAccess:
        return self._history

    # ── Public API ───────────────────────────────────────────────────────

    async def build(
        self,
        participant_id: int,
        deep_races: int | None = None,
    ) -> RiskProfile:
        """Build the risk profile for one participant.

        Raises:
            NoHistoryError: No races in the lookup window.
            AuthError: The data source rejected our credentials.
            TransientFetchError: Neither race lookup could be completed.
        """
        w = self._windows
        sample_size = deep_races if deep_races is not None else w.deep_analysis_races

        races = await self._fetch_window(participant_id)
        if not races:
            raise NoHistoryError(participant_id)

        identity = await self._fetch_identity(participant_id)

        now = utc_now()
        avg_incidents = sum(r.incidents for r in races) / len(races)

        recent_cutoff = days_before(w.recent_days, now=now)
        recent = [r for r in races if r.start_time >= recent_cutoff]
        recent_avg = sum(r.incidents for r in recent) / len(recent) if recent else 0.0

        last_race_incidents = races[0].incidents

        deep_sample = races[:sample_size]
        estimator = await self._estimate_patterns(participant_id, deep_sample)
        timing = estimator.timing()
        types = estimator.breakdown()

        sr_trend = calculate_sr_trend(
            deep_sample,
            sample_size=w.sr_trend_races,
            min_races=w.sr_trend_min_races,
            threshold=w.sr_trend_threshold,
        )

        risk_score = calculate_risk_score(avg_incidents, timing)
        risk_level = classify_risk(risk_score)
        patterns = identify_patterns(avg_incidents, timing, sr_trend, types)

        license_entry = identity.primary_license() if identity else None

        profile = RiskProfile(
            participant_id=participant_id,
            display_name=identity.display_name if identity else f"Driver {participant_id}",
            irating=license_entry.irating if license_entry else 0,
            license_class=(license_entry.license_class or "Unknown") if license_entry else "Unknown",
            safety_rating=license_entry.safety_rating if license_entry else 0.0,
            avg_incidents_per_race=round(avg_incidents, 1),
            race_count=len(races),
            recent_race_count=len(recent),
            recent_avg_incidents=round(recent_avg, 1),
            last_race_incidents=last_race_incidents,
            incident_timing=timing,
            incident_types=types,
            risk_score=risk_score,
            sr_trend=sr_trend,
            risk_level=risk_level,
            patterns=patterns,
            recommendation=generate_recommendation(risk_level, timing),
        )

        logger.info(
            "Profiled participant %d: %s score=%.1f races=%d deep=%d/%d",
            participant_id,
            risk_level.value,
            risk_score,
            len(races),
            estimator.races_analyzed,
            len(deep_sample),
        )
        return profile

    # ── Internals ────────────────────────────────────────────────────────

    async def _fetch_window(self, participant_id: int) -> list[RaceRecord]:
        """All races in the history window, most recent first."""
        start = days_before(self._windows.history_days, now=utc_now())
        races: list[RaceRecord] = []
        search_failed = False

        try:
            races = await self._history.search_records_by_date_range(participant_id, start)
        except TransientFetchError as exc:
            logger.warning("Date-ranged search failed for %d: %s", participant_id, exc)
            search_failed = True

        if not races:
            try:
                races = await self._history.fetch_recent_records(participant_id)
            except TransientFetchError:
                if search_failed:
                    raise
                logger.warning("Recent-races fallback failed for %d", participant_id)
                races = []

        return sorted(races, key=lambda r: r.start_time, reverse=True)

    async def _fetch_identity(self, participant_id: int) -> ParticipantIdentity | None:
        try:
            return await self._history.fetch_participant_identity(participant_id)
        except TransientFetchError as exc:
            logger.warning("Identity lookup failed for %d: %s", participant_id, exc)
            return None

    async def _estimate_patterns(
        self,
        participant_id: int,
        races: list[RaceRecord],
    ) -> IncidentPatternEstimator:
        estimator = IncidentPatternEstimator(final_lap_window=self._windows.final_lap_window)
        for race in races:
            try:
                laps = await self._history.fetch_lap_incident_series(race.event_id, participant_id)
            except TransientFetchError as exc:
                logger.debug(
                    "Skipping lap data for event %d / participant %d: %s",
                    race.event_id,
                    participant_id,
                    exc,
                )
                continue
            estimator.add_race(laps)
        return estimator
