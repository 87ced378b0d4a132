"""GridAnalyzer — risk posture of a whole field.

Runs the RiskProfileBuilder over every non-local participant in small
concurrent batches, then aggregates: mean risk score over the analysed
participants, HIGH and LOW counts, and a strategic recommendation.

Failure policy:
    - A participant whose analysis fails gets profile=None / UNKNOWN.
    - An AuthError marks the data source unusable; every participant not
      yet analysed is marked UNKNOWN without further calls.
    - A stop signal lets the in-flight batch finish, then raises
      AnalysisCancelled.  No partially analysed field is returned.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from racesafe.core.profile_builder import RiskProfileBuilder
from racesafe.core.scoring import DEFAULT_EXTREME_THRESHOLD, display_label
from racesafe.domain.enums import FieldRecommendation, RiskLabel, RiskLevel
from racesafe.domain.field import FieldAnalysis, FieldSnapshot, GridEntry, UserProfile
from racesafe.domain.records import EventResults
from racesafe.errors import AnalysisCancelled, AuthError, NoHistoryError, TransientFetchError

logger = logging.getLogger(__name__)

DEFAULT_OVERALL_RISK = 5.0
SR_BUFFER_AT_RISK = 0.2

BatchCallback = Callable[[int, int, list[GridEntry]], None]


@dataclass(frozen=True)
class BatchPolicy:
    """Concurrency limits for historical lookups."""

    size: int = 4
    pause_seconds: float = 0.1


# ── Aggregation (pure) ───────────────────────────────────────────────────────

def recommend_field_strategy(
    overall_risk: float,
    high_risk_count: int,
    user: UserProfile | None = None,
) -> FieldRecommendation:
    buffer = user.sr_buffer if user is not None else None
    sr_at_risk = buffer is not None and buffer < SR_BUFFER_AT_RISK

    if sr_at_risk and overall_risk >= 5:
        return FieldRecommendation.CONSERVATIVE
    if overall_risk >= 7 or high_risk_count >= 5:
        return FieldRecommendation.CONSERVATIVE
    if overall_risk >= 5 or high_risk_count >= 3:
        return FieldRecommendation.MODERATE
    return FieldRecommendation.AGGRESSIVE


def summarize_field(
    entries: Sequence[GridEntry],
    user: UserProfile | None = None,
) -> FieldAnalysis:
    analysed = [e.profile for e in entries if e.profile is not None and not e.is_local]
    high = sum(1 for p in analysed if p.risk_level == RiskLevel.HIGH)
    clean = sum(1 for p in analysed if p.risk_level == RiskLevel.LOW)

    if analysed:
        overall = round(sum(p.risk_score for p in analysed) / len(analysed), 1)
    else:
        overall = DEFAULT_OVERALL_RISK

    return FieldAnalysis(
        overall_risk_score=overall,
        high_risk_count=high,
        clean_count=clean,
        analyzed_count=len(analysed),
        recommendation=recommend_field_strategy(overall, high, user),
    )


def mark_unknown(entry: GridEntry) -> GridEntry:
    label = RiskLabel.YOU if entry.is_local else RiskLabel.UNKNOWN
    return entry.model_copy(update={"profile": None, "label": label})


# ── Analyzer ─────────────────────────────────────────────────────────────────

class GridAnalyzer:
    """Batched, failure-tolerant field analysis."""

    def __init__(
        self,
        builder: RiskProfileBuilder,
        batch_policy: BatchPolicy | None = None,
        extreme_threshold: float = DEFAULT_EXTREME_THRESHOLD,
    ) -> None:
        if batch_policy is not None and batch_policy.size < 1:
            raise ValueError("batch size must be at least 1")
        self._builder = builder
        self._batch = batch_policy or BatchPolicy()
        self._extreme_threshold = extreme_threshold

    # ── Public API ───────────────────────────────────────────────────────

    async def analyze_entries(
        self,
        entries: Sequence[GridEntry],
        stop: asyncio.Event | None = None,
        on_batch: BatchCallback | None = None,
    ) -> list[GridEntry]:
        """Assess every entry, preserving input order.

        The local participant is never profiled.  Each concurrent task
        returns its own entry; nothing shared is written during a batch.
        """
        results: list[GridEntry] = []
        auth_lost = False
        total_batches = (len(entries) + self._batch.size - 1) // self._batch.size

        for index in range(0, len(entries), self._batch.size):
            if stop is not None and stop.is_set():
                logger.info("Field analysis cancelled after %d entries", len(results))
                raise AnalysisCancelled("stop requested during field analysis")

            batch = entries[index:index + self._batch.size]
            batch_num = index // self._batch.size + 1

            if auth_lost:
                assessed = [mark_unknown(e) for e in batch]
            else:
                outcomes = await asyncio.gather(*(self._assess(e) for e in batch))
                assessed = [entry for entry, _ in outcomes]
                if any(auth_failed for _, auth_failed in outcomes):
                    auth_lost = True
                    logger.warning("Authentication lost: remaining participants marked UNKNOWN")

            results.extend(assessed)
            if on_batch is not None:
                on_batch(batch_num, total_batches, assessed)

            if index + self._batch.size < len(entries) and not auth_lost:
                await asyncio.sleep(self._batch.pause_seconds)

        return results

    def build_snapshot(
        self,
        entries: Sequence[GridEntry],
        user: UserProfile | None = None,
        event_id: int | None = None,
        track_name: str = "",
        series_name: str = "",
        strength_of_field: int | None = None,
    ) -> FieldSnapshot:
        if strength_of_field is None:
            strength_of_field = estimate_strength_of_field(entries)
        return FieldSnapshot(
            event_id=event_id,
            track_name=track_name,
            series_name=series_name,
            strength_of_field=strength_of_field,
            grid=list(entries),
            analysis=summarize_field(entries, user),
        )

    async def analyze_event(
        self,
        event_id: int,
        user: UserProfile | None = None,
        stop: asyncio.Event | None = None,
    ) -> FieldSnapshot:
        """Analyse the field of a completed event from its results."""
        results = await self._builder.history.fetch_event_results(event_id)
        entries = entries_from_results(results, user)
        logger.info("Analysing %d participants of event %d", len(entries), event_id)
        assessed = await self.analyze_entries(entries, stop=stop)
        return self.build_snapshot(
            assessed,
            user=user,
            event_id=results.event_id,
            track_name=results.track_name,
            series_name=results.series_name,
            strength_of_field=results.strength_of_field,
        )

    # ── Internals ────────────────────────────────────────────────────────

    async def _assess(self, entry: GridEntry) -> tuple[GridEntry, bool]:
        """Profile one entry.  Returns (entry, auth_failed)."""
        if entry.is_local:
            return mark_unknown(entry), False

        try:
            profile = await self._builder.build(entry.participant_id)
        except AuthError as exc:
            logger.warning("Auth failure analysing %d: %s", entry.participant_id, exc)
            return mark_unknown(entry), True
        except NoHistoryError:
            logger.info("P%d %s: no recent history", entry.position, entry.display_name)
            return mark_unknown(entry), False
        except TransientFetchError as exc:
            logger.warning("P%d %s: analysis failed: %s", entry.position, entry.display_name, exc)
            return mark_unknown(entry), False
        except Exception:
            logger.exception("P%d %s: unexpected analysis failure", entry.position, entry.display_name)
            return mark_unknown(entry), False

        label = display_label(profile.risk_score, self._extreme_threshold)
        update: dict = {"profile": profile, "label": label}
        if not entry.display_name:
            update["display_name"] = profile.display_name
        if not entry.irating:
            update["irating"] = profile.irating
        if entry.safety_rating is None and profile.safety_rating:
            update["safety_rating"] = profile.safety_rating
        return entry.model_copy(update=update), False


def estimate_strength_of_field(entries: Sequence[GridEntry]) -> int:
    """Mean iRating of entries that report one."""
    ratings = [e.irating for e in entries if e.irating > 0]
    if not ratings:
        return 0
    return round(sum(ratings) / len(ratings))


def entries_from_results(results: EventResults, user: UserProfile | None = None) -> list[GridEntry]:
    local_id = user.participant_id if user is not None else None
    entries: list[GridEntry] = []
    for index, result in enumerate(results.entries):
        position = result.finish_position or result.start_position or index + 1
        is_local = local_id is not None and result.participant_id == local_id
        entries.append(GridEntry(
            position=position,
            participant_id=result.participant_id,
            display_name=result.display_name or f"Driver {result.participant_id}",
            label=RiskLabel.YOU if is_local else RiskLabel.UNKNOWN,
            is_local=is_local,
        ))
    return sorted(entries, key=lambda e: e.position)
