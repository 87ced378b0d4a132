"""REST endpoints for on-demand risk analysis.

Paths:
    GET /api/driver/{cust_id}             — one participant's RiskProfile
    GET /api/event/{event_id}/analyze     — FieldSnapshot of a completed event

Error mapping:
    NoHistoryError      → 404
    AuthError           → 401
    TransientFetchError → 502
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Query

from racesafe.core.grid import GridAnalyzer
from racesafe.core.profile_builder import RiskProfileBuilder
from racesafe.core.scoring import display_label
from racesafe.domain.field import UserProfile
from racesafe.errors import AuthError, NoHistoryError, TransientFetchError
from racesafe.report.formatter import format_event_analysis

logger = logging.getLogger(__name__)


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, NoHistoryError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, AuthError):
        return HTTPException(status_code=401, detail=f"Historical data unavailable: {exc}")
    return HTTPException(status_code=502, detail=str(exc))


def create_analyze_router(
    builder: RiskProfileBuilder,
    analyzer: GridAnalyzer,
    user: Optional[UserProfile] = None,
    extreme_threshold: float = 8.0,
) -> APIRouter:
    """Factory that wires the analysis endpoints to the engine."""

    router = APIRouter(prefix="/api", tags=["analysis"])

    @router.get("/driver/{cust_id}")
    async def analyze_driver(
        cust_id: int,
        races: Optional[int] = Query(None, ge=1, le=50, description="Races to deep-analyse"),
    ) -> dict[str, Any]:
        try:
            profile = await builder.build(cust_id, deep_races=races)
        except (NoHistoryError, AuthError, TransientFetchError) as exc:
            logger.info("Driver %d analysis failed: %s", cust_id, exc)
            raise _http_error(exc) from exc

        return {
            "profile": profile.model_dump(mode="json"),
            "label": display_label(profile.risk_score, extreme_threshold).value,
        }

    @router.get("/event/{event_id}/analyze")
    async def analyze_event(
        event_id: int,
        sr: Optional[float] = Query(None, description="Your current safety rating"),
    ) -> dict[str, Any]:
        requester = user or UserProfile()
        if sr is not None:
            requester = requester.model_copy(update={"safety_rating": sr})

        try:
            snapshot = await analyzer.analyze_event(event_id, user=requester)
        except (AuthError, TransientFetchError) as exc:
            logger.info("Event %d analysis failed: %s", event_id, exc)
            raise _http_error(exc) from exc

        return {
            "snapshot": snapshot.model_dump(mode="json"),
            "human_readable": format_event_analysis(snapshot, requester),
        }

    return router
