"""REST view of the live Session Monitor.

Paths:
    GET /api/session        — phase, session type, local incidents, status line
    GET /api/session/field  — the current event's FieldSnapshot (404 before analysis)
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException

from racesafe.monitor.session_monitor import SessionMonitor
from racesafe.report.formatter import format_field_report


def create_session_router(monitor: SessionMonitor) -> APIRouter:
    router = APIRouter(prefix="/api", tags=["session"])

    @router.get("/session")
    async def session_status() -> dict[str, Any]:
        return monitor.status()

    @router.get("/session/field")
    async def session_field() -> dict[str, Any]:
        snapshot = monitor.snapshot
        if snapshot is None:
            raise HTTPException(status_code=404, detail="No field analysis for the current event yet")
        return {
            "snapshot": snapshot.model_dump(mode="json"),
            "human_readable": format_field_report(snapshot),
        }

    return router
