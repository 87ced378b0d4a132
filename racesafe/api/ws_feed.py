"""WebSocket endpoint for live simulator feed ingestion.

Path: /ws/feed

Accepts raw SDK session-info / telemetry dicts (bare or enveloped) and
connection lifecycle envelopes, routes them through the
FeedAdapterRegistry and queues the typed FeedEvents on the Session
Monitor.  Malformed frames, including text that is not JSON, are answered
with an error and dropped.

Closing the socket is a transport disconnect: the monitor resets.
"""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from racesafe.adapters.registry import AdaptationError, FeedAdapterRegistry, NoAdapterFoundError
from racesafe.domain.feed import FeedEvent, FeedEventKind
from racesafe.monitor.session_monitor import SessionMonitor

logger = logging.getLogger(__name__)


def create_feed_router(monitor: SessionMonitor, registry: FeedAdapterRegistry) -> APIRouter:
    """Factory that wires the feed endpoint to monitor + registry."""

    router = APIRouter()

    @router.websocket("/ws/feed")
    async def ingest_feed(websocket: WebSocket) -> None:
        await websocket.accept()
        logger.info("Feed source connected")
        disconnected_sent = False

        try:
            while True:
                text = await websocket.receive_text()

                try:
                    raw = json.loads(text)
                except json.JSONDecodeError as exc:
                    logger.warning("Dropping non-JSON feed frame: %s", exc)
                    await websocket.send_json({
                        "status": "error",
                        "reason": "malformed_json",
                        "detail": str(exc),
                    })
                    continue

                # ── Route through adapter registry ───────────────────────
                try:
                    event = registry.adapt(raw)
                except NoAdapterFoundError as exc:
                    await websocket.send_json({
                        "status": "error",
                        "reason": "no_adapter",
                        "detail": str(exc),
                    })
                    continue
                except AdaptationError as exc:
                    await websocket.send_json({
                        "status": "error",
                        "reason": "adaptation_failed",
                        "adapter": exc.adapter_name,
                        "detail": exc.reason,
                    })
                    continue

                monitor.submit(event)
                disconnected_sent = event.kind == FeedEventKind.DISCONNECTED

                # Telemetry arrives at frame rate; only acknowledge the rest.
                if event.kind != FeedEventKind.TELEMETRY:
                    await websocket.send_json({"status": "accepted", "kind": event.kind.value})

        except WebSocketDisconnect:
            logger.info("Feed source disconnected")
        finally:
            if not disconnected_sent:
                monitor.submit(FeedEvent.disconnected())

    return router
