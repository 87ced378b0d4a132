"""Alert Dispatcher boundary and the sinks that implement it.

The Session Monitor hands every gated Alert to one dispatcher.  Rendering
(audio, console colour, UI) is the sink's concern, never the monitor's.

Sinks:
    LoggingAlertDispatcher  — writes alerts to the `racesafe.alerts` logger.
    AlertBroadcaster        — pushes alerts, status lines and field reports
                              to connected WebSocket clients.
    FanOutDispatcher        — forwards to several sinks; one failing sink
                              does not starve the others.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Iterable
from typing import Any, Protocol

from fastapi import WebSocket

from racesafe.domain.alerts import Alert
from racesafe.domain.enums import AlertKind

logger = logging.getLogger(__name__)
alert_log = logging.getLogger("racesafe.alerts")


class AlertDispatcher(Protocol):
    async def dispatch(self, alert: Alert) -> None:
        ...


def alert_payload(alert: Alert) -> dict[str, Any]:
    payload = alert.model_dump(mode="json")
    payload["category"] = alert.category.value
    return payload


class LoggingAlertDispatcher:
    """Danger alerts at WARNING, everything else at INFO."""

    async def dispatch(self, alert: Alert) -> None:
        level = logging.WARNING if alert.kind == AlertKind.DANGER else logging.INFO
        alert_log.log(level, "[%s] %s", alert.kind.value.upper(), alert.message)
        if alert.detail:
            alert_log.log(level, "   %s", alert.detail)


class FanOutDispatcher:
    def __init__(self, sinks: Iterable[AlertDispatcher]) -> None:
        self._sinks = list(sinks)

    async def dispatch(self, alert: Alert) -> None:
        for sink in self._sinks:
            try:
                await sink.dispatch(alert)
            except Exception as exc:
                logger.error("Alert sink %s failed: %s", type(sink).__name__, exc, exc_info=True)


class AlertBroadcaster:
    """Tracks connected alert clients and broadcasts to them."""

    def __init__(self) -> None:
        self._clients: set[WebSocket] = set()
        self._lock = asyncio.Lock()

    # ── Client management ────────────────────────────────────────────

    async def connect(self, ws: WebSocket) -> None:
        await ws.accept()
        async with self._lock:
            self._clients.add(ws)
        logger.info("Alert client connected (%d total)", len(self._clients))

    async def disconnect(self, ws: WebSocket) -> None:
        async with self._lock:
            self._clients.discard(ws)
        logger.info("Alert client disconnected (%d remaining)", len(self._clients))

    @property
    def client_count(self) -> int:
        return len(self._clients)

    # ── Publishing ───────────────────────────────────────────────────

    async def dispatch(self, alert: Alert) -> None:
        await self.publish("alert", alert_payload(alert))

    async def publish(self, message_type: str, data: Any) -> None:
        if not self._clients:
            return
        await self._broadcast({"type": message_type, "data": data})

    async def _broadcast(self, payload: dict[str, Any]) -> None:
        message = json.dumps(payload, default=str)
        dead: set[WebSocket] = set()

        async with self._lock:
            clients = set(self._clients)

        for ws in clients:
            try:
                await ws.send_text(message)
            except Exception:
                dead.add(ws)

        if dead:
            async with self._lock:
                self._clients -= dead
            logger.info("Removed %d dead alert client(s)", len(dead))
