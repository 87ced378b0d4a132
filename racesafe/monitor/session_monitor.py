"""SessionMonitor — the phase state machine driven by the live feed.

    WAITING ──connect_attempt──▶ CONNECTING ──connected──▶ PRE_RACE
    PRE_RACE ──roster + auth resolved──▶ (pre-race graph, once) ──▶ RACING
    RACING ──event_ended──▶ POST_RACE
    any ──disconnected──▶ WAITING  (context reset, reconnect after a delay)

Every feed message goes through one asyncio.Queue and is processed to
completion before the next is taken, so a telemetry tick never overlaps
with another tick or with the pre-race analysis.  Ticks queued behind a newer
tick are dropped unprocessed; only the latest car positions matter.

Authentication failure is not fatal: the pre-race graph routes to
mark_all_unknown and the monitor still proceeds to RACING with every
participant labelled UNKNOWN.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Optional

from racesafe.alerts.dispatcher import AlertDispatcher
from racesafe.alerts.gate import AlertGate
from racesafe.core.grid import GridAnalyzer
from racesafe.domain.enums import SessionPhase
from racesafe.domain.feed import FeedEvent, FeedEventKind, SessionInfoUpdate, TelemetryUpdate
from racesafe.domain.field import FieldSnapshot, UserProfile
from racesafe.errors import AnalysisCancelled, AuthError
from racesafe.graph.builder import build_pre_race_graph
from racesafe.graph.runner import run_pre_race
from racesafe.history.base import Authenticator
from racesafe.monitor.context import SessionContext
from racesafe.monitor.proximity import ProximityDetector
from racesafe.monitor.timers import ScheduledTask
from racesafe.report.formatter import format_field_report, post_race_summary

logger = logging.getLogger(__name__)
status_log = logging.getLogger("racesafe.status")

ReportSink = Callable[[str, Any], Awaitable[None]]


@dataclass(frozen=True)
class MonitorConfig:
    local_participant_id: Optional[int] = None
    sr_floor: float = 2.0
    token_refresh_seconds: float = 600.0
    reconnect_delay_seconds: float = 5.0
    persistent: bool = True


class SessionMonitor:
    """Owns the SessionContext and the only code path that mutates it."""

    def __init__(
        self,
        analyzer: GridAnalyzer,
        detector: ProximityDetector,
        dispatcher: AlertDispatcher,
        gate: AlertGate | None = None,
        authenticator: Authenticator | None = None,
        config: MonitorConfig | None = None,
        report_sink: ReportSink | None = None,
    ) -> None:
        self._detector = detector
        self._dispatcher = dispatcher
        self._gate = gate or AlertGate()
        self._auth = authenticator
        self._config = config or MonitorConfig()
        self._report_sink = report_sink

        self._ctx = SessionContext()
        self._queue: asyncio.Queue[FeedEvent] = asyncio.Queue()
        self._queued_ticks = 0
        self._superseded_ticks = 0
        self._stop = asyncio.Event()
        self._graph = build_pre_race_graph(analyzer, stop=self._stop)
        self._reconnect_timer: Optional[ScheduledTask] = None

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def phase(self) -> SessionPhase:
        return self._ctx.phase

    @property
    def context(self) -> SessionContext:
        return self._ctx

    @property
    def snapshot(self) -> Optional[FieldSnapshot]:
        return self._ctx.snapshot

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    def status(self) -> dict[str, Any]:
        summary = self._ctx.summary()
        summary["queued"] = self._queue.qsize()
        summary["superseded_ticks"] = self._superseded_ticks
        return summary

    # ── Ingress ──────────────────────────────────────────────────────────

    def submit(self, event: FeedEvent) -> None:
        if event.kind == FeedEventKind.TELEMETRY:
            self._queued_ticks += 1
        self._queue.put_nowait(event)

    # ── Loop ─────────────────────────────────────────────────────────────

    async def run(self) -> None:
        """Process queued events one at a time until stop() is called."""
        logger.info("Session monitor started (phase=%s)", self._ctx.phase.value)
        try:
            while not self._stop.is_set():
                event = await self._next_event()
                if event is None:
                    break
                if self._is_superseded(event):
                    continue
                try:
                    await self.handle(event)
                except AnalysisCancelled:
                    logger.info("Pre-race analysis cancelled; monitor stopping")
                    break
                except Exception:
                    logger.exception("Failed to process %s event", event.kind.value)
        finally:
            await self.shutdown()

    def stop(self) -> None:
        """Operator stop.  In-flight analysis batches finish first."""
        logger.info("Stop requested")
        self._stop.set()

    async def shutdown(self) -> None:
        if self._ctx.refresh_timer is not None:
            await self._ctx.refresh_timer.stop()
            self._ctx.refresh_timer = None
        if self._reconnect_timer is not None:
            await self._reconnect_timer.stop()
            self._reconnect_timer = None
        logger.info("Session monitor stopped")

    def _is_superseded(self, event: FeedEvent) -> bool:
        if event.kind != FeedEventKind.TELEMETRY:
            return False
        self._queued_ticks -= 1
        if self._queued_ticks > 0:
            self._superseded_ticks += 1
            logger.debug("Dropping stale tick (%d newer queued)", self._queued_ticks)
            return True
        return False

    async def _next_event(self) -> Optional[FeedEvent]:
        get_task = asyncio.ensure_future(self._queue.get())
        stop_task = asyncio.ensure_future(self._stop.wait())
        done, pending = await asyncio.wait({get_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        if get_task in done:
            return get_task.result()
        return None

    # ── Transition function ──────────────────────────────────────────────

    async def handle(self, event: FeedEvent) -> None:
        """Apply one feed event to the context, to completion."""
        if event.kind == FeedEventKind.CONNECT_ATTEMPT:
            self._on_connect_attempt()
        elif event.kind == FeedEventKind.CONNECTED:
            await self._on_connected()
        elif event.kind == FeedEventKind.SESSION_INFO:
            await self._on_session_info(event.session_info)
        elif event.kind == FeedEventKind.TELEMETRY:
            await self._on_telemetry(event.telemetry)
        elif event.kind == FeedEventKind.DISCONNECTED:
            self._on_disconnected()

    def _transition(self, target: SessionPhase) -> None:
        if self._ctx.phase != target:
            logger.info("Phase %s -> %s", self._ctx.phase.value, target.value)
            self._ctx.phase = target

    def _on_connect_attempt(self) -> None:
        if self._ctx.phase == SessionPhase.WAITING:
            self._transition(SessionPhase.CONNECTING)

    async def _on_connected(self) -> None:
        if self._ctx.phase not in (SessionPhase.WAITING, SessionPhase.CONNECTING):
            logger.debug("Ignoring connected event in phase %s", self._ctx.phase.value)
            return
        if self._ctx.phase == SessionPhase.WAITING:
            self._transition(SessionPhase.CONNECTING)
        self._transition(SessionPhase.PRE_RACE)
        await self._ensure_authenticated()

    async def _on_session_info(self, update: SessionInfoUpdate) -> None:
        if self._ctx.phase in (SessionPhase.WAITING, SessionPhase.CONNECTING):
            logger.debug("Session info before connection established; ignored")
            return

        self._ctx.apply_session_info(update, self._config.local_participant_id)

        if (
            self._ctx.phase == SessionPhase.PRE_RACE
            and self._ctx.participants
            and self._ctx.auth_ready
            and not self._ctx.analysis_complete
        ):
            await self._run_pre_race()

    async def _on_telemetry(self, update: TelemetryUpdate) -> None:
        if self._ctx.phase != SessionPhase.RACING:
            return

        if update.event_ended:
            self._transition(SessionPhase.POST_RACE)
            summary = post_race_summary(self._ctx.local_incidents)
            logger.info("%s", summary)
            await self._publish("post_race", {"incidents": self._ctx.local_incidents, "summary": summary})
            return

        result = self._detector.evaluate(
            self._ctx.tick_state(),
            update,
            self._ctx.profiles,
            self._ctx.participants,
            self._ctx.live_incidents,
            self._ctx.session_type,
        )
        previous_status = self._ctx.last_status
        self._ctx.apply_tick(result)

        if result.status_line is not None and result.status_line != previous_status:
            status_log.info(result.status_line)

        for alert in result.alerts:
            if not self._gate.allows(alert):
                logger.debug("Alert %s suppressed for %s session", alert.kind.value, alert.session_type.value)
                continue
            await self._dispatcher.dispatch(alert)

    def _on_disconnected(self) -> None:
        logger.info("Simulator disconnected; resetting session context")
        self._ctx.reset()
        if self._config.persistent and not self._stop.is_set():
            self._schedule_reconnect()

    # ── Pre-race ─────────────────────────────────────────────────────────

    async def _ensure_authenticated(self) -> None:
        auth = self._auth
        if auth is None:
            self._ctx.authenticated = False
        elif auth.is_authenticated:
            self._ctx.authenticated = True
        else:
            try:
                await auth.authenticate()
                self._ctx.authenticated = True
            except AuthError as exc:
                logger.warning("Authentication failed (%s); continuing without risk profiles", exc)
                self._ctx.authenticated = False

        self._ctx.auth_ready = True
        if self._ctx.authenticated and auth is not None:
            self._start_refresh_timer(auth)

    def _start_refresh_timer(self, auth: Authenticator) -> None:
        if self._ctx.refresh_timer is not None and self._ctx.refresh_timer.is_running:
            return
        timer = ScheduledTask("token-refresh", auth.refresh, self._config.token_refresh_seconds)
        timer.start()
        self._ctx.refresh_timer = timer

    async def _run_pre_race(self) -> None:
        ctx = self._ctx
        ctx.analysis_complete = True

        local = ctx.local_participant
        user = UserProfile(
            participant_id=self._config.local_participant_id or None,
            safety_rating=local.safety_rating if local else None,
            sr_floor=self._config.sr_floor,
            irating=local.irating if local else 0,
            starting_position=local.grid_position if local else None,
        )

        snapshot = await run_pre_race(
            self._graph,
            ctx.participants.values(),
            user,
            authenticated=ctx.authenticated,
            event_id=ctx.event_id,
            track_name=ctx.track_name,
            series_name=ctx.series_name,
        )

        ctx.profiles.put_all(e for e in snapshot.grid if e.car_slot is not None)
        ctx.snapshot = snapshot

        report = format_field_report(snapshot)
        logger.info("%s session analysis at %s\n%s", ctx.session_type.value.upper(), ctx.track_name, report)
        await self._publish("field_snapshot", snapshot.model_dump(mode="json"))

        self._transition(SessionPhase.RACING)

    # ── Reconnect ────────────────────────────────────────────────────────

    def _schedule_reconnect(self) -> None:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()

        async def reconnect() -> None:
            if not self._stop.is_set():
                self.submit(FeedEvent.connect_attempt())

        self._reconnect_timer = ScheduledTask(
            "reconnect", reconnect, self._config.reconnect_delay_seconds, repeat=False
        )
        self._reconnect_timer.start()
        logger.info("Reconnecting in %.1fs", self._config.reconnect_delay_seconds)

    async def _publish(self, message_type: str, data: Any) -> None:
        if self._report_sink is None:
            return
        try:
            await self._report_sink(message_type, data)
        except Exception as exc:
            logger.error("Report sink failed for %s: %s", message_type, exc, exc_info=True)
