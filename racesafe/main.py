"""racesafe — pre-race risk profiling and live proximity alerting.

This is the application entry point.  It wires the historical data
client, the RiskProfileBuilder / GridAnalyzer, the Session Monitor, the
alert sinks and the HTTP / WebSocket endpoints together.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from racesafe.adapters.irsdk import create_feed_registry
from racesafe.alerts.dispatcher import AlertBroadcaster, FanOutDispatcher, LoggingAlertDispatcher
from racesafe.alerts.gate import AlertGate
from racesafe.api.analyze import create_analyze_router
from racesafe.api.session import create_session_router
from racesafe.api.ws_alerts import create_alerts_router
from racesafe.api.ws_feed import create_feed_router
from racesafe.config import settings
from racesafe.core.grid import BatchPolicy, GridAnalyzer
from racesafe.core.profile_builder import AnalysisWindows, RiskProfileBuilder
from racesafe.domain.field import UserProfile
from racesafe.history.client import IRacingDataClient
from racesafe.monitor.proximity import ProximityConfig, ProximityDetector
from racesafe.monitor.session_monitor import MonitorConfig, SessionMonitor

# ── Logging ──────────────────────────────────────────────────────────────────

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)

# ── Historical data ──────────────────────────────────────────────────────────

client = IRacingDataClient(
    email=settings.iracing_email,
    password=settings.iracing_password,
    client_id=settings.iracing_client_id,
    client_secret=settings.iracing_client_secret,
)

builder = RiskProfileBuilder(
    client,
    AnalysisWindows(
        history_days=settings.history_window_days,
        recent_days=settings.recent_window_days,
        deep_analysis_races=settings.deep_analysis_races,
        final_lap_window=settings.final_lap_window,
        sr_trend_races=settings.sr_trend_races,
        sr_trend_min_races=settings.sr_trend_min_races,
        sr_trend_threshold=settings.sr_trend_threshold,
    ),
)

analyzer = GridAnalyzer(
    builder,
    BatchPolicy(
        size=settings.analysis_batch_size,
        pause_seconds=settings.analysis_batch_pause_ms / 1000,
    ),
    extreme_threshold=settings.extreme_threshold,
)

# ── Alerts ───────────────────────────────────────────────────────────────────

broadcaster = AlertBroadcaster()
dispatcher = FanOutDispatcher([LoggingAlertDispatcher(), broadcaster])
gate = AlertGate.from_settings(settings)

# ── Session Monitor ──────────────────────────────────────────────────────────

monitor = SessionMonitor(
    analyzer,
    ProximityDetector(ProximityConfig(
        danger_zone_seconds=settings.danger_zone_seconds,
        nearby_window_seconds=settings.nearby_window_seconds,
        estimated_lap_seconds=settings.estimated_lap_seconds,
        warn_on_moderate=settings.warn_on_moderate,
    )),
    dispatcher,
    gate=gate,
    authenticator=client,
    config=MonitorConfig(
        local_participant_id=settings.local_cust_id or None,
        sr_floor=settings.user_sr_floor,
        token_refresh_seconds=settings.token_refresh_minutes * 60,
        reconnect_delay_seconds=settings.reconnect_delay_seconds,
        persistent=settings.persistent,
    ),
    report_sink=broadcaster.publish,
)

registry = create_feed_registry()


# ── App ──────────────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    task = asyncio.create_task(monitor.run(), name="session-monitor")
    try:
        yield
    finally:
        monitor.stop()
        await task
        await client.close()
        logger.info("Shutdown complete")


app = FastAPI(
    title=settings.app_name,
    description="Pre-race risk profiling and live proximity alerting",
    version="0.5.0",
    lifespan=lifespan,
)

# ── Routes ───────────────────────────────────────────────────────────────────

app.include_router(create_feed_router(monitor, registry))
app.include_router(create_alerts_router(broadcaster))
app.include_router(create_session_router(monitor))
app.include_router(create_analyze_router(
    builder,
    analyzer,
    user=UserProfile(
        participant_id=settings.local_cust_id or None,
        sr_floor=settings.user_sr_floor,
    ),
    extreme_threshold=settings.extreme_threshold,
))


# ── Health ───────────────────────────────────────────────────────────────────

@app.get("/health")
async def health() -> dict:
    return {
        "status": "ok",
        "phase": monitor.phase.value,
        "authenticated": client.is_authenticated,
        "credentials_configured": client.has_credentials,
        "alert_clients": broadcaster.client_count,
        "alert_switches": gate.to_dict(),
        "adapters": registry.stats,
        "total_adapted": registry.total_accepted,
        "total_rejected": registry.total_rejected,
    }
