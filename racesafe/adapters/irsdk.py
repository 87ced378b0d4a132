"""Adapters for the simulator SDK's session-info and telemetry dictionaries.

Raw session info (the SDK's YAML block, already parsed):
{
    "WeekendInfo": {"TrackDisplayName": "Spa", "SeriesID": 228, "SubSessionID": 701},
    "DriverInfo": {"Drivers": [
        {"CarIdx": 3, "UserID": 1001, "UserName": "A Driver",
         "IRating": 2150, "LicString": "A 3.41", "CarNumber": "12"}
    ]},
    "SessionInfo": {"Sessions": [
        {"SessionNum": 0, "SessionType": "Practice",
         "ResultsPositions": [{"CarIdx": 3, "Incidents": 2}]}
    ]},
    "SessionNum": 0
}

Raw telemetry (one sample of the per-car arrays):
{
    "CarIdxLap": [...], "CarIdxLapDistPct": [...],
    "CarIdxClassPosition": [...], "CarIdxOnPitRoad": [...],
    "PlayerCarMyIncidentCount": 4, "LapLastLapTime": 91.2,
    "SessionFlags": 0x4
}

Either may arrive wrapped as {"type": "session_info" | "telemetry", "data": {...}}.
Connection lifecycle arrives as {"type": "connect_attempt" | "connected" | "disconnected"}.
"""

from __future__ import annotations

from typing import Any, Optional

from racesafe.adapters.base import FeedAdapter
from racesafe.adapters.registry import FeedAdapterRegistry
from racesafe.domain.feed import (
    CarTelemetry,
    FeedEvent,
    FeedEventKind,
    RosterEntry,
    SessionEntry,
    SessionInfoUpdate,
    TelemetryUpdate,
)

# SessionFlags bits
CHECKERED_FLAG = 0x0001
WHITE_FLAG = 0x0002
GREEN_FLAG = 0x0004
YELLOW_FLAG = 0x0008
PACE_CAR_NAME = "Pace Car"

_LIFECYCLE = {
    FeedEventKind.CONNECT_ATTEMPT.value: FeedEvent.connect_attempt,
    FeedEventKind.CONNECTED.value: FeedEvent.connected,
    FeedEventKind.DISCONNECTED.value: FeedEvent.disconnected,
}


def _unwrap(raw: dict[str, Any], kind: FeedEventKind) -> Optional[dict[str, Any]]:
    """The SDK body of *raw*, whether enveloped or bare."""
    if raw.get("type") == kind.value:
        data = raw.get("data")
        return data if isinstance(data, dict) else None
    if "type" in raw:
        return None
    return raw


class LifecycleAdapter(FeedAdapter):
    """Connection lifecycle envelopes."""

    @property
    def source_name(self) -> str:
        return "lifecycle"

    def can_handle(self, raw: dict[str, Any]) -> bool:
        return raw.get("type") in _LIFECYCLE

    def adapt(self, raw: dict[str, Any]) -> FeedEvent:
        return _LIFECYCLE[raw["type"]]()


class SessionInfoAdapter(FeedAdapter):
    """Maps the SDK session-info block to a SessionInfoUpdate."""

    @property
    def source_name(self) -> str:
        return "irsdk_session_info"

    def can_handle(self, raw: dict[str, Any]) -> bool:
        if raw.get("type") == FeedEventKind.SESSION_INFO.value:
            return True
        return "type" not in raw and ("DriverInfo" in raw or "WeekendInfo" in raw)

    def adapt(self, raw: dict[str, Any]) -> FeedEvent:
        body = _unwrap(raw, FeedEventKind.SESSION_INFO)
        if body is None:
            raise ValueError("session_info envelope missing 'data' object")

        weekend = body.get("WeekendInfo") or {}
        drivers = (body.get("DriverInfo") or {}).get("Drivers")
        if drivers is None:
            raise ValueError("session_info payload missing 'DriverInfo.Drivers'")
        if not isinstance(drivers, list):
            raise ValueError("'DriverInfo.Drivers' must be a list")

        sessions_raw = (body.get("SessionInfo") or {}).get("Sessions") or []
        current = body.get("SessionNum")

        update = SessionInfoUpdate(
            event_id=weekend.get("SubSessionID") or None,
            track_name=weekend.get("TrackDisplayName") or weekend.get("TrackName") or "",
            series_name=_series_name(weekend),
            roster=[_roster_entry(d) for d in drivers if not _is_pace_car(d)],
            sessions=[
                SessionEntry(session_num=s.get("SessionNum", i), session_type=s.get("SessionType") or "")
                for i, s in enumerate(sessions_raw)
            ],
            current_session_num=current if isinstance(current, int) else None,
            live_incidents=_live_incidents(sessions_raw, current),
        )
        return FeedEvent.of_session_info(update)


class TelemetryAdapter(FeedAdapter):
    """Maps one SDK telemetry sample to a TelemetryUpdate."""

    @property
    def source_name(self) -> str:
        return "irsdk_telemetry"

    def can_handle(self, raw: dict[str, Any]) -> bool:
        if raw.get("type") == FeedEventKind.TELEMETRY.value:
            return True
        return "type" not in raw and "CarIdxLap" in raw

    def adapt(self, raw: dict[str, Any]) -> FeedEvent:
        body = _unwrap(raw, FeedEventKind.TELEMETRY)
        if body is None:
            raise ValueError("telemetry envelope missing 'data' object")

        laps = body.get("CarIdxLap")
        fractions = body.get("CarIdxLapDistPct")
        if not isinstance(laps, list) or not isinstance(fractions, list):
            raise ValueError("telemetry payload missing 'CarIdxLap' / 'CarIdxLapDistPct' arrays")

        positions = body.get("CarIdxClassPosition") or []
        pit = body.get("CarIdxOnPitRoad") or []

        cars = []
        for slot, (lap, fraction) in enumerate(zip(laps, fractions)):
            if lap is None or fraction is None:
                continue
            cars.append(CarTelemetry(
                car_slot=slot,
                lap=int(lap),
                track_fraction=float(fraction),
                class_position=int(positions[slot]) if slot < len(positions) and positions[slot] else 0,
                on_pit_road=bool(pit[slot]) if slot < len(pit) else False,
            ))

        flags = int(body.get("SessionFlags") or 0)
        last_lap = body.get("LapLastLapTime")

        update = TelemetryUpdate(
            cars=cars,
            local_incident_count=body.get("PlayerCarMyIncidentCount"),
            local_last_lap_time=float(last_lap) if last_lap is not None else None,
            event_ended=bool(flags & CHECKERED_FLAG),
        )
        return FeedEvent.of_telemetry(update)


def create_feed_registry() -> FeedAdapterRegistry:
    """Registry with every simulator adapter, lifecycle first."""
    registry = FeedAdapterRegistry()
    registry.register(LifecycleAdapter())
    registry.register(SessionInfoAdapter())
    registry.register(TelemetryAdapter())
    return registry


# ── Field mapping helpers ────────────────────────────────────────────────────

def _is_pace_car(raw: dict[str, Any]) -> bool:
    return not raw.get("UserName") or raw.get("UserName") == PACE_CAR_NAME or bool(raw.get("CarIsPaceCar"))


def _roster_entry(raw: dict[str, Any]) -> RosterEntry:
    if raw.get("CarIdx") is None:
        raise ValueError(f"driver entry missing 'CarIdx': {raw.get('UserName')!r}")
    if raw.get("UserID") is None:
        raise ValueError(f"driver entry missing 'UserID' for car slot {raw['CarIdx']}")
    return RosterEntry(
        car_slot=raw["CarIdx"],
        participant_id=raw["UserID"],
        display_name=raw["UserName"],
        irating=raw.get("IRating") or 0,
        license_string=raw.get("LicString") or "",
        car_number=str(raw.get("CarNumber") or raw["CarIdx"]),
    )


def _series_name(weekend: dict[str, Any]) -> str:
    if weekend.get("SeriesName"):
        return weekend["SeriesName"]
    if weekend.get("SeriesID"):
        return f"Series {weekend['SeriesID']}"
    return ""


def _live_incidents(sessions: list[dict[str, Any]], current: Any) -> dict[int, int]:
    """car slot → incidents, from the current session's results when known."""
    if isinstance(current, int):
        sessions = [s for s in sessions if s.get("SessionNum") == current] or sessions
    counts: dict[int, int] = {}
    for session in sessions:
        for row in session.get("ResultsPositions") or []:
            slot = row.get("CarIdx")
            if slot is None:
                continue
            counts[int(slot)] = int(row.get("Incidents") or 0)
    return counts
