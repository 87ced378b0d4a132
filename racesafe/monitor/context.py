"""SessionContext — everything the Session Monitor knows about the current event.

Owned exclusively by the SessionMonitor.  Mutated only through the
methods below (apply_session_info, apply_tick, reset), each called from
the monitor's single event-processing loop.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from racesafe.domain.enums import SessionPhase, SessionType
from racesafe.domain.feed import RosterEntry, SessionEntry, SessionInfoUpdate
from racesafe.domain.field import FieldSnapshot
from racesafe.monitor.proximity import TickResult, TickState
from racesafe.monitor.timers import ScheduledTask
from racesafe.store.profile_cache import ProfileCache

_SESSION_KEYWORDS: tuple[tuple[tuple[str, ...], SessionType], ...] = (
    (("practice", "open"), SessionType.PRACTICE),
    (("qualify", "lone"), SessionType.QUALIFY),
    (("race",), SessionType.RACE),
    (("warmup",), SessionType.WARMUP),
)


def classify_session_name(name: str) -> Optional[SessionType]:
    lowered = name.lower()
    for keywords, session_type in _SESSION_KEYWORDS:
        if any(k in lowered for k in keywords):
            return session_type
    return None


def classify_session_type(
    sessions: list[SessionEntry],
    current_session_num: Optional[int] = None,
    fallback: SessionType = SessionType.RACE,
) -> SessionType:
    """The current session's type, else the last classifiable session's."""
    if current_session_num is not None:
        for session in sessions:
            if session.session_num == current_session_num:
                found = classify_session_name(session.session_type)
                if found is not None:
                    return found
    result: Optional[SessionType] = None
    for session in sessions:
        found = classify_session_name(session.session_type)
        if found is not None:
            result = found
    return result or fallback


@dataclass
class SessionContext:
    phase: SessionPhase = SessionPhase.WAITING
    session_type: SessionType = SessionType.RACE

    event_id: Optional[int] = None
    track_name: str = ""
    series_name: str = ""

    participants: dict[int, RosterEntry] = field(default_factory=dict)
    profiles: ProfileCache = field(default_factory=ProfileCache)
    live_incidents: dict[int, int] = field(default_factory=dict)

    local_slot: Optional[int] = None
    local_incidents: int = 0
    incident_baseline: Optional[int] = None
    danger_zone: frozenset[int] = frozenset()
    warning_zone: frozenset[int] = frozenset()

    auth_ready: bool = False
    authenticated: bool = False
    analysis_complete: bool = False
    snapshot: Optional[FieldSnapshot] = None
    last_status: Optional[str] = None

    refresh_timer: Optional[ScheduledTask] = None

    # ── Transitions ──────────────────────────────────────────────────────

    def reset(self) -> None:
        """Back to WAITING.  The authentication handle lives outside and survives."""
        if self.refresh_timer is not None:
            self.refresh_timer.cancel()
        fresh = SessionContext()
        for name in self.__dataclass_fields__:
            setattr(self, name, getattr(fresh, name))

    def apply_session_info(self, update: SessionInfoUpdate, local_participant_id: Optional[int]) -> None:
        if update.event_id is not None:
            self.event_id = update.event_id
        if update.track_name:
            self.track_name = update.track_name
        if update.series_name:
            self.series_name = update.series_name

        if update.roster:
            self.participants = {entry.car_slot: entry for entry in update.roster}
            if local_participant_id:
                self.local_slot = next(
                    (e.car_slot for e in update.roster if e.participant_id == local_participant_id),
                    self.local_slot,
                )

        if update.live_incidents:
            self.live_incidents.update(update.live_incidents)

        if update.sessions:
            self.session_type = classify_session_type(
                update.sessions, update.current_session_num, fallback=self.session_type
            )

    def tick_state(self) -> TickState:
        return TickState(
            local_slot=self.local_slot,
            danger_zone=self.danger_zone,
            warning_zone=self.warning_zone,
            incident_baseline=self.incident_baseline,
            local_incidents=self.local_incidents,
        )

    def apply_tick(self, result: TickResult) -> None:
        state = result.state
        self.danger_zone = state.danger_zone
        self.warning_zone = state.warning_zone
        self.incident_baseline = state.incident_baseline
        self.local_incidents = state.local_incidents
        if result.status_line is not None:
            self.last_status = result.status_line

    @property
    def local_participant(self) -> Optional[RosterEntry]:
        return self.participants.get(self.local_slot) if self.local_slot is not None else None

    def summary(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "session_type": self.session_type.value,
            "event_id": self.event_id,
            "track_name": self.track_name,
            "series_name": self.series_name,
            "participants": len(self.participants),
            "profiles_cached": len(self.profiles),
            "local_slot": self.local_slot,
            "local_incidents": self.local_incidents,
            "danger_zone": sorted(self.danger_zone),
            "authenticated": self.authenticated,
            "analysis_complete": self.analysis_complete,
            "status": self.last_status,
            "field": self.snapshot.analysis.model_dump(mode="json") if self.snapshot else None,
        }
