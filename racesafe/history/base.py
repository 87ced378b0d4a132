"""Historical Record Access — the contract the engine depends on.

The engine never talks HTTP.  It depends on these protocols; swap
implementations (the live client, an in-memory fake) without touching
analysis logic.

Every fetch may raise TransientFetchError.  AuthError means the data
source cannot be used at all until re-authentication succeeds.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol

from racesafe.domain.records import (
    EventResults,
    LapIncidentSample,
    ParticipantIdentity,
    RaceRecord,
)


class HistoricalRecordAccess(Protocol):
    """Read-only access to per-participant race history."""

    async def fetch_recent_records(self, participant_id: int) -> list[RaceRecord]:
        """Most recent races (bounded count, most-recent-first)."""
        ...

    async def search_records_by_date_range(
        self,
        participant_id: int,
        start: datetime,
        end: Optional[datetime] = None,
    ) -> list[RaceRecord]:
        """All official races started within [start, end]."""
        ...

    async def fetch_lap_incident_series(
        self,
        event_id: int,
        participant_id: int,
    ) -> list[LapIncidentSample]:
        """Lap-by-lap cumulative incident counts for one race."""
        ...

    async def fetch_participant_identity(
        self,
        participant_id: int,
    ) -> Optional[ParticipantIdentity]:
        ...

    async def fetch_event_results(self, event_id: int) -> EventResults:
        ...


class Authenticator(Protocol):
    """Owner of the shared authentication handle."""

    @property
    def is_authenticated(self) -> bool:
        ...

    async def authenticate(self) -> None:
        """Obtain a session.  Raises AuthError on rejection."""
        ...

    async def refresh(self) -> bool:
        """Proactively refresh the token.  Returns False on failure."""
        ...
