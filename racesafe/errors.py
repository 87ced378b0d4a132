"""Error taxonomy for racesafe.

Every failure the engine or the monitor can observe maps onto one of these.
Participant-level failures are expected and recoverable; only the monitor
decides what a failure means for the current event.
"""

from __future__ import annotations


class RaceSafeError(Exception):
    """Base class for all racesafe errors."""


class AuthError(RaceSafeError):
    """Credentials were rejected or the token could not be refreshed.

    Fatal to the current event's deep analysis.  The monitor continues in a
    degraded mode with no risk profiles.
    """


class NoHistoryError(RaceSafeError):
    """A participant has no races in the lookup window."""

    def __init__(self, participant_id: int) -> None:
        self.participant_id = participant_id
        super().__init__(f"No recent races found for participant {participant_id}")


class TransientFetchError(RaceSafeError):
    """A historical-data call failed (network, 5xx, unexpected payload).

    Callers substitute a default/unknown value rather than aborting.
    """

    def __init__(self, detail: str, status: int | None = None) -> None:
        self.status = status
        self.detail = detail
        prefix = f"{status} " if status is not None else ""
        super().__init__(f"API request failed: {prefix}{detail}")


class MalformedFeedError(RaceSafeError):
    """A live feed payload is missing required fields.

    The update is dropped and the previous state is retained.
    """


class AnalysisCancelled(RaceSafeError):
    """A stop signal arrived while a field analysis was in progress.

    Raised only between batches, after in-flight analyses have completed.
    """
