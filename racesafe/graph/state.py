"""PreRaceState — the sole state object the pre-race graph nodes read and write.

Every node receives the full state and returns a partial update.  Domain
models travel as plain dicts (model_dump) so the state stays a simple
mapping; nodes re-validate what they read.
"""

from __future__ import annotations

from typing import Any, Optional, TypedDict


class PreRaceState(TypedDict, total=False):
    """LangGraph state for the pre-race field analysis.

    Fields:
        event_id: Subsession identifier, when the feed supplies one.
        track_name / series_name: Display names from the session info.
        roster: Serialised RosterEntry dicts from the live feed.
        user: Serialised UserProfile of the local participant.
        authenticated: Whether historical lookups are available.
        entries: Serialised GridEntry dicts; written by every node after
                 assemble_roster.
        snapshot: Serialised FieldSnapshot, written by aggregate_field.
    """

    event_id: Optional[int]
    track_name: str
    series_name: str
    roster: list[dict[str, Any]]
    user: dict[str, Any]
    authenticated: bool
    entries: list[dict[str, Any]]
    snapshot: dict[str, Any]
