"""Abstract base for live-feed adapters.

Feed adapters normalise raw simulator payloads into the typed
SessionInfoUpdate / TelemetryUpdate models the Session Monitor consumes.

Rules:
    1. Adapters must NOT mutate the incoming payload dict.
    2. adapt() returns a fully valid FeedEvent or raises ValueError.
    3. No adapter talks to the Session Monitor directly.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from racesafe.domain.feed import FeedEvent


class FeedAdapter(ABC):
    """Base class for converting raw feed payloads into FeedEvents."""

    @abstractmethod
    def can_handle(self, raw: dict[str, Any]) -> bool:
        """Return True if this adapter knows how to translate *raw*.

        Must be a fast, non-destructive check (e.g. key presence).
        """
        ...

    @abstractmethod
    def adapt(self, raw: dict[str, Any]) -> FeedEvent:
        """Translate a raw payload dict into a validated FeedEvent.

        Raises:
            ValueError: If the payload cannot be normalised.
        """
        ...

    @property
    @abstractmethod
    def source_name(self) -> str:
        ...
