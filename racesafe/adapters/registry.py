"""Feed adapter registry — selects the adapter for each raw feed payload.

Adapters are tried in registration order; the first whose can_handle()
returns True translates the payload.  Nothing matching, or a matched
adapter failing, is a MalformedFeedError: the caller drops the update.
"""

from __future__ import annotations

import logging
from typing import Any

from racesafe.adapters.base import FeedAdapter
from racesafe.domain.feed import FeedEvent
from racesafe.errors import MalformedFeedError

logger = logging.getLogger(__name__)


class AdapterStats:
    """Per-adapter ingestion counters."""

    __slots__ = ("adapter_name", "accepted_count", "rejected_count")

    def __init__(self, adapter_name: str) -> None:
        self.adapter_name = adapter_name
        self.accepted_count: int = 0
        self.rejected_count: int = 0

    def to_dict(self) -> dict:
        return {
            "adapter_name": self.adapter_name,
            "accepted_count": self.accepted_count,
            "rejected_count": self.rejected_count,
        }


class NoAdapterFoundError(MalformedFeedError):
    """No registered adapter recognises the payload."""


class AdaptationError(MalformedFeedError):
    """The matched adapter could not translate the payload."""

    def __init__(self, adapter_name: str, reason: str) -> None:
        self.adapter_name = adapter_name
        self.reason = reason
        super().__init__(f"Adapter '{adapter_name}' failed: {reason}")


class FeedAdapterRegistry:
    """Ordered adapters plus ingestion stats.

    Usage:
        registry = FeedAdapterRegistry()
        registry.register(LifecycleAdapter())
        registry.register(SessionInfoAdapter())
        registry.register(TelemetryAdapter())

        event = registry.adapt(raw_payload)
    """

    def __init__(self) -> None:
        self._adapters: list[FeedAdapter] = []
        self._stats: dict[str, AdapterStats] = {}

    def register(self, adapter: FeedAdapter) -> None:
        self._adapters.append(adapter)
        self._stats[adapter.source_name] = AdapterStats(adapter.source_name)
        logger.info("Registered feed adapter: %s", adapter.source_name)

    def adapt(self, raw: Any) -> FeedEvent:
        """Route a raw payload through the first matching adapter.

        Raises:
            NoAdapterFoundError: Not a dict, or no adapter matches.
            AdaptationError: The matched adapter rejected the payload.
        """
        if not isinstance(raw, dict):
            raise NoAdapterFoundError(f"feed payload must be an object, got {type(raw).__name__}")

        for adapter in self._adapters:
            if not adapter.can_handle(raw):
                continue
            stats = self._stats[adapter.source_name]
            try:
                event = adapter.adapt(raw)
            except (ValueError, TypeError, KeyError) as exc:
                stats.rejected_count += 1
                logger.warning("Feed adapter '%s' rejected payload: %s", adapter.source_name, exc)
                raise AdaptationError(adapter.source_name, str(exc)) from exc
            stats.accepted_count += 1
            logger.debug("Feed adapter '%s' accepted %s", adapter.source_name, event.kind.value)
            return event

        raise NoAdapterFoundError(f"No adapter can handle payload with keys: {sorted(raw.keys())}")

    @property
    def adapter_names(self) -> list[str]:
        return [a.source_name for a in self._adapters]

    @property
    def stats(self) -> list[dict]:
        return [s.to_dict() for s in self._stats.values()]

    @property
    def total_accepted(self) -> int:
        return sum(s.accepted_count for s in self._stats.values())

    @property
    def total_rejected(self) -> int:
        return sum(s.rejected_count for s in self._stats.values())
