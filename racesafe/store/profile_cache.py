"""Per-event cache of grid assessments keyed by car slot.

Design notes:
    - Write-once per slot per event.  A second write to the same slot is a
      programming error and raises SlotAlreadyAssigned.
    - Read-many: the proximity detector reads it every telemetry tick.
    - Cleared in full when the Session Monitor resets between events.
    - Owned by the SessionContext; only the monitor's transition logic
      writes to it, so no lock is needed.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator

from racesafe.domain.enums import RiskLabel
from racesafe.domain.field import GridEntry

logger = logging.getLogger(__name__)


class SlotAlreadyAssigned(Exception):
    """Raised when a car slot is written twice within one event."""

    def __init__(self, car_slot: int) -> None:
        self.car_slot = car_slot
        super().__init__(f"car slot {car_slot} already has an assessment this event")


class ProfileCache:
    """car slot → GridEntry (profile or UNKNOWN) for the current event."""

    def __init__(self) -> None:
        self._by_slot: dict[int, GridEntry] = {}

    # ── Writes ───────────────────────────────────────────────────────────

    def put(self, entry: GridEntry) -> None:
        if entry.car_slot is None:
            raise ValueError("only entries with a car slot can be cached")
        if entry.car_slot in self._by_slot:
            raise SlotAlreadyAssigned(entry.car_slot)
        self._by_slot[entry.car_slot] = entry

    def put_all(self, entries: Iterable[GridEntry]) -> int:
        count = 0
        for entry in entries:
            self.put(entry)
            count += 1
        logger.debug("Cached %d grid assessments", count)
        return count

    def clear(self) -> None:
        self._by_slot.clear()

    # ── Reads ────────────────────────────────────────────────────────────

    def get(self, car_slot: int) -> GridEntry | None:
        return self._by_slot.get(car_slot)

    def label_of(self, car_slot: int) -> RiskLabel:
        entry = self._by_slot.get(car_slot)
        return entry.label if entry is not None else RiskLabel.UNKNOWN

    def __contains__(self, car_slot: object) -> bool:
        return car_slot in self._by_slot

    def __iter__(self) -> Iterator[GridEntry]:
        return iter(list(self._by_slot.values()))

    def __len__(self) -> int:
        return len(self._by_slot)
