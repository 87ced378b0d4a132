"""Tests for the per-event ProfileCache."""

from __future__ import annotations

import pytest

from racesafe.domain.enums import RiskLabel
from racesafe.domain.field import GridEntry
from racesafe.store.profile_cache import ProfileCache, SlotAlreadyAssigned


def _entry(slot: int | None, label: RiskLabel = RiskLabel.LOW) -> GridEntry:
    return GridEntry(position=1, participant_id=100 + (slot or 0), car_slot=slot, label=label)


class TestProfileCache:
    def test_put_and_read(self):
        cache = ProfileCache()
        cache.put(_entry(3, RiskLabel.HIGH))
        assert 3 in cache
        assert cache.get(3).participant_id == 103
        assert cache.label_of(3) == RiskLabel.HIGH
        assert len(cache) == 1

    def test_unknown_slot_reads_as_unknown(self):
        cache = ProfileCache()
        assert cache.get(9) is None
        assert cache.label_of(9) == RiskLabel.UNKNOWN

    def test_slot_is_write_once(self):
        cache = ProfileCache()
        cache.put(_entry(3))
        with pytest.raises(SlotAlreadyAssigned) as excinfo:
            cache.put(_entry(3, RiskLabel.HIGH))
        assert excinfo.value.car_slot == 3
        assert cache.label_of(3) == RiskLabel.LOW

    def test_entry_without_slot_rejected(self):
        with pytest.raises(ValueError):
            ProfileCache().put(_entry(None))

    def test_put_all_and_clear(self):
        cache = ProfileCache()
        assert cache.put_all(_entry(s) for s in (1, 2, 3)) == 3
        assert sorted(e.car_slot for e in cache) == [1, 2, 3]
        cache.clear()
        assert len(cache) == 0
        cache.put(_entry(1))
        assert len(cache) == 1
