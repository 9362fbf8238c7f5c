"""Weekday-keyed cache of bookable start times."""

from __future__ import annotations

import logging
from datetime import date

from .const import RESERVED_KEY_PREFIX, TIMESLOT_KEY_PREFIX
from .storage import KeyValueStore
from .util import portal_weekday

_LOGGER = logging.getLogger(__name__)


class SlotCache:
    """Start-time lists per (unit, weekday).

    Entries never expire; the portal's opening hours repeat weekly, so one
    fetch for any Tuesday answers every Tuesday until `clear` is called.
    """

    def __init__(self, storage: KeyValueStore) -> None:
        self._storage = storage

    @staticmethod
    def key(unit_id: str, weekday: int) -> str:
        return f"{TIMESLOT_KEY_PREFIX}{unit_id}_{weekday}"

    def get(self, unit_id: str, value: date) -> list[str] | None:
        cached = self._storage.get(self.key(unit_id, portal_weekday(value)))
        if not isinstance(cached, list) or not all(isinstance(item, str) for item in cached):
            return None
        return list(cached)

    def set(self, unit_id: str, value: date, slots: list[str]) -> None:
        self._storage.update({self.key(unit_id, portal_weekday(value)): list(slots)})

    def clear(self, unit_id: str | None = None) -> None:
        prefix = TIMESLOT_KEY_PREFIX if unit_id is None else f"{TIMESLOT_KEY_PREFIX}{unit_id}_"
        keys = [key for key in self._storage.keys() if key.startswith(prefix)]
        self._storage.remove(keys)
        _LOGGER.debug("Slot cache cleared %d entries", len(keys))


class ReservedCache:
    """Start times the portal has blocked for private use, per (unit, date)."""

    def __init__(self, storage: KeyValueStore) -> None:
        self._storage = storage

    @staticmethod
    def key(unit_id: str, value: date, time: str) -> str:
        return f"{RESERVED_KEY_PREFIX}{unit_id}_{value.isoformat()}_{time}"

    def contains(self, unit_id: str, value: date, time: str) -> bool:
        return self._storage.get(self.key(unit_id, value, time)) is True

    def add(self, unit_id: str, value: date, time: str) -> None:
        self._storage.update({self.key(unit_id, value, time): True})

    def clear(self, unit_id: str | None = None) -> None:
        prefix = RESERVED_KEY_PREFIX if unit_id is None else f"{RESERVED_KEY_PREFIX}{unit_id}_"
        keys = [key for key in self._storage.keys() if key.startswith(prefix)]
        self._storage.remove(keys)
        _LOGGER.debug("Reserved cache cleared %d entries", len(keys))
