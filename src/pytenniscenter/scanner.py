"""Concurrent availability scanning across a day's start times."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, date, datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .api import PortalApi
from .cache import ReservedCache, SlotCache
from .const import (
    DURATION_PROBE_DELAY,
    SCAN_BATCH_DELAY,
    SCAN_BATCH_SIZE,
    SCAN_DURATIONS,
    STATUS_AVAILABLE,
    STATUS_NO_COURTS,
    STATUS_RESERVED,
    SUGGESTION_DELAY,
)
from .exceptions import NetworkError, ProviderError, ValidationError
from .models import AvailabilityResult, Credentials, ScanEntry, TimeSlotQuery
from .util import (
    consolidate_ranges,
    filter_future_slots,
    get_valid_time_slots,
    hour_to_minutes,
    normalize_hour,
    validate_duration,
)

_LOGGER = logging.getLogger(__name__)
try:
    _LOCAL_TZ = ZoneInfo("Asia/Jerusalem")
except ZoneInfoNotFoundError:
    _LOCAL_TZ = UTC


def _local_now() -> datetime:
    return datetime.now(tz=_LOCAL_TZ)


class AvailabilityScanner:
    """Probes the search endpoint in bounded batches.

    Batch k+1 starts only after batch k has been merged, so the result order
    follows the candidate order regardless of response latency. The delays
    only pace load on the portal.
    """

    def __init__(
        self,
        api: PortalApi,
        cache: SlotCache,
        *,
        reserved_cache: ReservedCache | None = None,
        batch_size: int = SCAN_BATCH_SIZE,
        batch_delay: float = SCAN_BATCH_DELAY,
        suggestion_delay: float = SUGGESTION_DELAY,
        duration_delay: float = DURATION_PROBE_DELAY,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValidationError("batch_size must be at least 1.")
        self._api = api
        self._cache = cache
        self._reserved_cache = reserved_cache
        self._batch_size = batch_size
        self._batch_delay = max(0.0, batch_delay)
        self._suggestion_delay = max(0.0, suggestion_delay)
        self._duration_delay = max(0.0, duration_delay)
        self._now = now or _local_now

    @property
    def cache(self) -> SlotCache:
        return self._cache

    @property
    def reserved_cache(self) -> ReservedCache | None:
        return self._reserved_cache

    def today(self) -> date:
        return self._now().date()

    async def get_time_slots(self, unit_id: str, value: date, credentials: Credentials) -> list[str]:
        """Return start times for the date, reading the weekday cache first."""
        cached = self._cache.get(unit_id, value)
        if cached is not None:
            return cached
        try:
            slots = await self._api.fetch_time_slots(unit_id, value, credentials)
        except (NetworkError, ProviderError) as exc:
            _LOGGER.warning("Hour list for unit %s failed, using published hours: %s", unit_id, exc)
            return get_valid_time_slots(value)
        if not slots:
            _LOGGER.warning("Hour list for unit %s was empty, using published hours", unit_id)
            return get_valid_time_slots(value)
        self._cache.set(unit_id, value, slots)
        return slots

    async def scan_day(
        self,
        unit_id: str,
        value: date,
        credentials: Credentials,
        *,
        duration: float = 1,
        cancel_event: asyncio.Event | None = None,
    ) -> list[ScanEntry]:
        """Scan every start time of a day and return time-ordered entries.

        Setting `cancel_event` stops scheduling; results of the batch in
        flight at that moment are dropped.
        """
        validate_duration(duration)
        _LOGGER.debug("scan_day started for unit %s on %s", unit_id, value)
        times = await self.get_time_slots(unit_id, value, credentials)
        candidates = filter_future_slots(value, times, self._now())

        entries: list[ScanEntry] = []
        suggested: list[str] = []
        for start in range(0, len(candidates), self._batch_size):
            if self._cancelled(cancel_event):
                return consolidate_ranges(entries)
            batch = candidates[start : start + self._batch_size]
            results = await self._probe_batch(unit_id, value, batch, duration, credentials)
            if self._cancelled(cancel_event):
                return consolidate_ranges(entries)
            entries.extend(results)
            for entry in results:
                if entry.status != STATUS_NO_COURTS or not entry.availability.suggested_times:
                    continue
                for time in entry.availability.suggested_times:
                    if time not in suggested:
                        suggested.append(time)
            if start + self._batch_size < len(candidates):
                await asyncio.sleep(self._batch_delay)

        extra = [time for time in suggested if time not in candidates]
        extra = filter_future_slots(value, extra, self._now())
        for index, time in enumerate(extra):
            if self._cancelled(cancel_event):
                break
            if index:
                await asyncio.sleep(self._suggestion_delay)
            entries.append(await self._probe(unit_id, value, time, duration, credentials))
        if extra:
            entries.sort(key=lambda entry: hour_to_minutes(entry.time))

        _LOGGER.debug(
            "scan_day completed for unit %s on %s with %d entries",
            unit_id,
            value,
            len(entries),
        )
        return consolidate_ranges(entries)

    async def scan_durations(
        self,
        unit_id: str,
        value: date,
        time: str,
        credentials: Credentials,
    ) -> dict[int, float]:
        """Return the longest confirmed duration per court number for one start time."""
        start_hour = normalize_hour(time)
        best: dict[int, float] = {}
        for index, duration in enumerate(SCAN_DURATIONS):
            if index:
                await asyncio.sleep(self._duration_delay)
            query = TimeSlotQuery(unit_id=unit_id, date=value, start_hour=start_hour, duration=duration)
            try:
                result = await self._api.search_courts(query, credentials)
            except (NetworkError, ProviderError) as exc:
                _LOGGER.warning("Duration probe %s at %s failed: %s", duration, start_hour, exc)
                continue
            if result.status != STATUS_AVAILABLE:
                continue
            for court in result.courts:
                best[court] = max(best.get(court, 0.0), float(duration))
        return dict(sorted(best.items()))

    async def _probe_batch(
        self,
        unit_id: str,
        value: date,
        batch: list[str],
        duration: float,
        credentials: Credentials,
    ) -> list[ScanEntry]:
        """Probe one batch concurrently; a failing probe cancels its siblings."""
        try:
            async with asyncio.TaskGroup() as group:
                tasks = [
                    group.create_task(self._probe(unit_id, value, time, duration, credentials))
                    for time in batch
                ]
        except ExceptionGroup as errors:
            raise errors.exceptions[0] from None
        return [task.result() for task in tasks]

    async def _probe(
        self,
        unit_id: str,
        value: date,
        time: str,
        duration: float,
        credentials: Credentials,
    ) -> ScanEntry:
        if self._reserved_cache is not None and self._reserved_cache.contains(unit_id, value, time):
            _LOGGER.debug("Skipping reserved slot %s %s", value, time)
            reserved = AvailabilityResult(status=STATUS_RESERVED)
            return ScanEntry(date=value, time=time, availability=reserved)
        query = TimeSlotQuery(unit_id=unit_id, date=value, start_hour=time, duration=duration)
        try:
            availability = await self._api.search_courts(query, credentials)
        except (NetworkError, ProviderError) as exc:
            _LOGGER.warning("Probe for %s %s failed: %s", value, time, exc)
            return ScanEntry(date=value, time=time, error=str(exc))
        if availability.status == STATUS_RESERVED and self._reserved_cache is not None:
            self._reserved_cache.add(unit_id, value, time)
        return ScanEntry(date=value, time=time, availability=availability)

    def _cancelled(self, cancel_event: asyncio.Event | None) -> bool:
        if cancel_event is not None and cancel_event.is_set():
            _LOGGER.debug("Scan cancelled")
            return True
        return False
