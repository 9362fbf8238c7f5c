from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import date, datetime

import pytest

from pytenniscenter.cache import ReservedCache, SlotCache
from pytenniscenter.exceptions import AuthError, NetworkError, ProviderError, ValidationError
from pytenniscenter.models import AvailabilityResult, Credentials, TimeSlotQuery
from pytenniscenter.scanner import AvailabilityScanner
from pytenniscenter.storage import MemoryStore
from pytenniscenter.util import get_valid_time_slots

CREDENTIALS = Credentials(email="player@example.com", user_id="123456789")
DAY = date(2025, 12, 4)
NO_COURTS = AvailabilityResult(status="no-courts")


def _available(*courts: int) -> AvailabilityResult:
    return AvailabilityResult(status="available", courts=list(courts))


class _FakeApi:
    def __init__(
        self,
        results: dict[object, object] | None = None,
        *,
        slots: list[str] | None = None,
        slots_error: Exception | None = None,
        delays: dict[str, float] | None = None,
        on_search: Callable[[TimeSlotQuery], None] | None = None,
    ) -> None:
        self._results = results or {}
        self._slots = slots or []
        self._slots_error = slots_error
        self._delays = delays or {}
        self._on_search = on_search
        self.searches: list[tuple[str, float]] = []
        self.slot_calls = 0
        self.in_flight = 0
        self.max_in_flight = 0
        self.cancelled: list[str] = []

    async def fetch_time_slots(self, unit_id: str, value: date, credentials: Credentials) -> list[str]:
        self.slot_calls += 1
        if self._slots_error is not None:
            raise self._slots_error
        return list(self._slots)

    async def search_courts(self, query: TimeSlotQuery, credentials: Credentials) -> AvailabilityResult:
        self.searches.append((query.start_hour, query.duration))
        if self._on_search is not None:
            self._on_search(query)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self._delays.get(query.start_hour, 0))
        except asyncio.CancelledError:
            self.cancelled.append(query.start_hour)
            raise
        finally:
            self.in_flight -= 1
        result = self._results.get(
            (query.start_hour, query.duration),
            self._results.get(query.start_hour, NO_COURTS),
        )
        if isinstance(result, Exception):
            raise result
        return result


def _scanner(api: _FakeApi, *, now: datetime | None = None, batch_size: int = 2, cache=None, reserved_cache=None):
    return AvailabilityScanner(
        api,  # type: ignore[arg-type]
        cache or SlotCache(MemoryStore()),
        reserved_cache=reserved_cache,
        batch_size=batch_size,
        batch_delay=0,
        suggestion_delay=0,
        duration_delay=0,
        now=lambda: now or datetime(2025, 12, 1, 6, 0),
    )


@pytest.mark.asyncio
async def test_get_time_slots_fetches_and_caches() -> None:
    api = _FakeApi(slots=["08:00", "09:00"])
    cache = SlotCache(MemoryStore())
    scanner = _scanner(api, cache=cache)

    assert await scanner.get_time_slots("13", DAY, CREDENTIALS) == ["08:00", "09:00"]
    assert await scanner.get_time_slots("13", date(2025, 12, 11), CREDENTIALS) == ["08:00", "09:00"]
    assert api.slot_calls == 1
    assert cache.get("13", DAY) == ["08:00", "09:00"]


@pytest.mark.asyncio
async def test_get_time_slots_falls_back_without_caching() -> None:
    cache = SlotCache(MemoryStore())
    failing = _scanner(_FakeApi(slots_error=NetworkError("down")), cache=cache)
    assert await failing.get_time_slots("13", DAY, CREDENTIALS) == get_valid_time_slots(DAY)
    empty = _scanner(_FakeApi(slots=[]), cache=cache)
    assert await empty.get_time_slots("13", DAY, CREDENTIALS) == get_valid_time_slots(DAY)
    assert cache.get("13", DAY) is None


@pytest.mark.asyncio
async def test_scan_day_merges_and_keeps_errors() -> None:
    api = _FakeApi(
        {
            "08:00": _available(1),
            "09:00": NO_COURTS,
            "10:00": NO_COURTS,
            "11:00": NetworkError("timeout"),
            "12:00": _available(2, 3),
        },
        slots=["08:00", "09:00", "10:00", "11:00", "12:00"],
    )

    entries = await _scanner(api).scan_day("13", DAY, CREDENTIALS)

    assert [entry.time for entry in entries] == ["08:00", "09:00", "11:00", "12:00"]
    assert entries[0].availability.courts == [1]
    assert entries[1].is_range_start is True
    assert entries[1].range_end == "10:00"
    assert entries[2].availability is None
    assert entries[2].error == "timeout"
    assert entries[3].availability.courts == [2, 3]
    assert api.max_in_flight <= 2


@pytest.mark.asyncio
async def test_scan_day_order_ignores_latency() -> None:
    api = _FakeApi(
        {"08:00": _available(1), "09:00": _available(2), "10:00": _available(3)},
        slots=["08:00", "09:00", "10:00"],
        delays={"08:00": 0.03, "10:00": 0.01},
    )

    entries = await _scanner(api, batch_size=3).scan_day("13", DAY, CREDENTIALS)

    assert [entry.time for entry in entries] == ["08:00", "09:00", "10:00"]
    assert api.max_in_flight == 3


@pytest.mark.asyncio
async def test_scan_day_probes_suggested_times() -> None:
    api = _FakeApi(
        {
            "18:00": AvailabilityResult(status="no-courts", suggested_times=["19:00", "20:00"]),
            "19:00": _available(4),
        },
        slots=["18:00", "20:00"],
    )

    entries = await _scanner(api).scan_day("13", DAY, CREDENTIALS)

    assert [entry.time for entry in entries] == ["18:00", "19:00", "20:00"]
    assert entries[1].status == "available"
    assert [time for time, _ in api.searches] == ["18:00", "20:00", "19:00"]


@pytest.mark.asyncio
async def test_scan_day_skips_past_hours_today() -> None:
    api = _FakeApi(
        {"15:00": AvailabilityResult(status="no-courts", suggested_times=["12:00", "17:00"])},
        slots=["13:00", "14:00", "15:00", "16:00"],
    )

    entries = await _scanner(api, now=datetime(2025, 12, 4, 14, 20)).scan_day("13", DAY, CREDENTIALS)

    assert [time for time, _ in api.searches] == ["15:00", "16:00", "17:00"]
    assert [entry.time for entry in entries] == ["15:00"]
    assert entries[0].range_end == "17:00"


@pytest.mark.asyncio
async def test_scan_day_cancel_discards_in_flight_batch() -> None:
    cancel = asyncio.Event()

    def _cancel_on_nine(query: TimeSlotQuery) -> None:
        if query.start_hour == "09:00":
            cancel.set()

    api = _FakeApi(slots=["08:00", "09:00", "10:00", "11:00"], on_search=_cancel_on_nine)

    entries = await _scanner(api).scan_day("13", DAY, CREDENTIALS, cancel_event=cancel)

    assert entries == []
    assert [time for time, _ in api.searches] == ["08:00", "09:00"]


@pytest.mark.asyncio
async def test_scan_day_cancel_keeps_completed_batches() -> None:
    cancel = asyncio.Event()

    def _cancel_on_ten(query: TimeSlotQuery) -> None:
        if query.start_hour == "10:00":
            cancel.set()

    api = _FakeApi(
        {"08:00": _available(1), "09:00": _available(2)},
        slots=["08:00", "09:00", "10:00", "11:00", "12:00"],
        on_search=_cancel_on_ten,
    )

    entries = await _scanner(api).scan_day("13", DAY, CREDENTIALS, cancel_event=cancel)

    assert [entry.time for entry in entries] == ["08:00", "09:00"]
    assert "12:00" not in [time for time, _ in api.searches]


@pytest.mark.asyncio
async def test_scan_day_propagates_auth_error() -> None:
    api = _FakeApi({"08:00": AuthError("expired")}, slots=["08:00"])
    with pytest.raises(AuthError):
        await _scanner(api).scan_day("13", DAY, CREDENTIALS)


@pytest.mark.asyncio
async def test_scan_day_rejects_bad_duration() -> None:
    api = _FakeApi(slots=["08:00"])
    with pytest.raises(ValidationError):
        await _scanner(api).scan_day("13", DAY, CREDENTIALS, duration=4)
    assert api.searches == []


@pytest.mark.asyncio
async def test_scan_day_passes_duration() -> None:
    api = _FakeApi(slots=["08:00"])
    await _scanner(api).scan_day("13", DAY, CREDENTIALS, duration=1.5)
    assert api.searches == [("08:00", 1.5)]


@pytest.mark.asyncio
async def test_scan_durations_records_longest_per_court() -> None:
    api = _FakeApi(
        {
            ("18:00", 1): _available(1, 2, 3),
            ("18:00", 2): _available(1, 3),
            ("18:00", 3): ProviderError("bad fragment"),
        }
    )

    best = await _scanner(api).scan_durations("13", DAY, "18:00", CREDENTIALS)

    assert best == {1: 2.0, 2: 1.0, 3: 2.0}
    assert api.searches == [("18:00", 1), ("18:00", 2), ("18:00", 3)]


def test_scanner_rejects_empty_batches() -> None:
    with pytest.raises(ValidationError):
        AvailabilityScanner(_FakeApi(), SlotCache(MemoryStore()), batch_size=0)  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_get_time_slots_refetches_after_clear() -> None:
    api = _FakeApi(slots=["08:00", "09:00"])
    cache = SlotCache(MemoryStore())
    scanner = _scanner(api, cache=cache)

    await scanner.get_time_slots("13", DAY, CREDENTIALS)
    await scanner.get_time_slots("13", DAY, CREDENTIALS)
    assert api.slot_calls == 1

    cache.clear()
    assert await scanner.get_time_slots("13", DAY, CREDENTIALS) == ["08:00", "09:00"]
    await scanner.get_time_slots("13", DAY, CREDENTIALS)
    assert api.slot_calls == 2


@pytest.mark.asyncio
async def test_scan_day_auth_error_cancels_sibling_searches() -> None:
    api = _FakeApi(
        {"08:00": AuthError("expired"), "09:00": _available(1)},
        slots=["08:00", "09:00", "10:00"],
        delays={"09:00": 10},
    )

    with pytest.raises(AuthError):
        await asyncio.wait_for(_scanner(api).scan_day("13", DAY, CREDENTIALS), timeout=2)

    assert api.cancelled == ["09:00"]
    assert api.in_flight == 0
    assert "10:00" not in [time for time, _ in api.searches]


@pytest.mark.asyncio
async def test_scan_day_remembers_reserved_slots() -> None:
    storage = MemoryStore()
    reserved = ReservedCache(storage)
    api = _FakeApi(
        {"08:00": AvailabilityResult(status="reserved"), "09:00": _available(2)},
        slots=["08:00", "09:00"],
    )
    scanner = _scanner(api, reserved_cache=reserved)

    first = await scanner.scan_day("13", DAY, CREDENTIALS)
    second = await scanner.scan_day("13", DAY, CREDENTIALS)

    assert storage.get("reserved_13_2025-12-04_08:00") is True
    assert [entry.status for entry in first] == ["reserved", "available"]
    assert [entry.status for entry in second] == ["reserved", "available"]
    assert [time for time, _ in api.searches] == ["08:00", "09:00", "09:00"]


@pytest.mark.asyncio
async def test_scan_day_without_reserved_cache_searches_again() -> None:
    api = _FakeApi({"08:00": AvailabilityResult(status="reserved")}, slots=["08:00"])
    scanner = _scanner(api)

    await scanner.scan_day("13", DAY, CREDENTIALS)
    await scanner.scan_day("13", DAY, CREDENTIALS)

    assert [time for time, _ in api.searches] == ["08:00", "08:00"]


def test_scanner_today_uses_clock() -> None:
    scanner = _scanner(_FakeApi(), now=datetime(2025, 12, 4, 23, 30))
    assert scanner.today() == DAY
