"""Client facade wiring sessions, scanning and booking together."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from datetime import date, datetime
from typing import Any

import aiohttp

from .api import PortalApi
from .automation import BookingAutomation, BookingObserver, BrowserFactory
from .cache import ReservedCache, SlotCache
from .const import (
    DURATION_PROBE_DELAY,
    LINGER_FAILURE_SECONDS,
    LINGER_SUCCESS_SECONDS,
    SCAN_BATCH_DELAY,
    SCAN_BATCH_SIZE,
    SUGGESTION_DELAY,
    UNITS,
)
from .models import (
    BookingOutcome,
    BookingRequest,
    CourtSlot,
    Credentials,
    Rental,
    ScanEntry,
    SessionToken,
)
from .scanner import AvailabilityScanner
from .session import SessionManager, SessionStore
from .storage import KeyValueStore, MemoryStore
from .util import upcoming_rentals

_DEFAULT_TIMEOUT = aiohttp.ClientTimeout(total=30)


class Client:
    """Facade for the tennis center portal.

    Session tokens and hour lists share one storage backend. The portal
    session travels as an explicit Cookie header, so an owned HTTP session
    is created with a cookie jar that ignores Set-Cookie.
    """

    def __init__(
        self,
        credentials: Credentials,
        session: aiohttp.ClientSession | None = None,
        *,
        storage: KeyValueStore | None = None,
        base_url: str | None = None,
        timeout: aiohttp.ClientTimeout | None = None,
        retry_count: int = 0,
        reserved_markers: Iterable[str] = (),
        batch_size: int = SCAN_BATCH_SIZE,
        batch_delay: float = SCAN_BATCH_DELAY,
        suggestion_delay: float = SUGGESTION_DELAY,
        duration_delay: float = DURATION_PROBE_DELAY,
        now: Callable[[], datetime] | None = None,
        headless: bool = True,
        executable_path: str | None = None,
        browser_factory: BrowserFactory | None = None,
        observer: BookingObserver | None = None,
        linger_success: float = LINGER_SUCCESS_SECONDS,
        linger_failure: float = LINGER_FAILURE_SECONDS,
    ) -> None:
        self._credentials = credentials
        self._session = session
        self._owns_session = session is None
        self._storage = storage if storage is not None else MemoryStore()
        self._base_url = base_url
        self._timeout = timeout or _DEFAULT_TIMEOUT
        self._retry_count = max(0, retry_count)
        self._reserved_markers = tuple(reserved_markers)
        self._scanner_options: dict[str, Any] = {
            "batch_size": batch_size,
            "batch_delay": batch_delay,
            "suggestion_delay": suggestion_delay,
            "duration_delay": duration_delay,
            "now": now,
        }
        self._automation_options: dict[str, Any] = {
            "headless": headless,
            "executable_path": executable_path,
            "browser_factory": browser_factory,
            "observer": observer,
            "linger_success": linger_success,
            "linger_failure": linger_failure,
        }
        self._sessions: SessionManager | None = None
        self._api: PortalApi | None = None
        self._scanner: AvailabilityScanner | None = None
        self._automation: BookingAutomation | None = None

    async def __aenter__(self) -> Client:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
            self._sessions = None
            self._api = None
            self._scanner = None
            self._automation = None

    @property
    def sessions(self) -> SessionManager:
        self._wire()
        return self._sessions

    @property
    def api(self) -> PortalApi:
        self._wire()
        return self._api

    @property
    def scanner(self) -> AvailabilityScanner:
        self._wire()
        return self._scanner

    @property
    def automation(self) -> BookingAutomation:
        self._wire()
        return self._automation

    @staticmethod
    def list_units() -> dict[str, tuple[str, str]]:
        """Return the known tennis centres as id -> (Hebrew name, English name)."""
        return dict(UNITS)

    async def acquire_session(self) -> SessionToken:
        return await self.sessions.acquire_session(self._credentials)

    async def get_time_slots(self, unit_id: str, value: date) -> list[str]:
        return await self.scanner.get_time_slots(unit_id, value, self._credentials)

    async def scan_day(
        self,
        unit_id: str,
        value: date,
        *,
        duration: float = 1,
        cancel_event: asyncio.Event | None = None,
    ) -> list[ScanEntry]:
        return await self.scanner.scan_day(
            unit_id,
            value,
            self._credentials,
            duration=duration,
            cancel_event=cancel_event,
        )

    async def scan_durations(self, unit_id: str, value: date, time: str) -> dict[int, float]:
        return await self.scanner.scan_durations(unit_id, value, time, self._credentials)

    async def list_rentals(self, *, today: date | None = None) -> list[Rental]:
        """Return upcoming rentals, soonest first."""
        rentals = await self.api.fetch_rentals(self._credentials)
        return upcoming_rentals(rentals, today or self.scanner.today())

    async def cancel_rental(self, rental: Rental | str) -> None:
        await self.api.cancel_rental(rental, self._credentials)

    async def select_court(self, slot: CourtSlot) -> str:
        return await self.api.select_court(slot, self._credentials)

    async def book(self, request: BookingRequest) -> BookingOutcome:
        return await self.automation.book(request, self._credentials)

    def _wire(self) -> None:
        if self._sessions is not None:
            return
        session = self._ensure_session()
        self._sessions = SessionManager(
            session,
            SessionStore(self._storage),
            base_url=self._base_url,
            timeout=self._timeout,
            retry_count=self._retry_count,
        )
        self._api = PortalApi(
            session,
            self._sessions,
            base_url=self._base_url,
            timeout=self._timeout,
            retry_count=self._retry_count,
            reserved_markers=self._reserved_markers,
        )
        self._scanner = AvailabilityScanner(
            self._api,
            SlotCache(self._storage),
            reserved_cache=ReservedCache(self._storage),
            **self._scanner_options,
        )
        self._automation = BookingAutomation(
            self._sessions,
            base_url=self._base_url,
            **self._automation_options,
        )

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                cookie_jar=aiohttp.DummyCookieJar(),
            )
        return self._session
