"""Authenticated portal endpoints."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import date

import aiohttp

from .base import BasePortalService
from .const import (
    AUTHENTICITY_TOKEN_FIELD,
    CANCEL_RENT_ENDPOINT,
    COURT_INVITATION_ENDPOINT,
    COURT_TYPE,
    MY_RENTS_ENDPOINT,
    REQUESTED_WITH_HEADER,
    REQUESTED_WITH_XHR,
    SEARCH_COURT_ENDPOINT,
    SELECT_COURT_ENDPOINT,
    SET_TIME_BY_UNIT_ENDPOINT,
    UTF8_FIELD,
    UTF8_VALUE,
)
from .exceptions import AuthError, ProviderError, ValidationError
from .models import AvailabilityResult, CourtSlot, Credentials, Rental, TimeSlotQuery
from .parser import extract_fragment, parse_availability, parse_rental_history, parse_time_slots
from .session import SessionManager
from .util import filter_half_hour_slots, format_duration, format_portal_date, normalize_hour

_LOGGER = logging.getLogger(__name__)


class PortalApi(BasePortalService):
    """Search, hour-list, rental and selection calls against the portal."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        sessions: SessionManager,
        *,
        base_url: str | None = None,
        timeout: aiohttp.ClientTimeout | None = None,
        retry_count: int = 0,
        reserved_markers: Iterable[str] = (),
    ) -> None:
        super().__init__(session, base_url=base_url, timeout=timeout, retry_count=retry_count)
        self._sessions = sessions
        self._reserved_markers = tuple(reserved_markers)

    @property
    def sessions(self) -> SessionManager:
        return self._sessions

    async def search_courts(self, query: TimeSlotQuery, credentials: Credentials) -> AvailabilityResult:
        """Probe one (date, start hour, duration) combination."""
        start_hour = normalize_hour(query.start_hour)
        duration = format_duration(query.duration)
        unit_id = self._require_id(query.unit_id, "unit_id")
        payload = {
            UTF8_FIELD: UTF8_VALUE,
            "search[unit_id]": unit_id,
            "search[court_type]": COURT_TYPE,
            "search[start_date]": format_portal_date(query.date),
            "search[start_hour]": start_hour,
            "search[duration]": duration,
        }
        text = await self._request_authenticated(
            "POST",
            SEARCH_COURT_ENDPOINT,
            credentials,
            data=payload,
            include_token=True,
        )
        if not extract_fragment(text):
            raise ProviderError(
                "Search response could not be parsed.",
                error_code="unparseable_fragment",
            )
        return parse_availability(text, reserved_markers=self._reserved_markers)

    async def fetch_time_slots(self, unit_id: str, value: date, credentials: Credentials) -> list[str]:
        """Return the start times the portal offers for a unit on a date."""
        payload = {
            "unit_id": self._require_id(unit_id, "unit_id"),
            "date": value.isoformat(),
            "court_type": COURT_TYPE,
        }
        text = await self._request_authenticated(
            "POST",
            SET_TIME_BY_UNIT_ENDPOINT,
            credentials,
            data=payload,
        )
        return filter_half_hour_slots(parse_time_slots(text))

    async def fetch_rentals(self, credentials: Credentials) -> list[Rental]:
        _LOGGER.debug("fetch_rentals started")
        text = await self._request_authenticated("GET", MY_RENTS_ENDPOINT, credentials)
        rentals = parse_rental_history(text)
        _LOGGER.debug("fetch_rentals completed with %d rentals", len(rentals))
        return rentals

    async def cancel_rental(self, rental: Rental | str, credentials: Credentials) -> None:
        allocation_id = rental.allocation_id if isinstance(rental, Rental) else rental
        if not allocation_id:
            raise ValidationError(
                "Rental can no longer be cancelled.",
                user_message="This rental is too close to its start time to cancel.",
            )
        allocation_id = self._require_id(allocation_id, "allocation_id")
        if not allocation_id.isdigit():
            raise ValidationError("allocation_id must be numeric.")
        await self._request_authenticated(
            "POST",
            CANCEL_RENT_ENDPOINT.format(allocation_id=allocation_id),
            credentials,
            headers={REQUESTED_WITH_HEADER: REQUESTED_WITH_XHR},
        )
        _LOGGER.debug("Allocation %s cancelled", allocation_id)

    async def select_court(self, slot: CourtSlot, credentials: Credentials) -> str:
        """Register a court selection on the portal session.

        Returns the wizard page where the reservation continues.
        """
        params = {
            "court_id": str(slot.court_id),
            "duration": str(slot.duration),
            "end_time": slot.end_time,
            "start_time": slot.start_time,
        }
        await self._request_authenticated(
            "POST",
            SELECT_COURT_ENDPOINT,
            credentials,
            params=params,
            headers={REQUESTED_WITH_HEADER: REQUESTED_WITH_XHR},
            include_token=True,
            redirect_is_stale=False,
        )
        return self._build_url(COURT_INVITATION_ENDPOINT)

    async def _request_authenticated(
        self,
        method: str,
        path: str,
        credentials: Credentials,
        *,
        data: Mapping[str, str] | None = None,
        params: Mapping[str, str] | None = None,
        headers: Mapping[str, str] | None = None,
        include_token: bool = False,
        redirect_is_stale: bool = True,
    ) -> str:
        token = await self._sessions.acquire_session(credentials)
        for attempt in range(2):
            form: dict[str, str] | None = dict(data) if data is not None else None
            if include_token:
                form = form or {}
                form[AUTHENTICITY_TOKEN_FIELD] = token.authenticity_token
            response = await self._request_raw(
                method,
                path,
                allow_redirects=False,
                data=form,
                params=dict(params) if params is not None else None,
                headers=self._build_headers(token.session_id, **dict(headers or {})),
            )
            stale = response.status in (401, 403) or (redirect_is_stale and response.is_redirect)
            if stale:
                if attempt == 0:
                    _LOGGER.debug("Session rejected on %s %s, refreshing", method, path)
                    token = await self._sessions.force_refresh(credentials)
                    continue
                raise AuthError("Session was rejected after refreshing.", error_code="session_expired")
            if not response.is_redirect:
                self._raise_for_status(response.status)
            return response.text
        raise ProviderError("Request failed.")

    def _require_id(self, value: object, field: str) -> str:
        if value is None:
            raise ValidationError(f"{field} is required.")
        text = str(value).strip()
        if not text:
            raise ValidationError(f"{field} is required.")
        return text
