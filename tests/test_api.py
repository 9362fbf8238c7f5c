from __future__ import annotations

from datetime import date
from pathlib import Path

import aiohttp
import pytest
from multidict import CIMultiDict

from pytenniscenter.api import PortalApi
from pytenniscenter.exceptions import AuthError, NetworkError, ProviderError, ValidationError
from pytenniscenter.models import CourtSlot, Credentials, Rental, SessionToken, TimeSlotQuery
from pytenniscenter.session import SessionManager, SessionStore

FIXTURES = Path(__file__).parent / "fixtures"
CREDENTIALS = Credentials(email="player@example.com", user_id="123456789")
STORED = SessionToken(authenticity_token="stored-token", session_id="stored-session")


class _FakeResponse:
    def __init__(
        self,
        *,
        status: int = 200,
        cookies: list[str] | None = None,
        text_data: str = "",
    ) -> None:
        self.status = status
        self.headers = CIMultiDict(("Set-Cookie", cookie) for cookie in cookies or [])
        self._text_data = text_data

    async def text(self) -> str:
        return self._text_data


class _FakeRequestContext:
    def __init__(self, response: _FakeResponse) -> None:
        self._response = response

    async def __aenter__(self) -> _FakeResponse:
        return self._response

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False


class _SequenceSession:
    def __init__(self, responses: list[object]) -> None:
        self._responses = responses
        self.calls = 0
        self.requests: list[dict[str, object]] = []

    def request(self, method: str, url: str, **kwargs) -> _FakeRequestContext:
        self.requests.append({"method": method, "url": url, "kwargs": kwargs})
        self.calls += 1
        response = self._responses[self.calls - 1]
        if isinstance(response, Exception):
            raise response
        return _FakeRequestContext(response)


def _fixture(name: str) -> str:
    return (FIXTURES / name).read_text(encoding="utf-8")


def _probe_ok() -> _FakeResponse:
    return _FakeResponse(text_data="<html></html>")


def _login_responses(session_cookie: str) -> list[object]:
    return [
        _FakeResponse(text_data=_fixture("login.html")),
        _FakeResponse(cookies=[f"_session_id={session_cookie}; path=/"]),
        _FakeResponse(text_data='<meta name="csrf-token" content="fresh-token" />'),
    ]


def _api(session: object, **kwargs) -> PortalApi:
    store = SessionStore.create()
    store.save(STORED)
    sessions = SessionManager(session, store, base_url="https://example")  # type: ignore[arg-type]
    return PortalApi(session, sessions, base_url="https://example", **kwargs)  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_search_courts_posts_form_and_parses() -> None:
    session = _SequenceSession([_probe_ok(), _FakeResponse(text_data=_fixture("search_available.js"))])
    api = _api(session)
    query = TimeSlotQuery(unit_id="13", date=date(2025, 12, 4), start_hour="21:00", duration=1)

    result = await api.search_courts(query, CREDENTIALS)

    assert result.status == "available"
    assert result.courts == [2, 4]
    search = session.requests[1]
    assert search["method"] == "POST"
    assert search["url"] == "https://example/self_services/search_court.js"
    kwargs = search["kwargs"]
    assert kwargs["allow_redirects"] is False
    assert kwargs["data"] == {
        "utf8": "✓",
        "search[unit_id]": "13",
        "search[court_type]": "1",
        "search[start_date]": "04/12/2025",
        "search[start_hour]": "21:00",
        "search[duration]": "1",
        "authenticity_token": "stored-token",
    }
    assert kwargs["headers"]["Cookie"] == "_session_id=stored-session"


@pytest.mark.asyncio
async def test_search_courts_unparseable_response() -> None:
    session = _SequenceSession([_probe_ok(), _FakeResponse(text_data="alert('oops');")])
    query = TimeSlotQuery(unit_id="13", date=date(2025, 12, 4), start_hour="21:00")
    with pytest.raises(ProviderError) as excinfo:
        await _api(session).search_courts(query, CREDENTIALS)
    assert excinfo.value.error_code == "unparseable_fragment"


@pytest.mark.asyncio
async def test_search_courts_validates_before_request() -> None:
    session = _SequenceSession([])
    query = TimeSlotQuery(unit_id="13", date=date(2025, 12, 4), start_hour="21:00", duration=4)
    with pytest.raises(ValidationError):
        await _api(session).search_courts(query, CREDENTIALS)
    assert session.calls == 0


@pytest.mark.asyncio
async def test_search_courts_refreshes_once_on_redirect() -> None:
    session = _SequenceSession(
        [
            _probe_ok(),
            _FakeResponse(status=302),
            *_login_responses("fresh-session"),
            _FakeResponse(text_data=_fixture("search_no_courts.js")),
        ]
    )
    query = TimeSlotQuery(unit_id="13", date=date(2025, 12, 4), start_hour="18:00")

    result = await _api(session).search_courts(query, CREDENTIALS)

    assert result.status == "no-courts"
    assert result.suggested_times == ["19:00", "20:00"]
    retry = session.requests[-1]
    assert retry["kwargs"]["headers"]["Cookie"] == "_session_id=fresh-session"
    assert retry["kwargs"]["data"]["authenticity_token"] == "fresh-token"


@pytest.mark.asyncio
async def test_search_courts_second_redirect_is_auth_error() -> None:
    session = _SequenceSession(
        [
            _probe_ok(),
            _FakeResponse(status=302),
            *_login_responses("fresh-session"),
            _FakeResponse(status=302),
        ]
    )
    query = TimeSlotQuery(unit_id="13", date=date(2025, 12, 4), start_hour="18:00")
    with pytest.raises(AuthError) as excinfo:
        await _api(session).search_courts(query, CREDENTIALS)
    assert excinfo.value.error_code == "session_expired"


@pytest.mark.asyncio
async def test_search_courts_server_error_is_network_error() -> None:
    session = _SequenceSession([_probe_ok(), _FakeResponse(status=500)])
    query = TimeSlotQuery(unit_id="13", date=date(2025, 12, 4), start_hour="18:00")
    with pytest.raises(NetworkError) as excinfo:
        await _api(session).search_courts(query, CREDENTIALS)
    assert excinfo.value.error_code == "http_status"


@pytest.mark.asyncio
async def test_search_courts_transport_error() -> None:
    session = _SequenceSession([_probe_ok(), aiohttp.ClientError("boom")])
    query = TimeSlotQuery(unit_id="13", date=date(2025, 12, 4), start_hour="18:00")
    with pytest.raises(NetworkError) as excinfo:
        await _api(session, retry_count=2).search_courts(query, CREDENTIALS)
    assert excinfo.value.error_code == "transport"
    assert session.calls == 2


@pytest.mark.asyncio
async def test_fetch_time_slots() -> None:
    session = _SequenceSession([_probe_ok(), _FakeResponse(text_data=_fixture("time_slots.js"))])

    slots = await _api(session).fetch_time_slots("13", date(2025, 12, 4), CREDENTIALS)

    assert slots == ["07:00", "08:00", "21:30"]
    request = session.requests[1]
    assert request["url"] == "https://example/self_services/set_time_by_unit"
    assert request["kwargs"]["data"] == {"unit_id": "13", "date": "2025-12-04", "court_type": "1"}


@pytest.mark.asyncio
async def test_fetch_rentals() -> None:
    session = _SequenceSession([_probe_ok(), _FakeResponse(text_data=_fixture("my_rents.html"))])

    rentals = await _api(session).fetch_rentals(CREDENTIALS)

    assert [rental.allocation_id for rental in rentals] == ["98765", None]
    assert session.requests[1]["method"] == "GET"
    assert session.requests[1]["url"] == "https://example/self_services/my_rents"


@pytest.mark.asyncio
async def test_cancel_rental() -> None:
    session = _SequenceSession([_probe_ok(), _FakeResponse(text_data="$('#row').remove();")])
    rental = Rental(
        date="06/12/2025",
        date_value=date(2025, 12, 6),
        time="10:00",
        court="3",
        allocation_id="98765",
    )

    await _api(session).cancel_rental(rental, CREDENTIALS)

    request = session.requests[1]
    assert request["method"] == "POST"
    assert request["url"] == "https://example/self_services/cancel_rent_allocation/98765.js"
    assert request["kwargs"]["headers"]["X-Requested-With"] == "XMLHttpRequest"


@pytest.mark.asyncio
async def test_cancel_rental_rejects_uncancellable() -> None:
    session = _SequenceSession([])
    rental = Rental(date="04/12/2025", date_value=date(2025, 12, 4), time="21:00", court="4")
    with pytest.raises(ValidationError) as excinfo:
        await _api(session).cancel_rental(rental, CREDENTIALS)
    assert excinfo.value.user_message
    with pytest.raises(ValidationError):
        await _api(session).cancel_rental("../admin", CREDENTIALS)
    assert session.calls == 0


@pytest.mark.asyncio
async def test_select_court_accepts_redirect() -> None:
    session = _SequenceSession([_probe_ok(), _FakeResponse(status=302)])
    slot = CourtSlot(
        court_number=4,
        court_id=112,
        duration=1.0,
        start_time="2025-12-04 21:00:00 UTC",
        end_time="2025-12-04 22:00:00 UTC",
    )

    url = await _api(session).select_court(slot, CREDENTIALS)

    assert url == "https://example/self_services/court_invitation"
    request = session.requests[1]
    assert request["url"] == "https://example/self_services/select_court_invitation.js"
    assert request["kwargs"]["params"] == {
        "court_id": "112",
        "duration": "1.0",
        "end_time": "2025-12-04 22:00:00 UTC",
        "start_time": "2025-12-04 21:00:00 UTC",
    }
    assert request["kwargs"]["data"] == {"authenticity_token": "stored-token"}


@pytest.mark.asyncio
async def test_reserved_markers_are_forwarded() -> None:
    raw = "jQuery('#step-2').html('<div class=\\\"alert alert-danger\\\">שמור<\\/div>');"
    session = _SequenceSession([_probe_ok(), _FakeResponse(text_data=raw)])
    api = _api(session, reserved_markers=("שמור",))
    query = TimeSlotQuery(unit_id="13", date=date(2025, 12, 4), start_hour="18:00")
    result = await api.search_courts(query, CREDENTIALS)
    assert result.status == "reserved"
