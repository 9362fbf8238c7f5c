"""Parsers for the portal's HTML pages and scripted HTML fragments.

Every function here is pure and never raises for markup it does not
recognize: an unknown shape yields an empty or neutral value, leaving the
decision to the caller.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from datetime import datetime
from urllib.parse import unquote_plus

from bs4 import BeautifulSoup

from .const import NO_COURTS_MARKERS, STATUS_AVAILABLE, STATUS_NO_COURTS, STATUS_RESERVED, SUCCESS_MARKER
from .models import AvailabilityResult, AvailabilityStatus, CourtSlot, Rental

_FRAGMENT_RE = re.compile(r"jQuery\('#step-2'\)\.html\('(.*?)'\);", re.DOTALL)
_COURT_ROW_RE = re.compile(
    r"מגרש:\s*(\d+)(?:(?!מגרש:).)*?"
    r"court_id=(\d+)(?:&amp;|&)duration=([\d.]+)(?:&amp;|&)"
    r"end_time=([^&\"']+)(?:&amp;|&)start_time=([^&\"']+)",
    re.DOTALL,
)
_SUGGESTED_TIME_RE = re.compile(r"<h3[^>]*>\s*(\d{2}:\d{2})\s*-\s*\d{2}:\d{2}\s*</h3>")
_HOUR_VALUE_PATTERNS = (
    re.compile(r'value=\\"(\d{2}:\d{2})\\"'),
    re.compile(r'value="(\d{2}:\d{2})"'),
    re.compile(r"value='(\d{2}:\d{2})'"),
)
_SESSION_COOKIE_RE = re.compile(r"_session_id=([^;]+)")
_RENTAL_DATE_RE = re.compile(r"^\d{2}/\d{2}/\d{4}$")
_CANCEL_LINK_RE = re.compile(r"cancel_rent_allocation/(\d+)")


def extract_fragment(raw_response: str) -> str:
    """Recover the HTML injected into the results region by the search script.

    Returns an empty string when the injection statement is missing, which
    callers must read as "could not parse".
    """
    match = _FRAGMENT_RE.search(raw_response or "")
    if match is None:
        return ""
    return (
        match.group(1)
        .replace("\\n", "")
        .replace('\\"', '"')
        .replace("\\'", "'")
        .replace("\\/", "/")
    )


def classify_availability(
    html: str,
    *,
    reserved_markers: Iterable[str] = (),
) -> AvailabilityStatus:
    if SUCCESS_MARKER in html:
        return STATUS_AVAILABLE
    if any(marker and marker in html for marker in reserved_markers):
        return STATUS_RESERVED
    if any(marker in html for marker in NO_COURTS_MARKERS):
        return STATUS_NO_COURTS
    return STATUS_AVAILABLE


def extract_court_slots(html: str) -> list[CourtSlot]:
    slots: list[CourtSlot] = []
    for match in _COURT_ROW_RE.finditer(html):
        slots.append(
            CourtSlot(
                court_number=int(match.group(1)),
                court_id=int(match.group(2)),
                duration=float(match.group(3)),
                end_time=unquote_plus(match.group(4)),
                start_time=unquote_plus(match.group(5)),
            )
        )
    return slots


def extract_suggested_times(html: str) -> list[str]:
    times: list[str] = []
    for match in _SUGGESTED_TIME_RE.finditer(html):
        start = match.group(1)
        if start not in times:
            times.append(start)
    return times


def parse_availability(
    raw_response: str,
    *,
    reserved_markers: Iterable[str] = (),
) -> AvailabilityResult:
    html = extract_fragment(raw_response)
    status = classify_availability(html, reserved_markers=reserved_markers)
    if status == STATUS_RESERVED:
        return AvailabilityResult(status=STATUS_RESERVED)
    if status == STATUS_NO_COURTS:
        suggested = extract_suggested_times(html)
        return AvailabilityResult(status=STATUS_NO_COURTS, suggested_times=suggested or None)

    slots = extract_court_slots(html)
    if not slots:
        # Courts taken by other users render no rows and no marker.
        return AvailabilityResult(status=STATUS_NO_COURTS)
    courts = sorted({slot.court_number for slot in slots})
    return AvailabilityResult(status=STATUS_AVAILABLE, courts=courts, slots=slots)


def parse_time_slots(raw_response: str) -> list[str]:
    """Extract offered start times, trying each known value encoding in turn."""
    for pattern in _HOUR_VALUE_PATTERNS:
        found: list[str] = []
        for match in pattern.finditer(raw_response or ""):
            value = match.group(1)
            if value not in found:
                found.append(value)
        if found:
            return found
    return []


def extract_authenticity_token(html: str) -> str | None:
    """Read the anti-forgery token from a form field or the csrf meta tag."""
    soup = BeautifulSoup(html or "", "html.parser")
    field = soup.find("input", attrs={"name": "authenticity_token"})
    if field is not None and field.get("value"):
        return field["value"]
    meta = soup.find("meta", attrs={"name": "csrf-token"})
    if meta is not None and meta.get("content"):
        return meta["content"]
    return None


def extract_session_id(set_cookie_headers: Iterable[str]) -> str | None:
    for header in set_cookie_headers:
        match = _SESSION_COOKIE_RE.search(header)
        if match:
            return match.group(1)
    return None


def parse_rental_history(html: str) -> list[Rental]:
    soup = BeautifulSoup(html or "", "html.parser")
    rentals: list[Rental] = []
    for row in soup.find_all("tr"):
        cells = [_cell_text(cell) for cell in row.find_all("td")]
        if len(cells) < 3 or not _RENTAL_DATE_RE.match(cells[0]):
            continue
        try:
            date_value = datetime.strptime(cells[0], "%d/%m/%Y").date()
        except ValueError:
            continue
        allocation_id = None
        link = row.find("a", href=_CANCEL_LINK_RE)
        if link is not None:
            allocation_id = _CANCEL_LINK_RE.search(link["href"]).group(1)
        rentals.append(
            Rental(
                date=cells[0],
                date_value=date_value,
                time=cells[1],
                court=cells[2],
                allocation_id=allocation_id,
            )
        )
    return rentals


def _cell_text(cell) -> str:
    return " ".join(cell.get_text(" ").split())
