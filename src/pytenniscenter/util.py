"""Shared utilities for validation and normalization."""

from __future__ import annotations

import dataclasses
import re
from collections.abc import Iterable, Sequence
from datetime import date, datetime

from .const import DURATIONS, STATUS_NO_COURTS, STATUS_RESERVED
from .exceptions import ValidationError
from .models import Rental, ScanEntry

_HOUR_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
_PORTAL_DATE_FORMAT = "%d/%m/%Y"
_MERGEABLE_STATUSES = (STATUS_NO_COURTS, STATUS_RESERVED)


def format_portal_date(value: date) -> str:
    return value.strftime(_PORTAL_DATE_FORMAT)


def parse_portal_date(value: str) -> date:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Date must be a non-empty string.")
    try:
        return datetime.strptime(value.strip(), _PORTAL_DATE_FORMAT).date()
    except ValueError as exc:
        raise ValidationError("Date is not in dd/mm/yyyy format.") from exc


def portal_weekday(value: date) -> int:
    """Return the weekday with Sunday as 0, as the portal schedules it."""
    return (value.weekday() + 1) % 7


def normalize_hour(value: str) -> str:
    if not isinstance(value, str):
        raise ValidationError("Hour must be a string.")
    match = _HOUR_RE.match(value.strip())
    if match is None:
        raise ValidationError("Hour must be in HH:MM format.")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise ValidationError("Hour is out of range.")
    return f"{hours:02d}:{minutes:02d}"


def hour_to_minutes(value: str) -> int:
    normalized = normalize_hour(value)
    hours, minutes = normalized.split(":")
    return int(hours) * 60 + int(minutes)


def validate_duration(value: float) -> float:
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ValidationError("Duration must be a number.")
    if value not in DURATIONS:
        allowed = ", ".join(f"{item:g}" for item in DURATIONS)
        raise ValidationError(f"Duration must be one of {allowed}.")
    return float(value)


def format_duration(value: float) -> str:
    return f"{validate_duration(value):g}"


def get_valid_time_slots(value: date) -> list[str]:
    """Return the published hourly opening times for the given day."""
    weekday = portal_weekday(value)
    if weekday <= 4:
        hours = list(range(8, 23))
    elif weekday == 5:
        hours = list(range(7, 17))
    else:
        hours = [*range(7, 13), *range(16, 22)]
    return [f"{hour:02d}:00" for hour in hours]


def filter_half_hour_slots(slots: Sequence[str]) -> list[str]:
    """Keep full hours, and HH:30 starts only when the following full hour is not offered."""
    offered = set(slots)
    filtered: list[str] = []
    for slot in slots:
        if not slot.endswith((":00", ":30")):
            continue
        if slot.endswith(":30"):
            next_hour = f"{int(slot[:2]) + 1:02d}:00"
            if next_hour in offered:
                continue
        filtered.append(slot)
    return filtered


def filter_future_slots(value: date, slots: Iterable[str], now: datetime) -> list[str]:
    if value != now.date():
        return list(slots)
    return [slot for slot in slots if int(slot.split(":", 1)[0]) > now.hour]


def consolidate_ranges(entries: Sequence[ScanEntry]) -> list[ScanEntry]:
    """Merge runs of two or more consecutive unavailable entries of the same status."""
    consolidated: list[ScanEntry] = []
    index = 0
    while index < len(entries):
        current = entries[index]
        status = current.status
        if status not in _MERGEABLE_STATUSES:
            consolidated.append(current)
            index += 1
            continue
        end = index
        while end + 1 < len(entries) and entries[end + 1].status == status:
            end += 1
        if end == index:
            consolidated.append(current)
        else:
            consolidated.append(
                dataclasses.replace(current, is_range_start=True, range_end=entries[end].time)
            )
        index = end + 1
    return consolidated


def upcoming_rentals(rentals: Iterable[Rental], today: date) -> list[Rental]:
    return sorted(
        (rental for rental in rentals if rental.date_value >= today),
        key=lambda rental: (rental.date_value, rental.time),
    )


def mask_session_id(value: str | None) -> str:
    if not isinstance(value, str) or not value:
        return "***"
    if len(value) <= 8:
        return "*" * len(value)
    return f"{value[:4]}{'*' * (len(value) - 8)}{value[-4:]}"
