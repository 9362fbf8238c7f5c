"""Public data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import StrEnum
from typing import Literal

AvailabilityStatus = Literal["available", "no-courts", "reserved"]
BookingResultKind = Literal["success", "failure", "inconclusive"]


class BookingState(StrEnum):
    IDLE = "idle"
    SEARCH_SUBMITTED = "search_submitted"
    COURT_SELECTED = "court_selected"
    ORDER_CONFIRMED = "order_confirmed"
    VERIFIED = "verified"
    ABORTED = "aborted"


@dataclass(frozen=True, slots=True)
class Credentials:
    email: str
    user_id: str


@dataclass(frozen=True, slots=True)
class SessionToken:
    authenticity_token: str
    session_id: str


@dataclass(frozen=True, slots=True)
class TimeSlotQuery:
    unit_id: str
    date: date
    start_hour: str
    duration: float = 1


@dataclass(frozen=True, slots=True)
class CourtSlot:
    court_number: int
    court_id: int
    duration: float
    start_time: str
    end_time: str


@dataclass(frozen=True, slots=True)
class AvailabilityResult:
    status: AvailabilityStatus
    courts: list[int] = field(default_factory=list)
    slots: list[CourtSlot] = field(default_factory=list)
    suggested_times: list[str] | None = None


@dataclass(frozen=True, slots=True)
class ScanEntry:
    """One scanned start time; `availability` is None when the probe failed."""

    date: date
    time: str
    availability: AvailabilityResult | None = None
    error: str | None = None
    is_range_start: bool = False
    range_end: str | None = None

    @property
    def status(self) -> AvailabilityStatus | None:
        return self.availability.status if self.availability is not None else None


@dataclass(frozen=True, slots=True)
class Rental:
    date: str
    date_value: date
    time: str
    court: str
    allocation_id: str | None = None

    @property
    def cancellable(self) -> bool:
        return self.allocation_id is not None


@dataclass(frozen=True, slots=True)
class BookingRequest:
    unit_id: str
    court_id: int
    court_number: int
    date: date
    start_hour: str
    duration: float = 1


@dataclass(frozen=True, slots=True)
class BookingEvent:
    state: BookingState
    step: int
    total_steps: int
    message: str


@dataclass(frozen=True, slots=True)
class BookingOutcome:
    result: BookingResultKind
    state: BookingState
    message: str
    failed_step: str | None = None
    events: tuple[BookingEvent, ...] = ()

    @property
    def success(self) -> bool:
        return self.result == "success"
