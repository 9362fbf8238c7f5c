"""pyTennisCenter package."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

from .client import Client
from .exceptions import (
    AuthError,
    AutomationStepError,
    BookingInProgressError,
    InconclusiveResultError,
    NetworkError,
    ProviderError,
    PyTennisCenterError,
    ValidationError,
)
from .models import (
    AvailabilityResult,
    BookingEvent,
    BookingOutcome,
    BookingRequest,
    BookingState,
    CourtSlot,
    Credentials,
    Rental,
    ScanEntry,
    SessionToken,
    TimeSlotQuery,
)
from .storage import JsonFileStore, KeyValueStore, MemoryStore

try:
    __version__ = version("pytenniscenter")
except PackageNotFoundError:  # pragma: no cover - not installed
    __version__ = "0.0.0"

__all__ = [
    "AuthError",
    "AutomationStepError",
    "AvailabilityResult",
    "BookingEvent",
    "BookingInProgressError",
    "BookingOutcome",
    "BookingRequest",
    "BookingState",
    "Client",
    "CourtSlot",
    "Credentials",
    "InconclusiveResultError",
    "JsonFileStore",
    "KeyValueStore",
    "MemoryStore",
    "NetworkError",
    "ProviderError",
    "PyTennisCenterError",
    "Rental",
    "ScanEntry",
    "SessionToken",
    "TimeSlotQuery",
    "ValidationError",
    "__version__",
]
