"""Manual live check against the tennis center portal.

Run from the repository root with:
  EMAIL=... USER_ID=... UNIT_ID=13 \
  PYTHONPATH=src python scripts/portal_live_check.py --date 2026-11-02

Book the first available court of the scan (opens a headless browser):
  EMAIL=... USER_ID=... UNIT_ID=13 \
  PYTHONPATH=src python scripts/portal_live_check.py --date 2026-11-02 --book

Optional environment variables:
  BASE_URL
  STORAGE_FILE

Debug helpers:
  --debug enables DEBUG logging.
  --traceback prints full tracebacks on errors.
  --headed shows the browser window while booking.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
import traceback
from datetime import date, timedelta

from pytenniscenter import Client, Credentials, JsonFileStore, MemoryStore
from pytenniscenter.const import UNITS
from pytenniscenter.exceptions import ValidationError
from pytenniscenter.models import BookingEvent, BookingRequest, ScanEntry
from pytenniscenter.util import mask_session_id

_LOGGER = logging.getLogger(__name__)


def _require_value(name: str, value: str | None) -> str:
    if not value:
        print(f"Missing required value: {name}", file=sys.stderr)
        raise SystemExit(2)
    return value


def _print_exception(label: str, exc: Exception, *, trace: bool) -> None:
    print(f"{label}: {exc.__class__.__name__}: {exc}", file=sys.stderr)
    user_message = getattr(exc, "user_message", None)
    if user_message:
        print(f"  {user_message}", file=sys.stderr)
    if trace:
        traceback.print_exc()


def _format_entry(entry: ScanEntry) -> str:
    label = entry.time if not entry.is_range_start else f"{entry.time}-{entry.range_end}"
    if entry.error is not None:
        return f"{label} error: {entry.error}"
    availability = entry.availability
    if availability.status == "available":
        courts = ", ".join(str(court) for court in availability.courts)
        return f"{label} available courts: {courts}"
    suggestions = ", ".join(availability.suggested_times or [])
    suffix = f" (suggested: {suggestions})" if suggestions else ""
    return f"{label} {availability.status}{suffix}"


def _print_event(event: BookingEvent) -> None:
    print(f"[{event.step}/{event.total_steps}] {event.message}")


def _parse_date(value: str | None) -> date:
    if not value:
        return date.today() + timedelta(days=1)
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise ValidationError("Date must be in YYYY-MM-DD format.") from exc


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a tennis center portal live check.")
    parser.add_argument("--email", dest="email", help="Account email address.")
    parser.add_argument("--user-id", dest="user_id", help="Account national id.")
    parser.add_argument("--unit", dest="unit_id", help="Tennis centre id.")
    parser.add_argument("--base-url", dest="base_url", help="Portal base URL.")
    parser.add_argument(
        "--storage-file",
        dest="storage_file",
        help="JSON file for the session and hour-list cache.",
    )
    parser.add_argument("--date", dest="date", help="Date to scan (YYYY-MM-DD, default tomorrow).")
    parser.add_argument(
        "--duration",
        dest="duration",
        type=float,
        default=1,
        help="Duration in hours to scan and book.",
    )
    parser.add_argument(
        "--book",
        dest="book",
        action="store_true",
        help="Book the first available court found by the scan.",
    )
    parser.add_argument(
        "--headed",
        dest="headed",
        action="store_true",
        help="Show the browser while booking.",
    )
    parser.add_argument("--list-units", dest="list_units", action="store_true", help="List centres.")
    parser.add_argument("--debug", dest="debug", action="store_true", help="Enable debug logging.")
    parser.add_argument(
        "--traceback",
        dest="traceback",
        action="store_true",
        help="Print full tracebacks on errors.",
    )
    return parser.parse_args()


async def main() -> int:
    args = _parse_args()
    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO)
    if args.list_units:
        for unit_id, (hebrew, english) in sorted(UNITS.items(), key=lambda item: int(item[0])):
            print(f"{unit_id:>3} {english} ({hebrew})")
        return 0

    email = _require_value("email", args.email or os.getenv("EMAIL"))
    user_id = _require_value("user_id", args.user_id or os.getenv("USER_ID"))
    unit_id = _require_value("unit_id", args.unit_id or os.getenv("UNIT_ID"))
    base_url = args.base_url or os.getenv("BASE_URL")
    storage_file = args.storage_file or os.getenv("STORAGE_FILE")
    storage = JsonFileStore(storage_file) if storage_file else MemoryStore()

    try:
        target = _parse_date(args.date)
        async with Client(
            Credentials(email=email, user_id=user_id),
            storage=storage,
            base_url=base_url,
            headless=not args.headed,
            observer=_print_event,
        ) as client:
            token = await client.acquire_session()
            print(f"Session: {mask_session_id(token.session_id)}")
            entries = await client.scan_day(unit_id, target, duration=args.duration)
            print(f"Scan {target.isoformat()} unit {unit_id}: {len(entries)} entries")
            for entry in entries:
                print(f"- {_format_entry(entry)}")
            rentals = await client.list_rentals()
            print(f"Upcoming rentals: {len(rentals)}")
            for rental in rentals:
                flag = "" if rental.cancellable else " (not cancellable)"
                print(f"- {rental.date} {rental.time} court {rental.court}{flag}")

            if args.book:
                entry = next(
                    (
                        entry
                        for entry in entries
                        if entry.status == "available" and entry.availability.slots
                    ),
                    None,
                )
                if entry is None:
                    print("No available court to book.", file=sys.stderr)
                    return 1
                slot = entry.availability.slots[0]
                _LOGGER.info("Booking court %s at %s", slot.court_number, entry.time)
                outcome = await client.book(
                    BookingRequest(
                        unit_id=unit_id,
                        court_id=slot.court_id,
                        court_number=slot.court_number,
                        date=target,
                        start_hour=entry.time,
                        duration=args.duration,
                    )
                )
                print(f"Booking {outcome.result}: {outcome.message}")
                if not outcome.success:
                    return 1
    except Exception as exc:
        _print_exception("Error", exc, trace=args.traceback)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
