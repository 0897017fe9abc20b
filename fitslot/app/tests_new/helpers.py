"""Shared time constants for the store-backed tests."""

from datetime import UTC, date, datetime

from fitslot.app.services.booking_services import AdmissionPolicy

# Tuesday; Europe/Paris is UTC+1 on this date, so 09:00 local is 08:00 UTC.
BOOKING_DAY = date(2031, 3, 4)
FIXED_NOW = datetime(2031, 3, 3, 12, 0, tzinfo=UTC)

TEST_POLICY = AdmissionPolicy(isolation_level=None, max_attempts=3, backoff_ms=0)


def at(hour: int, minute: int = 0) -> datetime:
    """UTC instant of a Paris wall-clock time on BOOKING_DAY."""
    return datetime(2031, 3, 4, hour - 1, minute, tzinfo=UTC)


def fixed_clock() -> datetime:
    return FIXED_NOW

PROGRAM = "Hyrox"
