"""Typed booking failures.

Every error carries a stable, frontend-safe ``code``. ``str(exc)`` is the code
itself so callers that only know about ``ValueError`` still get something
they can show to the user.
"""

from __future__ import annotations

__all__ = [
    "BookingError",
    "ValidationError",
    "EntitlementError",
    "ConflictError",
    "AlreadyBookedToday",
    "SlotFull",
    "NotFoundError",
    "AuthorizationError",
    "TerminalStateError",
    "TransientStoreError",
]


class BookingError(ValueError):
    default_code = "booking_failed"

    def __init__(self, code: str | None = None, **context: object) -> None:
        self.code = code or self.default_code
        self.context = context
        super().__init__(self.code)


class ValidationError(BookingError):
    default_code = "missing_fields"


class EntitlementError(BookingError):
    """The plan does not include direct studio access; use the paid drop-in flow."""

    default_code = "drop_in_required"


class ConflictError(BookingError):
    default_code = "conflict"


class AlreadyBookedToday(ConflictError):
    default_code = "already_booked_today"


class SlotFull(ConflictError):
    default_code = "slot_full"


class NotFoundError(BookingError):
    default_code = "not_found"


class AuthorizationError(BookingError):
    default_code = "not_booking_owner"


class TerminalStateError(BookingError):
    default_code = "booking_already_attended"


class TransientStoreError(BookingError):
    """Concurrent conflict in the store; the same request may be retried."""

    default_code = "store_busy"
