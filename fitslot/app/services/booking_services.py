"""Booking admission, cancellation and check-in.

The admission controller is the only place where capacity and the
one-booking-per-day rule are enforced. Every check runs inside the same
transaction that inserts the booking, after the user row and then the studio
row have been locked, so two admissions for the same user or the same studio
are forced to run one after the other.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from typing import Callable, TypedDict

from sqlalchemy.exc import DBAPIError

from fitslot.app.core.constants import (
    ADMISSION_ISOLATION_LEVEL,
    ADMISSION_MAX_ATTEMPTS,
    ADMISSION_RETRY_BACKOFF_MS,
    SAFE_ISOLATION_LEVELS,
    SLOT_DURATION_MINUTES,
)
from fitslot.app.core.db import Database, is_transient_error
from fitslot.app.domain.errors import (
    AlreadyBookedToday,
    AuthorizationError,
    BookingError,
    EntitlementError,
    NotFoundError,
    SlotFull,
    TerminalStateError,
    TransientStoreError,
    ValidationError,
)
from fitslot.app.domain.models import TERMINAL_STATUSES, Booking, BookingStatus, User
from fitslot.app.services.entitlements import EntitlementChecker, PlanEntitlementChecker
from fitslot.app.services.repositories import BookingRepo, StudioRepo, UserRepo
from fitslot.app.services.shared_services import local_date_of, resolve_tz, utc_now
from fitslot.app.services.slot_services import fits_opening_hours

logger = logging.getLogger(__name__)


class BookingResult(TypedDict, total=False):
    ok: bool
    booking_id: int | None
    status: str | None
    error: str | None


@dataclass(frozen=True)
class AdmissionPolicy:
    """Transaction settings for admission.

    ``isolation_level`` is applied per transaction (ignored on SQLite, which
    serializes writers itself). It must be one of SAFE_ISOLATION_LEVELS, or
    None for the connection default. Transient store failures are retried up
    to ``max_attempts`` times with a linear backoff.
    """

    isolation_level: str | None = ADMISSION_ISOLATION_LEVEL
    max_attempts: int = ADMISSION_MAX_ATTEMPTS
    backoff_ms: int = ADMISSION_RETRY_BACKOFF_MS

    def __post_init__(self) -> None:
        if self.isolation_level is not None and self.isolation_level not in SAFE_ISOLATION_LEVELS:
            raise ValueError(f"unsupported admission isolation level: {self.isolation_level}")


class BookingAdmissionController:
    def __init__(
        self,
        db: Database,
        entitlements: EntitlementChecker | None = None,
        policy: AdmissionPolicy | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
        slot_minutes: int = SLOT_DURATION_MINUTES,
    ) -> None:
        self.db = db
        self.entitlements = entitlements or PlanEntitlementChecker()
        self.policy = policy or AdmissionPolicy()
        self.clock = clock
        self.slot_minutes = slot_minutes

    async def admit(
        self,
        user_id: int | None,
        studio_id: int | None,
        start: datetime | None,
        program: str | None,
    ) -> int:
        """Admit one booking and return its id, or raise a BookingError.

        All four inputs are required; a blank ``program`` counts as missing.
        A naive ``start`` is read as wall-clock time in the studio's zone.
        """
        if not user_id or not studio_id or start is None or not (program or "").strip():
            raise ValidationError("missing_fields")
        if not isinstance(start, datetime):
            raise ValidationError("invalid_start_time")

        attempts = max(1, int(self.policy.max_attempts))
        last_exc: BaseException | None = None
        for attempt in range(1, attempts + 1):
            try:
                return await self._admit_once(int(user_id), int(studio_id), start, program.strip())
            except DBAPIError as exc:
                if not is_transient_error(exc):
                    raise
                last_exc = exc
                logger.warning(
                    "Admission attempt %s/%s for user=%s studio=%s hit a transient store error: %s",
                    attempt,
                    attempts,
                    user_id,
                    studio_id,
                    exc.orig if exc.orig is not None else exc,
                )
                if attempt < attempts and self.policy.backoff_ms:
                    await asyncio.sleep(self.policy.backoff_ms * attempt / 1000)
        raise TransientStoreError("store_busy", attempts=attempts) from last_exc

    async def _admit_once(self, user_id: int, studio_id: int, start: datetime, program: str) -> int:
        async with self.db.transaction(self.policy.isolation_level) as session:
            # Lock order is always user, then studio.
            user = await UserRepo.get(session, user_id, lock=True)
            if user is None:
                raise NotFoundError("user_not_found", user_id=user_id)
            studio = await StudioRepo.get(session, studio_id, lock=True)
            if studio is None:
                raise NotFoundError("studio_not_found", studio_id=studio_id)
            if not self.entitlements.can_book_studio(user, studio):
                raise EntitlementError("drop_in_required", user_id=user_id)

            if start.tzinfo is None:
                start = start.replace(tzinfo=resolve_tz(studio.timezone))
            start = start.astimezone(UTC)
            end = start + timedelta(minutes=self.slot_minutes)

            if start < self.clock():
                raise ValidationError("cannot_book_past")
            if not fits_opening_hours(studio, start, end):
                raise ValidationError("outside_opening_hours")

            day = local_date_of(start, studio.timezone)
            if await BookingRepo.count_user_bookings_on_day(session, user_id, day, studio.timezone):
                raise AlreadyBookedToday("already_booked_today", day=day.isoformat())
            if await BookingRepo.count_user_overlaps(session, user_id, start, end):
                raise AlreadyBookedToday("already_booked_today", day=day.isoformat())

            capacity = int(studio.max_capacity_per_slot)
            booked = await BookingRepo.count_studio_overlaps(session, studio_id, start, end)
            if booked >= capacity:
                raise SlotFull("slot_full", booked=booked, capacity=capacity)

            booking = Booking(
                user_id=user_id,
                studio_id=studio_id,
                status=BookingStatus.CONFIRMED,
                starts_at=start,
                ends_at=end,
                program_used=program,
            )
            session.add(booking)
            await session.flush()
            booking_id = int(booking.id)
        logger.info(
            "Admitted booking #%s: user=%s studio=%s start=%s (%s/%s taken)",
            booking_id,
            user_id,
            studio_id,
            start.isoformat(),
            booked + 1,
            capacity,
        )
        return booking_id


def _terminal_error(booking: Booking) -> TerminalStateError:
    return TerminalStateError(f"booking_already_{booking.status.value.lower()}", booking_id=booking.id)


class CancellationHandler:
    def __init__(self, db: Database, *, clock: Callable[[], datetime] = utc_now) -> None:
        self.db = db
        self.clock = clock

    async def cancel(self, booking_id: int, user_id: int) -> Booking:
        """Cancel a member's own booking.

        The row is kept with status CANCELLED; every capacity and per-day
        count ignores that status, so the spot is free as soon as this commits.
        """
        async with self.db.transaction() as session:
            booking = await BookingRepo.get(session, booking_id, lock=True)
            if booking is None:
                raise NotFoundError("booking_not_found", booking_id=booking_id)
            if int(booking.user_id) != int(user_id):
                raise AuthorizationError("not_booking_owner", booking_id=booking_id)
            if booking.status in TERMINAL_STATUSES:
                raise _terminal_error(booking)
            booking.status = BookingStatus.CANCELLED
            booking.cancelled_at = self.clock()
        logger.info("Booking #%s cancelled by user %s", booking_id, user_id)
        return booking


async def check_in_booking(db: Database, booking_id: int, *, studio_id: int | None = None) -> Booking:
    """Mark a confirmed booking as attended (coach action).

    When ``studio_id`` is given the booking must belong to that studio.
    """
    async with db.transaction() as session:
        booking = await BookingRepo.get(session, booking_id, lock=True)
        if booking is None:
            raise NotFoundError("booking_not_found", booking_id=booking_id)
        if studio_id is not None and int(booking.studio_id) != int(studio_id):
            raise AuthorizationError("not_studio_booking", booking_id=booking_id)
        if booking.status in TERMINAL_STATUSES:
            raise _terminal_error(booking)
        booking.status = BookingStatus.ATTENDED
    logger.info("Booking #%s checked in", booking_id)
    return booking


async def list_user_bookings(db: Database, user_id: int) -> list[Booking]:
    async with db.session() as session:
        return await BookingRepo.list_by_user(session, user_id)


async def get_studio_schedule(db: Database, studio_id: int, day: date) -> list[tuple[Booking, User]]:
    """Confirmed and attended bookings of a studio's local day, earliest first."""
    async with db.session() as session:
        studio = await StudioRepo.get(session, studio_id)
        if studio is None:
            raise NotFoundError("studio_not_found", studio_id=studio_id)
        return await BookingRepo.list_studio_day(session, studio_id, day, studio.timezone)


async def process_booking_request(
    controller: BookingAdmissionController,
    user_id: int | None,
    studio_id: int | None,
    start: datetime | None,
    program: str | None,
) -> BookingResult:
    """Admission wrapped for callers that want a result mapping, never an exception."""
    try:
        booking_id = await controller.admit(user_id, studio_id, start, program)
    except BookingError as exc:
        logger.info("Booking refused for user=%s studio=%s: %s", user_id, studio_id, exc.code)
        return {"ok": False, "error": exc.code}
    except Exception as exc:
        logger.exception("process_booking_request failed for user=%s studio=%s: %s", user_id, studio_id, exc)
        return {"ok": False, "error": "booking_failed"}
    return {"ok": True, "booking_id": booking_id, "status": BookingStatus.CONFIRMED.value}


async def process_booking_cancellation(
    handler: CancellationHandler, user_id: int, booking_id: int
) -> BookingResult:
    try:
        booking = await handler.cancel(booking_id, user_id)
    except BookingError as exc:
        return {"ok": False, "booking_id": booking_id, "error": exc.code}
    except Exception as exc:
        logger.exception("process_booking_cancellation failed for booking=%s: %s", booking_id, exc)
        return {"ok": False, "booking_id": booking_id, "error": "cancel_failed"}
    return {"ok": True, "booking_id": int(booking.id), "status": booking.status.value}


__all__ = [
    "AdmissionPolicy",
    "BookingAdmissionController",
    "BookingResult",
    "CancellationHandler",
    "check_in_booking",
    "list_user_bookings",
    "get_studio_schedule",
    "process_booking_request",
    "process_booking_cancellation",
]
