"""Turn confirmed drop-in payments into bookings.

A paid drop-in is honoured even when the slot has filled up or the member
already holds a booking that day: the money has been taken, so the booking is
created and an oversold slot is only logged. Delivery from the payment
provider is at-least-once, so the payment reference is the idempotency key.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Iterable

from sqlalchemy.exc import IntegrityError

from fitslot.app.core.constants import DROP_IN_PROGRAM_LABEL, SLOT_DURATION_MINUTES
from fitslot.app.core.db import Database
from fitslot.app.domain.errors import BookingError, NotFoundError, ValidationError
from fitslot.app.domain.models import Booking, BookingStatus
from fitslot.app.services.repositories import BookingRepo, StudioRepo, UserRepo
from fitslot.app.services.shared_services import resolve_tz

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentConfirmedEvent:
    user_id: int
    studio_id: int
    start_time: datetime
    payment_reference: str


@dataclass(frozen=True)
class ReconcileOutcome:
    payment_reference: str
    booking_id: int | None
    created: bool = False
    oversold: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.booking_id is not None


class PaymentCallbackReconciler:
    def __init__(self, db: Database, *, slot_minutes: int = SLOT_DURATION_MINUTES) -> None:
        self.db = db
        self.slot_minutes = slot_minutes

    async def reconcile(self, event: PaymentConfirmedEvent) -> ReconcileOutcome:
        """Create the drop-in booking for ``event`` or return the one already made."""
        if not event.payment_reference or not event.user_id or not event.studio_id or event.start_time is None:
            raise ValidationError("missing_fields")

        try:
            async with self.db.transaction() as session:
                existing = await BookingRepo.get_by_payment_reference(session, event.payment_reference)
                if existing is not None:
                    logger.info("Payment %s already reconciled as booking #%s", event.payment_reference, existing.id)
                    return ReconcileOutcome(event.payment_reference, int(existing.id))

                # Same lock order as admission: user, then studio.
                if await UserRepo.get(session, event.user_id, lock=True) is None:
                    raise NotFoundError("user_not_found", user_id=event.user_id)
                studio = await StudioRepo.get(session, event.studio_id, lock=True)
                if studio is None:
                    raise NotFoundError("studio_not_found", studio_id=event.studio_id)

                start = event.start_time
                if start.tzinfo is None:
                    start = start.replace(tzinfo=resolve_tz(studio.timezone))
                start = start.astimezone(UTC)
                end = start + timedelta(minutes=self.slot_minutes)

                booked = await BookingRepo.count_studio_overlaps(session, studio.id, start, end)
                oversold = booked >= int(studio.max_capacity_per_slot)
                if oversold:
                    logger.warning(
                        "Drop-in %s oversells studio=%s at %s (%s/%s already taken)",
                        event.payment_reference,
                        studio.id,
                        start.isoformat(),
                        booked,
                        studio.max_capacity_per_slot,
                    )

                booking = Booking(
                    user_id=int(event.user_id),
                    studio_id=int(event.studio_id),
                    status=BookingStatus.CONFIRMED,
                    starts_at=start,
                    ends_at=end,
                    program_used=DROP_IN_PROGRAM_LABEL,
                    payment_reference=event.payment_reference,
                )
                session.add(booking)
                await session.flush()
                booking_id = int(booking.id)
        except IntegrityError:
            # A concurrent delivery of the same event inserted first.
            async with self.db.session() as session:
                winner = await BookingRepo.get_by_payment_reference(session, event.payment_reference)
            if winner is None:
                raise
            logger.info("Payment %s reconciled concurrently as booking #%s", event.payment_reference, winner.id)
            return ReconcileOutcome(event.payment_reference, int(winner.id))

        logger.info(
            "Drop-in booking #%s created for user=%s studio=%s start=%s",
            booking_id,
            event.user_id,
            event.studio_id,
            start.isoformat(),
        )
        return ReconcileOutcome(event.payment_reference, booking_id, created=True, oversold=oversold)


async def reconcile_many(
    reconciler: PaymentCallbackReconciler, events: Iterable[PaymentConfirmedEvent]
) -> list[ReconcileOutcome]:
    """Reconcile a batch; a failing event is logged and reported, the rest continue."""
    outcomes: list[ReconcileOutcome] = []
    for event in events:
        try:
            outcomes.append(await reconciler.reconcile(event))
        except BookingError as exc:
            logger.warning("Payment %s not reconciled: %s", event.payment_reference, exc.code)
            outcomes.append(ReconcileOutcome(event.payment_reference, None, error=exc.code))
        except Exception as exc:
            logger.exception("Payment %s failed to reconcile: %s", event.payment_reference, exc)
            outcomes.append(ReconcileOutcome(event.payment_reference, None, error="reconcile_failed"))
    return outcomes


__all__ = [
    "PaymentConfirmedEvent",
    "ReconcileOutcome",
    "PaymentCallbackReconciler",
    "reconcile_many",
]
