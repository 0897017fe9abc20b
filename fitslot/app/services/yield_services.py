"""Yield management: find under-filled slots and the members to tell about them."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable
from urllib.parse import urlencode

from fitslot.app.core.constants import DROP_IN_PRICE_CENTS, PROMO_DROP_IN_PRICE_CENTS
from fitslot.app.core.db import Database
from fitslot.app.domain.errors import NotFoundError
from fitslot.app.services.repositories import StudioRepo, UserRepo
from fitslot.app.services.shared_services import format_money_cents, format_slot_label, resolve_tz, utc_now
from fitslot.app.services.slot_services import AvailabilityCalculator, SlotAvailability

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class YieldTarget:
    user_id: int
    email: str
    telegram_id: int | None
    first_name: str | None
    slot: SlotAvailability


@dataclass
class YieldScanResult:
    studio_id: int
    studio_name: str
    timezone: str
    target_date: date
    underperforming: list[SlotAvailability] = field(default_factory=list)
    targets: list[YieldTarget] = field(default_factory=list)

    @property
    def empty_slots_found(self) -> int:
        return len(self.underperforming)


def is_underperforming(slot: SlotAvailability) -> bool:
    """Less than half full, and not full."""
    if slot.capacity <= 0:
        return False
    return slot.booked_count < slot.capacity / 2 and not slot.is_full


class YieldScanner:
    """Read-only scan; repeated runs over unchanged data return the same targets."""

    def __init__(
        self,
        db: Database,
        availability: AvailabilityCalculator | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.db = db
        self.availability = availability or AvailabilityCalculator(db)
        self.clock = clock

    def default_target_date(self, tz: str | None) -> date:
        return (self.clock().astimezone(resolve_tz(tz)) + timedelta(days=1)).date()

    async def scan(self, studio_id: int, target_date: date | None = None) -> YieldScanResult:
        async with self.db.session() as session:
            studio = await StudioRepo.get(session, studio_id)
            if studio is None:
                raise NotFoundError("studio_not_found", studio_id=studio_id)
            studio_name = studio.name
            tz = studio.timezone
        day = target_date or self.default_target_date(tz)

        slots = await self.availability.get_day_availability(studio_id, day)
        result = YieldScanResult(
            studio_id=int(studio_id),
            studio_name=studio_name,
            timezone=tz,
            target_date=day,
            underperforming=[s for s in slots if is_underperforming(s)],
        )
        if not result.underperforming:
            logger.debug("Yield scan studio=%s date=%s: nothing under half capacity", studio_id, day)
            return result

        highlighted = result.underperforming[0]
        async with self.db.session() as session:
            members = await UserRepo.list_digital_members(session, studio_id)
        result.targets = [
            YieldTarget(
                user_id=int(m.id),
                email=m.email,
                telegram_id=m.telegram_id,
                first_name=m.first_name,
                slot=highlighted,
            )
            for m in members
        ]
        logger.info(
            "Yield scan studio=%s date=%s: %s underperforming slots, %s targets",
            studio_id,
            day,
            result.empty_slots_found,
            len(result.targets),
        )
        return result


def build_drop_in_link(public_url: str, studio_id: int, slot: SlotAvailability) -> str:
    query = urlencode({"studioId": studio_id, "date": slot.start.isoformat()})
    return f"{public_url.rstrip('/')}/member/bookings?{query}"


def build_promo_message(
    target: YieldTarget,
    *,
    studio_id: int,
    studio_name: str,
    public_url: str,
    tz: str | None = None,
    promo_cents: int = PROMO_DROP_IN_PRICE_CENTS,
    regular_cents: int = DROP_IN_PRICE_CENTS,
) -> str:
    greeting = f"Hello {target.first_name}," if target.first_name else "Hello,"
    date_label = format_slot_label(target.slot.start, "%A %d %B", tz)
    time_label = f"{format_slot_label(target.slot.start, '%H:%M', tz)} - {format_slot_label(target.slot.end, '%H:%M', tz)}"
    return (
        f"{greeting}\n"
        f"Flash sale at {studio_name}: studio spots are still open tomorrow ({date_label}).\n"
        f"Slot {time_label}: drop-in for {format_money_cents(promo_cents)} "
        f"instead of {format_money_cents(regular_cents)}.\n"
        f"Book: {build_drop_in_link(public_url, studio_id, target.slot)}"
    )


__all__ = [
    "YieldTarget",
    "YieldScanResult",
    "YieldScanner",
    "is_underperforming",
    "build_drop_in_link",
    "build_promo_message",
]
