"""Slot grid generation and availability.

Slots are never stored. A studio's grid for a day is derived from its opening
hours and the fixed slot duration; occupancy is joined in from the bookings
table on every read.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from typing import Iterable, Iterator
from zoneinfo import ZoneInfo

from fitslot.app.core.constants import SLOT_DURATION_MINUTES
from fitslot.app.core.db import Database
from fitslot.app.domain.errors import NotFoundError
from fitslot.app.domain.models import Studio
from fitslot.app.services.repositories import BookingRepo, StudioRepo
from fitslot.app.services.shared_services import resolve_tz

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Slot:
    start: datetime
    end: datetime


@dataclass(frozen=True)
class SlotAvailability:
    start: datetime
    end: datetime
    capacity: int
    booked_count: int

    @property
    def available_spots(self) -> int:
        return max(0, self.capacity - self.booked_count)

    @property
    def is_full(self) -> bool:
        return self.booked_count >= self.capacity


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open interval intersection: [a_start, a_end) ∩ [b_start, b_end) ≠ ∅."""
    return a_start < b_end and a_end > b_start


def iter_slot_grid(
    opening_hour: int,
    closing_hour: int,
    day: date,
    tz: ZoneInfo | str | None = None,
    duration_minutes: int = SLOT_DURATION_MINUTES,
) -> Iterator[Slot]:
    """Yield contiguous slots covering [opening, closing) on `day` in `tz`.

    Boundaries are wall-clock times in the studio's zone, returned as aware
    UTC datetimes. A trailing period shorter than `duration_minutes` is dropped.
    """
    if duration_minutes <= 0:
        return
    if not (0 <= opening_hour < closing_hour <= 24):
        return
    zone = resolve_tz(tz)
    midnight = datetime.combine(day, time.min, tzinfo=zone)
    opening = midnight + timedelta(hours=opening_hour)
    closing = midnight + timedelta(hours=closing_hour)
    step = timedelta(minutes=duration_minutes)

    start = opening
    while start + step <= closing:
        yield Slot(start=start.astimezone(UTC), end=(start + step).astimezone(UTC))
        start += step


def generate_slot_grid(
    opening_hour: int,
    closing_hour: int,
    day: date,
    tz: ZoneInfo | str | None = None,
    duration_minutes: int = SLOT_DURATION_MINUTES,
) -> list[Slot]:
    return list(iter_slot_grid(opening_hour, closing_hour, day, tz, duration_minutes))


def studio_slot_grid(studio: Studio, day: date, duration_minutes: int = SLOT_DURATION_MINUTES) -> list[Slot]:
    return generate_slot_grid(
        int(studio.opening_hour),
        int(studio.closing_hour),
        day,
        studio.timezone,
        duration_minutes,
    )


def fits_opening_hours(
    studio: Studio, start: datetime, end: datetime
) -> bool:
    """True when [start, end) lies inside the studio's opening hours on start's local day."""
    zone = resolve_tz(studio.timezone)
    local_start = start.astimezone(zone)
    midnight = datetime.combine(local_start.date(), time.min, tzinfo=zone)
    opening = midnight + timedelta(hours=int(studio.opening_hour))
    closing = midnight + timedelta(hours=int(studio.closing_hour))
    return opening <= local_start and end.astimezone(zone) <= closing


def compute_availability(
    grid: Iterable[Slot],
    intervals: Iterable[tuple[datetime, datetime]],
    capacity: int,
) -> list[SlotAvailability]:
    """Join a slot grid with booking intervals.

    A booking counts toward every slot it overlaps, so a 09:05-09:25 drop-in
    occupies both the 09:00 and the 09:20 slot.
    """
    booked = list(intervals)
    out: list[SlotAvailability] = []
    for slot in grid:
        count = sum(1 for b_start, b_end in booked if overlaps(b_start, b_end, slot.start, slot.end))
        out.append(SlotAvailability(start=slot.start, end=slot.end, capacity=int(capacity), booked_count=count))
    return out


class AvailabilityCalculator:
    """Per-slot occupancy for a studio/day, recomputed on every call."""

    def __init__(self, db: Database, *, slot_minutes: int = SLOT_DURATION_MINUTES) -> None:
        self.db = db
        self.slot_minutes = slot_minutes

    async def get_day_availability(self, studio_id: int, day: date) -> list[SlotAvailability]:
        async with self.db.session() as session:
            studio = await StudioRepo.get(session, studio_id)
            if studio is None:
                raise NotFoundError("studio_not_found", studio_id=studio_id)
            grid = studio_slot_grid(studio, day, self.slot_minutes)
            if not grid:
                return []
            intervals = await BookingRepo.list_studio_intervals(
                session, studio.id, grid[0].start, grid[-1].end
            )
            capacity = int(studio.max_capacity_per_slot)
        return compute_availability(grid, intervals, capacity)

    async def get_slot_availability(self, studio_id: int, start: datetime) -> SlotAvailability | None:
        """Availability of the grid slot starting exactly at `start`, if any.

        A naive `start` is read as studio wall-clock time.
        """
        async with self.db.session() as session:
            studio = await StudioRepo.get(session, studio_id)
            if studio is None:
                raise NotFoundError("studio_not_found", studio_id=studio_id)
            tz = resolve_tz(studio.timezone)
        if start.tzinfo is None:
            start = start.replace(tzinfo=tz)
        start = start.astimezone(UTC)
        day = start.astimezone(tz).date()
        for slot in await self.get_day_availability(studio_id, day):
            if slot.start == start:
                return slot
        return None


__all__ = [
    "Slot",
    "SlotAvailability",
    "overlaps",
    "iter_slot_grid",
    "generate_slot_grid",
    "studio_slot_grid",
    "fits_opening_hours",
    "compute_availability",
    "AvailabilityCalculator",
]
