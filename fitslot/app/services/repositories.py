"""Query helpers for studios, users and bookings.

All methods take an open ``AsyncSession`` so callers decide the transaction
boundary; the admission controller runs several of them inside one
transaction.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from fitslot.app.domain.models import (
    OCCUPYING_STATUSES,
    Booking,
    BookingStatus,
    Plan,
    Role,
    Studio,
    User,
)
from fitslot.app.services.shared_services import local_day_bounds

logger = logging.getLogger(__name__)

_OCCUPYING = tuple(OCCUPYING_STATUSES)


class StudioRepo:
    @staticmethod
    async def get(session: AsyncSession, studio_id: int, *, lock: bool = False) -> Studio | None:
        stmt = select(Studio).where(Studio.id == int(studio_id))
        if lock:
            stmt = stmt.with_for_update()
        return (await session.execute(stmt)).scalars().first()

    @staticmethod
    async def list_all(session: AsyncSession) -> list[Studio]:
        res = await session.execute(select(Studio).order_by(Studio.id))
        return list(res.scalars().all())


class UserRepo:
    @staticmethod
    async def get(session: AsyncSession, user_id: int, *, lock: bool = False) -> User | None:
        stmt = select(User).where(User.id == int(user_id))
        if lock:
            stmt = stmt.with_for_update()
        return (await session.execute(stmt)).scalars().first()

    @staticmethod
    async def list_digital_members(session: AsyncSession, studio_id: int) -> list[User]:
        """Members of `studio_id` on the digital-only plan with a deliverable e-mail."""
        stmt = (
            select(User)
            .where(
                User.role == Role.MEMBER,
                User.home_studio_id == int(studio_id),
                User.plan == Plan.DIGITAL,
                User.email.is_not(None),
                User.email != "",
            )
            .order_by(User.id)
        )
        return list((await session.execute(stmt)).scalars().all())


class BookingRepo:
    @staticmethod
    async def get(session: AsyncSession, booking_id: int, *, lock: bool = False) -> Booking | None:
        stmt = select(Booking).where(Booking.id == int(booking_id))
        if lock:
            stmt = stmt.with_for_update()
        return (await session.execute(stmt)).scalars().first()

    @staticmethod
    async def get_by_payment_reference(session: AsyncSession, reference: str) -> Booking | None:
        res = await session.execute(select(Booking).where(Booking.payment_reference == reference))
        return res.scalars().first()

    @staticmethod
    async def count_user_bookings_on_day(
        session: AsyncSession, user_id: int, day: date, tz: str | None
    ) -> int:
        day_start, day_end = local_day_bounds(day, tz)
        stmt = select(func.count(Booking.id)).where(
            Booking.user_id == int(user_id),
            Booking.status.in_(_OCCUPYING),
            Booking.starts_at >= day_start,
            Booking.starts_at < day_end,
        )
        return int(await session.scalar(stmt) or 0)

    @staticmethod
    async def count_user_overlaps(
        session: AsyncSession, user_id: int, start: datetime, end: datetime
    ) -> int:
        stmt = select(func.count(Booking.id)).where(
            Booking.user_id == int(user_id),
            Booking.status.in_(_OCCUPYING),
            Booking.starts_at < end,
            Booking.ends_at > start,
        )
        return int(await session.scalar(stmt) or 0)

    @staticmethod
    async def count_studio_overlaps(
        session: AsyncSession, studio_id: int, start: datetime, end: datetime
    ) -> int:
        stmt = select(func.count(Booking.id)).where(
            Booking.studio_id == int(studio_id),
            Booking.status.in_(_OCCUPYING),
            Booking.starts_at < end,
            Booking.ends_at > start,
        )
        return int(await session.scalar(stmt) or 0)

    @staticmethod
    async def list_studio_intervals(
        session: AsyncSession, studio_id: int, start: datetime, end: datetime
    ) -> list[tuple[datetime, datetime]]:
        """[starts_at, ends_at) of occupying bookings intersecting [start, end)."""
        stmt = select(Booking.starts_at, Booking.ends_at).where(
            Booking.studio_id == int(studio_id),
            Booking.status.in_(_OCCUPYING),
            Booking.starts_at < end,
            Booking.ends_at > start,
        )
        return [(row[0], row[1]) for row in (await session.execute(stmt)).all()]

    @staticmethod
    async def list_by_user(session: AsyncSession, user_id: int) -> list[Booking]:
        stmt = select(Booking).where(Booking.user_id == int(user_id)).order_by(Booking.starts_at.desc())
        return list((await session.execute(stmt)).scalars().all())

    @staticmethod
    async def list_studio_day(
        session: AsyncSession,
        studio_id: int,
        day: date,
        tz: str | None,
        statuses: Sequence[BookingStatus] = _OCCUPYING,
    ) -> list[tuple[Booking, User]]:
        day_start, day_end = local_day_bounds(day, tz)
        stmt = (
            select(Booking, User)
            .join(User, User.id == Booking.user_id)
            .where(
                Booking.studio_id == int(studio_id),
                Booking.status.in_(tuple(statuses)),
                Booking.starts_at >= day_start,
                Booking.starts_at < day_end,
            )
            .order_by(Booking.starts_at, Booking.id)
        )
        return [(b, u) for b, u in (await session.execute(stmt)).all()]


__all__ = ["StudioRepo", "UserRepo", "BookingRepo"]
