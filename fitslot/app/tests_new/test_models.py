from datetime import UTC, datetime, timedelta, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from fitslot.app.domain import errors, models


def test_normalize_plan():
    assert models.normalize_plan("digital") is models.Plan.DIGITAL
    assert models.normalize_plan(models.Plan.COACHING) is models.Plan.COACHING
    assert models.normalize_plan("gold") is None


def test_status_collections():
    assert models.BookingStatus.CONFIRMED in models.OCCUPYING_STATUSES
    assert models.BookingStatus.ATTENDED in models.OCCUPYING_STATUSES
    assert models.BookingStatus.CANCELLED not in models.OCCUPYING_STATUSES
    assert models.BookingStatus.CANCELLED in models.TERMINAL_STATUSES
    assert models.BookingStatus.CONFIRMED not in models.TERMINAL_STATUSES
    assert models.Plan.DIGITAL not in models.STUDIO_ACCESS_PLANS


def test_errors_carry_stable_codes():
    exc = errors.SlotFull(booked=6, capacity=6)
    assert exc.code == "slot_full"
    assert str(exc) == "slot_full"
    assert exc.context == {"booked": 6, "capacity": 6}
    assert isinstance(exc, errors.ConflictError)
    assert isinstance(exc, ValueError)
    assert errors.NotFoundError("studio_not_found").code == "studio_not_found"
    assert errors.TerminalStateError().code == "booking_already_attended"


@pytest.mark.asyncio
async def test_utc_datetime_round_trips_as_aware_utc(db, make_studio, make_user):
    studio = await make_studio()
    user = await make_user(studio)
    paris_nine = datetime(2031, 3, 4, 9, 0, tzinfo=timezone(timedelta(hours=1)))
    async with db.transaction() as session:
        session.add(
            models.Booking(
                user_id=user.id,
                studio_id=studio.id,
                starts_at=paris_nine,
                ends_at=paris_nine + timedelta(minutes=20),
            )
        )

    async with db.session() as session:
        booking = (await session.execute(select(models.Booking))).scalars().one()
    assert booking.starts_at == datetime(2031, 3, 4, 8, 0, tzinfo=UTC)
    assert booking.starts_at.tzinfo is not None
    assert booking.status is models.BookingStatus.CONFIRMED


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "fields",
    [
        {"max_capacity_per_slot": -1},
        {"opening_hour": 20, "closing_hour": 8},
        {"opening_hour": 10, "closing_hour": 10},
        {"opening_hour": 6, "closing_hour": 25},
    ],
)
async def test_studio_check_constraints(db, fields):
    with pytest.raises(IntegrityError):
        async with db.transaction() as session:
            session.add(models.Studio(name="Studio Invalide", **fields))
            await session.flush()


@pytest.mark.asyncio
@pytest.mark.parametrize("minutes", [0, -20])
async def test_booking_interval_must_be_positive(db, make_studio, make_user, minutes):
    studio = await make_studio()
    user = await make_user(studio)
    start = datetime(2031, 3, 4, 8, 0, tzinfo=UTC)
    with pytest.raises(IntegrityError):
        async with db.transaction() as session:
            session.add(
                models.Booking(
                    user_id=user.id,
                    studio_id=studio.id,
                    starts_at=start,
                    ends_at=start + timedelta(minutes=minutes),
                )
            )
            await session.flush()
