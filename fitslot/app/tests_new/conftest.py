"""Test configuration: import path, a throwaway SQLite store and row factories.

Adds the repository root to sys.path so `import fitslot` works in CI where the
checkout directory may not be on PYTHONPATH by default.
"""

from __future__ import annotations

import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.pool import NullPool

ROOT = Path(__file__).resolve().parents[3]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fitslot.app.core.db import Database  # noqa: E402
from fitslot.app.domain.models import Booking, BookingStatus, Plan, Role, Studio, User  # noqa: E402
from fitslot.app.services.booking_services import BookingAdmissionController  # noqa: E402
from fitslot.app.tests_new.helpers import TEST_POLICY, fixed_clock  # noqa: E402


@pytest_asyncio.fixture
async def db(tmp_path):
    database = Database(
        f"sqlite+aiosqlite:///{tmp_path / 'fitslot.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )
    await database.init_schema()
    try:
        yield database
    finally:
        await database.dispose()


@pytest.fixture
def controller(db):
    return BookingAdmissionController(db, policy=TEST_POLICY, clock=fixed_clock)


@pytest.fixture
def make_studio(db):
    async def _make(name: str = "Studio Bastille", **fields) -> Studio:
        async with db.transaction() as session:
            studio = Studio(name=name, city=fields.pop("city", "Paris"), **fields)
            session.add(studio)
            await session.flush()
        return studio

    return _make


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    async def _make(studio: Studio | None = None, *, plan: Plan | None = Plan.ZAPOY, **fields) -> User:
        counter["n"] += 1
        fields.setdefault("email", f"user{counter['n']}@example.com")
        fields.setdefault("first_name", f"User{counter['n']}")
        fields.setdefault("role", Role.MEMBER)
        async with db.transaction() as session:
            user = User(plan=plan, home_studio_id=studio.id if studio else None, **fields)
            session.add(user)
            await session.flush()
        return user

    return _make


@pytest.fixture
def add_booking(db):
    """Insert a booking row directly, bypassing admission."""

    async def _add(user: User, studio: Studio, start: datetime, *, minutes: int = 20,
                   status: BookingStatus = BookingStatus.CONFIRMED) -> Booking:
        async with db.transaction() as session:
            booking = Booking(
                user_id=user.id,
                studio_id=studio.id,
                status=status,
                starts_at=start,
                ends_at=start + timedelta(minutes=minutes),
            )
            session.add(booking)
            await session.flush()
        return booking

    return _add
