"""
Runtime bootstrap helpers.

Idempotent demo data for local runs: one studio plus a coach and a couple of
members. Guarded by RUN_BOOTSTRAP so production databases are never seeded.
"""

from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fitslot.app.core.constants import RUN_BOOTSTRAP_ENABLED
from fitslot.app.core.db import Database
from fitslot.app.domain import models

__all__ = ["DEMO_USERS", "ensure_studio", "init_demo_data"]

DEMO_STUDIO = ("Studio Bastille", "Paris")

# email, first name, role, plan
DEMO_USERS: tuple[tuple[str, str, models.Role, models.Plan | None], ...] = (
    ("coach@fitslot.local", "Camille", models.Role.COACH, None),
    ("member@fitslot.local", "Louis", models.Role.MEMBER, models.Plan.ZAPOY),
    ("digital@fitslot.local", "Inès", models.Role.MEMBER, models.Plan.DIGITAL),
)


async def ensure_studio(
    session: AsyncSession,
    name: str,
    city: str | None = None,
    *,
    capacity: int | None = None,
    opening_hour: int | None = None,
    closing_hour: int | None = None,
    timezone: str | None = None,
) -> models.Studio:
    """Return the studio called `name`, creating it when missing."""
    result = await session.execute(select(models.Studio).where(models.Studio.name == name))
    obj = result.scalars().first()
    if obj:
        return obj
    obj = models.Studio(name=name, city=city)
    if capacity is not None:
        obj.max_capacity_per_slot = capacity
    if opening_hour is not None:
        obj.opening_hour = opening_hour
    if closing_hour is not None:
        obj.closing_hour = closing_hour
    if timezone:
        obj.timezone = timezone
    session.add(obj)
    await session.flush()
    return obj


async def _upsert_users(
    session: AsyncSession, studio_id: int, rows: Iterable[tuple[str, str, models.Role, models.Plan | None]]
) -> int:
    """Добавляет недостающих пользователей."""
    result = await session.execute(select(models.User.email))
    existing = {row[0] for row in result.all()}
    added = 0
    for email, first_name, role, plan in rows:
        if email in existing:
            continue
        session.add(
            models.User(
                email=email,
                first_name=first_name,
                role=role,
                plan=plan,
                subscription_status="active" if plan else None,
                home_studio_id=studio_id,
            )
        )
        added += 1
    return added


async def init_demo_data(db: Database, *, force: bool = False) -> bool:
    """Seed demo rows when RUN_BOOTSTRAP is on (or `force`). Returns True when it ran."""
    if not (force or RUN_BOOTSTRAP_ENABLED):
        return False
    async with db.transaction() as session:
        studio = await ensure_studio(session, *DEMO_STUDIO)
        await _upsert_users(session, studio.id, DEMO_USERS)
    return True
