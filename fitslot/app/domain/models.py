from datetime import UTC, datetime
from enum import Enum as _Enum
from typing import Any

from sqlalchemy import CheckConstraint, DateTime, Enum, ForeignKey, Index, Integer, String, TypeDecorator, BigInteger
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class (explicit for mypy)."""

    pass


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes on every backend.

    Postgres keeps ``timestamptz`` natively. SQLite has no timezone support, so
    values are stored as naive UTC and re-tagged with UTC on load.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Any) -> Any:
        if value is None:
            return value
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        value = value.astimezone(UTC)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: Any, dialect: Any) -> Any:
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class BookingStatus(_Enum):  # Values match DB labels (Postgres enum)
    CONFIRMED = "CONFIRMED"
    ATTENDED = "ATTENDED"
    CANCELLED = "CANCELLED"


class Role(_Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    FRANCHISE_OWNER = "FRANCHISE_OWNER"
    COACH = "COACH"
    MEMBER = "MEMBER"


class Plan(_Enum):
    DIGITAL = "DIGITAL"
    ZAPOY = "ZAPOY"
    COACHING = "COACHING"


def normalize_plan(value: str | Plan | None) -> Plan | None:
    if isinstance(value, Plan):
        return value
    if isinstance(value, str):
        try:
            return Plan(value.strip().upper())
        except ValueError:
            return None
    return None


# Statuses that hold a place in a slot and count toward the one-per-day rule.
OCCUPYING_STATUSES = frozenset(
    {
        BookingStatus.CONFIRMED,
        BookingStatus.ATTENDED,
    }
)

# Statuses a booking never leaves; neither cancel nor check-in applies to them.
TERMINAL_STATUSES = frozenset(
    {
        BookingStatus.ATTENDED,
        BookingStatus.CANCELLED,
    }
)

STUDIO_ACCESS_PLANS = frozenset(
    {
        Plan.ZAPOY,
        Plan.COACHING,
    }
)


def _enum_column(enum_cls: type[_Enum], name: str) -> Enum:
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda e: [m.value for m in e],
        native_enum=True,
    )


class Studio(Base):
    __tablename__ = "studios"
    __table_args__ = (
        CheckConstraint("max_capacity_per_slot >= 0", name="ck_studios_capacity_non_negative"),
        CheckConstraint(
            "opening_hour >= 0 AND closing_hour <= 24 AND opening_hour < closing_hour",
            name="ck_studios_opening_hours",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200))
    city: Mapped[str | None] = mapped_column(String(120), nullable=True)
    max_capacity_per_slot: Mapped[int] = mapped_column(Integer, default=6, nullable=False)
    # Local wall-clock hours, interpreted in `timezone`
    opening_hour: Mapped[int] = mapped_column(Integer, default=8, nullable=False)
    closing_hour: Mapped[int] = mapped_column(Integer, default=20, nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), default="Europe/Paris", nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=lambda: datetime.now(UTC)
    )


class User(Base):
    __tablename__ = "users"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(254), unique=True, index=True)
    # Optional Telegram chat id used for promotional messages.
    telegram_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True, unique=True)
    first_name: Mapped[str | None] = mapped_column(String(80), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(80), nullable=True)
    role: Mapped[Role] = mapped_column(_enum_column(Role, "user_role"), default=Role.MEMBER)
    plan: Mapped[Plan | None] = mapped_column(_enum_column(Plan, "membership_plan"), nullable=True)
    subscription_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    home_studio_id: Mapped[int | None] = mapped_column(
        ForeignKey("studios.id", ondelete="SET NULL"), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=lambda: datetime.now(UTC)
    )


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        Index("ix_bookings_studio_starts_at", "studio_id", "starts_at"),
        Index("ix_bookings_user_starts_at", "user_id", "starts_at"),
        CheckConstraint("ends_at > starts_at", name="ck_bookings_interval"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    studio_id: Mapped[int] = mapped_column(ForeignKey("studios.id", ondelete="CASCADE"))
    status: Mapped[BookingStatus] = mapped_column(
        _enum_column(BookingStatus, "booking_status"),
        default=BookingStatus.CONFIRMED,
    )
    # [starts_at, ends_at) never changes once the row exists
    starts_at: Mapped[datetime] = mapped_column(UTCDateTime())
    ends_at: Mapped[datetime] = mapped_column(UTCDateTime())
    program_used: Mapped[str | None] = mapped_column(String(120), nullable=True)
    # Set only for drop-ins created from a payment callback; dedup key.
    payment_reference: Mapped[str | None] = mapped_column(String(128), nullable=True, unique=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=lambda: datetime.now(UTC)
    )
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)


__all__ = [
    "Base",
    "UTCDateTime",
    "Studio",
    "User",
    "Booking",
    "BookingStatus",
    "Role",
    "Plan",
    "normalize_plan",
    "OCCUPYING_STATUSES",
    "TERMINAL_STATUSES",
    "STUDIO_ACCESS_PLANS",
]
