from __future__ import annotations

import logging
from datetime import UTC, date, datetime, time, timedelta
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from aiogram import Bot
from aiogram.exceptions import TelegramAPIError

from fitslot.app.core.constants import DEFAULT_CURRENCY, DEFAULT_STUDIO_TIMEZONE

logger = logging.getLogger(__name__)


def format_money_cents(cents: int | float | None, currency: str | None = None) -> str:
    """Format an amount in cents for display (e.g. '15.00 EUR')."""
    if not currency:
        currency = DEFAULT_CURRENCY
    cents_int = int(cents) if isinstance(cents, (int, float)) else 0
    return f"{cents_int / 100:.2f} {currency}"


# ---------------- Time utilities (shared) ---------------- #
def resolve_tz(name: str | ZoneInfo | None) -> ZoneInfo:
    """Return a ZoneInfo for `name`, falling back to the default studio zone, then UTC."""
    if isinstance(name, ZoneInfo):
        return name
    for candidate in (name, DEFAULT_STUDIO_TIMEZONE):
        if not candidate:
            continue
        try:
            return ZoneInfo(str(candidate))
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown timezone %r", candidate)
    return ZoneInfo("UTC")


def utc_now() -> datetime:
    """Return current time as an aware UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Convert given datetime to an aware UTC datetime.

    If `dt` is naive, interpret it as UTC (do not guess local timezone).
    Returns None when `dt` is None.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def local_day_bounds(day: date, tz: ZoneInfo | str | None) -> tuple[datetime, datetime]:
    """UTC [start, end) of the calendar `day` as observed in `tz`."""
    zone = resolve_tz(tz)
    start_local = datetime.combine(day, time.min, tzinfo=zone)
    end_local = datetime.combine(day + timedelta(days=1), time.min, tzinfo=zone)
    return start_local.astimezone(UTC), end_local.astimezone(UTC)


def local_date_of(moment: datetime, tz: ZoneInfo | str | None) -> date:
    """Calendar date of an instant in `tz` (naive instants are taken as UTC)."""
    aware = ensure_utc(moment)
    if aware is None:
        raise ValueError("moment is required")
    return aware.astimezone(resolve_tz(tz)).date()


def format_slot_label(slot: datetime | None, fmt: str = "%H:%M", tz: ZoneInfo | str | None = None) -> str:
    """Format a slot boundary consistently across the app, converted to `tz`."""
    if slot is None:
        return ""
    if slot.tzinfo is not None:
        return slot.astimezone(resolve_tz(tz)).strftime(fmt)
    return slot.strftime(fmt)


async def _safe_send(bot: Bot, chat_id: int | str, text: str, reply_markup: Any = None, **kwargs: Any) -> bool:
    """Send wrapper for bot.send_message.

    - Telegram API errors are logged and reported as False.
    - Anything else is a bug and propagates.
    """
    try:
        await bot.send_message(chat_id=chat_id, text=text, reply_markup=reply_markup, **kwargs)
        return True
    except TelegramAPIError as e:
        logger.warning("_safe_send TelegramAPIError for %s: %s", chat_id, e)
        return False


__all__ = [
    "format_money_cents",
    "resolve_tz",
    "utc_now",
    "ensure_utc",
    "local_day_bounds",
    "local_date_of",
    "format_slot_label",
    "_safe_send",
]
