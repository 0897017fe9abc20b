"""Background worker for yield promotions.

Periodically scans every studio's next-day grid and hands under-filled slots
to a PromotionSender. Each studio gets at most one promotion round per target
date for the life of the process.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import date, timedelta
from typing import Awaitable, Callable, Optional

from fitslot.app.core.constants import YIELD_DAYS_AHEAD, YIELD_SCAN_INTERVAL_SECONDS
from fitslot.app.core.db import Database
from fitslot.app.core.notifications import PromotionSender
from fitslot.app.services.repositories import StudioRepo
from fitslot.app.services.shared_services import resolve_tz
from fitslot.app.services.yield_services import YieldScanner

logger = logging.getLogger(__name__)


async def _scan_once(
    db: Database,
    scanner: YieldScanner,
    sender: PromotionSender,
    promoted: dict[int, date],
    days_ahead: int = YIELD_DAYS_AHEAD,
) -> int:
    """One sweep over all studios. Returns the number of promotions delivered."""
    async with db.session() as session:
        studios = [(int(s.id), s.timezone) for s in await StudioRepo.list_all(session)]

    delivered = 0
    for studio_id, tz in studios:
        target_date = (scanner.clock().astimezone(resolve_tz(tz)) + timedelta(days=days_ahead)).date()
        if promoted.get(studio_id) == target_date:
            continue
        try:
            result = await scanner.scan(studio_id, target_date)
            if result.targets:
                delivered += await sender.send(result)
            promoted[studio_id] = target_date
        except Exception as e:
            logger.exception("Yield scan failed for studio %s: %s", studio_id, e)
    return delivered


async def _run_loop(
    stop_event: asyncio.Event,
    db: Database,
    scanner: YieldScanner,
    sender: PromotionSender,
    interval_seconds: int,
) -> None:
    promoted: dict[int, date] = {}
    while not stop_event.is_set():
        try:
            sent = await _scan_once(db, scanner, sender, promoted)
            if sent:
                logger.info("Yield worker delivered %s promotions", sent)
        except Exception as e:
            logger.exception("Yield worker iteration error: %s", e)
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            continue


async def start_yield_worker(
    db: Database,
    sender: PromotionSender,
    *,
    scanner: YieldScanner | None = None,
    interval_seconds: int = YIELD_SCAN_INTERVAL_SECONDS,
) -> Callable[[], Awaitable[None]]:
    """Start the yield worker and return an async stop() function."""
    scanner = scanner or YieldScanner(db)
    stop_event: asyncio.Event = asyncio.Event()
    task = asyncio.create_task(
        _run_loop(stop_event, db, scanner, sender, interval_seconds), name="yield-worker"
    )

    async def _stop() -> None:
        stop_event.set()
        try:
            await asyncio.wait_for(task, timeout=5)
        except asyncio.TimeoutError:
            task.cancel()

    logger.info("Yield worker started (interval=%ss)", interval_seconds)
    return _stop


async def stop_yield_worker(stop_callable: Optional[Callable[[], Awaitable[None]]] = None) -> None:
    if stop_callable:
        await stop_callable()


__all__ = ["start_yield_worker", "stop_yield_worker"]
