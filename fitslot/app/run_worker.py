"""Runtime entrypoint for the background worker and operator commands."""
import argparse
import asyncio
import logging
import sys
from contextlib import suppress
from datetime import date

from aiogram import Bot

from fitslot.app.core.bootstrap import ensure_studio, init_demo_data
from fitslot.app.core.constants import LOG_FILE, LOG_LEVEL_NAME
from fitslot.app.core.db import Database
from fitslot.app.core.logger import setup_logging
from fitslot.app.core.notifications import LoggingPromotionSender, PromotionSender, TelegramPromotionSender
from fitslot.app.services.yield_services import YieldScanner
from fitslot.app.workers.yield_scan import start_yield_worker
from fitslot.config import SETTINGS, engine_kwargs

logger = logging.getLogger("fitslot")


def _make_database() -> Database:
    return Database(str(SETTINGS["database_url"]), **engine_kwargs())


def _make_sender() -> tuple[PromotionSender, Bot | None]:
    token = SETTINGS.get("bot_token")
    if not token:
        logger.warning("BOT_TOKEN is not set; yield promotions will only be logged")
        return LoggingPromotionSender(SETTINGS["public_url"]), None
    bot = Bot(token=token)
    return TelegramPromotionSender(bot, SETTINGS["public_url"]), bot


# ==============================================================
# MAIN
# ==============================================================

async def main() -> None:
    db = _make_database()
    sender, bot = _make_sender()

    if await init_demo_data(db):
        logger.info("[bootstrap] Completed")

    stop_yield = await start_yield_worker(db, sender)
    try:
        await asyncio.Event().wait()
    finally:
        try:
            await stop_yield()
        except Exception:
            logger.exception("main: stop_yield failed during shutdown")
        if bot is not None:
            await bot.session.close()
        await db.dispose()


# ==============================================================
# CLI helpers
# ==============================================================

async def _create_studio(args: argparse.Namespace) -> int:
    db = _make_database()
    try:
        async with db.transaction() as session:
            studio = await ensure_studio(
                session,
                args.name,
                args.city,
                capacity=args.capacity,
                opening_hour=args.opening_hour,
                closing_hour=args.closing_hour,
                timezone=args.timezone,
            )
            studio_id = studio.id
        print(f"Studio #{studio_id} ready.")
        return 0
    finally:
        await db.dispose()


async def _yield_scan(args: argparse.Namespace) -> int:
    db = _make_database()
    bot = None
    try:
        result = await YieldScanner(db).scan(args.studio_id, args.date)
        print(
            f"{result.studio_name} {result.target_date}: "
            f"{result.empty_slots_found} underperforming slots, {len(result.targets)} targets"
        )
        if args.send and result.targets:
            sender, bot = _make_sender()
            sent = await sender.send(result)
            print(f"Promotions sent: {sent}")
        return 0
    finally:
        if bot is not None:
            await bot.session.close()
        await db.dispose()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="fitslot-worker")
    sub = parser.add_subparsers(dest="cmd")

    cs = sub.add_parser("create-studio")
    cs.add_argument("--name", type=str, required=True)
    cs.add_argument("--city", type=str, default=None)
    cs.add_argument("--capacity", type=int, default=None)
    cs.add_argument("--opening-hour", type=int, default=None)
    cs.add_argument("--closing-hour", type=int, default=None)
    cs.add_argument("--timezone", type=str, default=None)

    ys = sub.add_parser("yield-scan")
    ys.add_argument("--studio-id", type=int, required=True)
    ys.add_argument("--date", type=date.fromisoformat, default=None)
    ys.add_argument("--send", action="store_true")
    return parser


def cli(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(LOG_LEVEL_NAME, LOG_FILE)

    if args.cmd == "create-studio":
        return asyncio.run(_create_studio(args))
    if args.cmd == "yield-scan":
        return asyncio.run(_yield_scan(args))

    # Default behavior: run worker
    with suppress(KeyboardInterrupt, SystemExit):
        asyncio.run(main())
    return 0


if __name__ == "__main__":
    sys.exit(cli())
