from __future__ import annotations

import logging
from typing import Protocol

from aiogram import Bot

from fitslot.app.services.shared_services import _safe_send
from fitslot.app.services.yield_services import YieldScanResult, build_promo_message

logger = logging.getLogger(__name__)

__all__ = ["PromotionSender", "TelegramPromotionSender", "LoggingPromotionSender"]


class PromotionSender(Protocol):
    async def send(self, result: YieldScanResult) -> int:
        """Deliver promotions for every target in ``result``; return how many went out."""
        ...


class TelegramPromotionSender:
    """Send yield promotions as Telegram messages.

    Requires an explicit aiogram.Bot instance; members without a linked
    Telegram chat are skipped. A failed delivery is logged and never retried
    here; booking state is never touched.
    """

    def __init__(self, bot: Bot, public_url: str) -> None:
        self.bot = bot
        self.public_url = public_url

    async def send(self, result: YieldScanResult) -> int:
        sent = 0
        for target in result.targets:
            if not target.telegram_id:
                logger.debug("yield promo: user %s has no telegram_id; skipping", target.user_id)
                continue
            text = build_promo_message(
                target,
                studio_id=result.studio_id,
                studio_name=result.studio_name,
                public_url=self.public_url,
                tz=result.timezone,
            )
            if await _safe_send(self.bot, target.telegram_id, text):
                sent += 1
            else:
                logger.warning("yield promo: delivery to user %s failed", target.user_id)
        return sent


class LoggingPromotionSender:
    """Fallback when no bot token is configured: log what would have been sent."""

    def __init__(self, public_url: str) -> None:
        self.public_url = public_url

    async def send(self, result: YieldScanResult) -> int:
        for target in result.targets:
            logger.info(
                "yield promo (not delivered) to %s:\n%s",
                target.email,
                build_promo_message(
                    target,
                    studio_id=result.studio_id,
                    studio_name=result.studio_name,
                    public_url=self.public_url,
                    tz=result.timezone,
                ),
            )
        return 0
