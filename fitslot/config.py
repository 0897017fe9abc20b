from __future__ import annotations

import logging
import os
from typing import Any, Dict

from dotenv import load_dotenv

from fitslot.app.core.db import DATABASE_URL_ENV, DEFAULT_URL

logger = logging.getLogger(__name__)

# Загружаем переменные окружения из .env
load_dotenv()

SETTINGS: Dict[str, Any] = {
    "database_url": os.getenv(DATABASE_URL_ENV, DEFAULT_URL),
    # Used only for yield promotions; empty disables Telegram delivery
    "bot_token": os.getenv("BOT_TOKEN", ""),
    "jwt_secret": os.getenv("JWT_SECRET", ""),
    "jwt_algorithm": os.getenv("JWT_ALGORITHM", "HS256"),
    "jwt_ttl_seconds": int(os.getenv("JWT_TTL_SECONDS", "3600")),
    "payment_webhook_secret": os.getenv("PAYMENT_WEBHOOK_SECRET", ""),
    # Base URL used to build drop-in links in promotional messages
    "public_url": os.getenv("PUBLIC_URL", "http://localhost:3000"),
    "db_pool_size": int(os.getenv("DB_POOL_SIZE", "5")),
    "db_statement_timeout_ms": int(os.getenv("DB_STATEMENT_TIMEOUT_MS", "5000")),
}


def engine_kwargs() -> Dict[str, Any]:
    """Engine options for the configured DATABASE_URL."""
    url = str(SETTINGS["database_url"])
    if url.startswith("sqlite"):
        return {"connect_args": {"timeout": 30}}
    kwargs: Dict[str, Any] = {"pool_size": SETTINGS["db_pool_size"], "pool_pre_ping": True}
    if url.startswith("postgresql+asyncpg"):
        kwargs["connect_args"] = {
            "server_settings": {"statement_timeout": str(SETTINGS["db_statement_timeout_ms"])}
        }
    return kwargs


__all__ = ["SETTINGS", "engine_kwargs"]
