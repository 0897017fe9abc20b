from __future__ import annotations

import os


def _env_bool(name: str, default: bool = False) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_str_or_none(name: str) -> str | None:
    raw = os.getenv(name, "").strip()
    return raw or None


def _normalize_currency(code: str | None) -> str | None:
    if not code:
        return None
    cleaned = str(code).strip().upper()
    if len(cleaned) == 3 and cleaned.isalpha():
        return cleaned
    return None


# Levels under which a count taken after the row locks cannot miss a committed
# admission. REPEATABLE READ is excluded: its snapshot is fixed before the
# studio lock is granted.
SAFE_ISOLATION_LEVELS = frozenset({"READ COMMITTED", "SERIALIZABLE"})


def _normalize_isolation_level(raw: str | None) -> str:
    """Map env spellings like ``read-committed`` to SQLAlchemy's names.

    Anything outside SAFE_ISOLATION_LEVELS falls back to READ COMMITTED.
    """
    cleaned = (raw or "").strip().upper().replace("-", " ").replace("_", " ")
    if cleaned in SAFE_ISOLATION_LEVELS:
        return cleaned
    return "READ COMMITTED"


# Slot grid
SLOT_DURATION_MINUTES: int = _env_int("SLOT_DURATION_MINUTES", 20)
DEFAULT_OPENING_HOUR: int = _env_int("DEFAULT_OPENING_HOUR", 8)
DEFAULT_CLOSING_HOUR: int = _env_int("DEFAULT_CLOSING_HOUR", 20)
DEFAULT_CAPACITY_PER_SLOT: int = _env_int("DEFAULT_CAPACITY_PER_SLOT", 6)
DEFAULT_STUDIO_TIMEZONE: str = os.getenv("DEFAULT_STUDIO_TIMEZONE", "Europe/Paris")

# Admission transaction policy
ADMISSION_ISOLATION_LEVEL: str = _normalize_isolation_level(
    os.getenv("ADMISSION_ISOLATION_LEVEL", "READ COMMITTED")
)
ADMISSION_MAX_ATTEMPTS: int = max(1, _env_int("ADMISSION_MAX_ATTEMPTS", 3))
ADMISSION_RETRY_BACKOFF_MS: int = max(0, _env_int("ADMISSION_RETRY_BACKOFF_MS", 50))

# Yield management
YIELD_SCAN_INTERVAL_SECONDS: int = _env_int("YIELD_SCAN_INTERVAL_SECONDS", 3600)
YIELD_DAYS_AHEAD: int = _env_int("YIELD_DAYS_AHEAD", 1)
DROP_IN_PRICE_CENTS: int = _env_int("DROP_IN_PRICE_CENTS", 2500)
PROMO_DROP_IN_PRICE_CENTS: int = _env_int("PROMO_DROP_IN_PRICE_CENTS", 1500)
DEFAULT_CURRENCY: str = _normalize_currency(os.getenv("DEFAULT_CURRENCY") or os.getenv("CURRENCY")) or "EUR"
DROP_IN_PROGRAM_LABEL: str = os.getenv("DROP_IN_PROGRAM_LABEL", "Drop-in")

# Feature flags / logging
LOG_LEVEL_NAME: str = os.getenv("LOG_LEVEL", "INFO").strip().upper()
LOG_FILE: str | None = _env_str_or_none("LOG_FILE")
RUN_BOOTSTRAP_ENABLED: bool = _env_bool("RUN_BOOTSTRAP", False)

__all__ = [
    "SLOT_DURATION_MINUTES",
    "DEFAULT_OPENING_HOUR",
    "DEFAULT_CLOSING_HOUR",
    "DEFAULT_CAPACITY_PER_SLOT",
    "DEFAULT_STUDIO_TIMEZONE",
    "ADMISSION_ISOLATION_LEVEL",
    "SAFE_ISOLATION_LEVELS",
    "ADMISSION_MAX_ATTEMPTS",
    "ADMISSION_RETRY_BACKOFF_MS",
    "YIELD_SCAN_INTERVAL_SECONDS",
    "YIELD_DAYS_AHEAD",
    "DROP_IN_PRICE_CENTS",
    "PROMO_DROP_IN_PRICE_CENTS",
    "DEFAULT_CURRENCY",
    "DROP_IN_PROGRAM_LABEL",
    "LOG_LEVEL_NAME",
    "LOG_FILE",
    "RUN_BOOTSTRAP_ENABLED",
]
