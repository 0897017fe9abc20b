"""Logger facade.

``get_logger`` for modules that want a named logger without importing
``logging`` themselves; ``setup_logging`` configures the process once at
entrypoint start (worker, CLI, uvicorn factory).
"""

import logging

from rich.logging import RichHandler

__all__ = ["get_logger", "setup_logging"]

_NOISY_LOGGERS = {
    "aiogram": logging.INFO,
    "aiogram.dispatcher": logging.INFO,
    "aiogram.event": logging.INFO,
    "asyncpg": logging.WARNING,
    "alembic": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
}


def get_logger(name: str | None = None) -> logging.Logger:
    return logging.getLogger(name or __name__)


def setup_logging(level_name: str = "INFO", log_file: str | None = None) -> None:
    # Console: INFO / WARNING / ERROR (Rich)
    console_handler = RichHandler(
        rich_tracebacks=True,
        markup=False,
        show_time=True,
        show_level=True,
        show_path=False,
        log_time_format="%H:%M:%S",
    )
    handlers: list[logging.Handler] = [console_handler]

    # File: WARNING+ only
    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.WARNING)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        ))
        handlers.append(file_handler)

    level = getattr(logging, level_name.strip().upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(message)s", handlers=handlers, force=True)

    for name, noisy_level in _NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(noisy_level)
