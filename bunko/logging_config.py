"""Logging configuration for Bunko.

Sets up two handlers on the root logger:
- rotating file handler (bunko.log in DATA_DIR, 10MB x 5)
- Rich console handler for colored terminal output
"""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme


_logging_initialized = False


def _get_data_dir() -> Path:
    """Return the data directory (same as config.DATA_DIR without circular import)."""
    env = os.environ.get("DATA_DIR")
    if env:
        return Path(env)
    return Path(__file__).resolve().parents[1]


def setup_logging(log_level: str = "INFO") -> None:
    """Initialize logging with file and console handlers.

    Args:
        log_level: Console logging level (DEBUG, INFO, WARNING, ERROR)
    """
    global _logging_initialized

    if _logging_initialized:
        return

    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    data_dir = _get_data_dir()
    data_dir.mkdir(parents=True, exist_ok=True)
    log_file = data_dir / "bunko.log"

    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(levelname)-8s - %(name)s - %(threadName)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )

    console = Console(theme=Theme({"logging.level.info": "bold cyan"}))
    console_handler = RichHandler(
        console=console,
        rich_tracebacks=True,
        show_time=False,
        show_path=False,
    )
    console_handler.setLevel(numeric_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    # Third-party chatter
    logging.getLogger("watchdog").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)

    alembic_logger = logging.getLogger("alembic")
    alembic_logger.handlers = []
    alembic_logger.propagate = True

    _logging_initialized = True


def get_logger(name: str) -> logging.Logger:
    """Get a logger for the specified module.

    Args:
        name: Module name (typically __name__)

    Returns:
        Logger instance for the module
    """
    return logging.getLogger(name)
