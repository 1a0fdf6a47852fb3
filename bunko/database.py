"""Database connection and session management using SQLModel."""

from __future__ import annotations

import threading
from typing import Generator

from sqlmodel import SQLModel, create_engine, Session

from .config import DATA_DIR

DB_PATH = DATA_DIR / "library.db"
SQLITE_URL = f"sqlite:///{DB_PATH}"

# check_same_thread=False: sessions are opened from request handlers and the monitor worker
engine = create_engine(SQLITE_URL, connect_args={"check_same_thread": False})

# Held around every read-modify-write of catalog rows (sync, progress, library actions)
catalog_lock = threading.RLock()


def get_session() -> Generator[Session, None, None]:
    """Dependency for FastAPI or context manager for scripts."""
    with Session(get_engine()) as session:
        yield session


def init_db() -> None:
    """Create database tables."""
    # Import models to ensure they are registered with SQLModel.metadata
    from . import models  # noqa: F401

    current = get_engine()
    if current.url.get_backend_name() == "sqlite" and current.url.database:
        with current.connect() as conn:
            conn.exec_driver_sql("PRAGMA journal_mode=WAL;")

    SQLModel.metadata.create_all(current)


def reset_database() -> None:
    """Drop and recreate every table."""
    from . import models  # noqa: F401

    SQLModel.metadata.drop_all(get_engine())
    init_db()


def get_engine():
    """Return the global engine instance."""
    return engine
