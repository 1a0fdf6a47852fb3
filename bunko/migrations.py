"""Alembic migration helpers for Bunko.

This is the only module in the project that imports alembic directly.
Everything else (CLI, serve) goes through the functions below.
"""

from __future__ import annotations

import shutil
import sqlite3
from pathlib import Path
from typing import Optional

from alembic import command as alembic_command
from alembic.config import Config as AlembicConfig
from alembic.script import ScriptDirectory

from .config import PROJECT_ROOT
from .database import DB_PATH


def _alembic_cfg() -> AlembicConfig:
    """Build an AlembicConfig that points at our alembic.ini."""
    cfg = AlembicConfig(str(PROJECT_ROOT / "alembic.ini"))
    # Absolute script_location so it works from any working directory
    cfg.set_main_option("script_location", str(PROJECT_ROOT / "migrations"))
    return cfg


def _backup_db(db_path: Path = DB_PATH) -> Optional[Path]:
    """Copy library.db → library.db.bak (overwrite previous backup)."""
    if not db_path.exists():
        return None
    backup = db_path.with_suffix(".db.bak")
    shutil.copy2(db_path, backup)
    return backup


def _alembic_version_exists(db_path: Path = DB_PATH) -> bool:
    """Return True when the alembic_version table is present in the DB."""
    if not db_path.exists():
        return False
    conn = sqlite3.connect(db_path)
    try:
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='alembic_version'"
        )
        return cur.fetchone() is not None
    finally:
        conn.close()


def run_migrations(backup: bool = True) -> None:
    """Run ``alembic upgrade head``, backing up an existing library.db first."""
    if backup:
        _backup_db()
    alembic_command.upgrade(_alembic_cfg(), "head")


def stamp_if_needed() -> None:
    """Stamp a database created by ``init_db`` to the current head.

    No-op when the DB does not exist yet or is already versioned.
    """
    if not DB_PATH.exists() or _alembic_version_exists():
        return
    alembic_command.stamp(_alembic_cfg(), "head")


def get_status() -> tuple[Optional[str], str]:
    """Return (current_revision, head_revision).

    current_revision is None when the DB does not exist or has never
    been stamped/migrated.
    """
    script = ScriptDirectory.from_config(_alembic_cfg())
    head_rev: str = script.get_current_head() or "unknown"

    if not _alembic_version_exists():
        return None, head_rev

    conn = sqlite3.connect(DB_PATH)
    try:
        row = conn.execute("SELECT version_num FROM alembic_version").fetchone()
        return (row[0] if row else None), head_rev
    finally:
        conn.close()
