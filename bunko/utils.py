"""Utility functions for Bunko."""

from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from pathlib import Path


def short_path(path: Path) -> str:
    """Return abbreviated path showing only parent folder + name.

    Example: /very/long/path/Berserk/Vol 01 -> Berserk/Vol 01
    """
    return f"{path.parent.name}/{path.name}"


def cache_key_for(path: Path) -> str:
    """Stable cache key for a cover subject (series folder or volume)."""
    return str(path.resolve())


def hashed_name(key: str) -> str:
    """File-system safe name for a cache key."""
    return hashlib.sha1(key.encode("utf-8")).hexdigest()


def as_utc(value: datetime) -> datetime:
    """Return value as an aware UTC datetime. Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def mtime_utc(path: Path) -> datetime:
    """Modification time of path as an aware UTC datetime. Raises OSError."""
    return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
