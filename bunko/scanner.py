"""Catalog sync for Bunko.

Reconciles the immediate children of the library root (one folder per
series) with the persisted `series` table.

Rules:
- hidden entries and plain files at the root are ignored
- existing rows are only touched where a field actually changed, so a second
  sync over an unchanged tree performs no writes
- read state is pruned to the volumes that still exist
- rows whose folder is gone are deleted, unless the root listing itself
  failed, in which case nothing is changed at all
"""

from __future__ import annotations

import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from sqlmodel import Session

from .config import BunkoConfig
from .database import catalog_lock, get_engine, init_db
from .logging_config import get_logger
from .models import Series
from .path_utils import is_hidden, to_absolute, to_relative
from .repository import Repository
from .utils import as_utc, cache_key_for, mtime_utc
from .volumes import VolumeIndex, natural_sort_key

logger = get_logger(__name__)


@dataclass
class SyncResult:
    created: List[Series] = field(default_factory=list)
    updated: List[Series] = field(default_factory=list)
    deleted: List[Series] = field(default_factory=list)
    # folder_path -> volume names that vanished from an updated series
    dropped_volumes: Dict[str, List[str]] = field(default_factory=dict)
    unchanged: int = 0
    failed: bool = False

    @property
    def mutations(self) -> int:
        return len(self.created) + len(self.updated) + len(self.deleted)

    def stats(self) -> dict:
        return {
            "added": len(self.created),
            "updated": len(self.updated),
            "deleted": len(self.deleted),
            "unchanged": self.unchanged,
            "failed": self.failed,
        }


def new_volume_id() -> str:
    return uuid.uuid4().hex[:12]


def list_series_folders(root: Path) -> List[Path]:
    """Return the non-hidden sub-directories of root. Raises OSError."""
    folders: List[Path] = []
    with os.scandir(root) as it:
        for item in it:
            if is_hidden(item.name):
                continue
            try:
                if item.is_dir():
                    folders.append(Path(item.path))
            except OSError:
                continue
    return folders


def reconcile_volume_ids(current: Dict[str, str], names: Sequence[str]) -> Dict[str, str]:
    """Map each volume name to its existing id, minting ids for new names.

    Ids whose name disappeared are dropped. No rename detection is attempted.
    """
    by_name = {name: volume_id for volume_id, name in current.items()}
    result: Dict[str, str] = {}
    for name in names:
        result[by_name.get(name) or new_volume_id()] = name
    return result


def _apply_changes(series: Series, names: Sequence[str], modified: datetime) -> bool:
    """Update a series in place from the current folder state. Returns True if anything changed."""
    changed = False

    if series.volume_count != len(names):
        series.volume_count = len(names)
        changed = True
    if series.date_modified is None or as_utc(series.date_modified) != modified:
        series.date_modified = modified
        changed = True

    volume_names = reconcile_volume_ids(series.volume_names or {}, names)
    if volume_names != (series.volume_names or {}):
        series.volume_names = volume_names
        changed = True

    valid_ids = set(volume_names)
    read_volumes = [v for v in (series.read_volumes or []) if v in valid_ids]
    if read_volumes != (series.read_volumes or []):
        series.read_volumes = read_volumes
        changed = True

    progress = {k: v for k, v in (series.reading_progress or {}).items() if k in valid_ids}
    if progress != (series.reading_progress or {}):
        series.reading_progress = progress
        changed = True

    return changed


def sync_catalog(
    root: Path,
    catalog: Iterable[Series],
    index: Optional[VolumeIndex] = None,
) -> SyncResult:
    """Diff the series folders under root against catalog.

    Existing Series objects are updated in place; new ones are returned in
    `created` and vanished ones in `deleted` for the caller to persist.
    """
    index = index or VolumeIndex()
    result = SyncResult()

    try:
        folders = list_series_folders(root)
    except OSError as exc:
        logger.error(f"✗ Cannot list library root {root}: {exc}")
        result.failed = True
        return result

    existing = {series.folder_path: series for series in catalog}
    seen: set[str] = set()

    for folder in folders:
        rel_path = to_relative(folder, root)
        seen.add(rel_path)
        try:
            modified = mtime_utc(folder)
            names = index.names(folder)
        except OSError as exc:
            # Leave whatever we know about this series alone
            logger.error(f"✗ {folder.name} - Unable to list: {exc}")
            continue

        series = existing.get(rel_path)
        if series is None:
            series = Series(
                title=folder.name,
                folder_path=rel_path,
                date_modified=modified,
                volume_count=len(names),
                volume_names=reconcile_volume_ids({}, names),
            )
            result.created.append(series)
            logger.info(f"[+] Added: {folder.name} ({len(names)} volumes)")
        else:
            before = set((series.volume_names or {}).values())
            if not _apply_changes(series, names, modified):
                result.unchanged += 1
                continue
            result.updated.append(series)
            dropped = sorted(before - set(names), key=natural_sort_key)
            if dropped:
                result.dropped_volumes[rel_path] = dropped
            logger.info(f"[~] Updated: {folder.name}")

    for rel_path, series in existing.items():
        if rel_path not in seen:
            result.deleted.append(series)
            logger.info(f"[-] Removed: {series.title}")

    return result


def series_cover_keys(series: Series, library_root: Path) -> List[str]:
    """Cache keys of a series cover and its volume covers."""
    folder = to_absolute(series.folder_path, library_root)
    keys = [cache_key_for(folder)]
    keys.extend(cache_key_for(folder / name) for name in (series.volume_names or {}).values())
    return keys


def scan_library(config: BunkoConfig, cache=None) -> dict:
    """Sync the library root into the database.

    :param config: Loaded Bunko configuration.
    :param cache: Optional ThumbnailCache; covers of deleted or changed
        series are invalidated.
    :return: Dictionary with scan statistics (added, updated, deleted, unchanged, failed).
    """
    root = config.library_path.resolve()
    index = VolumeIndex(config.scanner.archive_formats)

    # One sync at a time: overlapping syncs would both insert a new folder
    with catalog_lock:
        init_db()

        with Session(get_engine()) as session:
            repo = Repository(session, root)
            result = sync_catalog(root, repo.get_all_series(), index)
            if result.failed:
                return result.stats()

            # Collected before commit expires the instances
            stale_keys: List[str] = []
            for series in result.deleted:
                stale_keys.extend(series_cover_keys(series, root))
            for series in result.updated:
                folder = to_absolute(series.folder_path, root)
                stale_keys.append(cache_key_for(folder))
                for name in result.dropped_volumes.get(series.folder_path, []):
                    stale_keys.append(cache_key_for(folder / name))

            for series in result.created:
                repo.add(series)
            for series in result.updated:
                repo.save(series)
            for series in result.deleted:
                repo.delete(series)

            if result.mutations:
                repo.commit()

    if cache is not None:
        for key in stale_keys:
            cache.invalidate(key)

    logger.info(
        f"[SCAN] {root.name}: {len(result.created)} added, {len(result.updated)} updated, "
        f"{len(result.deleted)} deleted, {result.unchanged} unchanged"
    )
    return result.stats()
