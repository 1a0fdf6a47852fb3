"""Library actions on series records.

Favorites, tags, read state, rename and delete. Anything that touches the
filesystem does so first; the record is only changed once the move or
delete succeeded. Callers own the commit.
"""

from __future__ import annotations

import shutil
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional

from .logging_config import get_logger
from .models import Series, Tag
from .path_utils import is_hidden, to_absolute
from .repository import Repository
from .scanner import reconcile_volume_ids, series_cover_keys
from .utils import as_utc, cache_key_for
from .volumes import VolumeIndex, natural_sort_key

logger = get_logger(__name__)


class RenameError(Exception):
    """A rename could not be carried out on disk; nothing was changed."""


class DeleteError(Exception):
    """A delete could not be carried out on disk; nothing was changed."""


class LibraryFilter(str, Enum):
    ALL = "all"
    FAVORITES = "favorites"
    TO_READ = "to_read"
    UNREAD = "unread"


class LibrarySort(str, Enum):
    DATE_MODIFIED = "date_modified"
    DATE_ADDED = "date_added"
    TITLE = "title"


def filter_series(
    series_list: Iterable[Series],
    library_filter: LibraryFilter = LibraryFilter.ALL,
    query: str = "",
    sort: LibrarySort = LibrarySort.DATE_MODIFIED,
) -> List[Series]:
    """Apply the library filter, a case-insensitive title search and a sort."""
    needle = query.strip().casefold()
    result = []
    for series in series_list:
        if library_filter == LibraryFilter.FAVORITES and not series.is_favorite:
            continue
        if library_filter == LibraryFilter.TO_READ and not series.has_tag(Tag.TO_READ):
            continue
        if library_filter == LibraryFilter.UNREAD and series.is_finished:
            continue
        if needle and needle not in series.title.casefold():
            continue
        result.append(series)

    if sort == LibrarySort.TITLE:
        result.sort(key=lambda s: natural_sort_key(s.title))
    elif sort == LibrarySort.DATE_ADDED:
        result.sort(key=lambda s: as_utc(s.date_added), reverse=True)
    else:
        result.sort(key=lambda s: as_utc(s.date_modified), reverse=True)
    return result


def set_favorite(series: Series, active: bool) -> None:
    series.is_favorite = active


def set_tag(series: Series, tag: "Tag | str", active: bool) -> None:
    value = tag.value if isinstance(tag, Tag) else tag.strip()
    if not value:
        raise ValueError("Tag cannot be empty")
    tags = list(series.tags or [])
    if active and value not in tags:
        tags.append(value)
    elif not active and value in tags:
        tags.remove(value)
    else:
        return
    series.tags = tags


def set_volume_read(series: Series, volume_id: str, read: bool) -> None:
    """Mark one volume read (clearing its progress) or unread."""
    if volume_id not in (series.volume_names or {}):
        raise KeyError(f"Unknown volume {volume_id} in {series.title}")
    read_volumes = list(series.read_volumes or [])
    if read:
        if volume_id not in read_volumes:
            read_volumes.append(volume_id)
        if volume_id in (series.reading_progress or {}):
            progress = dict(series.reading_progress)
            progress.pop(volume_id)
            series.reading_progress = progress
    else:
        if volume_id not in read_volumes:
            return
        read_volumes.remove(volume_id)
    series.read_volumes = read_volumes


def mark_series_read(series: Series, library_root: Path, read: bool, index: Optional[VolumeIndex] = None) -> None:
    """Mark every current volume of a series read, or reset it to unread.

    Marking read lists the folder first; if that fails nothing is changed.
    """
    if not read:
        series.read_volumes = []
        series.is_finished = False
        return

    index = index or VolumeIndex()
    folder = to_absolute(series.folder_path, library_root)
    names = index.names(folder)  # OSError propagates, record untouched

    volume_names = reconcile_volume_ids(series.volume_names or {}, names)
    series.volume_names = volume_names
    series.volume_count = len(names)
    series.read_volumes = list(volume_names)
    series.reading_progress = {}
    series.is_finished = True


def _validate_name(name: str) -> str:
    name = name.strip()
    if not name or name in (".", ".."):
        raise RenameError("Name cannot be empty")
    if "/" in name or "\\" in name:
        raise RenameError(f"Name cannot contain path separators: {name}")
    if is_hidden(name):
        raise RenameError(f"Name cannot start with '.': {name}")
    return name


def _move(source: Path, target: Path) -> None:
    if target.exists():
        raise RenameError(f"'{target.name}' already exists")
    try:
        source.rename(target)
    except OSError as exc:
        raise RenameError(f"Failed to rename {source.name}: {exc}") from exc


def rename_series(repo: Repository, series: Series, new_name: str, cache=None) -> Series:
    """Rename a series folder on disk, then its record."""
    new_name = _validate_name(new_name)
    source = repo.absolute(series)
    target = source.parent / new_name
    if source == target:
        return series

    old_keys = series_cover_keys(series, repo.library_root)
    _move(source, target)

    series.title = new_name
    series.folder_path = repo.relative(target)
    repo.save(series)
    logger.info(f"[→] Renamed series: {source.name} → {new_name}")

    if cache is not None:
        for key in old_keys:
            cache.invalidate(key)
    return series


def rename_volume(repo: Repository, series: Series, volume_id: str, new_name: str, cache=None) -> Series:
    """Rename a volume on disk; read state follows it through the volume id."""
    new_name = _validate_name(new_name)
    volume_names = dict(series.volume_names or {})
    if volume_id not in volume_names:
        raise KeyError(f"Unknown volume {volume_id} in {series.title}")

    folder = repo.absolute(series)
    source = folder / volume_names[volume_id]
    target = folder / new_name
    if source == target:
        return series

    _move(source, target)

    volume_names[volume_id] = new_name
    ordered = sorted(volume_names.items(), key=lambda item: natural_sort_key(item[1]))
    series.volume_names = dict(ordered)
    repo.save(series)
    logger.info(f"[→] Renamed volume: {source.name} → {new_name}")

    if cache is not None:
        cache.invalidate(cache_key_for(source))
        cache.invalidate(cache_key_for(folder))
    return series


def delete_series(repo: Repository, series: Series, cache=None) -> None:
    """Delete a series folder from disk, then its record."""
    folder = repo.absolute(series)
    keys = series_cover_keys(series, repo.library_root)
    try:
        shutil.rmtree(folder)
    except FileNotFoundError:
        pass
    except OSError as exc:
        raise DeleteError(f"Failed to delete {folder.name}: {exc}") from exc

    repo.delete(series)
    logger.info(f"[-] Deleted series: {folder.name}")

    if cache is not None:
        for key in keys:
            cache.invalidate(key)
