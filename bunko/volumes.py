"""Volume discovery for a single series folder.

A volume is either a plain sub-directory of page images or an archive file
(zip/cbz/epub by default). The natural order produced here is the one order
used for counting, listing and paging through volumes.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, List

from .path_utils import is_hidden

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".avif"}
ARCHIVE_EXTENSIONS = {".zip", ".cbz", ".epub"}

_DIGITS = re.compile(r"(\d+)")


def natural_sort_key(name: str):
    """Sort key so that "Vol 2" sorts before "Vol 10" (case-insensitive)."""
    parts = _DIGITS.split(name)
    return [
        (0, int(part), "") if part.isdigit() else (1, 0, part.casefold())
        for part in parts
    ]


def natural_sorted(names: Iterable[str]) -> List[str]:
    return sorted(names, key=natural_sort_key)


def is_image(filename: str) -> bool:
    return Path(filename).suffix.lower() in IMAGE_EXTENSIONS


class VolumeKind(str, Enum):
    DIRECTORY = "directory"
    ARCHIVE = "archive"


@dataclass(frozen=True)
class VolumeEntry:
    name: str
    path: Path
    kind: VolumeKind


class VolumeIndex:
    """Lists the volumes of a series folder in natural order."""

    def __init__(self, archive_extensions: Iterable[str] = ARCHIVE_EXTENSIONS):
        self.archive_extensions = {
            ext.lower() if ext.startswith(".") else f".{ext.lower()}"
            for ext in archive_extensions
        }

    def is_archive(self, path: Path) -> bool:
        return path.suffix.lower() in self.archive_extensions

    def list(self, series_folder: Path) -> List[VolumeEntry]:
        """Return the volumes of `series_folder`.

        Raises OSError if the folder itself cannot be listed; callers decide
        whether that means "no result".
        """
        entries: List[VolumeEntry] = []
        with os.scandir(series_folder) as it:
            for item in it:
                if is_hidden(item.name):
                    continue
                try:
                    is_dir = item.is_dir()
                except OSError:
                    continue
                path = Path(item.path)
                if is_dir:
                    entries.append(VolumeEntry(item.name, path, VolumeKind.DIRECTORY))
                elif self.is_archive(path):
                    entries.append(VolumeEntry(item.name, path, VolumeKind.ARCHIVE))

        entries.sort(key=lambda entry: natural_sort_key(entry.name))
        return entries

    def names(self, series_folder: Path) -> List[str]:
        return [entry.name for entry in self.list(series_folder)]

    def count(self, series_folder: Path) -> int:
        return len(self.list(series_folder))
