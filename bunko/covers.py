"""Cover lookup for series and volumes.

Finds the first page image of a folder (naturally sorted), descending into
sub-folders up to a fixed depth, and returns it downsampled. Archive volumes
are staged through the extractor first.
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from PIL import Image, UnidentifiedImageError

from .archive import ArchiveExtractionError, Extractor, ZipExtractor, staged_archive
from .logging_config import get_logger
from .path_utils import is_hidden
from .utils import short_path
from .volumes import ARCHIVE_EXTENSIONS, is_image, natural_sort_key

logger = get_logger(__name__)


class CancelledError(Exception):
    """Raised inside a resolution when its cancel token was set."""


@dataclass
class ResolvedCover:
    image: Image.Image
    page_count: int
    source: Path


def load_downsampled(path: Path, max_pixel_size: int) -> Image.Image:
    """Decode an image and shrink it to fit a max_pixel_size square.

    Raises UnidentifiedImageError / OSError for unreadable files.
    """
    with Image.open(path) as im:
        im.load()
        im = im.convert("RGB")
        im.thumbnail((max_pixel_size, max_pixel_size))
        return im


def _list_sorted(folder: Path) -> Tuple[List[Path], List[Path]]:
    """Return (images, subfolders) of folder, hidden excluded, naturally sorted."""
    images: List[Path] = []
    folders: List[Path] = []
    with os.scandir(folder) as it:
        for item in it:
            if is_hidden(item.name):
                continue
            try:
                if item.is_dir():
                    folders.append(Path(item.path))
                elif is_image(item.name):
                    images.append(Path(item.path))
            except OSError:
                continue
    images.sort(key=lambda p: natural_sort_key(p.name))
    folders.sort(key=lambda p: natural_sort_key(p.name))
    return images, folders


class CoverResolver:
    """Locates a representative image for a series folder or a volume."""

    def __init__(
        self,
        max_pixel_size: int = 400,
        max_depth: int = 3,
        extractor: Optional[Extractor] = None,
        archive_extensions=ARCHIVE_EXTENSIONS,
    ):
        self.max_pixel_size = max_pixel_size
        self.max_depth = max_depth
        self.extractor = extractor or ZipExtractor()
        self.archive_extensions = {
            ext.lower() if ext.startswith(".") else f".{ext.lower()}"
            for ext in archive_extensions
        }

    def find(self, path: Path, cancel: Optional[threading.Event] = None) -> Optional[ResolvedCover]:
        """Return the cover for `path` or None when nothing usable was found.

        Raises CancelledError when `cancel` gets set mid-search.
        """
        self._check(cancel)
        if path.is_file():
            if path.suffix.lower() in self.archive_extensions:
                return self._find_in_archive(path, cancel)
            return None
        return self._search(path, cancel, depth=0)

    def _find_in_archive(self, archive_path: Path, cancel) -> Optional[ResolvedCover]:
        try:
            with staged_archive(archive_path, self.extractor) as staging:
                self._check(cancel)
                found = self._search(staging, cancel, depth=0, count_all=True)
                if found is None:
                    return None
                # Staging is about to disappear; report the archive as source
                return ResolvedCover(found.image, found.page_count, archive_path)
        except ArchiveExtractionError as exc:
            logger.warning(f"No cover for {short_path(archive_path)}: {exc}")
            return None

    def _search(
        self,
        folder: Path,
        cancel: Optional[threading.Event],
        depth: int,
        count_all: bool = False,
    ) -> Optional[ResolvedCover]:
        self._check(cancel)
        if depth > self.max_depth:
            return None
        try:
            images, folders = _list_sorted(folder)
        except OSError as exc:
            logger.debug(f"Cannot list {folder}: {exc}")
            return None

        if images:
            first = images[0]
            try:
                image = load_downsampled(first, self.max_pixel_size)
            except (UnidentifiedImageError, OSError, ValueError) as exc:
                logger.warning(f"Cannot decode cover {short_path(first)}: {exc}")
                return None
            page_count = _count_images(folder) if count_all else len(images)
            return ResolvedCover(image, page_count, first)

        for sub in folders:
            self._check(cancel)
            found = self._search(sub, cancel, depth + 1, count_all)
            if found is not None:
                if count_all:
                    found.page_count = _count_images(folder)
                return found
        return None

    @staticmethod
    def _check(cancel: Optional[threading.Event]) -> None:
        if cancel is not None and cancel.is_set():
            raise CancelledError()


def _count_images(root: Path) -> int:
    total = 0
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = [d for d in dirnames if not is_hidden(d)]
        total += sum(1 for f in filenames if not is_hidden(f) and is_image(f))
    return total
