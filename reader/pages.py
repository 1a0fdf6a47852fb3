"""Page loading for the reader.

A volume's pages are every raster image below the volume folder, hidden
entries excluded, in natural order (folder by folder). Archive volumes are
extracted into a staging directory first; the caller owns that directory
and removes it with `bunko.archive.remove_staging` when done.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional, Tuple

from bunko.archive import Extractor, create_staging, remove_staging
from bunko.logging_config import get_logger
from bunko.path_utils import is_hidden
from bunko.volumes import VolumeIndex, is_image, natural_sort_key

from .layout import Page

logger = get_logger(__name__)

CONTENT_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
    ".avif": "image/avif",
}


def content_type_for(path: Path) -> str:
    return CONTENT_TYPES.get(path.suffix.lower(), "application/octet-stream")


def collect_images(folder: Path) -> List[Path]:
    """All images under folder: its own images first, then each sub-folder in order."""
    images: List[Path] = []
    folders: List[Path] = []
    with os.scandir(folder) as it:
        for item in it:
            if is_hidden(item.name):
                continue
            if item.is_dir():
                folders.append(Path(item.path))
            elif is_image(item.name):
                images.append(Path(item.path))

    images.sort(key=lambda p: natural_sort_key(p.name))
    for sub in sorted(folders, key=lambda p: natural_sort_key(p.name)):
        images.extend(collect_images(sub))
    return images


def load_pages(
    volume_path: Path,
    extractor: Optional[Extractor] = None,
    index: Optional[VolumeIndex] = None,
) -> Tuple[List[Page], Optional[Path]]:
    """Return (pages, staging_dir) for a volume folder or archive.

    staging_dir is None for plain folders. Raises OSError when the volume
    cannot be listed and ArchiveExtractionError when an archive cannot be read.
    """
    index = index or VolumeIndex()
    staging: Optional[Path] = None
    root = volume_path
    if volume_path.is_file() and index.is_archive(volume_path):
        staging = create_staging(volume_path, extractor)
        root = staging

    try:
        images = collect_images(root)
    except OSError:
        if staging is not None:
            remove_staging(staging)
        raise

    pages = [Page(index=i, path=path) for i, path in enumerate(images)]
    logger.debug(f"Loaded {len(pages)} pages from {volume_path.name}")
    return pages, staging
