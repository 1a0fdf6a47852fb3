"""Archive handling for Bunko.

Volumes packed as zip/cbz/epub are read by extracting their image entries
into a temporary staging directory. The rest of the code only ever walks
plain directories; the `Extractor` protocol is the seam for swapping in a
different extraction tool.
"""

from __future__ import annotations

import shutil
import tempfile
import zipfile
from contextlib import contextmanager
from pathlib import Path, PurePosixPath
from typing import Iterator, List, Optional, Protocol

from .logging_config import get_logger
from .volumes import is_image

logger = get_logger(__name__)


class ArchiveExtractionError(RuntimeError):
    """Raised when an archive cannot be opened or extracted."""


class Extractor(Protocol):
    def extract_images(self, archive_path: Path, destination: Path) -> List[Path]:
        """Extract image entries of `archive_path` into `destination`.

        Returns the extracted file paths. Raises ArchiveExtractionError.
        """
        ...


def _is_skipped_entry(name: str) -> bool:
    parts = PurePosixPath(name).parts
    return any(part == "__MACOSX" or part.startswith(".") for part in parts)


class ZipExtractor:
    """Extracts image entries from zip-family containers (zip, cbz, epub)."""

    def list_images(self, archive_path: Path) -> List[str]:
        try:
            with zipfile.ZipFile(archive_path, mode="r") as zf:
                return [
                    n for n in zf.namelist()
                    if not n.endswith("/") and is_image(n) and not _is_skipped_entry(n)
                ]
        except (zipfile.BadZipFile, OSError) as exc:
            raise ArchiveExtractionError(f"Cannot open archive {archive_path.name}: {exc}") from exc

    def extract_images(self, archive_path: Path, destination: Path) -> List[Path]:
        names = self.list_images(archive_path)
        extracted: List[Path] = []
        try:
            with zipfile.ZipFile(archive_path, mode="r") as zf:
                for name in names:
                    # Keep the entry's folder structure but never escape destination
                    target = destination.joinpath(*[p for p in PurePosixPath(name).parts if p not in ("..", "/")])
                    target.parent.mkdir(parents=True, exist_ok=True)
                    with zf.open(name) as src, target.open("wb") as dst:
                        shutil.copyfileobj(src, dst)
                    extracted.append(target)
        except (zipfile.BadZipFile, OSError, RuntimeError) as exc:
            raise ArchiveExtractionError(f"Failed to extract {archive_path.name}: {exc}") from exc
        return extracted


@contextmanager
def staged_archive(
    archive_path: Path,
    extractor: Optional[Extractor] = None,
) -> Iterator[Path]:
    """Extract `archive_path` into a fresh staging directory.

    The directory is removed on exit whatever happened inside the block.
    """
    extractor = extractor or ZipExtractor()
    staging = Path(tempfile.mkdtemp(prefix="bunko-"))
    try:
        extractor.extract_images(archive_path, staging)
        yield staging
    finally:
        remove_staging(staging)


def create_staging(archive_path: Path, extractor: Optional[Extractor] = None) -> Path:
    """Extract into a staging directory the caller owns (see remove_staging)."""
    extractor = extractor or ZipExtractor()
    staging = Path(tempfile.mkdtemp(prefix="bunko-"))
    try:
        extractor.extract_images(archive_path, staging)
    except Exception:
        remove_staging(staging)
        raise
    return staging


def remove_staging(staging: Path) -> None:
    try:
        shutil.rmtree(staging)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.error(f"Failed to remove staging dir {staging}: {exc}")
