"""Path utilities for converting between absolute and relative paths.

Series folder paths are stored relative to the library root, so the whole
library can move by updating library.path in config.ini.
"""

from __future__ import annotations

from pathlib import Path


def to_relative(absolute_path: Path, library_root: Path) -> str:
    """Convert an absolute path to a relative path string.

    Example:
        >>> to_relative(Path("/library/Manga/Berserk"), Path("/library/Manga"))
        "Berserk"
    """
    try:
        rel_path = absolute_path.relative_to(library_root)
        return rel_path.as_posix()
    except ValueError:
        return str(absolute_path)


def to_absolute(relative_path: str, library_root: Path) -> Path:
    """Convert a relative path string to an absolute Path object.

    Example:
        >>> to_absolute("Berserk", Path("/library/Manga"))
        Path("/library/Manga/Berserk")
    """
    return library_root / relative_path


def is_hidden(name: str) -> bool:
    """Hidden entries (dot-prefixed, incl. macOS ._ files) are never scanned."""
    return name.startswith(".")
