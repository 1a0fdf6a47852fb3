"""Spread layout and page navigation for an open volume.

Reading order vs. screen placement: a `SpreadLayout` always names its pages in
reading order (`right` is the page read first, `left` the one read second).
Where they land on screen depends on the reading direction, see
`SpreadLayout.placement`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from bunko.logging_config import get_logger

logger = get_logger(__name__)


class ReadingDirection(str, Enum):
    RIGHT_TO_LEFT = "rtl"
    LEFT_TO_RIGHT = "ltr"
    VERTICAL = "vertical"


@dataclass
class LayoutConfig:
    direction: ReadingDirection = ReadingDirection.RIGHT_TO_LEFT
    two_page_mode: bool = False
    cover_offset: bool = True

    @classmethod
    def from_reader_config(cls, reader_config) -> "LayoutConfig":
        return cls(
            direction=ReadingDirection(reader_config.direction),
            two_page_mode=reader_config.two_page_mode,
            cover_offset=reader_config.cover_offset,
        )

    @property
    def pairs_pages(self) -> bool:
        return self.two_page_mode and self.direction != ReadingDirection.VERTICAL


@dataclass
class Page:
    """One page image of a volume.

    Dimensions are read from the image header on first use unless given.
    """

    index: int
    path: Path
    width: Optional[int] = None
    height: Optional[int] = None

    def _load_size(self) -> None:
        from PIL import Image, UnidentifiedImageError

        try:
            with Image.open(self.path) as img:
                self.width, self.height = img.size
        except (UnidentifiedImageError, OSError) as e:
            logger.warning(f"Could not read page size of {self.path.name}: {e}")
            self.width, self.height = 0, 0

    @property
    def size(self) -> Tuple[int, int]:
        if self.width is None or self.height is None:
            self._load_size()
        return self.width, self.height

    @property
    def is_wide(self) -> bool:
        width, height = self.size
        return width > height


@dataclass
class SpreadLayout:
    right: Optional[Page] = None
    left: Optional[Page] = None
    center: Optional[Page] = None
    step: int = 0

    @property
    def is_empty(self) -> bool:
        return self.step == 0

    @property
    def is_pair(self) -> bool:
        return self.right is not None and self.left is not None

    @property
    def pages(self) -> List[Page]:
        """Pages of this spread in reading order."""
        if self.center is not None:
            return [self.center]
        return [p for p in (self.right, self.left) if p is not None]

    def placement(self, direction: ReadingDirection) -> Tuple[Optional[Page], Optional[Page]]:
        """Return (physical_left, physical_right) for a two-slot spread.

        Right-to-left puts the page read first on the physical right,
        left-to-right puts it on the physical left. Centered spreads return
        (None, None); use `center`.
        """
        if self.center is not None:
            return None, None
        if direction == ReadingDirection.LEFT_TO_RIGHT:
            return self.right, self.left
        return self.left, self.right


class PageLayoutEngine:
    """Pagination state for one open volume."""

    def __init__(self, pages: Sequence[Page], config: Optional[LayoutConfig] = None, current_index: int = 0):
        self.pages = list(pages)
        self.config = config or LayoutConfig()
        self._current_index = 0
        # (origin, landed) of the last forward move
        self._last_forward: Optional[Tuple[int, int]] = None
        self.jump_to(current_index)

    @property
    def page_count(self) -> int:
        return len(self.pages)

    @property
    def last_index(self) -> int:
        return len(self.pages) - 1

    @property
    def current_index(self) -> int:
        return self._current_index

    def _move_to(self, index: int) -> int:
        self._last_forward = None
        self._current_index = index
        return index

    def _in_range(self, index: int) -> bool:
        return 0 <= index < len(self.pages)

    def compute_layout(self, index: Optional[int] = None) -> SpreadLayout:
        index = self._current_index if index is None else index
        if not self._in_range(index):
            return SpreadLayout()

        page = self.pages[index]
        if not self.config.pairs_pages:
            return SpreadLayout(center=page, step=1)
        if self.config.cover_offset and index == 0:
            return SpreadLayout(center=page, step=1)
        if page.is_wide:
            return SpreadLayout(center=page, step=1)

        following = index + 1
        if not self._in_range(following) or self.pages[following].is_wide:
            return SpreadLayout(right=page, step=1)
        return SpreadLayout(right=page, left=self.pages[following], step=2)

    @property
    def layout(self) -> SpreadLayout:
        return self.compute_layout()

    def navigate_next(self, step: Optional[int] = None) -> int:
        if not self.pages:
            return self._current_index
        if step is None:
            step = self.compute_layout().step or 1

        origin = self._current_index
        target = min(origin + step, self.last_index)
        self._move_to(target)
        if target != origin:
            self._last_forward = (origin, target)
        return target

    def _spread_end(self, start: int) -> int:
        return min(start + self.compute_layout(start).step, self.last_index)

    def navigate_previous(self) -> int:
        """Step back to the spread that leads to the current page.

        Undoes the last forward move when nothing else happened since, then
        looks for a spread starting one or two pages back that ends here,
        and only then falls back to the plain back-stepping rules.
        """
        current = self._current_index
        if self._last_forward is not None and self._last_forward[1] == current:
            return self._move_to(self._last_forward[0])

        for start in (current - 2, current - 1):
            if self._in_range(start) and self._spread_end(start) == current:
                return self._move_to(start)

        if not self.config.pairs_pages:
            return self._move_to(max(0, current - 1))
        if self.config.cover_offset and current == 1:
            return self._move_to(0)
        if self._in_range(current - 1) and self.pages[current - 1].is_wide:
            return self._move_to(current - 1)
        return self._move_to(max(0, current - 2))

    def jump_to(self, index: int) -> int:
        if not self.pages:
            return self._move_to(0)
        return self._move_to(max(0, min(index, self.last_index)))

    def offset_by_one(self) -> int:
        """Shift the spread alignment forward by a single page."""
        return self.navigate_next(step=1)

    @property
    def progress_fraction(self) -> float:
        if not self.pages:
            return 0.0
        return (self._current_index + 1) / len(self.pages)
