"""Reading sessions: one open volume with its pages, layout engine and progress."""

from __future__ import annotations

import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional

from bunko.archive import Extractor, remove_staging
from bunko.logging_config import get_logger
from bunko.models import Series
from bunko.path_utils import to_absolute
from bunko.volumes import VolumeIndex

from .layout import LayoutConfig, Page, PageLayoutEngine
from .pages import load_pages
from .progress import ProgressTracker

logger = get_logger(__name__)

# Called with (index, page_count) after every page change
ProgressCallback = Callable[[int, int], None]


class ReadingSession:
    def __init__(
        self,
        series_uuid: str,
        volume_id: str,
        volume_name: str,
        pages: List[Page],
        layout_config: Optional[LayoutConfig] = None,
        start_index: int = 0,
        staging: Optional[Path] = None,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.id = uuid.uuid4().hex
        self.series_uuid = series_uuid
        self.volume_id = volume_id
        self.volume_name = volume_name
        self.engine = PageLayoutEngine(pages, layout_config, current_index=start_index)
        self.staging = staging
        self.on_progress = on_progress
        self.closed = False
        self._lock = threading.Lock()

    @classmethod
    def open(
        cls,
        series: Series,
        volume_id: str,
        library_root: Path,
        tracker: ProgressTracker,
        layout_config: Optional[LayoutConfig] = None,
        extractor: Optional[Extractor] = None,
        index: Optional[VolumeIndex] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> "ReadingSession":
        """Load a volume and restore its progress.

        Mutates `series` (stale progress, last_read_date); the caller commits.
        Raises KeyError for an unknown volume id, OSError or
        ArchiveExtractionError when the volume cannot be read.
        """
        volume_name = (series.volume_names or {}).get(volume_id)
        if volume_name is None:
            raise KeyError(f"Unknown volume {volume_id} in {series.title}")

        volume_path = to_absolute(series.folder_path, library_root) / volume_name
        pages, staging = load_pages(volume_path, extractor, index)
        start = tracker.restore(series, volume_id, len(pages))
        series.last_read_date = datetime.now(timezone.utc)

        logger.info(f"[READ] {series.title} / {volume_name} at page {start + 1}/{len(pages)}")
        return cls(
            series.uuid,
            volume_id,
            volume_name,
            pages,
            layout_config,
            start_index=start,
            staging=staging,
            on_progress=on_progress,
        )

    @property
    def current_index(self) -> int:
        return self.engine.current_index

    @property
    def page_count(self) -> int:
        return self.engine.page_count

    def _navigate(self, move: Callable[[], object]) -> int:
        # Layout state and the progress write change together, one request at a time
        with self._lock:
            before = self.engine.current_index
            move()
            after = self.engine.current_index
            if after != before and self.on_progress is not None:
                self.on_progress(after, self.engine.page_count)
            return after

    def next(self) -> int:
        return self._navigate(self.engine.navigate_next)

    def previous(self) -> int:
        return self._navigate(self.engine.navigate_previous)

    def jump_to(self, index: int) -> int:
        return self._navigate(lambda: self.engine.jump_to(index))

    def offset_by_one(self) -> int:
        return self._navigate(self.engine.offset_by_one)

    def page(self, index: int) -> Page:
        if not 0 <= index < self.engine.page_count:
            raise IndexError(f"Page {index} out of range")
        return self.engine.pages[index]

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self.staging is not None:
            remove_staging(self.staging)
            self.staging = None

    def to_dict(self) -> dict:
        with self._lock:
            return self._snapshot()

    def _snapshot(self) -> dict:
        layout = self.engine.layout
        direction = self.engine.config.direction
        physical_left, physical_right = layout.placement(direction)
        return {
            "id": self.id,
            "series_uuid": self.series_uuid,
            "volume_id": self.volume_id,
            "volume_name": self.volume_name,
            "current_index": self.engine.current_index,
            "page_count": self.engine.page_count,
            "progress": round(self.engine.progress_fraction, 4),
            "direction": direction.value,
            "two_page_mode": self.engine.config.two_page_mode,
            "cover_offset": self.engine.config.cover_offset,
            "layout": {
                "step": layout.step,
                "center": layout.center.index if layout.center else None,
                "reading_order": [p.index for p in layout.pages],
                "physical_left": physical_left.index if physical_left else None,
                "physical_right": physical_right.index if physical_right else None,
            },
        }


class SessionRegistry:
    """Open reading sessions by id."""

    def __init__(self):
        self._sessions: Dict[str, ReadingSession] = {}
        self._lock = threading.Lock()

    def add(self, session: ReadingSession) -> ReadingSession:
        with self._lock:
            self._sessions[session.id] = session
        return session

    def get(self, session_id: str) -> Optional[ReadingSession]:
        with self._lock:
            return self._sessions.get(session_id)

    def close(self, session_id: str) -> bool:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.close()
        return True

    def close_all(self) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.close()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
