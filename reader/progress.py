"""Reading progress rules.

Progress is stored per volume id on the series record:
- page 0 means "not started", so nothing is stored
- reaching the finished threshold (or the last page) marks the volume read
  and drops its stored page
- anything else stores the page index
"""

from __future__ import annotations

from datetime import datetime, timezone

from bunko.logging_config import get_logger
from bunko.models import Series

logger = get_logger(__name__)

FINISHED_THRESHOLD = 0.95


def _without(progress: dict, volume_id: str) -> dict:
    return {k: v for k, v in progress.items() if k != volume_id}


class ProgressTracker:
    def __init__(self, finished_threshold: float = FINISHED_THRESHOLD):
        self.finished_threshold = finished_threshold

    def is_finished(self, index: int, page_count: int) -> bool:
        if page_count <= 0:
            return False
        return index / page_count >= self.finished_threshold or index >= page_count - 1

    def record(self, series: Series, volume_id: str, index: int, page_count: int) -> bool:
        """Store progress for a page change. Returns True if the volume got finished."""
        series.last_read_date = datetime.now(timezone.utc)
        progress = dict(series.reading_progress or {})
        finished = False

        if index <= 0:
            if volume_id in progress:
                series.reading_progress = _without(progress, volume_id)
        elif self.is_finished(index, page_count):
            finished = True
            read_volumes = list(series.read_volumes or [])
            if volume_id not in read_volumes:
                read_volumes.append(volume_id)
                series.read_volumes = read_volumes
                logger.info(f"✓ Finished {series.volume_names.get(volume_id, volume_id)} of {series.title}")
            if volume_id in progress:
                series.reading_progress = _without(progress, volume_id)
        elif progress.get(volume_id) != index:
            progress[volume_id] = index
            series.reading_progress = progress

        return finished

    def restore(self, series: Series, volume_id: str, page_count: int) -> int:
        """Page to open a volume at. Clears a stored page that is past the finished threshold."""
        progress = series.reading_progress or {}
        stored = progress.get(volume_id)
        if stored is None or page_count <= 0:
            return 0
        if stored / page_count >= self.finished_threshold:
            series.reading_progress = _without(progress, volume_id)
            return 0
        if 0 <= stored < page_count:
            return stored
        return 0
