"""Filesystem monitoring for Bunko.

Uses Watchdog to notice changes under the library root and re-sync the
catalog. Every event is reduced to the series folder it touches; the worker
batches bursts, drops the affected series covers and runs one sync per batch.
"""

from __future__ import annotations

import queue
import time
from pathlib import Path
from threading import Event, Thread
from typing import Dict, List, NamedTuple, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .config import BunkoConfig
from .logging_config import get_logger
from .scanner import scan_library
from .utils import cache_key_for

logger = get_logger(__name__)


class MonitorTask(NamedTuple):
    action: str
    path: Path


def series_folder_for(path: Path, root: Path) -> Optional[Path]:
    """Return the series folder (direct child of root) containing path.

    Returns None for the root itself, for paths outside it and for anything
    with a hidden component.
    """
    try:
        parts = path.relative_to(root).parts
    except ValueError:
        return None
    if not parts or any(part.startswith(".") for part in parts):
        return None
    return root / parts[0]


class LibraryEventHandler(FileSystemEventHandler):
    """Handle filesystem events and push them to a processing queue."""

    def __init__(self, task_queue: queue.Queue, library_root: Path, debounce_seconds: int = 2):
        super().__init__()
        self.task_queue = task_queue
        self.library_root = library_root
        self.debounce_seconds = debounce_seconds
        self._last_modified: Dict[str, float] = {}

    def _queue(self, raw_path) -> None:
        folder = series_folder_for(Path(raw_path), self.library_root)
        if folder is not None:
            self.task_queue.put(MonitorTask("sync", folder))

    def on_created(self, event: FileSystemEvent) -> None:
        self._queue(event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._queue(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        self._queue(event.src_path)
        self._queue(event.dest_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return

        path = Path(event.src_path)
        now = time.time()
        key = str(path)
        last = self._last_modified.get(key, 0)
        if now - last < self.debounce_seconds:
            return

        self._last_modified[key] = now
        self._queue(path)

        # Prune stale entries to prevent unbounded growth
        cutoff = now - self.debounce_seconds * 2
        self._last_modified = {
            k: v for k, v in self._last_modified.items() if v > cutoff
        }


def optimize_tasks(tasks: List[MonitorTask]) -> List[MonitorTask]:
    """Deduplicate a batch of tasks, keeping first-seen order."""
    seen = set()
    optimized = []
    for task in tasks:
        if task in seen:
            continue
        seen.add(task)
        optimized.append(task)
    return optimized


def process_batch(tasks: List[MonitorTask], config: BunkoConfig, cache=None) -> Optional[dict]:
    """Invalidate covers of the touched series and run a single sync."""
    optimized = optimize_tasks(tasks)
    if not optimized:
        return None

    if cache is not None:
        for task in optimized:
            cache.invalidate(cache_key_for(task.path))

    names = ", ".join(task.path.name for task in optimized)
    logger.info(f"[MONITOR] Change detected in: {names}")
    return scan_library(config, cache)


def process_queue(task_queue: queue.Queue, config: BunkoConfig, stop_event: Event, cache=None) -> None:
    """Worker function to process filesystem events sequentially with batching."""
    BATCH_WINDOW = 1.0  # Seconds to wait for more events

    while not stop_event.is_set():
        try:
            # Block until first task arrives
            first_task = task_queue.get(timeout=1.0)
        except queue.Empty:
            continue

        batch = [first_task]
        start_time = time.time()

        while (time.time() - start_time) < BATCH_WINDOW:
            try:
                batch.append(task_queue.get_nowait())
            except queue.Empty:
                time.sleep(0.1)

        for _ in batch:
            task_queue.task_done()

        try:
            process_batch(batch, config, cache)
        except Exception as e:
            logger.error(f"Error processing batch of {len(batch)} events: {e}")


def start_file_monitoring(config: BunkoConfig, cache=None) -> Optional[Observer]:
    """Start filesystem monitoring if enabled in config."""
    if not config.monitoring.enabled:
        return None

    library_path = config.library_path.resolve()
    if not library_path.exists():
        logger.error(f"Library path does not exist: {library_path}")
        return None

    task_queue: queue.Queue = queue.Queue()
    stop_event = Event()

    worker = Thread(
        target=process_queue,
        args=(task_queue, config, stop_event, cache),
        daemon=True,
        name="BunkoMonitorWorker",
    )
    worker.start()

    event_handler = LibraryEventHandler(task_queue, library_path, config.monitoring.debounce_seconds)

    observer = Observer()
    observer.schedule(event_handler, str(library_path), recursive=True)
    observer.start()
    logger.info(f"[MONITOR] Watching {library_path}")

    return observer
