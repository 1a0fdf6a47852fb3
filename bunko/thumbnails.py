"""Cover thumbnail cache for Bunko.

Two tiers:
- memory: LRU of decoded images, bounded by entry count
- disk: `covers/{sha1(key)}.jpg` plus a `.json` sidecar with the page count

Misses are resolved on a bounded worker pool through the CoverResolver.
Resolution is single-flight per key: concurrent callers for the same key
share one in-flight future. Every invalidate() or put() bumps the key's
generation, and results computed for an older generation are dropped on arrival.
"""

from __future__ import annotations

import json
import os
import threading
from collections import OrderedDict
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from io import BytesIO
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Set

from PIL import Image, UnidentifiedImageError
from sqlmodel import Session

from .archive import ZipExtractor
from .config import BunkoConfig
from .covers import CancelledError, CoverResolver
from .database import get_engine
from .logging_config import get_logger
from .repository import Repository
from .scanner import series_cover_keys
from .utils import hashed_name

logger = get_logger(__name__)


@dataclass
class CacheEntry:
    key: str
    image: Image.Image
    page_count: int

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height

    def to_jpeg(self, quality: int = 70) -> bytes:
        buf = BytesIO()
        self.image.save(buf, format="JPEG", quality=quality, optimize=True)
        return buf.getvalue()


CoverCallback = Callable[[Optional[CacheEntry]], None]


@dataclass(eq=False)
class _Flight:
    key: str
    generation: int
    future: Future = field(default_factory=Future)
    cancel: threading.Event = field(default_factory=threading.Event)
    requests: Set["CoverRequest"] = field(default_factory=set)
    blocking: int = 0


class CoverRequest:
    """Handle for an asynchronous cover lookup.

    cancel() detaches the caller: its callback will not run. Once every
    caller attached to a resolution has cancelled, the resolution itself is
    told to stop.
    """

    def __init__(self, cache: "ThumbnailCache", key: str, callback: Optional[CoverCallback]):
        self.cache = cache
        self.key = key
        self.callback = callback
        self.cancelled = False
        self._flight: Optional[_Flight] = None
        self._done = threading.Event()
        self._result: Optional[CacheEntry] = None

    def cancel(self) -> None:
        self.cache._detach(self)

    def done(self) -> bool:
        return self._done.is_set()

    def result(self, timeout: Optional[float] = None) -> Optional[CacheEntry]:
        """Wait for the lookup. Returns None if cancelled, failed or timed out."""
        self._done.wait(timeout)
        return self._result

    def _deliver(self, entry: Optional[CacheEntry]) -> None:
        with self.cache._lock:
            if self.cancelled:
                return
            self._result = entry
            self._done.set()
        if self.callback is not None:
            try:
                self.callback(entry)
            except Exception as exc:
                logger.error(f"Cover callback for {self.key} failed: {exc}")


class ThumbnailCache:
    """Memory + disk cache of cover images, keyed by a stable subject key.

    One instance per process; pass it to whoever needs covers.
    """

    def __init__(
        self,
        cache_dir: Path,
        resolver: CoverResolver,
        capacity: int = 200,
        max_workers: int = 4,
        quality: int = 70,
    ):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.resolver = resolver
        self.capacity = capacity
        self.quality = quality

        self._lock = threading.RLock()
        self._memory: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._flights: Dict[str, _Flight] = {}
        self._generations: Dict[str, int] = {}
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="bunko-cover"
        )

    # --- Lookup ---

    def get(self, key: str, timeout: Optional[float] = None) -> Optional[Image.Image]:
        entry = self.get_entry(key, timeout=timeout)
        return entry.image if entry else None

    def get_entry(self, key: str, timeout: Optional[float] = None) -> Optional[CacheEntry]:
        """Return the cached entry for key, resolving it on a miss (blocking)."""
        with self._lock:
            entry = self._memory_get(key)
            if entry is not None:
                return entry
            flight = self._join_flight(key)
            flight.blocking += 1
        try:
            return flight.future.result(timeout=timeout)
        except FutureTimeoutError:
            logger.warning(f"Timed out waiting for cover {key}")
            return None
        finally:
            with self._lock:
                flight.blocking -= 1

    def request(self, key: str, callback: Optional[CoverCallback] = None) -> CoverRequest:
        """Start (or join) a lookup without blocking; callback gets the entry."""
        req = CoverRequest(self, key, callback)
        with self._lock:
            entry = self._memory_get(key)
            if entry is None:
                flight = self._join_flight(key)
                flight.requests.add(req)
                req._flight = flight
        if entry is not None:
            req._deliver(entry)
        return req

    def page_count(self, key: str) -> Optional[int]:
        with self._lock:
            entry = self._memory.get(key)
            if entry is not None:
                return entry.page_count
        meta = self._read_sidecar(key)
        return meta.get("page_count") if meta else None

    def contains(self, key: str) -> bool:
        with self._lock:
            if key in self._memory:
                return True
        return self._image_path(key).exists()

    def image_path(self, key: str) -> Optional[Path]:
        """Disk copy of the cover, if one has been written."""
        path = self._image_path(key)
        return path if path.exists() else None

    # --- Mutation ---

    def put(self, key: str, image: Image.Image, page_count: int = 0) -> CacheEntry:
        """Store an explicit cover for key; it supersedes any lookup in flight."""
        entry = CacheEntry(key=key, image=image, page_count=page_count)
        with self._lock:
            self._generations[key] = self._generations.get(key, 0) + 1
            flight = self._flights.pop(key, None)
            if flight is not None:
                flight.cancel.set()
            self._memory_put(entry)
            self._write_disk(entry)
        # Waiters on the superseded lookup get the stored entry
        if flight is not None:
            self._settle(flight, entry)
        return entry

    def invalidate(self, key: str) -> None:
        """Drop key from both tiers; in-flight work for it becomes stale."""
        with self._lock:
            self._generations[key] = self._generations.get(key, 0) + 1
            self._memory.pop(key, None)
            flight = self._flights.pop(key, None)
            if flight is not None:
                flight.cancel.set()
            for path in (self._image_path(key), self._sidecar_path(key)):
                try:
                    path.unlink()
                except FileNotFoundError:
                    pass
                except OSError as exc:
                    logger.error(f"Failed to delete cover file {path}: {exc}")

    def clear(self) -> int:
        """Empty both tiers. Returns the number of disk entries removed."""
        with self._lock:
            for key in list(self._memory) + list(self._flights):
                self._generations[key] = self._generations.get(key, 0) + 1
            for flight in self._flights.values():
                flight.cancel.set()
            self._flights.clear()
            self._memory.clear()
            removed = 0
            for path in self.cache_dir.glob("*.jpg"):
                path.unlink(missing_ok=True)
                path.with_suffix(".json").unlink(missing_ok=True)
                removed += 1
        return removed

    def cleanup_orphans(self, valid_keys: Iterable[str]) -> int:
        """Remove disk entries whose key is not in valid_keys."""
        valid = set(valid_keys)
        deleted = 0
        for sidecar in self.cache_dir.glob("*.json"):
            try:
                key = json.loads(sidecar.read_text(encoding="utf-8")).get("key")
            except (OSError, ValueError) as exc:
                logger.error(f"Unreadable cover sidecar {sidecar.name}: {exc}")
                key = None
            if key in valid:
                continue
            with self._lock:
                if key is not None:
                    self._memory.pop(key, None)
                sidecar.unlink(missing_ok=True)
                sidecar.with_suffix(".jpg").unlink(missing_ok=True)
            deleted += 1
        return deleted

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._memory)

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            pending = list(self._flights.values())
            for flight in pending:
                flight.cancel.set()
        self._executor.shutdown(wait=wait, cancel_futures=True)
        # Flights cancelled before they ran never settle on their own
        for flight in pending:
            self._settle(flight, None)

    # --- Internals ---

    def _memory_get(self, key: str) -> Optional[CacheEntry]:
        entry = self._memory.get(key)
        if entry is not None:
            self._memory.move_to_end(key)
        return entry

    def _memory_put(self, entry: CacheEntry) -> None:
        self._memory[entry.key] = entry
        self._memory.move_to_end(entry.key)
        while len(self._memory) > self.capacity:
            evicted, _ = self._memory.popitem(last=False)
            logger.debug(f"Evicted cover {evicted}")

    def _join_flight(self, key: str) -> _Flight:
        """Return the live flight for key, starting one if needed. Caller holds the lock."""
        generation = self._generations.get(key, 0)
        flight = self._flights.get(key)
        if flight is not None and flight.generation == generation and not flight.cancel.is_set():
            return flight

        flight = _Flight(key=key, generation=generation)
        self._flights[key] = flight
        try:
            self._executor.submit(self._run_flight, flight)
        except RuntimeError:
            # Pool already shut down
            self._flights.pop(key, None)
            flight.future.set_result(None)
        return flight

    def _detach(self, req: CoverRequest) -> None:
        with self._lock:
            req.cancelled = True
            req._done.set()
            flight = req._flight
            if flight is None:
                return
            flight.requests.discard(req)
            if not flight.requests and flight.blocking == 0:
                flight.cancel.set()
                if self._flights.get(flight.key) is flight:
                    del self._flights[flight.key]

    def _run_flight(self, flight: _Flight) -> None:
        entry: Optional[CacheEntry] = None
        try:
            entry = self._resolve(flight)
        except Exception as exc:
            logger.error(f"Cover resolution for {flight.key} failed: {exc}")
            entry = None
        finally:
            self._settle(flight, entry)

    def _settle(self, flight: _Flight, entry: Optional[CacheEntry]) -> None:
        with self._lock:
            if self._flights.get(flight.key) is flight:
                del self._flights[flight.key]
            if flight.future.done():
                return
            requests = list(flight.requests)
            flight.requests.clear()
            flight.future.set_result(entry)
        for req in requests:
            req._deliver(entry)

    def _resolve(self, flight: _Flight) -> Optional[CacheEntry]:
        key = flight.key
        if flight.cancel.is_set():
            return None

        entry = self._read_disk(key)
        if entry is None:
            try:
                found = self.resolver.find(Path(key), flight.cancel)
            except CancelledError:
                logger.debug(f"Cover lookup cancelled: {key}")
                return None
            if found is None:
                return None
            entry = CacheEntry(key=key, image=found.image, page_count=found.page_count)
            persist = True
        else:
            persist = False

        # Completion handoff: only a current-generation result lands in the cache
        with self._lock:
            if flight.generation != self._generations.get(key, 0) or flight.cancel.is_set():
                logger.debug(f"Discarding stale cover result for {key}")
                return None
            self._memory_put(entry)
            if persist:
                self._write_disk(entry)
        return entry

    def _image_path(self, key: str) -> Path:
        return self.cache_dir / f"{hashed_name(key)}.jpg"

    def _sidecar_path(self, key: str) -> Path:
        return self.cache_dir / f"{hashed_name(key)}.json"

    def _read_sidecar(self, key: str) -> Optional[dict]:
        path = self._sidecar_path(key)
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            logger.error(f"Unreadable cover sidecar {path.name}: {exc}")
            return None

    def _read_disk(self, key: str) -> Optional[CacheEntry]:
        path = self._image_path(key)
        if not path.exists():
            return None
        try:
            with Image.open(path) as im:
                im.load()
                image = im.convert("RGB")
        except (UnidentifiedImageError, OSError) as exc:
            logger.warning(f"Corrupt cached cover {path.name}, discarding: {exc}")
            path.unlink(missing_ok=True)
            self._sidecar_path(key).unlink(missing_ok=True)
            return None
        meta = self._read_sidecar(key) or {}
        return CacheEntry(key=key, image=image, page_count=int(meta.get("page_count", 0)))

    def _write_disk(self, entry: CacheEntry) -> None:
        image_path = self._image_path(entry.key)
        tmp_path = image_path.parent / (image_path.name + ".tmp")
        try:
            entry.image.convert("RGB").save(tmp_path, format="JPEG", quality=self.quality, optimize=True)
            os.replace(tmp_path, image_path)
            self._sidecar_path(entry.key).write_text(
                json.dumps({
                    "key": entry.key,
                    "page_count": entry.page_count,
                    "width": entry.width,
                    "height": entry.height,
                }),
                encoding="utf-8",
            )
        except OSError as exc:
            logger.error(f"Failed to write cover for {entry.key}: {exc}")
            tmp_path.unlink(missing_ok=True)


def build_cache(config: BunkoConfig) -> ThumbnailCache:
    """Create the process-wide cover cache from config."""
    resolver = CoverResolver(
        max_pixel_size=config.thumbnails.max_pixel_size,
        max_depth=config.thumbnails.search_depth,
        extractor=ZipExtractor(),
        archive_extensions=config.scanner.archive_formats,
    )
    return ThumbnailCache(
        config.covers_dir,
        resolver,
        capacity=config.thumbnails.memory_capacity,
        max_workers=config.thumbnails.workers,
        quality=config.thumbnails.quality,
    )


def _library_cover_keys(config: BunkoConfig) -> List[str]:
    root = config.library_path.resolve()
    with Session(get_engine()) as session:
        repo = Repository(session, root)
        keys: List[str] = []
        for series in repo.get_all_series():
            keys.extend(series_cover_keys(series, root))
    return keys


def cleanup_orphaned_thumbnails(config: BunkoConfig, cache: ThumbnailCache) -> int:
    """Remove cached covers that no longer belong to a series or volume.

    Returns count of deleted orphaned covers.
    """
    return cache.cleanup_orphans(_library_cover_keys(config))


def generate_thumbnails(config: BunkoConfig, cache: ThumbnailCache, regenerate: bool = False) -> dict:
    """Resolve missing (or all) covers for every series and volume in the DB."""
    keys = _library_cover_keys(config)
    if regenerate:
        logger.info("Regenerating all covers...")
        for key in keys:
            cache.invalidate(key)
    else:
        logger.info("Generating missing covers...")
        keys = [key for key in keys if not cache.contains(key)]

    total = len(keys)
    logger.info(f"{total} covers to process")

    requests = [cache.request(key) for key in keys]
    generated = failed = 0
    for idx, req in enumerate(requests, start=1):
        entry = req.result()
        if entry is None:
            failed += 1
            logger.debug(f"[{idx}/{total}] ✗ {req.key}")
        else:
            generated += 1
            logger.debug(f"[{idx}/{total}] ✓ {req.key}")

    logger.info(f"Cover generation complete: {generated} generated, {failed} without cover.")
    return {"generated": generated, "failed": failed}
