"""Config management for Bunko.

Reads `config.ini` from DATA_DIR (defaults to the project root, beside main.py).
"""

from __future__ import annotations

import configparser
import dataclasses
import os
import pathlib
from typing import Optional

from .logging_config import get_logger

logger = get_logger(__name__)

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]

# DATA_DIR holds all persistent state (config.ini, library.db, covers/).
DATA_DIR = pathlib.Path(os.environ.get("DATA_DIR", str(PROJECT_ROOT)))
DEFAULT_CONFIG_PATH = DATA_DIR / "config.ini"

DIRECTIONS = ("rtl", "ltr", "vertical")


@dataclasses.dataclass
class LibraryConfig:
    path: pathlib.Path
    name: str = "My Library"


@dataclasses.dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 8282


@dataclasses.dataclass
class ThumbnailConfig:
    max_pixel_size: int = 400
    quality: int = 70
    memory_capacity: int = 200
    search_depth: int = 3
    workers: int = 4


@dataclasses.dataclass
class ScannerConfig:
    archive_formats: tuple[str, ...] = ("zip", "cbz", "epub")


@dataclasses.dataclass
class ReaderConfig:
    """Reader defaults applied to new reading sessions."""

    direction: str = "rtl"
    two_page_mode: bool = False
    cover_offset: bool = True
    finished_threshold: float = 0.95


@dataclasses.dataclass
class MonitoringConfig:
    enabled: bool = False
    debounce_seconds: int = 2


@dataclasses.dataclass
class BunkoConfig:
    library: LibraryConfig
    server: ServerConfig = dataclasses.field(default_factory=ServerConfig)
    thumbnails: ThumbnailConfig = dataclasses.field(default_factory=ThumbnailConfig)
    scanner: ScannerConfig = dataclasses.field(default_factory=ScannerConfig)
    reader: ReaderConfig = dataclasses.field(default_factory=ReaderConfig)
    monitoring: MonitoringConfig = dataclasses.field(default_factory=MonitoringConfig)
    data_dir: pathlib.Path = DATA_DIR

    @property
    def library_path(self) -> pathlib.Path:
        return self.library.path

    @property
    def server_host(self) -> str:
        return self.server.host

    @property
    def server_port(self) -> int:
        return self.server.port

    @property
    def database_path(self) -> pathlib.Path:
        return self.data_dir / "library.db"

    @property
    def covers_dir(self) -> pathlib.Path:
        return self.data_dir / "covers"


def _parse_bool(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _parse_list(value: str) -> tuple[str, ...]:
    return tuple(item.strip().lower().lstrip(".") for item in value.split(",") if item.strip())


def load_config(config_path: Optional[pathlib.Path] = None) -> BunkoConfig:
    """Load configuration from config.ini.

    Defaults to `config.ini` in DATA_DIR.
    """
    path = config_path or DEFAULT_CONFIG_PATH
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    parser = configparser.ConfigParser()
    parser.read(path)

    lib_path = pathlib.Path(
        parser.get("library", "path", fallback="/path/to/library")
    ).expanduser()
    lib_name = parser.get("library", "name", fallback="My Library")

    server = ServerConfig(
        host=parser.get("server", "host", fallback="127.0.0.1"),
        port=parser.getint("server", "port", fallback=8282),
    )

    thumbs = ThumbnailConfig(
        max_pixel_size=parser.getint("thumbnails", "max_pixel_size", fallback=400),
        quality=parser.getint("thumbnails", "quality", fallback=70),
        memory_capacity=parser.getint("thumbnails", "memory_capacity", fallback=200),
        search_depth=parser.getint("thumbnails", "search_depth", fallback=3),
        workers=parser.getint("thumbnails", "workers", fallback=4),
    )

    scanner = ScannerConfig(
        archive_formats=_parse_list(
            parser.get("scanner", "archive_formats", fallback="zip,cbz,epub")
        ),
    )

    direction = parser.get("reader", "direction", fallback="rtl").strip().lower()
    if direction not in DIRECTIONS:
        logger.warning(f"Unknown reading direction '{direction}', using rtl")
        direction = "rtl"

    reader = ReaderConfig(
        direction=direction,
        two_page_mode=_parse_bool(parser.get("reader", "two_page_mode", fallback=None), False),
        cover_offset=_parse_bool(parser.get("reader", "cover_offset", fallback=None), True),
        finished_threshold=parser.getfloat("reader", "finished_threshold", fallback=0.95),
    )

    monitoring = MonitoringConfig(
        enabled=_parse_bool(parser.get("monitoring", "enabled", fallback=None), False),
        debounce_seconds=parser.getint("monitoring", "debounce_seconds", fallback=2),
    )

    return BunkoConfig(
        library=LibraryConfig(path=lib_path, name=lib_name),
        server=server,
        thumbnails=thumbs,
        scanner=scanner,
        reader=reader,
        monitoring=monitoring,
        data_dir=path.parent,
    )


_cached_config: Optional[BunkoConfig] = None


def get_config() -> BunkoConfig:
    """Return the cached config singleton. Loads from disk on first call."""
    global _cached_config
    if _cached_config is None:
        _cached_config = load_config()
    return _cached_config


def reset_config_cache() -> None:
    """Clear the cached config (useful for tests)."""
    global _cached_config
    _cached_config = None


def write_default_config(
    config_path: pathlib.Path, library_path: pathlib.Path, library_name: str
) -> pathlib.Path:
    """Write a config.ini with default settings for the given library."""
    parser = configparser.ConfigParser()
    defaults_thumbs = ThumbnailConfig()
    defaults_reader = ReaderConfig()

    parser["library"] = {
        "path": str(library_path.expanduser()),
        "name": library_name,
    }
    parser["server"] = {
        "host": ServerConfig().host,
        "port": str(ServerConfig().port),
    }
    parser["thumbnails"] = {
        "max_pixel_size": str(defaults_thumbs.max_pixel_size),
        "quality": str(defaults_thumbs.quality),
        "memory_capacity": str(defaults_thumbs.memory_capacity),
        "search_depth": str(defaults_thumbs.search_depth),
        "workers": str(defaults_thumbs.workers),
    }
    parser["scanner"] = {
        "archive_formats": ",".join(ScannerConfig().archive_formats),
    }
    parser["reader"] = {
        "direction": defaults_reader.direction,
        "two_page_mode": str(defaults_reader.two_page_mode).lower(),
        "cover_offset": str(defaults_reader.cover_offset).lower(),
        "finished_threshold": str(defaults_reader.finished_threshold),
    }
    parser["monitoring"] = {
        "enabled": "false",
        "debounce_seconds": "2",
    }

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w") as handle:
        parser.write(handle)

    (config_path.parent / "covers").mkdir(parents=True, exist_ok=True)
    return config_path
