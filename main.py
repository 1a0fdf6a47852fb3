"""Bunko CLI entry point."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from sqlmodel import Session

from bunko.api import run_server
from bunko.config import DEFAULT_CONFIG_PATH, BunkoConfig, load_config, write_default_config
from bunko.database import get_engine, init_db, reset_database
from bunko.logging_config import setup_logging
from bunko.migrations import get_status, run_migrations, stamp_if_needed
from bunko.monitor import start_file_monitoring
from bunko.repository import Repository
from bunko.scanner import scan_library
from bunko.thumbnails import build_cache, cleanup_orphaned_thumbnails, generate_thumbnails


__version__ = "0.1.0"

app = typer.Typer(add_completion=False, help="Bunko manga library CLI")
logger = logging.getLogger("bunko")

STARTUP_BANNER = r"""
 ____              _
| __ ) _   _ _ __ | | _____
|  _ \| | | | '_ \| |/ / _ \
| |_) | |_| | | | |   < (_) |
|____/ \__,_|_| |_|_|\_\___/
"""


def _ensure_config() -> BunkoConfig:
    try:
        return load_config()
    except FileNotFoundError:
        typer.echo("[ERROR] config.ini not found. Run: bunko init --library /path/to/manga")
        raise typer.Exit(code=1)


def _scan_summary(stats: dict) -> str:
    return (
        f"{stats['added']} series added, "
        f"{stats['updated']} updated, "
        f"{stats['deleted']} deleted, "
        f"{stats['unchanged']} unchanged."
    )


@app.command()
def init(
    library: Path = typer.Option(..., "--library", help="Path to your manga folder"),
    name: str = typer.Option("My Library", "--name", help="Library name"),
) -> None:
    """Initialize config.ini with default settings."""
    config_path = write_default_config(DEFAULT_CONFIG_PATH, library, name)
    typer.echo(f"[OK] Config created at {config_path}")


@app.command()
def scan() -> None:
    """Sync the library folder into the database."""
    setup_logging()

    config = _ensure_config()
    cache = build_cache(config)
    try:
        stats = scan_library(config, cache)
    finally:
        cache.shutdown()

    if stats["failed"]:
        typer.echo(f"✗ Library root unreadable: {config.library_path}. Nothing was changed.")
        raise typer.Exit(code=1)
    typer.echo("✓ Scan completed: " + _scan_summary(stats))


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Server host"),
    port: Optional[int] = typer.Option(None, "--port", help="Server port"),
    no_watch: bool = typer.Option(False, "--no-watch", help="Disable file monitoring"),
) -> None:
    """Start the library server with optional file monitoring."""
    setup_logging()

    typer.echo(typer.style(STARTUP_BANNER, fg=typer.colors.MAGENTA, bold=True))
    config = _ensure_config()
    init_db()

    # Migrations: stamp DBs created by init_db, then upgrade to head.
    stamp_if_needed()
    current, head = get_status()
    if current != head:
        logger.info(f"Migrating database {current} -> {head} ...")
        run_migrations(backup=True)
        logger.info("Migration complete.")
    else:
        logger.info(f"Database at {head} (up to date).")

    cache = build_cache(config)

    logger.info("Running initial library scan...")
    stats = scan_library(config, cache)
    logger.info("Scan complete: " + _scan_summary(stats))

    observer = None
    if not no_watch and config.monitoring.enabled:
        observer = start_file_monitoring(config, cache)
    elif no_watch:
        logger.info("File monitoring disabled")

    try:
        run_server(config, host=host, port=port, cache=cache, monitoring_enabled=observer is not None)
    except KeyboardInterrupt:
        pass
    finally:
        if observer:
            observer.stop()
            observer.join()
        cache.shutdown(wait=False)


@app.command()
def thumbnails(
    regenerate: bool = typer.Option(False, "--regenerate", help="Regenerate all covers"),
) -> None:
    """Generate missing (or all) cover thumbnails."""
    setup_logging()

    config = _ensure_config()
    init_db()
    cache = build_cache(config)
    try:
        result = generate_thumbnails(config, cache, regenerate=regenerate)
    finally:
        cache.shutdown()
    typer.echo(f"[INFO] {result['generated']} covers generated, {result['failed']} without cover")


@app.command()
def cleanup() -> None:
    """Remove orphaned cover thumbnails."""
    config = _ensure_config()
    init_db()
    cache = build_cache(config)
    try:
        deleted = cleanup_orphaned_thumbnails(config, cache)
    finally:
        cache.shutdown()
    typer.echo(f"[INFO] Removed {deleted} orphaned covers")


@app.command()
def stats() -> None:
    """Show library statistics."""
    config = _ensure_config()
    init_db()

    with Session(get_engine()) as session:
        repo = Repository(session, config.library_path)
        series_list = repo.get_all_series()

    total_series = len(series_list)
    total_volumes = sum(s.volume_count for s in series_list)
    read_volumes = sum(len(s.read_volumes or []) for s in series_list)
    finished = len([s for s in series_list if s.is_finished])
    favorites = len([s for s in series_list if s.is_favorite])
    in_progress = sum(len(s.reading_progress or {}) for s in series_list)
    percent = (read_volumes / total_volumes * 100) if total_volumes else 0
    covers = len(list(config.covers_dir.glob("*.jpg"))) if config.covers_dir.exists() else 0

    typer.echo("Library Statistics:")
    typer.echo(f"  Total series: {total_series}")
    typer.echo(f"  Total volumes: {total_volumes}")
    typer.echo(f"  Volumes read: {read_volumes} / {total_volumes} ({percent:.0f}%)")
    typer.echo(f"  Volumes in progress: {in_progress}")
    typer.echo(f"  Finished series: {finished}")
    typer.echo(f"  Favorites: {favorites}")
    typer.echo(f"  Cached covers: {covers}")


@app.command()
def migrate(
    check: bool = typer.Option(False, "--check", help="Print status and exit (1 if not at head)"),
) -> None:
    """Run pending database migrations (or check status with --check)."""
    _ensure_config()                    # config must exist before we touch the DB
    init_db()                           # ensure tables exist for a brand-new DB
    stamp_if_needed()

    current, head = get_status()

    if check:
        if current == head:
            typer.echo(f"[OK] Database at {head} (head).")
            raise typer.Exit(code=0)
        typer.echo(f"[WARN] Database behind. current: {current}, head: {head}")
        raise typer.Exit(code=1)

    if current == head:
        logger.info(f"Database already at {head} (head). Nothing to do.")
        raise typer.Exit(code=0)

    logger.info(f"Migrating database {current} -> {head} ...")
    run_migrations(backup=True)
    logger.info("Migration complete.")


@app.command()
def reset(
    confirm: bool = typer.Option(False, "--confirm", help="Confirm destructive reset"),
) -> None:
    """Reset database and cover cache, then rescan."""
    if not confirm:
        typer.echo("[ERROR] This will delete your database, reading progress and covers. Use --confirm.")
        raise typer.Exit(code=1)

    setup_logging()
    config = _ensure_config()

    reset_database()
    cache = build_cache(config)
    try:
        cache.clear()
        typer.echo("[INFO] Database and covers reset. Rescanning library...")
        stats = scan_library(config, cache)
    finally:
        cache.shutdown()
    typer.echo("✓ Scan completed: " + _scan_summary(stats))


if __name__ == "__main__":
    app()
