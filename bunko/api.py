"""FastAPI server for Bunko.

Exposes:
- GET    /api/series                     (filter, search, sort)
- POST   /api/sync
- GET    /api/series/{uuid}
- DELETE /api/series/{uuid}
- GET    /api/series/{uuid}/volumes
- GET    /api/series/{uuid}/cover
- GET    /api/series/{uuid}/volumes/{volume_id}/cover
- POST   /api/series/{uuid}/favorite | tags | read | rename
- POST   /api/series/{uuid}/volumes/{volume_id}/read | rename
- /reader/...                            (see reader.router)
"""

from __future__ import annotations

import asyncio
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.responses import FileResponse
from pydantic import BaseModel
from sqlmodel import Session

from .config import BunkoConfig, get_config
from .database import catalog_lock, get_session
from .library import (
    DeleteError,
    LibraryFilter,
    LibrarySort,
    RenameError,
    delete_series,
    filter_series,
    mark_series_read,
    rename_series,
    rename_volume,
    set_favorite,
    set_tag,
    set_volume_read,
)
from .logging_config import get_logger
from .models import Series
from .repository import Repository
from .scanner import scan_library
from .thumbnails import ThumbnailCache, build_cache
from .utils import cache_key_for

from reader import router as reader_router
from reader.progress import ProgressTracker
from reader.session import SessionRegistry

logger = get_logger(__name__)

COVER_TIMEOUT_SECONDS = 30


class FavoriteBody(BaseModel):
    active: bool = True


class TagBody(BaseModel):
    tag: str
    active: bool = True


class ReadBody(BaseModel):
    read: bool = True


class RenameBody(BaseModel):
    name: str


def _info(msg: str) -> None:
    logger.info(msg)


@asynccontextmanager
async def _lifespan(app: FastAPI):
    async def _print_startup_messages():
        await asyncio.sleep(0.1)
        _info("Started server process [" + str(os.getpid()) + "]")
        _info("Application startup complete. (Press CTRL+C to quit)")
        api_url = getattr(app.state, "api_url", None)
        if api_url:
            _info("Library API available at: " + api_url)
        if getattr(app.state, "monitoring_enabled", False):
            _info("File monitoring enabled")

    asyncio.create_task(_print_startup_messages())
    yield

    sessions = getattr(app.state, "sessions", None)
    if sessions is not None:
        sessions.close_all()
    cache = getattr(app.state, "cache", None)
    if cache is not None:
        cache.shutdown(wait=False)


app = FastAPI(title="Bunko", lifespan=_lifespan)
app.include_router(reader_router, prefix="/reader")


def configure_app(config: BunkoConfig, cache: Optional[ThumbnailCache] = None) -> FastAPI:
    """Attach config and the shared services to the app."""
    app.state.config = config
    app.state.cache = cache or build_cache(config)
    app.state.sessions = SessionRegistry()
    app.state.tracker = ProgressTracker(config.reader.finished_threshold)
    return app


def _config(request: Request) -> BunkoConfig:
    config = getattr(request.app.state, "config", None)
    if config is not None:
        return config
    try:
        return get_config()
    except FileNotFoundError:
        raise HTTPException(status_code=500, detail="Server not configured")


def _repo(request: Request, session: Session) -> Repository:
    return Repository(session, _config(request).library_path)


def _get_series(repo: Repository, series_uuid: str) -> Series:
    series = repo.get_series_by_uuid(series_uuid)
    if series is None:
        raise HTTPException(status_code=404, detail="Series not found")
    return series


def _series_dict(series: Series) -> dict:
    return {
        "uuid": series.uuid,
        "title": series.title,
        "folder_path": series.folder_path,
        "date_added": series.date_added.isoformat() if series.date_added else None,
        "date_modified": series.date_modified.isoformat() if series.date_modified else None,
        "last_read_date": series.last_read_date.isoformat() if series.last_read_date else None,
        "volume_count": series.volume_count,
        "read_count": len(series.read_volumes or []),
        "is_favorite": series.is_favorite,
        "is_finished": series.is_finished,
        "tags": list(series.tags or []),
    }


def _volumes_list(series: Series) -> list:
    read = set(series.read_volumes or [])
    progress = series.reading_progress or {}
    return [
        {
            "id": volume_id,
            "name": name,
            "read": volume_id in read,
            "page": progress.get(volume_id),
        }
        for volume_id, name in (series.volume_names or {}).items()
    ]


def _cover_response(request: Request, key: str) -> Response:
    cache: ThumbnailCache = request.app.state.cache
    entry = cache.get_entry(key, timeout=COVER_TIMEOUT_SECONDS)
    if entry is None:
        raise HTTPException(status_code=404, detail="Cover not found")
    path = cache.image_path(key)
    if path is not None:
        return FileResponse(path, media_type="image/jpeg")
    return Response(content=entry.to_jpeg(cache.quality), media_type="image/jpeg")


# --- Library ---


@app.get("/api/series")
def list_series(
    request: Request,
    filter: LibraryFilter = Query(LibraryFilter.ALL),
    q: str = Query(""),
    sort: LibrarySort = Query(LibrarySort.DATE_MODIFIED),
    session: Session = Depends(get_session),
):
    repo = _repo(request, session)
    series_list = filter_series(repo.get_all_series(), filter, q, sort)
    return {"count": len(series_list), "series": [_series_dict(s) for s in series_list]}


@app.post("/api/sync")
def sync_library(request: Request):
    return scan_library(_config(request), request.app.state.cache)


@app.get("/api/series/{series_uuid}")
def get_series(series_uuid: str, request: Request, session: Session = Depends(get_session)):
    series = _get_series(_repo(request, session), series_uuid)
    return _series_dict(series)


@app.delete("/api/series/{series_uuid}")
def remove_series(series_uuid: str, request: Request, session: Session = Depends(get_session)):
    with catalog_lock:
        repo = _repo(request, session)
        series = _get_series(repo, series_uuid)
        try:
            delete_series(repo, series, request.app.state.cache)
        except DeleteError as exc:
            raise HTTPException(status_code=500, detail=str(exc))
        repo.commit()
    return {"deleted": series_uuid}


@app.get("/api/series/{series_uuid}/volumes")
def list_volumes(series_uuid: str, request: Request, session: Session = Depends(get_session)):
    series = _get_series(_repo(request, session), series_uuid)
    return {"series": series.uuid, "volumes": _volumes_list(series)}


@app.get("/api/series/{series_uuid}/cover")
def series_cover(series_uuid: str, request: Request, session: Session = Depends(get_session)):
    repo = _repo(request, session)
    series = _get_series(repo, series_uuid)
    return _cover_response(request, cache_key_for(repo.absolute(series)))


@app.get("/api/series/{series_uuid}/volumes/{volume_id}/cover")
def volume_cover(series_uuid: str, volume_id: str, request: Request, session: Session = Depends(get_session)):
    repo = _repo(request, session)
    series = _get_series(repo, series_uuid)
    name = (series.volume_names or {}).get(volume_id)
    if name is None:
        raise HTTPException(status_code=404, detail="Volume not found")
    return _cover_response(request, cache_key_for(repo.absolute(series) / name))


@app.post("/api/series/{series_uuid}/favorite")
def favorite(series_uuid: str, body: FavoriteBody, request: Request, session: Session = Depends(get_session)):
    with catalog_lock:
        repo = _repo(request, session)
        series = _get_series(repo, series_uuid)
        set_favorite(series, body.active)
        repo.save(series)
        repo.commit()
    return _series_dict(series)


@app.post("/api/series/{series_uuid}/tags")
def tag(series_uuid: str, body: TagBody, request: Request, session: Session = Depends(get_session)):
    with catalog_lock:
        repo = _repo(request, session)
        series = _get_series(repo, series_uuid)
        try:
            set_tag(series, body.tag, body.active)
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc))
        repo.save(series)
        repo.commit()
    return _series_dict(series)


@app.post("/api/series/{series_uuid}/read")
def series_read(series_uuid: str, body: ReadBody, request: Request, session: Session = Depends(get_session)):
    with catalog_lock:
        repo = _repo(request, session)
        series = _get_series(repo, series_uuid)
        try:
            mark_series_read(series, repo.library_root, body.read)
        except OSError as exc:
            raise HTTPException(status_code=404, detail=f"Series folder unavailable: {exc}")
        repo.save(series)
        repo.commit()
    return _series_dict(series)


@app.post("/api/series/{series_uuid}/rename")
def series_rename(series_uuid: str, body: RenameBody, request: Request, session: Session = Depends(get_session)):
    with catalog_lock:
        repo = _repo(request, session)
        series = _get_series(repo, series_uuid)
        try:
            rename_series(repo, series, body.name, request.app.state.cache)
        except RenameError as exc:
            raise HTTPException(status_code=409, detail=str(exc))
        repo.commit()
    return _series_dict(series)


@app.post("/api/series/{series_uuid}/volumes/{volume_id}/read")
def volume_read(
    series_uuid: str,
    volume_id: str,
    body: ReadBody,
    request: Request,
    session: Session = Depends(get_session),
):
    with catalog_lock:
        repo = _repo(request, session)
        series = _get_series(repo, series_uuid)
        try:
            set_volume_read(series, volume_id, body.read)
        except KeyError:
            raise HTTPException(status_code=404, detail="Volume not found")
        repo.save(series)
        repo.commit()
    return {"series": series.uuid, "volumes": _volumes_list(series)}


@app.post("/api/series/{series_uuid}/volumes/{volume_id}/rename")
def volume_rename(
    series_uuid: str,
    volume_id: str,
    body: RenameBody,
    request: Request,
    session: Session = Depends(get_session),
):
    with catalog_lock:
        repo = _repo(request, session)
        series = _get_series(repo, series_uuid)
        try:
            rename_volume(repo, series, volume_id, body.name, request.app.state.cache)
        except KeyError:
            raise HTTPException(status_code=404, detail="Volume not found")
        except RenameError as exc:
            raise HTTPException(status_code=409, detail=str(exc))
        repo.commit()
    return {"series": series.uuid, "volumes": _volumes_list(series)}


def run_server(
    config: BunkoConfig,
    host: Optional[str],
    port: Optional[int],
    cache: Optional[ThumbnailCache] = None,
    monitoring_enabled: bool = False,
) -> None:
    """Run the FastAPI app with Uvicorn."""
    import uvicorn

    effective_host = host or config.server_host
    effective_port = port or config.server_port

    configure_app(config, cache)
    app.state.api_url = f"http://{effective_host}:{effective_port}/api/series"
    app.state.monitoring_enabled = monitoring_enabled

    uvicorn.run(
        app,
        host=effective_host,
        port=effective_port,
        log_level="info",
        log_config=None,
    )
