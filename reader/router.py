"""FastAPI router for the reader: open a volume and page through it."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import FileResponse
from pydantic import BaseModel
from sqlmodel import Session

from bunko.archive import ArchiveExtractionError
from bunko.database import catalog_lock, get_engine
from bunko.logging_config import get_logger
from bunko.repository import Repository
from bunko.volumes import VolumeIndex

from .layout import LayoutConfig, ReadingDirection
from .pages import content_type_for
from .session import ReadingSession

logger = get_logger(__name__)

router = APIRouter(tags=["reader"])


class OpenSessionBody(BaseModel):
    series_uuid: str
    volume_id: str
    direction: Optional[ReadingDirection] = None
    two_page_mode: Optional[bool] = None
    cover_offset: Optional[bool] = None


class JumpBody(BaseModel):
    index: int


def _layout_config(request: Request, body: OpenSessionBody) -> LayoutConfig:
    layout = LayoutConfig.from_reader_config(request.app.state.config.reader)
    if body.direction is not None:
        layout.direction = body.direction
    if body.two_page_mode is not None:
        layout.two_page_mode = body.two_page_mode
    if body.cover_offset is not None:
        layout.cover_offset = body.cover_offset
    return layout


def _progress_writer(request: Request, series_uuid: str, volume_id: str):
    """Persist progress in its own DB session on every page change."""
    library_root = request.app.state.config.library_path
    tracker = request.app.state.tracker

    def write(index: int, page_count: int) -> None:
        with catalog_lock, Session(get_engine()) as session:
            repo = Repository(session, library_root)
            series = repo.get_series_by_uuid(series_uuid)
            if series is None or volume_id not in (series.volume_names or {}):
                logger.warning(f"Progress for vanished volume {volume_id} dropped")
                return
            tracker.record(series, volume_id, index, page_count)
            repo.save(series)
            repo.commit()

    return write


def _get_session(request: Request, session_id: str) -> ReadingSession:
    reading = request.app.state.sessions.get(session_id)
    if reading is None:
        raise HTTPException(status_code=404, detail="Reading session not found")
    return reading


@router.post("/sessions")
def open_session(body: OpenSessionBody, request: Request):
    config = request.app.state.config
    with catalog_lock, Session(get_engine()) as session:
        repo = Repository(session, config.library_path)
        series = repo.get_series_by_uuid(body.series_uuid)
        if series is None:
            raise HTTPException(status_code=404, detail="Series not found")
        try:
            reading = ReadingSession.open(
                series,
                body.volume_id,
                repo.library_root,
                request.app.state.tracker,
                layout_config=_layout_config(request, body),
                index=VolumeIndex(config.scanner.archive_formats),
                on_progress=_progress_writer(request, body.series_uuid, body.volume_id),
            )
        except KeyError:
            raise HTTPException(status_code=404, detail="Volume not found")
        except ArchiveExtractionError as exc:
            raise HTTPException(status_code=422, detail=str(exc))
        except OSError as exc:
            raise HTTPException(status_code=404, detail=f"Volume unavailable: {exc}")
        repo.save(series)
        repo.commit()

    request.app.state.sessions.add(reading)
    return reading.to_dict()


@router.get("/sessions/{session_id}")
def get_session_state(session_id: str, request: Request):
    return _get_session(request, session_id).to_dict()


@router.post("/sessions/{session_id}/next")
def next_page(session_id: str, request: Request):
    reading = _get_session(request, session_id)
    reading.next()
    return reading.to_dict()


@router.post("/sessions/{session_id}/previous")
def previous_page(session_id: str, request: Request):
    reading = _get_session(request, session_id)
    reading.previous()
    return reading.to_dict()


@router.post("/sessions/{session_id}/jump")
def jump(session_id: str, body: JumpBody, request: Request):
    reading = _get_session(request, session_id)
    reading.jump_to(body.index)
    return reading.to_dict()


@router.post("/sessions/{session_id}/offset")
def offset(session_id: str, request: Request):
    reading = _get_session(request, session_id)
    reading.offset_by_one()
    return reading.to_dict()


@router.get("/sessions/{session_id}/pages/{index}")
def page_image(session_id: str, index: int, request: Request):
    reading = _get_session(request, session_id)
    try:
        page = reading.page(index)
    except IndexError:
        raise HTTPException(status_code=404, detail="Page not found")
    if not page.path.exists():
        raise HTTPException(status_code=404, detail="Page missing on disk")
    return FileResponse(page.path, media_type=content_type_for(page.path))


@router.delete("/sessions/{session_id}")
def close_session(session_id: str, request: Request):
    if not request.app.state.sessions.close(session_id):
        raise HTTPException(status_code=404, detail="Reading session not found")
    return {"closed": session_id}
