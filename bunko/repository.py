"""Data Access Layer for Bunko.

Encapsulates database operations using SQLModel/SQLAlchemy.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

from sqlmodel import Session, select

from .models import Series
from .path_utils import to_relative, to_absolute


class Repository:
    """Data access layer that stores series paths relative to library_root.

    Public methods accept/return absolute Path objects; the relative string
    form only exists in the DB.
    """

    def __init__(self, session: Session, library_root: Path):
        self.session = session
        self.library_root = library_root.resolve()

    def commit(self) -> None:
        """Commit the current transaction. Callers control when to commit."""
        self.session.commit()

    def relative(self, path: Path) -> str:
        return to_relative(path.resolve(), self.library_root)

    def absolute(self, series: Series) -> Path:
        return to_absolute(series.folder_path, self.library_root)

    def get_all_series(self) -> List[Series]:
        return list(self.session.exec(select(Series)).all())

    def get_series_by_uuid(self, series_uuid: str) -> Optional[Series]:
        return self.session.exec(select(Series).where(Series.uuid == series_uuid)).first()

    def get_series_by_path(self, path: Path) -> Optional[Series]:
        rel_path_str = self.relative(path)
        return self.session.exec(select(Series).where(Series.folder_path == rel_path_str)).first()

    def add(self, series: Series) -> Series:
        self.session.add(series)
        self.session.flush()
        return series

    def delete(self, series: Series) -> None:
        self.session.delete(series)
        self.session.flush()

    def save(self, series: Series) -> Series:
        """Flush pending attribute changes of a loaded series."""
        self.session.add(series)
        self.session.flush()
        return series
