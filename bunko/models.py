"""SQLModel database models for Bunko."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from sqlalchemy import JSON, Column, DateTime
from sqlalchemy.types import TypeDecorator
from sqlmodel import Field, SQLModel

from .utils import as_utc


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes, stored naive since SQLite has no tz."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return as_utc(value).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Tag(str, Enum):
    """Known library tags. Free-form tag strings are accepted alongside these."""

    TO_READ = "To Read"


class SeriesBase(SQLModel):
    title: str
    folder_path: str = Field(unique=True, index=True)
    volume_count: int = 0
    is_favorite: bool = False
    is_finished: bool = False


class Series(SeriesBase, table=True):
    """One library entry per series folder under the library root.

    Read state is keyed by volume id; `volume_names` maps each id to the
    volume's current display name. Dates are always UTC-aware.
    """

    __tablename__ = "series"

    id: Optional[int] = Field(default=None, primary_key=True)
    uuid: str = Field(unique=True, index=True, default_factory=lambda: str(uuid.uuid4()))
    date_added: datetime = Field(default_factory=utc_now, sa_column=Column(UTCDateTime, nullable=False))
    date_modified: datetime = Field(sa_column=Column(UTCDateTime, nullable=False))
    last_read_date: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime, nullable=True))

    tags: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    volume_names: Dict[str, str] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    read_volumes: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    reading_progress: Dict[str, int] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))

    def volume_id_for(self, name: str) -> Optional[str]:
        """Return the id currently mapped to a volume display name."""
        for volume_id, volume_name in self.volume_names.items():
            if volume_name == name:
                return volume_id
        return None

    def has_tag(self, tag: "Tag | str") -> bool:
        value = tag.value if isinstance(tag, Tag) else tag
        return value in self.tags
