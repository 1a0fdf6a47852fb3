"""Shared fixtures: a temp library tree, config and a throwaway database."""

import zipfile
from io import BytesIO
from pathlib import Path

import pytest
from PIL import Image
from sqlmodel import create_engine

from bunko.config import BunkoConfig, LibraryConfig


def make_image(path: Path, size=(60, 90), color="red") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", size, color=color).save(path)
    return path


def make_cbz(path: Path, names, size=(60, 90), color="blue") -> Path:
    """Create a zip container holding one small PNG per entry name."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as zf:
        for name in names:
            buf = BytesIO()
            Image.new("RGB", size, color=color).save(buf, format="PNG")
            zf.writestr(name, buf.getvalue())
    return path


def make_series(root: Path, title: str, volumes=("Vol 1", "Vol 2"), pages=2) -> Path:
    folder = root / title
    for volume in volumes:
        for i in range(1, pages + 1):
            make_image(folder / volume / f"{i:03d}.jpg")
    folder.mkdir(parents=True, exist_ok=True)
    return folder


@pytest.fixture
def library(tmp_path):
    root = tmp_path / "library"
    root.mkdir()
    return root


@pytest.fixture
def config(tmp_path, library):
    return BunkoConfig(
        library=LibraryConfig(path=library, name="Test Library"),
        data_dir=tmp_path / "data",
    )


@pytest.fixture
def db_engine(tmp_path, monkeypatch):
    """Point bunko.database at a temp SQLite file."""
    db_file = tmp_path / "library.db"
    engine = create_engine(f"sqlite:///{db_file}", connect_args={"check_same_thread": False})
    monkeypatch.setattr("bunko.database.DB_PATH", db_file, raising=True)
    monkeypatch.setattr("bunko.database.engine", engine, raising=True)
    yield engine
    engine.dispose()
