"""Tests for cover lookup."""

import threading

import pytest

from bunko.archive import ArchiveExtractionError, ZipExtractor
from bunko.covers import CancelledError, CoverResolver

from conftest import make_cbz, make_image


class RecordingExtractor(ZipExtractor):
    """Remembers every staging directory it extracted into."""

    def __init__(self):
        self.destinations = []

    def extract_images(self, archive_path, destination):
        self.destinations.append(destination)
        return super().extract_images(archive_path, destination)


def test_first_image_in_natural_order_is_used(tmp_path):
    volume = tmp_path / "Vol 1"
    make_image(volume / "10.jpg", color="blue")
    make_image(volume / "2.jpg", color="red")
    make_image(volume / ".0.jpg", color="green")

    found = CoverResolver().find(volume)

    assert found.source.name == "2.jpg"
    assert found.page_count == 2


def test_cover_is_downsampled_keeping_aspect(tmp_path):
    make_image(tmp_path / "Vol 1" / "001.png", size=(800, 1200))

    found = CoverResolver(max_pixel_size=300).find(tmp_path / "Vol 1")

    assert found.image.size == (200, 300)


def test_search_descends_into_subfolders_in_order(tmp_path):
    series = tmp_path / "Berserk"
    make_image(series / "Vol 10" / "001.jpg")
    make_image(series / "Vol 2" / "001.jpg")

    found = CoverResolver().find(series)

    assert found.source.parent.name == "Vol 2"


def test_search_depth_is_bounded(tmp_path):
    series = tmp_path / "Series"
    make_image(series / "a" / "b" / "001.jpg")

    assert CoverResolver(max_depth=1).find(series) is None
    assert CoverResolver(max_depth=2).find(series) is not None


def test_undecodable_image_means_no_cover(tmp_path):
    volume = tmp_path / "Vol 1"
    volume.mkdir()
    (volume / "001.jpg").write_bytes(b"not an image")

    assert CoverResolver().find(volume) is None


def test_archive_cover_cleans_up_staging(tmp_path):
    archive = make_cbz(tmp_path / "Vol 1.cbz", ["p/001.png", "p/002.png", "__MACOSX/._001.png"])
    extractor = RecordingExtractor()

    found = CoverResolver(extractor=extractor).find(archive)

    assert found is not None
    assert found.source == archive
    assert found.page_count == 2
    assert extractor.destinations
    assert not extractor.destinations[0].exists()


def test_broken_archive_yields_no_cover_and_no_staging(tmp_path):
    archive = tmp_path / "Vol 1.cbz"
    archive.write_bytes(b"garbage")
    extractor = RecordingExtractor()

    assert CoverResolver(extractor=extractor).find(archive) is None
    assert not extractor.destinations[0].exists()


def test_zip_extractor_raises_extraction_error(tmp_path):
    archive = tmp_path / "bad.zip"
    archive.write_bytes(b"garbage")

    with pytest.raises(ArchiveExtractionError):
        ZipExtractor().list_images(archive)


def test_cancelled_search_raises(tmp_path):
    make_image(tmp_path / "Series" / "Vol 1" / "001.jpg")
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(CancelledError):
        CoverResolver().find(tmp_path / "Series", cancel)
