"""Tests for reading progress rules."""

from datetime import datetime

import pytest

from bunko.models import Series
from reader.progress import ProgressTracker


@pytest.fixture
def series():
    return Series(
        title="Berserk",
        folder_path="Berserk",
        date_modified=datetime(2024, 1, 1),
        volume_count=2,
        volume_names={"v1": "Vol 1", "v2": "Vol 2"},
    )


def test_stale_finished_progress_resets_on_open(series):
    # 48 / 50 = 0.96
    series.reading_progress = {"v1": 48}

    start = ProgressTracker().restore(series, "v1", page_count=50)

    assert start == 0
    assert "v1" not in series.reading_progress


def test_progress_is_resumed_when_in_range(series):
    series.reading_progress = {"v1": 20}

    assert ProgressTracker().restore(series, "v1", page_count=50) == 20
    assert series.reading_progress == {"v1": 20}


def test_progress_past_the_end_starts_over(series):
    series.reading_progress = {"v1": 7}

    assert ProgressTracker(finished_threshold=2.0).restore(series, "v1", page_count=5) == 0


def test_no_progress_opens_at_first_page(series):
    assert ProgressTracker().restore(series, "v2", page_count=10) == 0


def test_record_middle_page_stores_index(series):
    finished = ProgressTracker().record(series, "v1", 12, page_count=50)

    assert not finished
    assert series.reading_progress == {"v1": 12}
    assert series.last_read_date is not None


def test_record_first_page_clears_progress(series):
    series.reading_progress = {"v1": 12, "v2": 3}

    ProgressTracker().record(series, "v1", 0, page_count=50)

    assert series.reading_progress == {"v2": 3}


def test_record_near_end_marks_volume_read(series):
    series.reading_progress = {"v1": 40}

    finished = ProgressTracker().record(series, "v1", 48, page_count=50)

    assert finished
    assert series.read_volumes == ["v1"]
    assert series.reading_progress == {}


def test_last_page_of_short_volume_counts_as_finished(series):
    # 9 / 10 is below the threshold, but there is nothing left to read
    finished = ProgressTracker().record(series, "v2", 9, page_count=10)

    assert finished
    assert series.read_volumes == ["v2"]


def test_finishing_twice_does_not_duplicate(series):
    tracker = ProgressTracker()
    tracker.record(series, "v1", 49, page_count=50)
    tracker.record(series, "v1", 49, page_count=50)

    assert series.read_volumes == ["v1"]
