"""Tests for catalog sync."""

import shutil

from sqlalchemy import inspect
from sqlmodel import Session

from bunko import scanner
from bunko.database import init_db
from bunko.models import Series
from bunko.repository import Repository
from bunko.scanner import reconcile_volume_ids, scan_library, sync_catalog

from conftest import make_cbz, make_series


def _snapshot(series: Series) -> dict:
    return {
        "title": series.title,
        "folder_path": series.folder_path,
        "date_modified": series.date_modified,
        "volume_count": series.volume_count,
        "volume_names": dict(series.volume_names),
        "read_volumes": list(series.read_volumes),
        "reading_progress": dict(series.reading_progress),
    }


def test_sync_creates_one_record_per_series_folder(library):
    make_series(library, "Berserk", volumes=("Vol 1", "Vol 2", "Vol 10"))
    make_series(library, "Monster", volumes=("Vol 1",))
    make_cbz(library / "Monster" / "Vol 2.cbz", ["001.png"])
    (library / ".trash").mkdir()
    (library / "readme.txt").write_text("ignored")

    result = sync_catalog(library, [])

    by_title = {s.title: s for s in result.created}
    assert set(by_title) == {"Berserk", "Monster"}
    assert by_title["Berserk"].volume_count == 3
    assert list(by_title["Berserk"].volume_names.values()) == ["Vol 1", "Vol 2", "Vol 10"]
    assert by_title["Monster"].volume_count == 2
    assert by_title["Monster"].read_volumes == []
    assert not by_title["Monster"].is_favorite


def test_sync_is_idempotent(library):
    make_series(library, "Berserk")
    catalog = sync_catalog(library, []).created
    before = [_snapshot(s) for s in catalog]

    result = sync_catalog(library, catalog)

    assert result.mutations == 0
    assert result.unchanged == 1
    assert [_snapshot(s) for s in catalog] == before


def test_sync_updates_count_and_keeps_existing_volume_ids(library):
    folder = make_series(library, "Berserk", volumes=("Vol 1",))
    catalog = sync_catalog(library, []).created
    vol1_id = catalog[0].volume_id_for("Vol 1")

    make_series(library, "Berserk", volumes=("Vol 2",))
    result = sync_catalog(library, catalog)

    assert result.updated[0] is catalog[0]
    assert catalog[0].volume_count == 2
    assert catalog[0].volume_id_for("Vol 1") == vol1_id
    assert folder.exists()


def test_sync_drops_read_state_of_vanished_volumes(library):
    folder = make_series(library, "Berserk", volumes=("Vol 1", "Vol 2"))
    series = sync_catalog(library, []).created[0]
    vol1 = series.volume_id_for("Vol 1")
    vol2 = series.volume_id_for("Vol 2")
    series.read_volumes = [vol1, vol2]
    series.reading_progress = {vol2: 5}

    shutil.rmtree(folder / "Vol 2")
    sync_catalog(library, [series])

    assert series.read_volumes == [vol1]
    assert series.reading_progress == {}
    assert series.volume_count == 1


def test_sync_deletes_records_of_removed_folders(library):
    make_series(library, "Berserk")
    make_series(library, "Monster")
    catalog = sync_catalog(library, []).created

    shutil.rmtree(library / "Monster")
    result = sync_catalog(library, catalog)

    assert [s.title for s in result.deleted] == ["Monster"]


def test_empty_root_deletes_everything(library):
    make_series(library, "Berserk")
    catalog = sync_catalog(library, []).created
    shutil.rmtree(library / "Berserk")

    result = sync_catalog(library, catalog)

    assert not result.failed
    assert len(result.deleted) == 1


def test_unreadable_root_is_a_no_op(tmp_path, library):
    make_series(library, "Berserk")
    catalog = sync_catalog(library, []).created

    result = sync_catalog(tmp_path / "unmounted", catalog)

    assert result.failed
    assert result.mutations == 0
    assert result.stats()["failed"] is True


def test_unlistable_series_folder_is_left_alone(library):
    make_series(library, "Berserk")
    catalog = sync_catalog(library, []).created
    before = _snapshot(catalog[0])

    class BrokenIndex(scanner.VolumeIndex):
        def list(self, series_folder):
            raise PermissionError("denied")

    result = sync_catalog(library, catalog, BrokenIndex())

    assert result.mutations == 0
    assert _snapshot(catalog[0]) == before


def test_reconcile_volume_ids_keeps_known_names():
    current = {"a1": "Vol 1", "b2": "Vol 2"}

    result = reconcile_volume_ids(current, ["Vol 1", "Vol 3"])

    assert result["a1"] == "Vol 1"
    assert "b2" not in result
    assert list(result.values()) == ["Vol 1", "Vol 3"]


def test_init_db_creates_series_table(db_engine):
    init_db()
    assert "series" in inspect(db_engine).get_table_names()


def test_scan_library_persists_and_is_idempotent(db_engine, config, library):
    make_series(library, "Berserk")
    make_series(library, "Monster", volumes=("Vol 1",))

    first = scan_library(config)
    second = scan_library(config)

    assert first["added"] == 2
    assert second == {"added": 0, "updated": 0, "deleted": 0, "unchanged": 2, "failed": False}

    with Session(db_engine) as session:
        repo = Repository(session, library)
        series = repo.get_series_by_path(library / "Berserk")
        assert series.volume_count == 2
        assert len(series.volume_names) == 2


def test_scan_library_forgets_deleted_series(db_engine, config, library):
    make_series(library, "Berserk")
    scan_library(config)

    with Session(db_engine) as session:
        repo = Repository(session, library)
        series = repo.get_series_by_path(library / "Berserk")
        series.read_volumes = list(series.volume_names)
        series.is_favorite = True
        repo.save(series)
        repo.commit()

    shutil.rmtree(library / "Berserk")
    assert scan_library(config)["deleted"] == 1

    make_series(library, "Berserk")
    scan_library(config)

    with Session(db_engine) as session:
        series = Repository(session, library).get_series_by_path(library / "Berserk")
        assert series.read_volumes == []
        assert not series.is_favorite


def test_scan_library_invalidates_covers_of_changed_series(db_engine, config, library):
    from unittest.mock import Mock

    make_series(library, "Berserk")
    scan_library(config)
    shutil.rmtree(library / "Berserk")

    cache = Mock()
    scan_library(config, cache)

    invalidated = {call.args[0] for call in cache.invalidate.call_args_list}
    assert str((library / "Berserk").resolve()) in invalidated
    assert str((library / "Berserk" / "Vol 1").resolve()) in invalidated


def test_overlapping_scans_run_one_at_a_time(db_engine, config, library, monkeypatch):
    import threading
    import time

    for title in ("Berserk", "Monster", "Pluto", "Vagabond", "Akira"):
        make_series(library, title, volumes=("Vol 1",))

    active = []
    overlap = []
    real_sync = scanner.sync_catalog

    def slow_sync(*args, **kwargs):
        active.append(1)
        overlap.append(len(active))
        time.sleep(0.2)
        try:
            return real_sync(*args, **kwargs)
        finally:
            active.pop()

    monkeypatch.setattr(scanner, "sync_catalog", slow_sync)

    results, errors = [], []
    start = threading.Barrier(2)

    def worker():
        start.wait()
        try:
            results.append(scan_library(config))
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(10)

    assert errors == []
    assert max(overlap) == 1
    assert sorted(r["added"] for r in results) == [0, 5]

    with Session(db_engine) as session:
        assert len(Repository(session, library).get_all_series()) == 5


def test_dates_survive_reload_as_utc(db_engine, config, library):
    import os
    from datetime import timezone

    from bunko.utils import mtime_utc

    folder = make_series(library, "Berserk")
    scan_library(config)

    with Session(db_engine) as session:
        series = Repository(session, library).get_series_by_path(folder)
        assert series.date_modified.tzinfo is not None
        assert series.date_modified == mtime_utc(folder)
        assert series.date_added.tzinfo == timezone.utc

    assert scan_library(config)["updated"] == 0

    stamp = folder.stat().st_mtime + 60
    os.utime(folder, (stamp, stamp))
    assert scan_library(config)["updated"] == 1
    assert scan_library(config)["updated"] == 0


def test_vanished_volume_covers_are_invalidated(db_engine, config, library):
    from unittest.mock import Mock

    make_series(library, "Berserk", volumes=("Vol 1", "Vol 2"))
    scan_library(config)
    shutil.rmtree(library / "Berserk" / "Vol 2")

    cache = Mock()
    stats = scan_library(config, cache)

    invalidated = {call.args[0] for call in cache.invalidate.call_args_list}
    assert stats["updated"] == 1
    assert str((library / "Berserk").resolve()) in invalidated
    assert str((library / "Berserk" / "Vol 2").resolve()) in invalidated
    assert str((library / "Berserk" / "Vol 1").resolve()) not in invalidated


def test_sync_reports_dropped_volume_names(library):
    make_series(library, "Berserk", volumes=("Vol 1", "Vol 2", "Vol 10"))
    catalog = sync_catalog(library, []).created
    shutil.rmtree(library / "Berserk" / "Vol 10")
    shutil.rmtree(library / "Berserk" / "Vol 2")

    result = sync_catalog(library, catalog)

    assert result.dropped_volumes == {"Berserk": ["Vol 2", "Vol 10"]}
