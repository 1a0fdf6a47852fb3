"""Tests for the HTTP API and reader routes."""

import pytest
from fastapi.testclient import TestClient

from bunko.api import app, configure_app
from bunko.thumbnails import build_cache

from conftest import make_series


@pytest.fixture
def client(db_engine, config, library):
    make_series(library, "Berserk", volumes=("Vol 1", "Vol 2"), pages=4)
    make_series(library, "Monster", volumes=("Vol 1",))
    cache = build_cache(config)
    configure_app(config, cache)
    client = TestClient(app)
    assert client.post("/api/sync").json()["added"] == 2
    yield client
    app.state.sessions.close_all()
    cache.shutdown()


def _series(client, title):
    listing = client.get("/api/series", params={"sort": "title"}).json()
    return next(s for s in listing["series"] if s["title"] == title)


def test_list_filter_and_search(client):
    berserk = _series(client, "Berserk")

    resp = client.post(f"/api/series/{berserk['uuid']}/favorite", json={"active": True})
    assert resp.json()["is_favorite"]

    favorites = client.get("/api/series", params={"filter": "favorites"}).json()
    assert [s["title"] for s in favorites["series"]] == ["Berserk"]

    found = client.get("/api/series", params={"q": "mon"}).json()
    assert [s["title"] for s in found["series"]] == ["Monster"]


def test_tags_and_to_read_filter(client):
    monster = _series(client, "Monster")

    client.post(f"/api/series/{monster['uuid']}/tags", json={"tag": "To Read"})

    to_read = client.get("/api/series", params={"filter": "to_read"}).json()
    assert [s["title"] for s in to_read["series"]] == ["Monster"]


def test_unknown_series_is_404(client):
    assert client.get("/api/series/missing").status_code == 404
    assert client.get("/api/series/missing/cover").status_code == 404


def test_covers_are_jpeg(client):
    berserk = _series(client, "Berserk")
    volumes = client.get(f"/api/series/{berserk['uuid']}/volumes").json()["volumes"]

    series_cover = client.get(f"/api/series/{berserk['uuid']}/cover")
    volume_cover = client.get(f"/api/series/{berserk['uuid']}/volumes/{volumes[1]['id']}/cover")

    assert series_cover.status_code == 200
    assert series_cover.headers["content-type"] == "image/jpeg"
    assert volume_cover.status_code == 200


def test_rename_conflict_is_409(client, library):
    berserk = _series(client, "Berserk")

    resp = client.post(f"/api/series/{berserk['uuid']}/rename", json={"name": "Monster"})

    assert resp.status_code == 409
    assert (library / "Berserk").is_dir()
    assert _series(client, "Berserk")["folder_path"] == "Berserk"


def test_volume_read_and_series_read(client):
    berserk = _series(client, "Berserk")
    volumes = client.get(f"/api/series/{berserk['uuid']}/volumes").json()["volumes"]

    resp = client.post(f"/api/series/{berserk['uuid']}/volumes/{volumes[0]['id']}/read", json={"read": True})
    assert [v["read"] for v in resp.json()["volumes"]] == [True, False]

    resp = client.post(f"/api/series/{berserk['uuid']}/read", json={"read": True})
    assert resp.json()["is_finished"]
    assert resp.json()["read_count"] == 2


def test_delete_series(client, library):
    monster = _series(client, "Monster")

    assert client.delete(f"/api/series/{monster['uuid']}").status_code == 200
    assert not (library / "Monster").exists()
    assert client.get(f"/api/series/{monster['uuid']}").status_code == 404


def test_reader_session_pages_and_progress(client):
    berserk = _series(client, "Berserk")
    volume = client.get(f"/api/series/{berserk['uuid']}/volumes").json()["volumes"][0]

    opened = client.post(
        "/reader/sessions",
        json={"series_uuid": berserk["uuid"], "volume_id": volume["id"], "two_page_mode": True},
    ).json()
    sid = opened["id"]
    assert opened["current_index"] == 0
    assert opened["page_count"] == 4
    assert opened["layout"]["center"] == 0

    state = client.post(f"/reader/sessions/{sid}/next").json()
    assert state["current_index"] == 1
    assert state["layout"]["reading_order"] == [1, 2]
    assert state["layout"]["physical_right"] == 1

    page = client.get(f"/reader/sessions/{sid}/pages/1")
    assert page.status_code == 200
    assert page.headers["content-type"] == "image/jpeg"
    assert client.get(f"/reader/sessions/{sid}/pages/99").status_code == 404

    volumes = client.get(f"/api/series/{berserk['uuid']}/volumes").json()["volumes"]
    assert volumes[0]["page"] == 1

    client.post(f"/reader/sessions/{sid}/jump", json={"index": 3})
    volumes = client.get(f"/api/series/{berserk['uuid']}/volumes").json()["volumes"]
    assert volumes[0]["read"]
    assert volumes[0]["page"] is None

    assert client.delete(f"/reader/sessions/{sid}").status_code == 200
    assert client.get(f"/reader/sessions/{sid}").status_code == 404


def test_reader_unknown_volume_is_404(client):
    berserk = _series(client, "Berserk")

    resp = client.post("/reader/sessions", json={"series_uuid": berserk["uuid"], "volume_id": "nope"})

    assert resp.status_code == 404
