"""Tests for static asset serving from the public directory."""

import asyncio
import threading
from pathlib import Path

import pytest

from natours.core.pipeline import CONTINUE, RequestContext
from natours.core.static_files import StaticFilesStage


@pytest.fixture
def public_dir(tmp_path: Path) -> Path:
    public = tmp_path / "public"
    (public / "css").mkdir(parents=True)
    (public / "index.html").write_text("<h1>Natours</h1>")
    (public / "overview.html").write_text("<h1>All tours</h1>")
    (public / "css" / "style.css").write_text("body { color: #55c57a; }")
    return public


@pytest.fixture
def static_client(make_client, public_dir):
    return make_client(public_dir=str(public_dir))


def test_serves_existing_file(static_client):
    response = static_client.get("/overview.html")

    assert response.status_code == 200
    assert response.text == "<h1>All tours</h1>"
    assert response.headers["content-type"].startswith("text/html")
    assert response.headers["X-Content-Type-Options"] == "nosniff"


def test_serves_nested_file(static_client):
    response = static_client.get("/css/style.css")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/css")


def test_directory_serves_index(static_client):
    response = static_client.get("/")

    assert response.status_code == 200
    assert response.text == "<h1>Natours</h1>"


def test_head_request(static_client):
    response = static_client.head("/overview.html")

    assert response.status_code == 200
    assert response.content == b""


def test_missing_file_falls_through_to_not_found(static_client):
    response = static_client.get("/img/missing.jpg")

    assert response.status_code == 404
    assert response.json()["message"] == "Can't find /img/missing.jpg on this server!"


def test_post_is_not_served(static_client):
    response = static_client.post("/overview.html")

    assert response.status_code == 404


def test_api_paths_never_hit_the_filesystem(make_client, public_dir):
    (public_dir / "api").mkdir()
    (public_dir / "api" / "secret.txt").write_text("nope")
    client = make_client(public_dir=str(public_dir))

    response = client.get("/api/secret.txt")

    assert response.status_code == 404
    assert "nope" not in response.text


def test_path_traversal_is_not_served(static_client, tmp_path: Path):
    (tmp_path / "config.env").write_text("JWT_SECRET=shh")

    response = static_client.get("/../config.env")

    assert "shh" not in response.text


def test_missing_public_dir_is_ignored(client):
    assert client.get("/index.html").status_code == 404


def test_filesystem_checks_run_off_the_event_loop(monkeypatch, tmp_path: Path):
    checked_from = []
    original_is_dir = Path.is_dir

    def recording_is_dir(self):
        checked_from.append(threading.current_thread())
        return original_is_dir(self)

    monkeypatch.setattr(Path, "is_dir", recording_is_dir)
    stage = StaticFilesStage(tmp_path / "missing")
    ctx = RequestContext(
        {"type": "http", "method": "GET", "path": "/index.html", "query_string": b"", "headers": []},
        None,
    )

    result = asyncio.run(stage(ctx))

    assert result is CONTINUE
    assert checked_from
    assert threading.main_thread() not in checked_from
