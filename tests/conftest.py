"""
SMX Chart Votes - Pytest Configuration & Shared Fixtures

Provides reusable fixtures for:
- A temporary SQLite database per test
- Sample SMX API payloads (songs and charts)
- A ChartCatalog backed by httpx.MockTransport instead of the real API
- A FastAPI TestClient wired to the above
"""

import copy
from pathlib import Path
from typing import Any, Callable, Dict, List

import httpx
import pytest
from fastapi.testclient import TestClient

import chartvote.database as database
from chartvote.main import app
from chartvote.services.chart_catalog import ChartCatalog, get_catalog

# ---------------------------------------------------------------------------
# Sample SMX API payloads
# ---------------------------------------------------------------------------

SAMPLE_SONGS: List[Dict[str, Any]] = [
    {
        "id": 1,
        "title": "Butterfly",
        "artist": "Smile.dk",
        "bpm": "135",
        "genre": "Eurobeat",
        "subtitle": "",
        "cover_thumb": "https://smx.573.no/covers/1_thumb.png",
        "cover": "https://smx.573.no/covers/1.png",
        "game_version": "1.0",
    },
    {
        "id": 2,
        "title": "Wicked Fire",
        "artist": "Nitro",
        "bpm": "180",
        "genre": "Hardcore",
        "subtitle": "",
        "cover_thumb": "",
        "cover": "",
    },
    {
        "id": 3,
        "title": "Sinxorder",
        "artist": "Removed Artist",
        "bpm": "170",
        "genre": "",
        "subtitle": "",
        "cover_thumb": "",
        "cover": "",
    },
]


def _chart(chart_id, song_id, difficulty, name, display=None) -> Dict[str, Any]:
    return {
        "id": chart_id,
        "song_id": song_id,
        "difficulty": difficulty,
        "difficulty_name": name,
        "difficulty_display": display if display is not None else name,
        "meter": difficulty,
        "steps_author": "SMX Team",
        "play_count": 100 + chart_id,
        "pass_count": 50 + chart_id,
    }


SAMPLE_CHARTS: List[Dict[str, Any]] = [
    # Butterfly: the API labels the easier "hard" chart as the plus variant
    _chart(10, 1, 12, "hard2", "hard+"),
    _chart(11, 1, 14, "hard"),
    # Butterfly: a lone wild chart wrongly marked as a plus variant
    _chart(12, 1, 20, "wild2", "wild+"),
    # Wicked Fire: labelled correctly already
    _chart(20, 2, 9, "full"),
    _chart(21, 2, 11, "full2", "full+"),
    # Removed song
    _chart(30, 3, 15, "hard"),
    # Song that no longer exists
    _chart(40, 99, 5, "beginner"),
]


# ---------------------------------------------------------------------------
# Mock SMX API
# ---------------------------------------------------------------------------


class FakeSMXApi:
    """
    Stand-in for the SMX API, served through httpx.MockTransport.

    Set ``status`` to make every request fail with that HTTP status, or
    ``error`` to raise a transport-level exception instead.  ``error_path``
    limits ``error`` to requests whose path ends with it.
    """

    def __init__(self, songs=None, charts=None):
        self.songs = copy.deepcopy(SAMPLE_SONGS if songs is None else songs)
        self.charts = copy.deepcopy(SAMPLE_CHARTS if charts is None else charts)
        self.status = 200
        self.error: Exception | None = None
        self.error_path: str | None = None
        self.requests: List[str] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request.url.path)
        if self.error is not None and (
            self.error_path is None or request.url.path.endswith(self.error_path)
        ):
            raise self.error
        if self.status != 200:
            return httpx.Response(self.status, json={"error": "upstream broke"})
        if request.url.path.endswith("/songs"):
            return httpx.Response(200, json=self.songs)
        if request.url.path.endswith("/charts"):
            return httpx.Response(200, json=self.charts)
        return httpx.Response(404, json={"error": "not found"})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def smx_api() -> FakeSMXApi:
    return FakeSMXApi()


@pytest.fixture
def make_catalog(smx_api: FakeSMXApi) -> Callable[..., ChartCatalog]:
    """Factory for catalogs talking to the fake SMX API."""

    def _make(**kwargs) -> ChartCatalog:
        kwargs.setdefault("base_url", "https://smx.test/api")
        return ChartCatalog(transport=smx_api.transport, **kwargs)

    return _make


@pytest.fixture
def catalog(make_catalog) -> ChartCatalog:
    return make_catalog(ttl=300)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
def db_path(tmp_path: Path, monkeypatch) -> Path:
    """Point the database module at a fresh SQLite file and create the schema."""
    path = tmp_path / "chartvote.db"
    monkeypatch.setattr(database, "DB_PATH", path)
    database.init_db()
    return path


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


@pytest.fixture
def client(db_path, catalog, monkeypatch):
    """
    TestClient for the app with the fake catalog injected.

    Password hashing runs at the lowest bcrypt cost to keep account tests fast.

    Used without a ``with`` block so the lifespan (startup prefetch against
    the real SMX API) does not run; the db_path fixture creates the schema.
    """
    monkeypatch.setattr("chartvote.auth.BCRYPT_ROUNDS", 4)
    app.dependency_overrides[get_catalog] = lambda: catalog
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
