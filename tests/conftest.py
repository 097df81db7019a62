from __future__ import annotations

import threading
from dataclasses import replace
from typing import Any, Dict, List, Optional

import pytest
import requests

from catalogs import CatalogError, Track
from config import Settings


BASE_SETTINGS = Settings(
    host="127.0.0.1",
    port=5000,
    deezer_api_url="https://deezer.test/search",
    itunes_api_url="https://itunes.test/search",
    lastfm_api_url="https://lastfm.test/2.0/",
    lastfm_api_key=None,
    lastfm_requests_per_sec=1000.0,
    http_timeout=1.0,
    http_retries=0,
    artist_batch_size=8,
    artist_timeout=2.0,
    artist_cache_ttl=86400.0,
    track_cache_ttl=7200.0,
    recently_played_size=10,
    deezer_track_limit=20,
    itunes_fallback=True,
    suggestion_limit=5,
    suggestion_fetch_limit=10,
    guess_match_threshold=90,
    round_start_attempts=3,
    session_ttl=3600.0,
    log_level="DEBUG",
)


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, invalid_json: bool = False) -> None:
        self.status_code = status_code
        self._payload = payload
        self._invalid_json = invalid_json

    def json(self) -> Any:
        if self._invalid_json:
            raise ValueError("No JSON object could be decoded")
        return self._payload


class FakeSession:
    """Stands in for requests.Session; replays queued responses in order."""

    def __init__(self, *responses: Any) -> None:
        self.responses: List[Any] = list(responses)
        self.calls: List[Dict[str, Any]] = []

    def get(self, url: str, params: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None) -> FakeResponse:
        self.calls.append({"url": url, "params": dict(params or {}), "timeout": timeout})
        if not self.responses:
            raise AssertionError(f"Unexpected request to {url}")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeCatalog:
    """Catalog double keyed by artist name, counting lookups per artist."""

    def __init__(self, tracks: Optional[Dict[str, List[Track]]] = None, *, fail: Optional[set] = None) -> None:
        self.tracks = tracks or {}
        self.fail = fail or set()
        self.calls: List[str] = []
        self.block: Dict[str, threading.Event] = {}
        self._lock = threading.Lock()

    def artist_tracks(self, artist: str, limit: int = 20) -> List[Track]:
        with self._lock:
            self.calls.append(artist)
        gate = self.block.get(artist)
        if gate is not None:
            gate.wait(5)
        if artist in self.fail:
            raise CatalogError(f"boom for {artist}")
        return list(self.tracks.get(artist, []))


def make_track(title: str, artist: str = "Drake", source: str = "deezer") -> Track:
    slug = title.lower().replace(" ", "-")
    return Track(
        title=title,
        artist=artist,
        preview_url=f"https://cdn.test/{slug}.mp3",
        album_art=f"https://cdn.test/{slug}.jpg",
        source=source,
    )


@pytest.fixture
def settings() -> Settings:
    return BASE_SETTINGS


@pytest.fixture
def make_settings():
    def _make(**overrides: Any) -> Settings:
        return replace(BASE_SETTINGS, **overrides)

    return _make


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def connection_error() -> requests.ConnectionError:
    return requests.ConnectionError("connection refused")
