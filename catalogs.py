"""Clients for the public music catalogs Hummify draws songs from.

Deezer is the primary source of playable previews, iTunes is the fallback
and also backs guess autocompletion, and Last.fm (optional, needs an API key)
widens the artist pool with the current chart.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from config import Settings
from matching import normalize_simple, same_artist

LOG = logging.getLogger("catalogs")

USER_AGENT = "hummify/1.0"
ITUNES_ARTWORK_SIZE = "250x250"


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""


class CatalogError(Exception):
    """Raised when a catalog request fails or returns an unusable payload."""


@dataclass(frozen=True)
class Track:
    """A song with a playable preview."""

    title: str
    artist: str
    preview_url: str
    album_art: Optional[str]
    source: str

    def to_record(self) -> Dict[str, Optional[str]]:
        return {
            "title": self.title,
            "artist": self.artist,
            "previewUrl": self.preview_url,
            "albumArt": self.album_art,
        }


def build_session(retries: int) -> requests.Session:
    session = requests.Session()
    retry = Retry(
        total=retries,
        read=retries,
        connect=retries,
        backoff_factor=0.3,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["GET"],
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers.update({"User-Agent": USER_AGENT, "Accept": "application/json"})
    return session


def get_json(session: requests.Session, url: str, params: Dict[str, Any], timeout: float, label: str) -> Dict[str, Any]:
    """GET ``url`` and decode a JSON object, raising CatalogError on any failure."""
    try:
        response = session.get(url, params=params, timeout=timeout)
    except requests.RequestException as exc:
        raise CatalogError(f"{label} request failed: {exc}") from exc

    if response.status_code != 200:
        raise CatalogError(f"{label} returned HTTP {response.status_code}")

    try:
        payload = response.json()
    except ValueError as exc:
        raise CatalogError(f"Invalid JSON response from {label}: {exc}") from exc

    if not isinstance(payload, dict):
        raise CatalogError(f"Malformed response from {label}: expected a JSON object")
    return payload


class DeezerClient:
    """Search client for the public Deezer API. No key required."""

    def __init__(self, base_url: str, *, timeout: float, retries: int, session: Optional[requests.Session] = None) -> None:
        self.base_url = base_url
        self.timeout = timeout
        self.session = session or build_session(retries)

    @classmethod
    def from_settings(cls, settings: Settings) -> DeezerClient:
        return cls(settings.deezer_api_url, timeout=settings.http_timeout, retries=settings.http_retries)

    def artist_tracks(self, artist: str, limit: int = 20) -> List[Track]:
        """Return the artist's top-rated tracks that carry a preview."""
        params = {"q": f'artist:"{artist}"', "limit": limit, "order": "RATING_DESC"}
        payload = get_json(self.session, self.base_url, params, self.timeout, "Deezer")

        if "error" in payload:
            error = payload.get("error")
            message = error.get("message") if isinstance(error, dict) else error
            raise CatalogError(f"Deezer error for {artist!r}: {message}")

        items = payload.get("data") or []
        tracks: List[Track] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            preview = item.get("preview")
            artist_data = item.get("artist")
            artist_name = artist_data.get("name") if isinstance(artist_data, dict) else None
            title = str(item.get("title") or "").strip()
            if not preview or not title or not same_artist(artist_name, artist):
                continue
            album = item.get("album")
            album_art = album.get("cover_medium") if isinstance(album, dict) else None
            tracks.append(
                Track(
                    title=title,
                    artist=str(artist_name).strip(),
                    preview_url=str(preview),
                    album_art=album_art,
                    source="deezer",
                )
            )
        LOG.debug("Deezer returned %d playable track(s) for %s", len(tracks), artist)
        return tracks


class ITunesClient:
    """Client for the iTunes Search API. No key required."""

    def __init__(self, base_url: str, *, timeout: float, retries: int, session: Optional[requests.Session] = None) -> None:
        self.base_url = base_url
        self.timeout = timeout
        self.session = session or build_session(retries)

    @classmethod
    def from_settings(cls, settings: Settings) -> ITunesClient:
        return cls(settings.itunes_api_url, timeout=settings.http_timeout, retries=settings.http_retries)

    def _search(self, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        payload = get_json(self.session, self.base_url, params, self.timeout, "iTunes")
        results = payload.get("results") or []
        return [item for item in results if isinstance(item, dict)]

    def artist_tracks(self, artist: str, limit: int = 25) -> List[Track]:
        params = {"term": artist, "entity": "song", "attribute": "artistTerm", "limit": limit}
        tracks: List[Track] = []
        for item in self._search(params):
            preview = item.get("previewUrl")
            title = str(item.get("trackName") or "").strip()
            artist_name = item.get("artistName")
            if not preview or not title or not same_artist(artist_name, artist):
                continue
            artwork = item.get("artworkUrl100")
            if isinstance(artwork, str):
                artwork = artwork.replace("100x100", ITUNES_ARTWORK_SIZE)
            tracks.append(
                Track(
                    title=title,
                    artist=str(artist_name).strip(),
                    preview_url=str(preview),
                    album_art=artwork,
                    source="itunes",
                )
            )
        LOG.debug("iTunes returned %d playable track(s) for %s", len(tracks), artist)
        return tracks

    def suggest(self, term: str, limit: int = 5, fetch_limit: int = 10) -> List[str]:
        """Return up to ``limit`` distinct ``"Title - Artist"`` completions for ``term``."""
        term = (term or "").strip()
        if not term:
            return []
        params = {"term": term, "entity": "song", "limit": fetch_limit}
        seen = set()
        suggestions: List[str] = []
        for item in self._search(params):
            title = str(item.get("trackName") or "").strip()
            artist_name = str(item.get("artistName") or "").strip()
            if not title or not artist_name:
                continue
            key = f"{title.lower()} - {artist_name.lower()}"
            if key in seen:
                continue
            seen.add(key)
            suggestions.append(f"{title} - {artist_name}")
            if len(suggestions) >= limit:
                break
        return suggestions


class LastFMClient:
    def __init__(
        self,
        api_key: str,
        rate_limit_per_sec: float,
        *,
        base_url: str,
        timeout: float,
        retries: int,
        cache_ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not api_key:
            raise ConfigurationError("LASTFM_API_KEY is required for the Last.fm client.")
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self.rate_interval = 1.0 / max(rate_limit_per_sec, 0.01)
        self.cache_ttl = cache_ttl
        self._clock = clock
        self._cache: Dict[str, Tuple[float, Any]] = {}
        self._cache_lock = threading.Lock()
        self._request_lock = threading.Lock()
        self._last_request_ts = 0.0
        self.cache_hits = 0
        self.api_calls = 0
        self.max_attempts = 1 + max(0, retries)
        self.session = session or build_session(retries)

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional[LastFMClient]:
        if not settings.lastfm_api_key:
            return None
        return cls(
            settings.lastfm_api_key,
            settings.lastfm_requests_per_sec,
            base_url=settings.lastfm_api_url,
            timeout=settings.http_timeout,
            retries=settings.http_retries,
            cache_ttl=settings.artist_cache_ttl,
        )

    def rate_limited_get(self, method: str, params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        cache_key = self._cache_key(method, params)
        with self._cache_lock:
            cached = self._cache.get(cache_key)
            if cached is not None:
                stored_at, payload = cached
                if self.cache_ttl is None or self._clock() - stored_at < self.cache_ttl:
                    self.cache_hits += 1
                    return payload
                del self._cache[cache_key]

        request_params = dict(params)
        request_params["method"] = method
        request_params["api_key"] = self.api_key
        request_params["format"] = "json"

        attempt = 0
        while True:
            attempt += 1
            with self._request_lock:
                now = time.monotonic()
                wait_for = self._last_request_ts + self.rate_interval - now
                if wait_for > 0:
                    time.sleep(wait_for)
                self._last_request_ts = time.monotonic()
            try:
                response = self.session.get(self.base_url, params=request_params, timeout=self.timeout)
                self.api_calls += 1
            except requests.RequestException as exc:
                LOG.warning("Last.fm request error for %s: %s", method, exc)
                return None

            if response.status_code == 429:
                if attempt >= self.max_attempts:
                    LOG.warning("Last.fm kept rate limiting %s; giving up", method)
                    return None
                LOG.debug("Received 429 from Last.fm, backing off")
                time.sleep(self.rate_interval * 2)
                continue
            if response.status_code >= 500:
                if attempt >= self.max_attempts:
                    LOG.warning("Last.fm server error %s for %s", response.status_code, method)
                    return None
                time.sleep(self.rate_interval)
                continue
            if response.status_code != 200:
                LOG.warning("Unexpected Last.fm status %s for %s", response.status_code, method)
                return None

            try:
                payload = response.json()
            except ValueError:
                LOG.warning("Invalid JSON response from Last.fm for %s", method)
                return None

            if not isinstance(payload, dict):
                LOG.warning("Malformed Last.fm response for %s", method)
                return None
            if "error" in payload:
                LOG.debug("Last.fm reported error %s for %s", payload.get("message", payload.get("error")), method)
                return None

            with self._cache_lock:
                self._cache[cache_key] = (self._clock(), payload)
            return payload

    def top_artists(self, limit: int = 50) -> List[str]:
        """Return the names on the current global Last.fm artist chart."""
        payload = self.rate_limited_get("chart.getTopArtists", {"limit": limit})
        if not payload:
            return []
        artists_data = payload.get("artists")
        if not isinstance(artists_data, dict):
            return []
        entries = artists_data.get("artist") or []
        if isinstance(entries, dict):
            entries = [entries]

        names: List[str] = []
        seen = set()
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            name = str(entry.get("name") or "").strip()
            key = normalize_simple(name)
            if not name or key in seen:
                continue
            seen.add(key)
            names.append(name)
        LOG.debug("Last.fm chart returned %d artist(s)", len(names))
        return names

    def _cache_key(self, method: str, params: Dict[str, Any]) -> str:
        items = tuple(sorted((k, str(v)) for k, v in params.items()))
        return json.dumps([method, items], separators=(",", ":"))


__all__ = [
    "CatalogError",
    "ConfigurationError",
    "DeezerClient",
    "ITunesClient",
    "LastFMClient",
    "Track",
    "build_session",
    "get_json",
]
