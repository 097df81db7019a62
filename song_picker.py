"""Pick a random playable song from a shuffled pool of popular artists."""

from __future__ import annotations

import logging
import random
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, Hashable, List, Optional, Sequence, Tuple

from catalogs import CatalogError, DeezerClient, ITunesClient, LastFMClient, Track
from config import Settings
from matching import normalize_simple

LOG = logging.getLogger("song_picker")

POPULAR_ARTISTS: Tuple[str, ...] = (
    # Hip Hop/Rap
    "Drake", "Kendrick Lamar", "J. Cole", "Travis Scott", "Post Malone",
    "Eminem", "Kanye West", "Jay-Z", "Lil Wayne", "Future",
    "21 Savage", "Lil Baby", "Migos", "Cardi B", "Nicki Minaj",
    "Juice WRLD", "Lil Uzi Vert", "A$AP Rocky", "Tyler, The Creator",
    "Childish Gambino", "The Weeknd", "Khalid", "Billie Eilish", "Ariana Grande",
    # Pop
    "Taylor Swift", "Ed Sheeran", "Justin Bieber", "Dua Lipa", "Harry Styles",
    "Lady Gaga", "Rihanna", "Beyoncé", "Bruno Mars", "Adele", "Frank Ocean", "SZA",
    # Alternative/Indie
    "Arctic Monkeys", "Tame Impala", "Glass Animals",
    # Rock
    "Coldplay", "Imagine Dragons", "Panic! At The Disco", "Calvin Harris", "The Chainsmokers",
)

LASTFM_CHART_SIZE = 50
POOL_KEY = "pool"


def shuffled(items: Sequence[Any], rng: Optional[random.Random] = None) -> List[Any]:
    """Return a Fisher-Yates shuffled copy of ``items``."""
    rng = rng or random
    result = list(items)
    for i in range(len(result) - 1, 0, -1):
        j = rng.randint(0, i)
        result[i], result[j] = result[j], result[i]
    return result


class RecentlyPlayed:
    """Most-recent-first record of picked songs, bounded to ``size`` entries."""

    def __init__(self, size: int = 10) -> None:
        self.size = max(0, size)
        self._entries: List[Tuple[str, str]] = []

    @staticmethod
    def _key(artist: str, title: str) -> Tuple[str, str]:
        return artist.lower(), title.lower()

    def contains(self, artist: str, title: str) -> bool:
        return self._key(artist, title) in (self._key(a, t) for a, t in self._entries)

    def add(self, artist: str, title: str) -> None:
        self._entries.insert(0, (artist, title))
        del self._entries[self.size :]

    def entries(self) -> List[Tuple[str, str]]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


class TTLCache:
    """In-memory map whose entries expire ``ttl`` seconds after being stored."""

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._data: Dict[Hashable, Tuple[float, Any]] = {}

    def get(self, key: Hashable) -> Optional[Any]:
        item = self._data.get(key)
        if item is None:
            return None
        stored_at, value = item
        if self._clock() - stored_at >= self.ttl:
            del self._data[key]
            return None
        return value

    def set(self, key: Hashable, value: Any) -> None:
        self._data[key] = (self._clock(), value)

    def sweep(self) -> int:
        now = self._clock()
        expired = [key for key, (stored_at, _) in self._data.items() if now - stored_at >= self.ttl]
        for key in expired:
            del self._data[key]
        return len(expired)

    def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)


class SongPicker:
    def __init__(
        self,
        deezer: DeezerClient,
        *,
        itunes: Optional[ITunesClient] = None,
        lastfm: Optional[LastFMClient] = None,
        artists: Sequence[str] = POPULAR_ARTISTS,
        batch_size: int = 8,
        artist_timeout: float = 3.0,
        artist_cache_ttl: float = 24 * 60 * 60,
        track_cache_ttl: float = 2 * 60 * 60,
        recently_played_size: int = 10,
        track_limit: int = 20,
        itunes_fallback: bool = True,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.deezer = deezer
        self.itunes = itunes
        self.lastfm = lastfm
        self.artists = tuple(artists)
        self.batch_size = max(1, batch_size)
        self.artist_timeout = artist_timeout
        self.track_limit = track_limit
        self.itunes_fallback = itunes_fallback
        self.recently_played = RecentlyPlayed(recently_played_size)
        self._artist_cache = TTLCache(artist_cache_ttl, clock)
        self._track_cache = TTLCache(track_cache_ttl, clock)
        self._rng = rng or random.Random()
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=self.batch_size, thread_name_prefix="artist-probe")
        self.cache_hits = 0
        self.catalog_calls = 0
        self.picks = 0

    @classmethod
    def from_settings(cls, settings: Settings, *, itunes: Optional[ITunesClient] = None) -> SongPicker:
        return cls(
            DeezerClient.from_settings(settings),
            itunes=itunes or ITunesClient.from_settings(settings),
            lastfm=LastFMClient.from_settings(settings),
            batch_size=settings.artist_batch_size,
            artist_timeout=settings.artist_timeout,
            artist_cache_ttl=settings.artist_cache_ttl,
            track_cache_ttl=settings.track_cache_ttl,
            recently_played_size=settings.recently_played_size,
            track_limit=settings.deezer_track_limit,
            itunes_fallback=settings.itunes_fallback,
        )

    def artist_pool(self) -> List[str]:
        """Return a fresh shuffle of every artist eligible for a round."""
        with self._lock:
            pool = self._artist_cache.get(POOL_KEY)
        if pool is None:
            pool = self._build_pool()
            with self._lock:
                self._artist_cache.set(POOL_KEY, pool)
        return shuffled(pool, self._rng)

    def _build_pool(self) -> Tuple[str, ...]:
        names = list(self.artists)
        if self.lastfm is not None:
            chart = self.lastfm.top_artists(LASTFM_CHART_SIZE)
            LOG.info("Merging %d Last.fm chart artist(s) into the pool", len(chart))
            names.extend(chart)

        seen = set()
        pool: List[str] = []
        for name in names:
            key = normalize_simple(name)
            if not key or key in seen:
                continue
            seen.add(key)
            pool.append(name)
        return tuple(pool)

    def artist_tracks(self, artist: str) -> Tuple[Track, ...]:
        """Return the cached playable tracks for ``artist``, fetching on a miss."""
        key = normalize_simple(artist)
        with self._lock:
            cached = self._track_cache.get(key)
            if cached is not None:
                self.cache_hits += 1
                LOG.debug("Track cache hit for %s", artist)
                return cached

        tracks: List[Track] = []
        try:
            self._count_call()
            tracks = self.deezer.artist_tracks(artist, self.track_limit)
        except CatalogError as exc:
            LOG.warning("Deezer lookup failed for %s: %s", artist, exc)

        if not tracks and self.itunes_fallback and self.itunes is not None:
            LOG.debug("No Deezer previews for %s; trying iTunes", artist)
            try:
                self._count_call()
                tracks = self.itunes.artist_tracks(artist)
            except CatalogError as exc:
                LOG.warning("iTunes lookup failed for %s: %s", artist, exc)

        result = tuple(tracks)
        if result:
            with self._lock:
                self._track_cache.set(key, result)
        return result

    def _count_call(self) -> None:
        with self._lock:
            self.catalog_calls += 1

    def pick_song(self) -> Optional[Track]:
        """Pick a song that has not been played recently, or None."""
        artists = self.artist_pool()[: self.batch_size]
        if not artists:
            LOG.error("Artist pool is empty")
            return None

        with self._lock:
            self._track_cache.sweep()

        futures = [self._executor.submit(self.artist_tracks, artist) for artist in artists]
        done, not_done = wait(futures, timeout=self.artist_timeout)

        if not_done:
            # Queued probes never start; running ones finish and fill the cache.
            for future in not_done:
                future.cancel()
            LOG.debug("%d artist probe(s) missed the %.1fs deadline", len(not_done), self.artist_timeout)

        candidates: List[Tuple[str, Tuple[Track, ...]]] = []
        for artist, future in zip(artists, futures):
            if future not in done:
                continue
            try:
                tracks = future.result()
            except Exception as exc:  # pylint: disable=broad-except
                LOG.warning("Unexpected error probing %s: %s", artist, exc)
                continue
            if tracks:
                candidates.append((artist, tracks))

        with self._lock:
            for artist, tracks in candidates:
                available = [t for t in tracks if not self.recently_played.contains(t.artist, t.title)]
                if not available:
                    LOG.debug("Every cached track for %s was played recently", artist)
                    continue
                track = self._rng.choice(available)
                self.recently_played.add(track.artist, track.title)
                self.picks += 1
                LOG.info("Picked %s - %s (%s)", track.artist, track.title, track.source)
                return track

        LOG.warning("No playable song among %d probed artist(s)", len(artists))
        return None

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "picks": self.picks,
                "cache_hits": self.cache_hits,
                "catalog_calls": self.catalog_calls,
                "cached_artists": len(self._track_cache),
                "recently_played": len(self.recently_played),
            }


__all__ = [
    "POPULAR_ARTISTS",
    "RecentlyPlayed",
    "SongPicker",
    "TTLCache",
    "shuffled",
]
