"""Central configuration helpers for the Hummify server."""

from __future__ import annotations

import os
import unicodedata
import warnings
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Dict, Iterable, Optional

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parent

# Load the root .env first, then allow working-directory overrides without clobbering.
load_dotenv(dotenv_path=PROJECT_ROOT / ".env", override=False)
load_dotenv(override=False)

LEGACY_ENV_NAMES: Dict[str, list[str]] = {
    "HOST": ["HUMMIFY_HOST", "FLASK_RUN_HOST"],
    "PORT": ["HUMMIFY_PORT", "FLASK_RUN_PORT"],
    "LASTFM_API_KEY": ["LAST_FM_API_KEY"],
    "LASTFM_REQUESTS_PER_SEC": ["LASTFM_RATE_LIMIT_PER_SEC"],
    "ARTIST_BATCH_SIZE": ["PARALLEL_ARTISTS"],
    "ARTIST_TIMEOUT": ["ARTIST_TIMEOUT_SECONDS"],
    "ARTIST_CACHE_TTL": ["CACHE_DURATION"],
    "TRACK_CACHE_TTL": ["TRACK_CACHE_DURATION"],
    "GUESS_MATCH_THRESHOLD": ["FUZZY_MATCH_THRESHOLD", "FUZZ_THRESHOLD"],
}

_WARNED: set[tuple[str, str]] = set()


def _coerce_str(value: str) -> str:
    return unicodedata.normalize("NFC", value.strip())


def _get_env(name: str) -> Optional[str]:
    candidates = [name] + LEGACY_ENV_NAMES.get(name, [])
    for candidate in candidates:
        raw = os.getenv(candidate)
        if raw is None or raw.strip() == "":
            continue
        if candidate != name:
            _warn_once(candidate, name)
        return raw
    return None


def _warn_once(old_name: str, new_name: str) -> None:
    key = (old_name, new_name)
    if key in _WARNED:
        return
    _WARNED.add(key)
    warnings.warn(
        f"Environment variable {old_name} is deprecated; use {new_name} instead.",
        DeprecationWarning,
        stacklevel=3,
    )


def env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    raw = _get_env(name)
    if raw is None or raw.strip() == "":
        return _coerce_str(default) if isinstance(default, str) else default
    return _coerce_str(raw)


def env_bool(name: str, default: Optional[bool] = None) -> bool:
    raw = _get_env(name)
    if raw is None or raw.strip() == "":
        if default is None:
            raise RuntimeError(f"Missing required boolean environment variable: {name}")
        return bool(default)
    normalized = raw.strip().lower()
    truthy = {"1", "true", "yes", "on"}
    falsy = {"0", "false", "no", "off"}
    if normalized in truthy:
        return True
    if normalized in falsy:
        return False
    raise ValueError(f"Environment variable {name} must be boolean-like, got {raw!r}")


def env_int(name: str, default: Optional[int] = None, *, min_value: Optional[int] = None) -> int:
    raw = _get_env(name)
    if raw is None or raw.strip() == "":
        if default is None:
            raise RuntimeError(f"Missing required integer environment variable: {name}")
        value = int(default)
    else:
        try:
            value = int(raw.strip())
        except ValueError as exc:
            raise ValueError(f"Environment variable {name} must be an integer, got {raw!r}") from exc
    if min_value is not None and value < min_value:
        raise ValueError(f"Environment variable {name} must be >= {min_value}, got {value}")
    return value


def env_float(name: str, default: Optional[float] = None, *, min_value: Optional[float] = None) -> float:
    raw = _get_env(name)
    if raw is None or raw.strip() == "":
        if default is None:
            raise RuntimeError(f"Missing required float environment variable: {name}")
        value = float(default)
    else:
        try:
            value = float(raw.strip())
        except ValueError as exc:
            raise ValueError(f"Environment variable {name} must be a float, got {raw!r}") from exc
    if min_value is not None and value < min_value:
        raise ValueError(f"Environment variable {name} must be >= {min_value}, got {value}")
    return value


@dataclass(frozen=True)
class Settings:
    host: str
    port: int
    deezer_api_url: str
    itunes_api_url: str
    lastfm_api_url: str
    lastfm_api_key: Optional[str]
    lastfm_requests_per_sec: float
    http_timeout: float
    http_retries: int
    artist_batch_size: int
    artist_timeout: float
    artist_cache_ttl: float
    track_cache_ttl: float
    recently_played_size: int
    deezer_track_limit: int
    itunes_fallback: bool
    suggestion_limit: int
    suggestion_fetch_limit: int
    guess_match_threshold: int
    round_start_attempts: int
    session_ttl: float
    log_level: str

    @property
    def lastfm_enabled(self) -> bool:
        return bool(self.lastfm_api_key)

    @classmethod
    def from_env(cls) -> Settings:
        defaults = {
            "HOST": "127.0.0.1",
            "PORT": "5000",
            "DEEZER_API_URL": "https://api.deezer.com/search",
            "ITUNES_API_URL": "https://itunes.apple.com/search",
            "LASTFM_API_URL": "https://ws.audioscrobbler.com/2.0/",
            "LASTFM_REQUESTS_PER_SEC": "4",
            "HTTP_TIMEOUT": "5",
            "HTTP_RETRIES": "2",
            "ARTIST_BATCH_SIZE": "8",
            "ARTIST_TIMEOUT": "3",
            "ARTIST_CACHE_TTL": "86400",
            "TRACK_CACHE_TTL": "7200",
            "RECENTLY_PLAYED_SIZE": "10",
            "DEEZER_TRACK_LIMIT": "20",
            "ITUNES_FALLBACK": "true",
            "SUGGESTION_LIMIT": "5",
            "SUGGESTION_FETCH_LIMIT": "10",
            "GUESS_MATCH_THRESHOLD": "90",
            "ROUND_START_ATTEMPTS": "5",
            "SESSION_TTL": "21600",
            "LOG_LEVEL": "INFO",
        }

        values = {key: env_str(key, defaults.get(key)) for key in defaults}

        host = values["HOST"] or defaults["HOST"]
        port = env_int("PORT", defaults["PORT"], min_value=1)
        deezer_api_url = values["DEEZER_API_URL"] or defaults["DEEZER_API_URL"]
        itunes_api_url = values["ITUNES_API_URL"] or defaults["ITUNES_API_URL"]
        lastfm_api_url = values["LASTFM_API_URL"] or defaults["LASTFM_API_URL"]
        lastfm_api_key = env_str("LASTFM_API_KEY")
        lastfm_requests_per_sec = env_float("LASTFM_REQUESTS_PER_SEC", defaults["LASTFM_REQUESTS_PER_SEC"])
        http_timeout = env_float("HTTP_TIMEOUT", defaults["HTTP_TIMEOUT"], min_value=0.1)
        http_retries = env_int("HTTP_RETRIES", defaults["HTTP_RETRIES"], min_value=0)
        artist_batch_size = env_int("ARTIST_BATCH_SIZE", defaults["ARTIST_BATCH_SIZE"], min_value=1)
        artist_timeout = env_float("ARTIST_TIMEOUT", defaults["ARTIST_TIMEOUT"], min_value=0.1)
        artist_cache_ttl = env_float("ARTIST_CACHE_TTL", defaults["ARTIST_CACHE_TTL"], min_value=0)
        track_cache_ttl = env_float("TRACK_CACHE_TTL", defaults["TRACK_CACHE_TTL"], min_value=0)
        recently_played_size = env_int("RECENTLY_PLAYED_SIZE", defaults["RECENTLY_PLAYED_SIZE"], min_value=0)
        deezer_track_limit = env_int("DEEZER_TRACK_LIMIT", defaults["DEEZER_TRACK_LIMIT"], min_value=1)
        itunes_fallback = env_bool("ITUNES_FALLBACK", defaults["ITUNES_FALLBACK"] == "true")
        suggestion_limit = env_int("SUGGESTION_LIMIT", defaults["SUGGESTION_LIMIT"], min_value=1)
        suggestion_fetch_limit = env_int("SUGGESTION_FETCH_LIMIT", defaults["SUGGESTION_FETCH_LIMIT"], min_value=1)
        guess_match_threshold = env_int("GUESS_MATCH_THRESHOLD", defaults["GUESS_MATCH_THRESHOLD"], min_value=1)
        round_start_attempts = env_int("ROUND_START_ATTEMPTS", defaults["ROUND_START_ATTEMPTS"], min_value=1)
        session_ttl = env_float("SESSION_TTL", defaults["SESSION_TTL"], min_value=1)
        log_level = (values["LOG_LEVEL"] or defaults["LOG_LEVEL"]).upper()

        if guess_match_threshold > 100:
            raise ValueError(f"Environment variable GUESS_MATCH_THRESHOLD must be <= 100, got {guess_match_threshold}")

        return cls(
            host=host,
            port=port,
            deezer_api_url=deezer_api_url,
            itunes_api_url=itunes_api_url,
            lastfm_api_url=lastfm_api_url,
            lastfm_api_key=lastfm_api_key,
            lastfm_requests_per_sec=lastfm_requests_per_sec,
            http_timeout=http_timeout,
            http_retries=http_retries,
            artist_batch_size=artist_batch_size,
            artist_timeout=artist_timeout,
            artist_cache_ttl=artist_cache_ttl,
            track_cache_ttl=track_cache_ttl,
            recently_played_size=recently_played_size,
            deezer_track_limit=deezer_track_limit,
            itunes_fallback=itunes_fallback,
            suggestion_limit=suggestion_limit,
            suggestion_fetch_limit=suggestion_fetch_limit,
            guess_match_threshold=guess_match_threshold,
            round_start_attempts=round_start_attempts,
            session_ttl=session_ttl,
            log_level=log_level,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached Settings instance populated from the environment."""
    return Settings.from_env()


def iter_legacy_names(new_name: str) -> Iterable[str]:
    return LEGACY_ENV_NAMES.get(new_name, [])


__all__ = [
    "Settings",
    "env_bool",
    "env_float",
    "env_int",
    "env_str",
    "get_settings",
    "iter_legacy_names",
]
