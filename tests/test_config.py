import pytest

import config
from config import Settings

ALL_KEYS = [
    "HOST",
    "PORT",
    "DEEZER_API_URL",
    "ITUNES_API_URL",
    "LASTFM_API_URL",
    "LASTFM_API_KEY",
    "LASTFM_REQUESTS_PER_SEC",
    "HTTP_TIMEOUT",
    "HTTP_RETRIES",
    "ARTIST_BATCH_SIZE",
    "ARTIST_TIMEOUT",
    "ARTIST_CACHE_TTL",
    "TRACK_CACHE_TTL",
    "RECENTLY_PLAYED_SIZE",
    "DEEZER_TRACK_LIMIT",
    "ITUNES_FALLBACK",
    "SUGGESTION_LIMIT",
    "SUGGESTION_FETCH_LIMIT",
    "GUESS_MATCH_THRESHOLD",
    "ROUND_START_ATTEMPTS",
    "SESSION_TTL",
    "LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ALL_KEYS:
        monkeypatch.delenv(key, raising=False)
        for legacy in config.iter_legacy_names(key):
            monkeypatch.delenv(legacy, raising=False)
    monkeypatch.setattr(config, "_WARNED", set())


def test_defaults_match_game_constants():
    settings = Settings.from_env()

    assert settings.port == 5000
    assert settings.artist_batch_size == 8
    assert settings.artist_timeout == 3.0
    assert settings.artist_cache_ttl == 24 * 60 * 60
    assert settings.track_cache_ttl == 2 * 60 * 60
    assert settings.recently_played_size == 10
    assert settings.deezer_track_limit == 20
    assert settings.suggestion_limit == 5
    assert settings.itunes_fallback is True
    assert settings.lastfm_api_key is None
    assert not settings.lastfm_enabled
    assert settings.log_level == "INFO"


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("ARTIST_BATCH_SIZE", "4")
    monkeypatch.setenv("ITUNES_FALLBACK", "off")
    monkeypatch.setenv("LASTFM_API_KEY", "  abc123 ")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = Settings.from_env()

    assert settings.artist_batch_size == 4
    assert settings.itunes_fallback is False
    assert settings.lastfm_api_key == "abc123"
    assert settings.lastfm_enabled
    assert settings.log_level == "DEBUG"


def test_legacy_name_is_honoured_with_warning(monkeypatch):
    monkeypatch.setenv("TRACK_CACHE_DURATION", "60")

    with pytest.warns(DeprecationWarning, match="TRACK_CACHE_DURATION"):
        settings = Settings.from_env()

    assert settings.track_cache_ttl == 60.0


def test_new_name_wins_over_legacy(monkeypatch):
    monkeypatch.setenv("PORT", "8080")
    monkeypatch.setenv("HUMMIFY_PORT", "9090")

    assert Settings.from_env().port == 8080


def test_invalid_integer_raises(monkeypatch):
    monkeypatch.setenv("ARTIST_BATCH_SIZE", "many")

    with pytest.raises(ValueError, match="ARTIST_BATCH_SIZE"):
        Settings.from_env()


def test_minimum_is_enforced(monkeypatch):
    monkeypatch.setenv("ARTIST_BATCH_SIZE", "0")

    with pytest.raises(ValueError, match=">= 1"):
        Settings.from_env()


def test_threshold_above_hundred_is_rejected(monkeypatch):
    monkeypatch.setenv("GUESS_MATCH_THRESHOLD", "101")

    with pytest.raises(ValueError, match="GUESS_MATCH_THRESHOLD"):
        Settings.from_env()


def test_env_bool_rejects_garbage(monkeypatch):
    monkeypatch.setenv("ITUNES_FALLBACK", "sometimes")

    with pytest.raises(ValueError, match="boolean-like"):
        config.env_bool("ITUNES_FALLBACK", True)


def test_missing_required_values_raise():
    with pytest.raises(RuntimeError):
        config.env_int("PORT")
    with pytest.raises(RuntimeError):
        config.env_float("HTTP_TIMEOUT")
