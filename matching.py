"""Text normalization and guess checking."""

from __future__ import annotations

import re
import string
import unicodedata
from dataclasses import dataclass
from typing import Optional

from rapidfuzz import fuzz

BRACKETED_RE = re.compile(r"\(.*?\)|\[.*?\]|\{.*?\}")
VERSION_SUFFIX_RE = re.compile(r"\b(remaster(?:ed)?|live|mono mix|stereo mix|radio edit|version)\b.*$")
FEATURING_RE = re.compile(r"\s(?:feat\.?|ft\.?|featuring)\s.*$")
YEAR_RE = re.compile(r"(19|20)\d{2}")
PUNCT_TABLE = str.maketrans("", "", string.punctuation + "’‘“”")

SUGGESTION_SEPARATOR = " - "


@dataclass(frozen=True)
class GuessCheck:
    correct: bool
    actual_title: str
    actual_artist: str
    title_score: int
    artist_score: Optional[int]

    def to_record(self) -> dict:
        return {
            "correct": self.correct,
            "actualTitle": self.actual_title,
            "actualArtist": self.actual_artist,
        }


def normalize_nfc(value: str) -> str:
    return unicodedata.normalize("NFC", value)


def normalize_simple(value: str) -> str:
    lowered = normalize_nfc(value).casefold()
    collapsed = " ".join(lowered.split())
    return collapsed


def normalize_for_match(value: Optional[str]) -> str:
    if not value:
        return ""
    text = normalize_nfc(value)
    text = text.replace("&", " and ")
    text = text.lower()
    text = BRACKETED_RE.sub(" ", text)
    text = FEATURING_RE.sub(" ", text)
    text = VERSION_SUFFIX_RE.sub(" ", text)
    text = text.translate(PUNCT_TABLE)
    text = " ".join(word for word in text.split() if not YEAR_RE.fullmatch(word))
    text = "".join(ch for ch in unicodedata.normalize("NFKD", text) if not unicodedata.combining(ch))
    return " ".join(text.split())


def same_artist(left: Optional[str], right: Optional[str]) -> bool:
    if not left or not right:
        return False
    return normalize_simple(left) == normalize_simple(right)


def split_suggestion(guess: str) -> tuple[str, Optional[str]]:
    """Split a ``"Title - Artist"`` suggestion into its parts.

    Titles can themselves contain the separator, so the split happens on the
    last occurrence.
    """
    text = guess.strip()
    if SUGGESTION_SEPARATOR not in text:
        return text, None
    title, artist = text.rsplit(SUGGESTION_SEPARATOR, 1)
    title = title.strip()
    artist = artist.strip()
    if not title:
        return text, None
    return title, artist or None


def contains_phrase(haystack: str, needle: str) -> bool:
    if not needle:
        return False
    pattern = rf"(?:^| ){re.escape(needle)}(?:$| )"
    return re.search(pattern, haystack) is not None


def title_score(guess_title: str, actual_title: str) -> int:
    # Titles like "1989" normalize to nothing; fall back to the plain form.
    guess_norm = normalize_for_match(guess_title) or normalize_simple(guess_title)
    actual_norm = normalize_for_match(actual_title) or normalize_simple(actual_title)
    if not guess_norm or not actual_norm:
        return 0
    if guess_norm == actual_norm or contains_phrase(guess_norm, actual_norm):
        return 100
    return int(round(fuzz.ratio(guess_norm, actual_norm)))


def artist_score(guess_artist: str, actual_artist: str) -> int:
    guess_norm = normalize_for_match(guess_artist)
    actual_norm = normalize_for_match(actual_artist)
    if not guess_norm or not actual_norm:
        return 0
    return int(round(fuzz.token_set_ratio(guess_norm, actual_norm)))


def check_guess(guess: Optional[str], title: str, artist: str, threshold: int = 90) -> GuessCheck:
    if not guess or not guess.strip():
        return GuessCheck(False, title, artist, 0, None)

    guess_title, guess_artist = split_suggestion(guess)
    t_score = title_score(guess_title, title)
    a_score: Optional[int] = None
    if t_score < threshold and guess_artist is not None:
        # A title that itself contains " - " only counts as an exact match.
        whole_norm = normalize_for_match(guess) or normalize_simple(guess)
        title_norm = normalize_for_match(title) or normalize_simple(title)
        if whole_norm and whole_norm == title_norm:
            return GuessCheck(True, title, artist, 100, None)

    correct = t_score >= threshold
    if correct and guess_artist is not None:
        a_score = artist_score(guess_artist, artist)
        correct = a_score >= threshold

    return GuessCheck(correct, title, artist, t_score, a_score)


__all__ = [
    "GuessCheck",
    "check_guess",
    "normalize_for_match",
    "normalize_nfc",
    "normalize_simple",
    "same_artist",
    "split_suggestion",
]
