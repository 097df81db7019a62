"""Round state machine for a Hummify game session.

A round walks through six stages, each one playing a longer snippet of the
same preview. The player either names the song, asks to hear more, or runs
out of stages, after which the answer is revealed and the next round can
begin::

    idle --start_round--> playing --snippet_finished--> guessing
      ^                     ^  |                           |
      |                     |  +-- replay / play_longer ---+
      |                     +------- wrong guess ----------+
      +---- next_song ---- revealed <-- correct / out of stages
"""

from __future__ import annotations

import enum
import logging
import secrets
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from catalogs import Track
from matching import GuessCheck, check_guess

LOG = logging.getLogger("game")

INTERVALS: tuple[float, ...] = (0.1, 1, 2, 4, 8, 15)
MAX_GUESSES = len(INTERVALS)


class GameStateError(Exception):
    """Raised when an action is not allowed in the session's current phase."""


class SessionNotFound(KeyError):
    """Raised when a session id is unknown or has expired."""


class Phase(str, enum.Enum):
    IDLE = "idle"
    PLAYING = "playing"
    GUESSING = "guessing"
    REVEALED = "revealed"


class StageStatus(str, enum.Enum):
    PENDING = ""
    CORRECT = "correct"
    INCORRECT = "incorrect"
    SKIPPED = "skipped"


@dataclass
class GameSession:
    id: str
    round: int = 1
    score: int = 0
    phase: Phase = Phase.IDLE
    stage: int = 0
    song: Optional[Track] = None
    guesses: List[str] = field(default_factory=lambda: [""] * MAX_GUESSES)
    statuses: List[StageStatus] = field(default_factory=lambda: [StageStatus.PENDING] * MAX_GUESSES)
    last_result: Optional[GuessCheck] = None
    created_at: float = field(default_factory=time.monotonic)
    touched_at: float = field(default_factory=time.monotonic)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def interval(self) -> float:
        return INTERVALS[self.stage]

    @property
    def is_last_stage(self) -> bool:
        return self.stage >= MAX_GUESSES - 1

    @property
    def in_round(self) -> bool:
        return self.phase in (Phase.PLAYING, Phase.GUESSING)

    def _require(self, *phases: Phase, action: str) -> None:
        if self.phase not in phases:
            allowed = ", ".join(p.value for p in phases)
            raise GameStateError(f"Cannot {action} while {self.phase.value}; expected {allowed}")

    def _reset_board(self) -> None:
        self.stage = 0
        self.song = None
        self.guesses = [""] * MAX_GUESSES
        self.statuses = [StageStatus.PENDING] * MAX_GUESSES
        self.last_result = None

    def ensure_can_start(self) -> None:
        if self.in_round:
            if self.stage != 0 or any(s is not StageStatus.PENDING for s in self.statuses):
                raise GameStateError("Cannot replace the song after guesses were made")
        else:
            self._require(Phase.IDLE, action="start a round")

    def start_round(self, song: Track) -> None:
        """Load ``song`` and play the first stage.

        Inside a round with no guess recorded yet the song is swapped, which
        is how the page recovers from a preview that fails to load.
        """
        self.ensure_can_start()
        self._reset_board()
        self.song = song
        self.phase = Phase.PLAYING
        LOG.debug("Session %s round %d started with %s - %s", self.id, self.round, song.artist, song.title)

    def snippet_finished(self) -> None:
        self._require(Phase.PLAYING, action="finish a snippet")
        self.phase = Phase.GUESSING

    def replay(self) -> None:
        self._require(Phase.PLAYING, Phase.GUESSING, action="replay")
        self.phase = Phase.PLAYING

    def play_longer(self) -> None:
        self._require(Phase.PLAYING, Phase.GUESSING, action="play longer")
        if self.is_last_stage:
            raise GameStateError("Already playing the longest snippet")
        self.guesses[self.stage] = ""
        self.statuses[self.stage] = StageStatus.SKIPPED
        self.stage += 1
        self.phase = Phase.PLAYING

    def submit_guess(self, guess: str, threshold: int = 90) -> GuessCheck:
        self._require(Phase.PLAYING, Phase.GUESSING, action="guess")
        assert self.song is not None
        guess = (guess or "").strip()
        result = check_guess(guess, self.song.title, self.song.artist, threshold)
        self.guesses[self.stage] = guess
        self.statuses[self.stage] = StageStatus.CORRECT if result.correct else StageStatus.INCORRECT

        if result.correct or self.is_last_stage:
            self.last_result = result
            self.phase = Phase.REVEALED
            LOG.info(
                "Session %s round %d %s on stage %d: %s - %s",
                self.id,
                self.round,
                "won" if result.correct else "lost",
                self.stage + 1,
                self.song.artist,
                self.song.title,
            )
        else:
            self.stage += 1
            self.phase = Phase.PLAYING
        return result

    def next_song(self) -> None:
        self._require(Phase.REVEALED, action="move to the next song")
        if self.last_result is not None and self.last_result.correct:
            self.score += 1
        self.round += 1
        self._reset_board()
        self.phase = Phase.IDLE

    def snapshot(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "round": self.round,
            "score": self.score,
            "phase": self.phase.value,
            "stage": self.stage,
            "interval": self.interval,
            "intervals": list(INTERVALS),
            "maxGuesses": MAX_GUESSES,
            "guesses": list(self.guesses),
            "statuses": [status.value for status in self.statuses],
            "canPlayLonger": self.in_round and not self.is_last_stage,
            "song": None,
            "result": None,
        }
        if self.song is not None:
            song: Dict[str, Any] = {"previewUrl": self.song.preview_url}
            if self.phase is Phase.REVEALED:
                song.update(title=self.song.title, artist=self.song.artist, albumArt=self.song.album_art)
            data["song"] = song
        if self.phase is Phase.REVEALED and self.last_result is not None:
            data["result"] = self.last_result.to_record()
        return data


class SessionStore:
    """Thread-safe in-memory registry of game sessions with idle expiry."""

    def __init__(self, ttl: float = 6 * 60 * 60, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._sessions: Dict[str, GameSession] = {}
        self._lock = threading.Lock()

    def _sweep(self) -> None:
        now = self._clock()
        expired = [sid for sid, s in self._sessions.items() if now - s.touched_at >= self.ttl]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            LOG.debug("Expired %d idle session(s)", len(expired))

    def create(self) -> GameSession:
        with self._lock:
            self._sweep()
            session_id = secrets.token_urlsafe(12)
            while session_id in self._sessions:
                session_id = secrets.token_urlsafe(12)
            now = self._clock()
            session = GameSession(id=session_id, created_at=now, touched_at=now)
            self._sessions[session_id] = session
            return session

    def get(self, session_id: str) -> GameSession:
        with self._lock:
            self._sweep()
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotFound(session_id)
            session.touched_at = self._clock()
            return session

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


__all__ = [
    "GameSession",
    "GameStateError",
    "INTERVALS",
    "MAX_GUESSES",
    "Phase",
    "SessionNotFound",
    "SessionStore",
    "StageStatus",
]
