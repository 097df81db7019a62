import pytest

from conftest import make_track
from game import INTERVALS, MAX_GUESSES, GameSession, GameStateError, Phase, SessionNotFound, SessionStore, StageStatus


@pytest.fixture
def session():
    return GameSession(id="abc")


@pytest.fixture
def song():
    return make_track("Blinding Lights", "The Weeknd")


def test_intervals_grow_and_match_guess_count():
    assert INTERVALS == (0.1, 1, 2, 4, 8, 15)
    assert MAX_GUESSES == 6
    assert list(INTERVALS) == sorted(INTERVALS)


def test_start_round_hides_the_answer(session, song):
    session.start_round(song)
    snap = session.snapshot()

    assert snap["phase"] == "playing"
    assert snap["stage"] == 0
    assert snap["interval"] == 0.1
    assert snap["song"] == {"previewUrl": song.preview_url}
    assert snap["result"] is None
    assert snap["canPlayLonger"] is True


def test_snippet_and_replay_cycle(session, song):
    session.start_round(song)
    session.snippet_finished()
    assert session.phase is Phase.GUESSING

    session.replay()
    assert session.phase is Phase.PLAYING
    assert session.stage == 0


def test_wrong_guess_moves_to_the_next_stage(session, song):
    session.start_round(song)
    session.snippet_finished()

    result = session.submit_guess("Save Your Tears")

    assert not result.correct
    assert session.phase is Phase.PLAYING
    assert session.stage == 1
    assert session.interval == 1
    assert session.guesses[0] == "Save Your Tears"
    assert session.statuses[0] is StageStatus.INCORRECT


def test_correct_guess_reveals_and_scores(session, song):
    session.start_round(song)
    session.submit_guess("blinding lights")

    snap = session.snapshot()
    assert snap["phase"] == "revealed"
    assert snap["statuses"][0] == "correct"
    assert snap["song"]["title"] == "Blinding Lights"
    assert snap["result"] == {"correct": True, "actualTitle": "Blinding Lights", "actualArtist": "The Weeknd"}

    session.next_song()
    assert session.score == 1
    assert session.round == 2
    assert session.phase is Phase.IDLE
    assert session.song is None
    assert session.guesses == [""] * MAX_GUESSES


def test_running_out_of_stages_reveals_without_points(session, song):
    session.start_round(song)
    for attempt in range(MAX_GUESSES):
        session.submit_guess(f"wrong {attempt}")

    assert session.phase is Phase.REVEALED
    assert session.stage == MAX_GUESSES - 1
    assert all(status is StageStatus.INCORRECT for status in session.statuses)
    assert session.snapshot()["result"]["correct"] is False

    session.next_song()
    assert session.score == 0
    assert session.round == 2


def test_play_longer_skips_a_stage(session, song):
    session.start_round(song)
    session.play_longer()

    assert session.stage == 1
    assert session.statuses[0] is StageStatus.SKIPPED
    assert session.guesses[0] == ""
    assert session.phase is Phase.PLAYING


def test_play_longer_stops_at_the_last_stage(session, song):
    session.start_round(song)
    for _ in range(MAX_GUESSES - 1):
        session.play_longer()

    assert session.snapshot()["canPlayLonger"] is False
    with pytest.raises(GameStateError):
        session.play_longer()


def test_song_can_be_swapped_before_any_guess(session, song):
    session.start_round(song)
    replacement = make_track("Starboy", "The Weeknd")

    session.start_round(replacement)

    assert session.song == replacement
    assert session.stage == 0


def test_song_cannot_be_swapped_after_a_guess(session, song):
    session.start_round(song)
    session.submit_guess("nope")

    with pytest.raises(GameStateError):
        session.start_round(make_track("Starboy", "The Weeknd"))


@pytest.mark.parametrize("action", ["snippet_finished", "replay", "play_longer", "next_song"])
def test_actions_are_rejected_while_idle(session, action):
    with pytest.raises(GameStateError, match="idle"):
        getattr(session, action)()


def test_guess_rejected_while_idle(session):
    with pytest.raises(GameStateError):
        session.submit_guess("anything")


def test_cannot_start_a_round_while_revealed(session, song):
    session.start_round(song)
    session.submit_guess("Blinding Lights")

    with pytest.raises(GameStateError):
        session.start_round(song)


def test_store_creates_and_expires_sessions(clock):
    store = SessionStore(ttl=60, clock=clock)
    first = store.create()
    second = store.create()

    assert first.id != second.id
    assert store.get(first.id) is first
    assert len(store) == 2

    clock.advance(30)
    store.get(first.id)
    clock.advance(30)

    assert store.get(first.id) is first
    with pytest.raises(SessionNotFound):
        store.get(second.id)


def test_store_rejects_unknown_ids():
    with pytest.raises(SessionNotFound):
        SessionStore().get("missing")
