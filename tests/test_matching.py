import pytest

from matching import check_guess, normalize_for_match, same_artist, split_suggestion


def test_normalize_for_match_strips_noise():
    assert normalize_for_match("Beyoncé & Jay-Z (Live) [2003]") == "beyonce and jayz"
    assert normalize_for_match("Sicko Mode (feat. Drake)") == "sicko mode"
    assert normalize_for_match("Mr. Brightside - Remastered 2011") == "mr brightside"
    assert normalize_for_match("") == ""
    assert normalize_for_match(None) == ""


def test_same_artist_is_case_and_space_insensitive():
    assert same_artist("  The   Weeknd ", "the weeknd")
    assert not same_artist("The Weeknd", "Weeknd")
    assert not same_artist(None, "Drake")


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Hello - Adele", ("Hello", "Adele")),
        ("Hello", ("Hello", None)),
        ("Song 2 - Live - Blur", ("Song 2 - Live", "Blur")),
    ],
)
def test_split_suggestion(raw, expected):
    assert split_suggestion(raw) == expected


def test_exact_guess_is_case_insensitive():
    result = check_guess("blinding LIGHTS", "Blinding Lights", "The Weeknd")

    assert result.correct
    assert result.to_record() == {
        "correct": True,
        "actualTitle": "Blinding Lights",
        "actualArtist": "The Weeknd",
    }


def test_small_typo_is_accepted():
    assert check_guess("Blinding Light", "Blinding Lights", "The Weeknd").correct


def test_different_title_is_rejected():
    result = check_guess("Halo", "Hello", "Adele")

    assert not result.correct
    assert result.title_score < 90


def test_guess_containing_the_title_counts():
    assert check_guess("i think it's blinding lights", "Blinding Lights", "The Weeknd").correct


def test_empty_guess_is_never_correct():
    assert not check_guess("", "Hello", "Adele").correct
    assert not check_guess("   ", "Hello", "Adele").correct
    assert not check_guess(None, "Hello", "Adele").correct


def test_suggestion_with_matching_artist():
    result = check_guess("Hello - Adele", "Hello", "Adele")

    assert result.correct
    assert result.artist_score == 100


def test_suggestion_with_wrong_artist_is_rejected():
    assert not check_guess("Hello - Lionel Richie", "Hello", "Adele").correct


def test_featured_credit_is_ignored():
    assert check_guess("Sicko Mode - Travis Scott", "SICKO MODE (feat. Drake)", "Travis Scott").correct


def test_title_containing_separator():
    assert check_guess("Song 2 - Part 2", "Song 2 - Part 2", "Blur").correct


def test_suggestion_whose_artist_contains_the_title_is_rejected():
    result = check_guess("Stronger - Kanye West", "Kanye", "The Chainsmokers")

    assert not result.correct


def test_year_only_title():
    assert check_guess("1989", "1989", "Taylor Swift").correct
