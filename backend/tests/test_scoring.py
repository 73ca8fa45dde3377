import pytest

from hitguessr.services.games.scoring import (
    rank_totals,
    score_answer,
    score_text,
    score_year,
    speed_bonus,
)
from hitguessr.services.games.types import Guess, Identity, Track

QUEEN = Track('t1', 'Bohemian Rhapsody', 'Queen', 1975)


def test_exact_match_ignores_case_and_surrounding_whitespace():
    assert score_text(' Queen ', 'queen') == 100
    assert score_text('QUEEN', 'Queen') == 100


def test_substring_match_scores_half():
    assert score_text('Bohemian', 'Bohemian Rhapsody') == 50
    assert score_text('Queen and friends', 'Queen') == 50


def test_mismatch_and_absent_guesses_score_zero():
    assert score_text('Abba', 'Queen') == 0
    assert score_text(None, 'Queen') == 0
    assert score_text('   ', 'Queen') == 0


@pytest.mark.parametrize('diff,points', [(0, 100), (1, 50), (2, 25), (3, 0), (40, 0)])
def test_year_points_by_distance(diff, points):
    assert score_year(1975 + diff, 1975) == points
    assert score_year(1975 - diff, 1975) == points


def test_absent_year_scores_zero():
    assert score_year(None, 1975) == 0


def test_speed_bonus_bounds_and_monotonic():
    previous = speed_bonus(0, 30)
    assert previous == 50
    for tenth in range(1, 301):
        current = speed_bonus(tenth / 10, 30)
        assert 0 <= current <= 50
        assert current <= previous
        previous = current
    assert speed_bonus(30, 30) == 0


def test_speed_bonus_out_of_range_is_zero():
    assert speed_bonus(None, 30) == 0
    assert speed_bonus(-1, 30) == 0
    assert speed_bonus(31, 30) == 0


def test_score_answer_reference_scenario():
    guess = Guess(artist='queen', track='Bohemian Rhapsody', year=1976, elapsed=10)
    result = score_answer(guess, QUEEN, 30)
    assert result.to_dict() == {
        'artistScore': 100,
        'trackScore': 100,
        'yearScore': 50,
        'speedBonus': 33,
        'totalScore': 283,
    }


def test_score_answer_is_deterministic():
    guess = Guess(artist='Queen', track='Bohemian', year=1977, elapsed=12.5)
    assert score_answer(guess, QUEEN, 30) == score_answer(guess, QUEEN, 30)


def test_empty_guess_scores_nothing():
    assert score_answer(Guess(), QUEEN, 30).total_score == 0


def test_rank_totals_is_stable_descending():
    a, b, c = Identity(1, 'a'), Identity(2, 'b'), Identity(3, 'c')
    standings = rank_totals([(a, 120), (b, 300), (c, 120)])
    assert [(s.user, s.position) for s in standings] == [(b, 1), (a, 2), (c, 3)]
    assert [s.total_score for s in standings] == [300, 120, 120]
