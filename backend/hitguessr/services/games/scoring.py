import math
from typing import Iterable, List, Optional, Tuple

from .types import Guess, Identity, ScoreBreakdown, Standing, Track

EXACT_MATCH_POINTS = 100
PARTIAL_MATCH_POINTS = 50
YEAR_POINTS = {0: 100, 1: 50, 2: 25}
SPEED_BONUS_MAX = 50


def _normalize(value: Optional[str]) -> str:
    return (value or '').strip().lower()


def score_text(guess: Optional[str], truth: str) -> int:
    """100 for an exact match, 50 when one string contains the other, else 0.

    Case and surrounding whitespace are ignored; a blank guess scores 0.
    """
    guessed = _normalize(guess)
    correct = _normalize(truth)
    if not guessed or not correct:
        return 0
    if guessed == correct:
        return EXACT_MATCH_POINTS
    if guessed in correct or correct in guessed:
        return PARTIAL_MATCH_POINTS
    return 0


def score_year(guess: Optional[int], truth: int) -> int:
    if guess is None:
        return 0
    return YEAR_POINTS.get(abs(int(guess) - int(truth)), 0)


def speed_bonus(elapsed: Optional[float], round_duration: float) -> int:
    """Linear bonus from 50 at the start of the round down to 0 at the deadline."""
    if elapsed is None or round_duration <= 0:
        return 0
    if elapsed < 0 or elapsed > round_duration:
        return 0
    return max(0, math.floor(SPEED_BONUS_MAX * (1 - elapsed / round_duration)))


def score_answer(guess: Guess, truth: Track, round_duration: float) -> ScoreBreakdown:
    return ScoreBreakdown(
        artist_score=score_text(guess.artist, truth.artist),
        track_score=score_text(guess.track, truth.title),
        year_score=score_year(guess.year, truth.year),
        speed_bonus=speed_bonus(guess.elapsed, round_duration),
    )


def rank_totals(totals: Iterable[Tuple[Identity, int]]) -> List[Standing]:
    """Rank participants by descending total, keeping input order for ties."""
    ordered = sorted(totals, key=lambda item: -item[1])
    return [
        Standing(user=user, total_score=total, position=index + 1)
        for index, (user, total) in enumerate(ordered)
    ]
