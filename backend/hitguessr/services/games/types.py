from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional


class GameMode(str, enum.Enum):
    SOLO = 'SOLO'
    MULTIPLAYER = 'MULTIPLAYER'


class GameStatus(str, enum.Enum):
    WAITING = 'WAITING'
    IN_PROGRESS = 'IN_PROGRESS'
    FINISHED = 'FINISHED'
    CANCELLED = 'CANCELLED'

    @property
    def is_terminal(self) -> bool:
        return self in (GameStatus.FINISHED, GameStatus.CANCELLED)


@dataclass(frozen=True)
class Identity:
    user_id: int
    display_name: str

    def to_dict(self) -> dict:
        return {'id': self.user_id, 'username': self.display_name}


@dataclass(frozen=True)
class Track:
    """Ground truth for one round, as returned by a track provider."""
    track_id: str
    title: str
    artist: str
    year: int
    preview_url: Optional[str] = None
    cover_url: Optional[str] = None


@dataclass(frozen=True)
class Guess:
    artist: Optional[str] = None
    track: Optional[str] = None
    year: Optional[int] = None
    elapsed: Optional[float] = None


@dataclass(frozen=True)
class ScoreBreakdown:
    artist_score: int = 0
    track_score: int = 0
    year_score: int = 0
    speed_bonus: int = 0

    @property
    def total_score(self) -> int:
        return self.artist_score + self.track_score + self.year_score + self.speed_bonus

    def to_dict(self) -> dict:
        return {
            'artistScore': self.artist_score,
            'trackScore': self.track_score,
            'yearScore': self.year_score,
            'speedBonus': self.speed_bonus,
            'totalScore': self.total_score,
        }


@dataclass
class Participant:
    identity: Identity
    departed: bool = False

    @property
    def user_id(self) -> int:
        return self.identity.user_id


@dataclass(frozen=True)
class AnswerRecord:
    user: Identity
    round_number: int
    guess: Guess
    score: ScoreBreakdown
    answered: bool = True

    @classmethod
    def missing(cls, user: Identity, round_number: int) -> 'AnswerRecord':
        """Stand-in for a participant who never submitted."""
        return cls(user=user, round_number=round_number, guess=Guess(), score=ScoreBreakdown(), answered=False)

    def to_dict(self) -> dict:
        payload = {
            'userId': self.user.user_id,
            'user': self.user.to_dict(),
            'roundNumber': self.round_number,
            'guessedArtist': self.guess.artist,
            'guessedTrack': self.guess.track,
            'guessedYear': self.guess.year,
            'timeToAnswer': self.guess.elapsed,
            'answered': self.answered,
        }
        payload.update(self.score.to_dict())
        return payload


@dataclass(frozen=True)
class Standing:
    user: Identity
    total_score: int
    position: int

    def to_dict(self) -> dict:
        return {
            'userId': self.user.user_id,
            'user': self.user.to_dict(),
            'totalScore': self.total_score,
            'position': self.position,
        }


@dataclass
class SessionSettings:
    round_duration: int = 30
    settle_delay: int = 5
    countdown_interval: int = 1
    max_players: int = 2
    auto_start_when_full: bool = False
    lobby_timeout: int = 600

    @classmethod
    def from_config(cls, config) -> 'SessionSettings':
        return cls(
            round_duration=int(config.get('ROUND_DURATION_SEC', 30)),
            settle_delay=int(config.get('SETTLE_DELAY_SEC', 5)),
            countdown_interval=int(config.get('COUNTDOWN_INTERVAL_SEC', 1)),
            max_players=int(config.get('MAX_PLAYERS', 2)),
            auto_start_when_full=bool(config.get('AUTO_START_WHEN_FULL', False)),
            lobby_timeout=int(config.get('LOBBY_TIMEOUT_SEC', 600)),
        )
