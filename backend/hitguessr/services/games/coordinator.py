from datetime import datetime, timezone
from typing import Optional

from flask import current_app, request

from .errors import InvalidRequestError, UpstreamProviderError
from .registry import RoomRegistry
from .session import RoomSession
from .types import GameMode, Guess, Identity, SessionSettings

YEAR_RANGE = (1900, 2100)


class GameCoordinator:
    """Creates room sessions and hands them out to the transport layers."""

    def __init__(self, *, registry: RoomRegistry, store, tracks, broker, scheduler, identity,
                 settings: SessionSettings, logger, default_max_rounds: int = 5, max_rounds_limit: int = 10):
        self.registry = registry
        self.store = store
        self.tracks = tracks
        self.broker = broker
        self.scheduler = scheduler
        self.identity = identity
        self.settings = settings
        self.logger = logger
        self.default_max_rounds = default_max_rounds
        self.max_rounds_limit = max_rounds_limit

    def create_game(self, creator: Identity, mode, max_rounds=None,
                    invited_user_id: Optional[int] = None) -> RoomSession:
        """Fetch tracks, persist the game with all its rounds, then open the room.

        Nothing is stored when the track provider fails or comes up short.
        """
        try:
            mode = mode if isinstance(mode, GameMode) else GameMode(str(mode).upper())
        except ValueError:
            raise InvalidRequestError('type must be SOLO or MULTIPLAYER')
        max_rounds = self.default_max_rounds if max_rounds is None else max_rounds
        if isinstance(max_rounds, bool) or not isinstance(max_rounds, int) \
                or not 1 <= max_rounds <= self.max_rounds_limit:
            raise InvalidRequestError(f'maxRounds must be an integer between 1 and {self.max_rounds_limit}')

        try:
            tracks = list(self.tracks.fetch_rounds(max_rounds))
        except UpstreamProviderError:
            self.logger.exception(f"[create] track provider failed user={creator.user_id}")
            raise
        if len(tracks) < max_rounds:
            self.logger.warning(f"[create] provider returned {len(tracks)} tracks, needed {max_rounds}")
            raise UpstreamProviderError('Not enough tracks available for this game', code='insufficient_tracks')

        started_at = datetime.now(timezone.utc)
        game_id = self.store.create_game(mode, max_rounds, creator.user_id, tracks, started_at=started_at)
        session = RoomSession(
            game_id, mode, max_rounds, creator, tracks,
            broker=self.broker,
            store=self.store,
            scheduler=self.scheduler,
            registry=self.registry,
            settings=self.settings,
            logger=self.logger,
            invited_user_id=invited_user_id,
        )
        self.registry.add(session)
        session.begin()
        self.logger.info(f"[create] game={game_id} mode={mode.value} rounds={max_rounds} user={creator.user_id}")
        return session

    def session(self, game_id: str) -> RoomSession:
        return self.registry.require(game_id)


def json_body() -> dict:
    """The request's JSON object, or an empty dict when there is no body."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidRequestError('Request body must be a JSON object')
    return data


def parse_text(data: dict, name: str) -> str:
    value = data.get(name)
    if not isinstance(value, str) or not value.strip():
        raise InvalidRequestError(f'{name} must be a non-empty string')
    return value.strip()


def parse_game_id(data) -> str:
    """Commands carry the game id either bare or as ``{"gameId": ...}``."""
    game_id = data.get('gameId') if isinstance(data, dict) else data
    if not isinstance(game_id, str) or not game_id.strip():
        raise InvalidRequestError('gameId is required')
    return game_id.strip()


def parse_round_number(data: dict) -> int:
    round_number = data.get('roundNumber')
    if isinstance(round_number, bool) or not isinstance(round_number, int) or round_number < 1:
        raise InvalidRequestError('roundNumber must be a positive integer')
    return round_number


def parse_guess(data: dict) -> Guess:
    artist = data.get('guessedArtist')
    track = data.get('guessedTrack')
    year = data.get('guessedYear')
    elapsed = data.get('timeToAnswer')
    for name, value in (('guessedArtist', artist), ('guessedTrack', track)):
        if value is not None and not isinstance(value, str):
            raise InvalidRequestError(f'{name} must be a string')
    if year is not None:
        if isinstance(year, bool) or not isinstance(year, int) or not YEAR_RANGE[0] <= year <= YEAR_RANGE[1]:
            raise InvalidRequestError(f'guessedYear must be a year between {YEAR_RANGE[0]} and {YEAR_RANGE[1]}')
    if elapsed is not None:
        if isinstance(elapsed, bool) or not isinstance(elapsed, (int, float)) or elapsed < 0:
            raise InvalidRequestError('timeToAnswer must be a non-negative number')
        elapsed = float(elapsed)
    return Guess(artist=artist, track=track, year=year, elapsed=elapsed)


def get_coordinator() -> GameCoordinator:
    return current_app.extensions['hitguessr']
