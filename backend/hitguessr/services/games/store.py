from contextlib import contextmanager
from typing import Iterable, List

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from hitguessr import db
from hitguessr.models import Game, GameResult, Round, RoundAnswer

from .errors import DuplicateSubmissionError, NotFoundError, PersistenceError
from .types import AnswerRecord, GameMode, GameStatus, Standing, Track


class GameStore:
    """Durable storage for games, rounds, answers and results.

    Every call runs in its own application context and commits before it
    returns, so it is usable from background timer tasks as well as from
    request handlers.
    """

    def __init__(self, app):
        self._app = app

    @contextmanager
    def _transaction(self, action: str):
        with self._app.app_context():
            try:
                yield db.session
                db.session.commit()
            except (NotFoundError, DuplicateSubmissionError):
                db.session.rollback()
                raise
            except IntegrityError as exc:
                db.session.rollback()
                if action == 'save_answer':
                    raise DuplicateSubmissionError('Answer already submitted') from exc
                self._app.logger.exception(f"[store] {action} failed")
                raise PersistenceError(f'Failed to {action.replace("_", " ")}') from exc
            except SQLAlchemyError as exc:
                db.session.rollback()
                self._app.logger.exception(f"[store] {action} failed")
                raise PersistenceError(f'Failed to {action.replace("_", " ")}') from exc

    @staticmethod
    def _game(session, game_id: str) -> Game:
        game = session.get(Game, game_id)
        if game is None:
            raise NotFoundError('Game not found', code='room_not_found')
        return game

    def create_game(self, mode: GameMode, max_rounds: int, creator_id: int, tracks: List[Track],
                    started_at=None) -> str:
        """Insert the game row and all of its rounds in one transaction."""
        with self._transaction('create_game') as session:
            solo = GameMode(mode) is GameMode.SOLO
            game = Game(
                mode=GameMode(mode).value,
                status=(GameStatus.IN_PROGRESS if solo else GameStatus.WAITING).value,
                player1_id=creator_id,
                max_rounds=max_rounds,
                current_round=1 if solo else 0,
                started_at=started_at if solo else None,
            )
            session.add(game)
            session.flush()
            for index, track in enumerate(tracks[:max_rounds]):
                session.add(Round(
                    game_id=game.id,
                    round_number=index + 1,
                    track_id=track.track_id,
                    track_name=track.title,
                    artist_name=track.artist,
                    release_year=track.year,
                    preview_url=track.preview_url,
                    cover_url=track.cover_url,
                ))
            return game.id

    def add_participant(self, game_id: str, user_id: int) -> None:
        with self._transaction('add_participant') as session:
            game = self._game(session, game_id)
            game.player2_id = user_id

    def remove_participant(self, game_id: str, user_id: int) -> None:
        with self._transaction('remove_participant') as session:
            game = self._game(session, game_id)
            if game.player2_id == user_id:
                game.player2_id = None

    def save_answer(self, game_id: str, record: AnswerRecord) -> None:
        with self._transaction('save_answer') as session:
            round_row = Round.query.filter_by(game_id=game_id, round_number=record.round_number).first()
            if round_row is None:
                raise NotFoundError('Round not found')
            session.add(RoundAnswer(
                round_id=round_row.id,
                user_id=record.user.user_id,
                guessed_artist=record.guess.artist,
                guessed_track=record.guess.track,
                guessed_year=record.guess.year,
                time_to_answer=record.guess.elapsed,
                artist_score=record.score.artist_score,
                track_score=record.score.track_score,
                year_score=record.score.year_score,
                speed_bonus=record.score.speed_bonus,
                total_score=record.score.total_score,
            ))

    def save_game_results(self, game_id: str, standings: Iterable[Standing]) -> None:
        """Write final standings once; a repeated call for the same game is a no-op."""
        with self._transaction('save_game_results') as session:
            if GameResult.query.filter_by(game_id=game_id).first() is not None:
                return
            for standing in standings:
                session.add(GameResult(
                    game_id=game_id,
                    user_id=standing.user.user_id,
                    total_score=standing.total_score,
                    position=standing.position,
                ))

    def update_game_status(self, game_id: str, status: GameStatus, current_round=None,
                           started_at=None, finished_at=None) -> None:
        with self._transaction('update_game_status') as session:
            game = self._game(session, game_id)
            game.status = GameStatus(status).value
            if current_round is not None:
                game.current_round = current_round
            if started_at is not None:
                game.started_at = started_at
            if finished_at is not None:
                game.finished_at = finished_at
