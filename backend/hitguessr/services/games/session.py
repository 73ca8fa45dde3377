"""Authoritative in-memory state machine for one game.

A session owns membership, the round pointer, collected answers and the
round clock. Every public operation and every timer callback runs under the
session's lock, and every outbound room event is published while that lock is
held, so clients observe events in the order the session produced them.
"""

from __future__ import annotations

import threading
import time
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set

from .errors import (
    AuthorizationError,
    DuplicateSubmissionError,
    InvalidStateError,
    PersistenceError,
)
from .scheduler import RoundClock
from .scoring import rank_totals, score_answer
from .types import (
    AnswerRecord,
    GameMode,
    GameStatus,
    Guess,
    Identity,
    Participant,
    SessionSettings,
    Standing,
    Track,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RoomSession:
    def __init__(self, game_id: str, mode: GameMode, max_rounds: int, creator: Identity, tracks: List[Track], *,
                 broker, store, scheduler, registry, settings: SessionSettings, logger,
                 invited_user_id: Optional[int] = None, timer: Callable[[], float] = time.monotonic):
        if len(tracks) < max_rounds:
            raise ValueError('a session needs one track per round')
        self.game_id = game_id
        self.mode = GameMode(mode)
        self.max_rounds = max_rounds
        self.creator_id = creator.user_id
        self.invited_user_id = invited_user_id
        self.settings = settings
        self.status = GameStatus.IN_PROGRESS if self.mode is GameMode.SOLO else GameStatus.WAITING
        self.participants: List[Participant] = [Participant(creator)]
        self.current_round = 0
        self._tracks: Dict[int, Track] = {i + 1: t for i, t in enumerate(tracks[:max_rounds])}
        self._answers: Dict[int, Dict[int, AnswerRecord]] = {}
        self._settled: Set[int] = set()
        self._clock: Optional[RoundClock] = None
        self._round_started_at: Optional[float] = None
        self._lock = threading.RLock()
        self._broker = broker
        self._store = store
        self._scheduler = scheduler
        self._registry = registry
        self._logger = logger
        self._timer = timer

    # ------------------------------------------------------------------ lifecycle
    def begin(self) -> None:
        """Kick off a freshly created room.

        Solo games are already IN_PROGRESS in storage and arm round 1 at once;
        multiplayer rooms wait for a second player, bounded by the lobby timeout.
        """
        with self._lock:
            if self.mode is GameMode.SOLO:
                self.current_round = 1
                self._arm_round(1, persist=False)
            elif self.settings.lobby_timeout > 0 and self.invited_user_id is None:
                # Reserved rooms are bounded by their challenge's expiry instead
                self._scheduler.call_later(self.settings.lobby_timeout, self._expire_lobby)

    def join(self, identity: Identity, start_when_full: Optional[bool] = None) -> dict:
        """Take the free seat of a waiting multiplayer room."""
        with self._lock:
            self._seat(identity)
            self._publish('player-joined', {'user': identity.to_dict(), 'game': self._snapshot()})
            self._maybe_autostart(start_when_full)
            return self._snapshot()

    def attach(self, identity: Identity, sid: str) -> dict:
        """Subscribe a connection to this room, seating the user first if needed."""
        with self._lock:
            participant = self._participant(identity.user_id)
            seated = returned = False
            if participant is None:
                if self.status is not GameStatus.WAITING:
                    raise AuthorizationError('Access denied')
                self._seat(identity)
                seated = True
            elif participant.departed and self.status is GameStatus.IN_PROGRESS:
                participant.departed = False
                returned = True
            self._broker.subscribe(sid, self.game_id)
            self._broker.send(sid, 'game-joined', {'game': self._snapshot()})
            if seated or returned:
                self._publish('player-joined', {'user': identity.to_dict(), 'game': self._snapshot()}, skip_sid=sid)
            if seated:
                self._maybe_autostart(None)
            return self._snapshot()

    def detach(self, identity: Identity, sid: str) -> None:
        with self._lock:
            self._broker.unsubscribe(sid, self.game_id)
            if self._participant(identity.user_id) is not None:
                self._leave(identity.user_id)

    def leave(self, user_id: int) -> dict:
        with self._lock:
            self._leave(user_id)
            return self._snapshot()

    def start(self, user_id: int) -> dict:
        with self._lock:
            if self.status is not GameStatus.WAITING:
                raise InvalidStateError('Game cannot be started')
            if user_id != self.creator_id:
                raise AuthorizationError('Only the game creator can start the game', code='not_creator')
            if len(self.participants) < self.settings.max_players:
                raise InvalidStateError('Waiting for second player', code='not_enough_players')
            self._launch()
            return self._snapshot()

    def cancel(self, reason: str) -> dict:
        """Cancel a room that has not started yet (declined challenge, abandonment)."""
        with self._lock:
            if self.status is GameStatus.IN_PROGRESS:
                raise InvalidStateError('Game already started')
            if self.status is GameStatus.WAITING:
                self._store.update_game_status(self.game_id, GameStatus.CANCELLED, finished_at=_utcnow())
                self._close_cancelled(reason)
            return self._snapshot()

    # ------------------------------------------------------------------ answers
    def submit_answer(self, user_id: int, round_number: int, guess: Guess, reply_to: Optional[str] = None) -> AnswerRecord:
        with self._lock:
            participant = self._participant(user_id)
            if participant is None:
                raise AuthorizationError('Access denied')
            if self.status is not GameStatus.IN_PROGRESS:
                raise InvalidStateError('Game is not in progress')
            if participant.departed:
                raise InvalidStateError('You left this game')
            if round_number != self.current_round:
                raise InvalidStateError(f'Round {round_number} is not the current round', code='round_mismatch')
            if round_number in self._settled:
                raise InvalidStateError('Round is already closed', code='round_closed')
            if user_id in self._answers[round_number]:
                raise DuplicateSubmissionError('Answer already submitted')

            duration = self.settings.round_duration
            elapsed = guess.elapsed
            if elapsed is None:
                elapsed = max(0.0, self._timer() - self._round_started_at)
            score = score_answer(replace(guess, elapsed=elapsed), self._tracks[round_number], duration)
            record = AnswerRecord(
                user=participant.identity,
                round_number=round_number,
                guess=replace(guess, elapsed=min(elapsed, duration)),
                score=score,
            )
            self._store.save_answer(self.game_id, record)
            self._answers[round_number][user_id] = record
            self._logger.info(
                f"[answer] game={self.game_id} round={round_number} user={user_id} total={score.total_score}"
            )
            if reply_to:
                self._broker.send(reply_to, 'answer-submitted', {'answer': record.to_dict()})
            self._complete_if_all_answered()
            return record

    # ------------------------------------------------------------------ views
    def is_participant(self, user_id: int) -> bool:
        with self._lock:
            return self._participant(user_id) is not None

    def snapshot(self) -> dict:
        with self._lock:
            return self._snapshot()

    def standings(self) -> List[Standing]:
        with self._lock:
            return self._standings()

    def answers_for(self, round_number: int) -> Dict[int, AnswerRecord]:
        with self._lock:
            return dict(self._answers.get(round_number, {}))

    @property
    def clock(self) -> Optional[RoundClock]:
        return self._clock

    # ------------------------------------------------------------------ timer callbacks
    def _on_tick(self, round_number: int, remaining: int) -> None:
        with self._lock:
            if not self._round_open(round_number) or not (self._clock and self._clock.armed):
                return
            self._publish('countdown', {'roundNumber': round_number, 'secondsRemaining': remaining})

    def _on_deadline(self, round_number: int) -> None:
        with self._lock:
            if not self._round_open(round_number):
                self._logger.info(
                    f"[timer-abort] game={self.game_id} round={round_number} status={self.status.value} current={self.current_round}"
                )
                return
            self._publish('round-timeout', {'roundNumber': round_number})
            self._complete_round(round_number, reason='deadline')

    def _advance(self, completed_round: int) -> None:
        with self._lock:
            if self.status is not GameStatus.IN_PROGRESS or self.current_round != completed_round:
                self._logger.info(f"[advance-abort] game={self.game_id} expected_round={completed_round}")
                return
            next_round = completed_round + 1
            try:
                self._arm_round(next_round, persist=True)
            except PersistenceError as exc:
                self._logger.exception(f"[advance-failed] game={self.game_id} round={next_round}")
                self._abort('settlement_failed', exc)

    def _expire_lobby(self) -> None:
        with self._lock:
            if self.status is not GameStatus.WAITING:
                return
            self._logger.info(f"[lobby-timeout] game={self.game_id}")
            try:
                self._store.update_game_status(self.game_id, GameStatus.CANCELLED, finished_at=_utcnow())
            except PersistenceError:
                self._logger.exception(f"[lobby-timeout] game={self.game_id} status not persisted")
            self._close_cancelled('lobby_timeout')

    # ------------------------------------------------------------------ internals
    def _participant(self, user_id: int) -> Optional[Participant]:
        for participant in self.participants:
            if participant.user_id == user_id:
                return participant
        return None

    def _seat(self, identity: Identity) -> None:
        if self.mode is not GameMode.MULTIPLAYER:
            raise InvalidStateError('Can only join multiplayer games')
        if self.status is not GameStatus.WAITING:
            raise InvalidStateError('Game is not accepting players')
        if self._participant(identity.user_id) is not None:
            raise InvalidStateError('You are already in this game', code='already_joined')
        if len(self.participants) >= self.settings.max_players:
            raise InvalidStateError('Game is full', code='room_full')
        if self.invited_user_id is not None and identity.user_id != self.invited_user_id:
            raise AuthorizationError('This game is reserved for another player')
        self._store.add_participant(self.game_id, identity.user_id)
        self.participants.append(Participant(identity))
        self._logger.info(f"[join] game={self.game_id} user={identity.user_id}")

    def _maybe_autostart(self, start_when_full: Optional[bool]) -> None:
        if start_when_full is None:
            start_when_full = self.settings.auto_start_when_full
        if start_when_full and len(self.participants) >= self.settings.max_players:
            self._launch()

    def _launch(self) -> None:
        self._store.update_game_status(self.game_id, GameStatus.IN_PROGRESS, current_round=1, started_at=_utcnow())
        self.status = GameStatus.IN_PROGRESS
        self.current_round = 1
        self._logger.info(f"[start] game={self.game_id} players={[p.user_id for p in self.participants]}")
        self._publish('game-started', {'game': self._snapshot(), 'currentRound': self._round_info(1)})
        self._arm_round(1, persist=False)

    def _arm_round(self, round_number: int, persist: bool) -> None:
        if persist:
            self._store.update_game_status(self.game_id, GameStatus.IN_PROGRESS, current_round=round_number)
        self.current_round = round_number
        self._answers[round_number] = {}
        self._round_started_at = self._timer()
        self._clock = RoundClock(
            self._scheduler, round_number, self.settings.round_duration,
            self._on_tick, self._on_deadline, interval=self.settings.countdown_interval,
        )
        self._logger.info(
            f"[round-start] game={self.game_id} round={round_number} duration={self.settings.round_duration}s"
        )
        self._publish('round-started', {'roundNumber': round_number, 'round': self._round_info(round_number)})
        self._clock.start()

    def _round_open(self, round_number: int) -> bool:
        return (
            self.status is GameStatus.IN_PROGRESS
            and round_number == self.current_round
            and round_number not in self._settled
        )

    def _complete_if_all_answered(self) -> None:
        round_number = self.current_round
        if not self._round_open(round_number):
            return
        expected = {p.user_id for p in self.participants if not p.departed}
        if expected and expected.issubset(self._answers[round_number]):
            if self._clock is not None:
                self._clock.cancel()
            self._complete_round(round_number, reason='all_answered')

    def _complete_round(self, round_number: int, reason: str) -> None:
        self._settled.add(round_number)
        truth = self._tracks[round_number]
        answers = [
            self._answers[round_number].get(p.user_id) or AnswerRecord.missing(p.identity, round_number)
            for p in self.participants
        ]
        self._logger.info(f"[round-complete] game={self.game_id} round={round_number} reason={reason}")
        self._publish('round-completed', {
            'roundNumber': round_number,
            'correctAnswer': {
                'trackId': truth.track_id,
                'artist': truth.artist,
                'track': truth.title,
                'year': truth.year,
                'previewUrl': truth.preview_url,
                'coverUrl': truth.cover_url,
            },
            'allAnswers': [a.to_dict() for a in answers],
            'reason': reason,
        })
        if round_number >= self.max_rounds:
            self._finish()
        else:
            self._scheduler.call_later(self.settings.settle_delay, self._advance, round_number)

    def _finish(self) -> None:
        standings = self._standings()
        try:
            self._store.save_game_results(self.game_id, standings)
            self._store.update_game_status(self.game_id, GameStatus.FINISHED, finished_at=_utcnow())
        except PersistenceError as exc:
            self._logger.exception(f"[finish-failed] game={self.game_id}")
            self._abort('settlement_failed', exc)
            return
        self.status = GameStatus.FINISHED
        self._logger.info(f"[finish] game={self.game_id} finished at round={self.current_round}")
        self._publish('game-finished', {
            'results': [s.to_dict() for s in standings],
            'game': self._snapshot(),
        })
        self._evict()

    def _leave(self, user_id: int) -> None:
        participant = self._participant(user_id)
        if participant is None:
            raise AuthorizationError('Access denied')
        if self.status is GameStatus.WAITING:
            if user_id == self.creator_id:
                self._store.update_game_status(self.game_id, GameStatus.CANCELLED, finished_at=_utcnow())
                self._publish('player-left', {'user': participant.identity.to_dict()})
                self._close_cancelled('creator_left')
                return
            self._store.remove_participant(self.game_id, user_id)
            self.participants.remove(participant)
            self._publish('player-left', {'user': participant.identity.to_dict()})
            return
        if self.status is not GameStatus.IN_PROGRESS or participant.departed:
            return
        participant.departed = True
        self._logger.info(f"[leave] game={self.game_id} user={user_id} round={self.current_round}")
        self._publish('player-left', {'user': participant.identity.to_dict()})
        if all(p.departed for p in self.participants):
            if self._clock is not None:
                self._clock.cancel()
            self._store.update_game_status(self.game_id, GameStatus.CANCELLED, finished_at=_utcnow())
            self._close_cancelled('abandoned')
            return
        self._complete_if_all_answered()

    def _close_cancelled(self, reason: str) -> None:
        if self._clock is not None:
            self._clock.cancel()
        self.status = GameStatus.CANCELLED
        self._logger.info(f"[cancel] game={self.game_id} reason={reason}")
        self._publish('game-cancelled', {'gameId': self.game_id, 'reason': reason})
        self._evict()

    def _abort(self, reason: str, error: PersistenceError) -> None:
        """Give up on a game whose settlement could not be persisted."""
        try:
            self._store.update_game_status(self.game_id, GameStatus.CANCELLED, finished_at=_utcnow())
        except PersistenceError:
            self._logger.exception(f"[abort] game={self.game_id} status not persisted")
        self._publish('error', {'message': error.message, 'kind': error.kind, 'code': reason})
        self._close_cancelled(reason)

    def _evict(self) -> None:
        if self._registry is not None and self._registry.get(self.game_id) is self:
            self._registry.remove(self.game_id)

    def _standings(self) -> List[Standing]:
        totals = []
        for participant in self.participants:
            total = sum(
                answers[participant.user_id].score.total_score
                for answers in self._answers.values()
                if participant.user_id in answers
            )
            totals.append((participant.identity, total))
        return rank_totals(totals)

    def _publish(self, event: str, payload: dict, skip_sid: Optional[str] = None) -> None:
        self._broker.publish(self.game_id, event, payload, skip_sid=skip_sid)

    def _round_info(self, round_number: int) -> Optional[dict]:
        track = self._tracks.get(round_number)
        if track is None:
            return None
        return {
            'roundNumber': round_number,
            'previewUrl': track.preview_url,
            'coverUrl': track.cover_url,
            'duration': self.settings.round_duration,
        }

    def _seconds_remaining(self) -> int:
        if self._clock is None or not self._clock.armed or self._round_started_at is None:
            return 0
        elapsed = self._timer() - self._round_started_at
        return max(0, int(round(self.settings.round_duration - elapsed)))

    def _snapshot(self) -> dict:
        in_progress = self.status is GameStatus.IN_PROGRESS and self.current_round > 0
        return {
            'id': self.game_id,
            'mode': self.mode.value,
            'status': self.status.value,
            'creatorId': self.creator_id,
            'maxRounds': self.max_rounds,
            'currentRound': self.current_round,
            'players': [
                dict(p.identity.to_dict(), departed=p.departed) for p in self.participants
            ],
            'round': self._round_info(self.current_round) if in_progress else None,
            'answeredUserIds': sorted(self._answers.get(self.current_round, {})) if in_progress else [],
            'secondsRemaining': self._seconds_remaining() if in_progress else 0,
        }
