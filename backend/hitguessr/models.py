from hitguessr import db, bcrypt
from flask_login import UserMixin
from datetime import datetime, timezone
import uuid


def _utcnow():
    return datetime.now(timezone.utc)


def generate_game_id():
    """Opaque, unguessable game identifier."""
    return uuid.uuid4().hex


def _iso(value):
    return value.isoformat() if value else None


class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)
    avatar = db.Column(db.String(512), nullable=True)
    created_at = db.Column(db.DateTime, default=_utcnow)

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'avatar': self.avatar,
        }


class Game(db.Model):
    __tablename__ = 'game'
    id = db.Column(db.String(32), primary_key=True, default=generate_game_id)
    mode = db.Column(db.String(16), nullable=False)  # SOLO, MULTIPLAYER
    status = db.Column(db.String(16), nullable=False, default='WAITING')  # WAITING, IN_PROGRESS, FINISHED, CANCELLED
    player1_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    player2_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    current_round = db.Column(db.Integer, nullable=False, default=0)
    max_rounds = db.Column(db.Integer, nullable=False, default=5)
    created_at = db.Column(db.DateTime, default=_utcnow)
    started_at = db.Column(db.DateTime, nullable=True)
    finished_at = db.Column(db.DateTime, nullable=True)

    player1 = db.relationship('User', foreign_keys=[player1_id])
    player2 = db.relationship('User', foreign_keys=[player2_id])
    rounds = db.relationship('Round', back_populates='game', order_by='Round.round_number',
                             cascade='all, delete-orphan')
    results = db.relationship('GameResult', back_populates='game', order_by='GameResult.position',
                              cascade='all, delete-orphan')

    def has_player(self, user_id):
        return user_id in (self.player1_id, self.player2_id)

    def round_is_settled(self, round_number):
        if self.status == 'FINISHED':
            return True
        return round_number < (self.current_round or 0)

    def to_dict(self, viewer_id=None, include_rounds=False):
        payload = {
            'id': self.id,
            'type': self.mode,
            'status': self.status,
            'currentRound': self.current_round,
            'maxRounds': self.max_rounds,
            'createdAt': _iso(self.created_at),
            'startedAt': _iso(self.started_at),
            'finishedAt': _iso(self.finished_at),
            'player1': self.player1.to_dict() if self.player1 else None,
            'player2': self.player2.to_dict() if self.player2 else None,
        }
        if include_rounds:
            payload['rounds'] = [
                r.to_dict(reveal=self.round_is_settled(r.round_number), viewer_id=viewer_id)
                for r in self.rounds
            ]
            payload['results'] = [res.to_dict() for res in self.results]
        return payload


class Round(db.Model):
    __tablename__ = 'round'
    __table_args__ = (
        db.UniqueConstraint('game_id', 'round_number', name='uq_round_game_number'),
    )
    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.String(32), db.ForeignKey('game.id'), nullable=False, index=True)
    round_number = db.Column(db.Integer, nullable=False)
    track_id = db.Column(db.String(64), nullable=False)
    track_name = db.Column(db.String(256), nullable=False)
    artist_name = db.Column(db.String(256), nullable=False)
    release_year = db.Column(db.Integer, nullable=False)
    preview_url = db.Column(db.String(512), nullable=True)
    cover_url = db.Column(db.String(512), nullable=True)

    game = db.relationship('Game', back_populates='rounds')
    answers = db.relationship('RoundAnswer', back_populates='round', cascade='all, delete-orphan')

    def to_dict(self, reveal=False, viewer_id=None):
        payload = {
            'id': self.id,
            'roundNumber': self.round_number,
            'previewUrl': self.preview_url,
            'coverUrl': self.cover_url,
        }
        if reveal:
            payload.update({
                'trackId': self.track_id,
                'track': self.track_name,
                'artist': self.artist_name,
                'year': self.release_year,
            })
        if viewer_id is not None:
            payload['answers'] = [a.to_dict() for a in self.answers if a.user_id == viewer_id]
        return payload


class RoundAnswer(db.Model):
    __tablename__ = 'round_answer'
    __table_args__ = (
        db.UniqueConstraint('round_id', 'user_id', name='uq_answer_round_user'),
    )
    id = db.Column(db.Integer, primary_key=True)
    round_id = db.Column(db.Integer, db.ForeignKey('round.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    guessed_artist = db.Column(db.String(256), nullable=True)
    guessed_track = db.Column(db.String(256), nullable=True)
    guessed_year = db.Column(db.Integer, nullable=True)
    time_to_answer = db.Column(db.Float, nullable=True)
    artist_score = db.Column(db.Integer, nullable=False, default=0)
    track_score = db.Column(db.Integer, nullable=False, default=0)
    year_score = db.Column(db.Integer, nullable=False, default=0)
    speed_bonus = db.Column(db.Integer, nullable=False, default=0)
    total_score = db.Column(db.Integer, nullable=False, default=0)
    submitted_at = db.Column(db.DateTime, default=_utcnow)

    round = db.relationship('Round', back_populates='answers')
    user = db.relationship('User')

    def to_dict(self):
        return {
            'id': self.id,
            'userId': self.user_id,
            'guessedArtist': self.guessed_artist,
            'guessedTrack': self.guessed_track,
            'guessedYear': self.guessed_year,
            'timeToAnswer': self.time_to_answer,
            'artistScore': self.artist_score,
            'trackScore': self.track_score,
            'yearScore': self.year_score,
            'speedBonus': self.speed_bonus,
            'totalScore': self.total_score,
            'submittedAt': _iso(self.submitted_at),
        }


class GameResult(db.Model):
    __tablename__ = 'game_result'
    __table_args__ = (
        db.UniqueConstraint('game_id', 'user_id', name='uq_result_game_user'),
    )
    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.String(32), db.ForeignKey('game.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    total_score = db.Column(db.Integer, nullable=False, default=0)
    position = db.Column(db.Integer, nullable=False)

    game = db.relationship('Game', back_populates='results')
    user = db.relationship('User')

    def to_dict(self):
        return {
            'userId': self.user_id,
            'user': self.user.to_dict() if self.user else None,
            'totalScore': self.total_score,
            'position': self.position,
        }


class Challenge(db.Model):
    __tablename__ = 'challenge'
    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.String(32), db.ForeignKey('game.id'), nullable=False, unique=True)
    challenger_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    challenged_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    message = db.Column(db.String(200), nullable=True)
    status = db.Column(db.String(16), nullable=False, default='PENDING')  # PENDING, ACCEPTED, DECLINED, EXPIRED
    expires_at = db.Column(db.DateTime, nullable=False)
    created_at = db.Column(db.DateTime, default=_utcnow)

    game = db.relationship('Game')
    challenger = db.relationship('User', foreign_keys=[challenger_id])
    challenged = db.relationship('User', foreign_keys=[challenged_id])

    def involves(self, user_id):
        return user_id in (self.challenger_id, self.challenged_id)

    def is_expired(self, now=None):
        now = now or datetime.now(timezone.utc)
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return now > expires_at

    def to_dict(self):
        return {
            'id': self.id,
            'gameId': self.game_id,
            'status': self.status,
            'message': self.message,
            'expiresAt': _iso(self.expires_at),
            'createdAt': _iso(self.created_at),
            'challenger': self.challenger.to_dict() if self.challenger else None,
            'challenged': self.challenged.to_dict() if self.challenged else None,
            'game': {'id': self.game.id, 'status': self.game.status} if self.game else None,
        }
