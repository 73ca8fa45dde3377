from datetime import datetime, timedelta, timezone

from flask import Blueprint, jsonify, current_app
from flask_login import login_required, current_user

from hitguessr import db
from hitguessr.models import Challenge, User
from hitguessr.services.games.coordinator import get_coordinator, json_body, parse_text
from hitguessr.services.games.errors import (
    AuthorizationError,
    InvalidRequestError,
    InvalidStateError,
    NotFoundError,
)
from hitguessr.services.games.identity import identity_of
from hitguessr.services.games.types import GameMode


challenges = Blueprint('challenges', __name__)

OPEN_STATUSES = ('PENDING', 'ACCEPTED')


def _load_challenge(challenge_id: int) -> Challenge:
    challenge = db.session.get(Challenge, challenge_id)
    if challenge is None or not challenge.involves(current_user.id):
        raise NotFoundError('Challenge not found', code='challenge_not_found')
    return challenge


def _cancel_room(game_id: str, reason: str) -> None:
    session = get_coordinator().registry.get(game_id)
    if session is not None:
        session.cancel(reason)


def _expire_if_due(challenge: Challenge) -> bool:
    """Mark a pending challenge past its deadline, or whose room is gone, as EXPIRED."""
    if challenge.status != 'PENDING':
        return False
    if not challenge.is_expired() and get_coordinator().registry.get(challenge.game_id) is not None:
        return False
    challenge.status = 'EXPIRED'
    db.session.commit()
    current_app.logger.info(f"[challenge-expired] challenge={challenge.id} game={challenge.game_id}")
    _cancel_room(challenge.game_id, 'challenge_expired')
    return True


@challenges.route('', methods=['POST'])
@login_required
def create_challenge():
    data = json_body()
    username = parse_text(data, 'challengedUsername')
    message = data.get('message')
    if message is not None and (not isinstance(message, str) or len(message) > 200):
        raise InvalidRequestError('message must be a string of at most 200 characters')
    challenged = User.query.filter_by(username=username).first()
    if challenged is None:
        raise NotFoundError('User not found', code='user_not_found')
    if challenged.id == current_user.id:
        raise InvalidRequestError('You cannot challenge yourself')

    session = get_coordinator().create_game(
        identity_of(current_user),
        GameMode.MULTIPLAYER,
        data.get('maxRounds'),
        invited_user_id=challenged.id,
    )
    ttl = int(current_app.config.get('CHALLENGE_TTL_SEC', 24 * 3600))
    challenge = Challenge(
        game_id=session.game_id,
        challenger_id=current_user.id,
        challenged_id=challenged.id,
        message=message,
        expires_at=datetime.now(timezone.utc) + timedelta(seconds=ttl),
    )
    db.session.add(challenge)
    db.session.commit()
    current_app.logger.info(
        f"[challenge] challenge={challenge.id} game={session.game_id} from={current_user.id} to={challenged.id}"
    )
    return jsonify({'challenge': challenge.to_dict()}), 201


@challenges.route('', methods=['GET'])
@login_required
def list_challenges():
    rows = (
        Challenge.query
        .filter((Challenge.challenger_id == current_user.id) | (Challenge.challenged_id == current_user.id))
        .filter(Challenge.status.in_(OPEN_STATUSES))
        .order_by(Challenge.created_at.desc())
        .all()
    )
    visible = [c for c in rows if not _expire_if_due(c)]
    return jsonify([c.to_dict() for c in visible])


@challenges.route('/<int:challenge_id>', methods=['GET'])
@login_required
def get_challenge(challenge_id):
    challenge = _load_challenge(challenge_id)
    _expire_if_due(challenge)
    return jsonify({'challenge': challenge.to_dict()})


@challenges.route('/<int:challenge_id>/accept', methods=['POST'])
@login_required
def accept_challenge(challenge_id):
    challenge = _load_challenge(challenge_id)
    if challenge.challenged_id != current_user.id:
        raise AuthorizationError('Only the challenged player can accept')
    if _expire_if_due(challenge) or challenge.status == 'EXPIRED':
        raise InvalidStateError('Challenge has expired', code='challenge_expired')
    if challenge.status != 'PENDING':
        raise InvalidStateError(f'Challenge is {challenge.status.lower()}')

    session = get_coordinator().session(challenge.game_id)
    snapshot = session.join(identity_of(current_user), start_when_full=True)
    challenge.status = 'ACCEPTED'
    db.session.commit()
    current_app.logger.info(f"[challenge-accepted] challenge={challenge.id} game={challenge.game_id}")
    return jsonify({'challenge': challenge.to_dict(), 'game': snapshot})


@challenges.route('/<int:challenge_id>/decline', methods=['POST'])
@login_required
def decline_challenge(challenge_id):
    challenge = _load_challenge(challenge_id)
    if challenge.challenged_id != current_user.id:
        raise AuthorizationError('Only the challenged player can decline')
    if _expire_if_due(challenge) or challenge.status == 'EXPIRED':
        raise InvalidStateError('Challenge has expired', code='challenge_expired')
    if challenge.status != 'PENDING':
        raise InvalidStateError(f'Challenge is {challenge.status.lower()}')

    challenge.status = 'DECLINED'
    db.session.commit()
    _cancel_room(challenge.game_id, 'challenge_declined')
    current_app.logger.info(f"[challenge-declined] challenge={challenge.id} game={challenge.game_id}")
    return jsonify({'challenge': challenge.to_dict()})
