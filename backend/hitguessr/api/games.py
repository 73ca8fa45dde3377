from flask import Blueprint, jsonify, current_app
from flask_login import login_required, current_user

from hitguessr import db
from hitguessr.models import Game
from hitguessr.services.games.coordinator import get_coordinator, json_body, parse_guess, parse_round_number
from hitguessr.services.games.errors import AuthorizationError, NotFoundError
from hitguessr.services.games.identity import identity_of


games = Blueprint('games', __name__)


def _load_game(game_id: str) -> Game:
    game = db.session.get(Game, game_id)
    if game is None:
        raise NotFoundError('Game not found', code='room_not_found')
    return game


@games.route('', methods=['POST'])
@login_required
def create_game():
    data = json_body()
    session = get_coordinator().create_game(
        identity_of(current_user),
        data.get('type', 'SOLO'),
        data.get('maxRounds'),
    )
    return jsonify({'game': session.snapshot()}), 201


@games.route('/<string:game_id>', methods=['GET'])
@login_required
def get_game(game_id):
    game = _load_game(game_id)
    session = get_coordinator().registry.get(game_id)
    is_member = game.has_player(current_user.id) or (session is not None and session.is_participant(current_user.id))
    if not is_member:
        raise AuthorizationError('Access denied')
    payload = game.to_dict(viewer_id=current_user.id, include_rounds=True)
    # Live rooms are authoritative for status and the open round
    payload['live'] = session.snapshot() if session is not None else None
    return jsonify({'game': payload})


@games.route('/<string:game_id>/join', methods=['POST'])
@login_required
def join_game(game_id):
    session = get_coordinator().session(game_id)
    snapshot = session.join(identity_of(current_user))
    return jsonify({'game': snapshot})


@games.route('/<string:game_id>/start', methods=['POST'])
@login_required
def start_game(game_id):
    session = get_coordinator().session(game_id)
    snapshot = session.start(current_user.id)
    return jsonify({'game': snapshot})


@games.route('/<string:game_id>/submit', methods=['POST'])
@login_required
def submit_answer(game_id):
    data = json_body()
    session = get_coordinator().session(game_id)
    record = session.submit_answer(current_user.id, parse_round_number(data), parse_guess(data))
    current_app.logger.info(f"[submit-http] game={game_id} user={current_user.id} round={record.round_number}")
    return jsonify({'answer': record.to_dict()}), 201


@games.route('/<string:game_id>/leave', methods=['POST'])
@login_required
def leave_game(game_id):
    session = get_coordinator().session(game_id)
    snapshot = session.leave(current_user.id)
    return jsonify({'game': snapshot})
