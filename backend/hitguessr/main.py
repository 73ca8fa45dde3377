from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user
from sqlalchemy import func

from .models import db, User, Game, GameResult
from .services.games.coordinator import get_coordinator, json_body

main = Blueprint('main', __name__)


def _credentials():
    data = json_body()
    username = data.get('username') or ''
    password = data.get('password') or ''
    if not isinstance(username, str) or not isinstance(password, str):
        return None
    return username.strip(), password


def _invalid(message):
    return jsonify({"success": False, "error": message, "kind": "invalid_request", "code": "invalid_request"}), 400


def _auth_payload(user, status=200):
    token = get_coordinator().identity.issue(user)
    return jsonify({"success": True, "user": user.to_dict(), "token": token}), status


@main.route('/health')
def health():
    return jsonify({'status': 'ok', 'rooms': len(get_coordinator().registry)})


@main.route('/api/auth/login', methods=['POST', 'OPTIONS'])
def login():
    if request.method == 'OPTIONS':
        return jsonify({'status': 'ok'}), 200
    credentials = _credentials()
    if credentials is None:
        return _invalid("username and password must be strings")
    username, password = credentials
    user = User.query.filter_by(username=username).first()
    if user and user.check_password(password):
        return _auth_payload(user)
    return jsonify({"success": False, "error": "Invalid credentials", "kind": "authentication",
                    "code": "invalid_credentials"}), 401


@main.route('/api/auth/register', methods=['POST', 'OPTIONS'])
def register():
    if request.method == 'OPTIONS':
        return jsonify({'status': 'ok'}), 200
    credentials = _credentials()
    if credentials is None:
        return _invalid("username and password must be strings")
    username, password = credentials
    if not 3 <= len(username) <= 64 or len(password) < 6:
        return _invalid("Username must be 3-64 characters and password at least 6")
    if User.query.filter_by(username=username).first():
        return jsonify({"success": False, "error": "Username already exists",
                        "kind": "invalid_state", "code": "username_taken"}), 409

    new_user = User(username=username)
    new_user.set_password(password)
    db.session.add(new_user)
    db.session.commit()
    return _auth_payload(new_user, 201)


@main.route('/api/auth/me')
@login_required
def me():
    return jsonify({"success": True, "user": current_user.to_dict()})


@main.route('/api/users/profile')
@login_required
def profile():
    results = GameResult.query.filter_by(user_id=current_user.id).all()
    return jsonify({
        'user': current_user.to_dict(),
        'gamesPlayed': len(results),
        'totalScore': sum(r.total_score for r in results),
        'wins': sum(1 for r in results if r.position == 1 and len(r.game.results) > 1),
        'bestScore': max((r.total_score for r in results), default=0),
    })


@main.route('/api/users/leaderboard')
def leaderboard():
    limit = min(max(request.args.get('limit', 10, type=int), 1), 100)
    total = func.sum(GameResult.total_score).label('total')
    rows = (
        db.session.query(User, total, func.count(GameResult.id))
        .join(GameResult, GameResult.user_id == User.id)
        .group_by(User.id)
        .order_by(total.desc(), User.id)
        .limit(limit)
        .all()
    )
    return jsonify([
        {'position': index + 1, 'user': user.to_dict(), 'totalScore': int(score or 0), 'gamesPlayed': played}
        for index, (user, score, played) in enumerate(rows)
    ])


@main.route('/api/users/games')
@login_required
def recent_games():
    games = (
        Game.query
        .filter((Game.player1_id == current_user.id) | (Game.player2_id == current_user.id))
        .order_by(Game.created_at.desc())
        .limit(20)
        .all()
    )
    return jsonify([game.to_dict(viewer_id=current_user.id) for game in games])
