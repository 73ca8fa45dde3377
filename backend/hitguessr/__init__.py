from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
from datetime import datetime, timezone
import click
from config import Config

db = SQLAlchemy()
bcrypt = Bcrypt()
login_manager = LoginManager()
migrate = Migrate()
socketio = SocketIO(async_mode=None)


def _origins(config):
    return [o.strip() for o in str(config.get('CORS_ORIGINS', '')).split(',') if o.strip()]


def create_app(config_class=Config, scheduler=None, track_provider=None):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    allowed_origins = _origins(flask_app.config)

    db.init_app(flask_app)
    bcrypt.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from hitguessr.services.games.broker import RoomBroker
    from hitguessr.services.games.coordinator import GameCoordinator
    from hitguessr.services.games.identity import TokenIdentityResolver
    from hitguessr.services.games.registry import RoomRegistry
    from hitguessr.services.games.scheduler import BackgroundScheduler
    from hitguessr.services.games.store import GameStore
    from hitguessr.services.games.tracks import build_track_provider
    from hitguessr.services.games.types import SessionSettings

    cfg = flask_app.config
    flask_app.extensions['hitguessr'] = GameCoordinator(
        registry=RoomRegistry(),
        store=GameStore(flask_app),
        tracks=track_provider or build_track_provider(cfg),
        broker=RoomBroker(socketio),
        scheduler=scheduler or BackgroundScheduler(socketio),
        identity=TokenIdentityResolver(cfg['SECRET_KEY'], int(cfg.get('TOKEN_MAX_AGE_SEC', 7 * 24 * 3600))),
        settings=SessionSettings.from_config(cfg),
        logger=flask_app.logger,
        default_max_rounds=int(cfg.get('DEFAULT_MAX_ROUNDS', 5)),
        max_rounds_limit=int(cfg.get('MAX_ROUNDS_LIMIT', 10)),
    )

    # Import and register blueprints here
    from hitguessr.main import main
    flask_app.register_blueprint(main)

    from hitguessr.api.games import games
    flask_app.register_blueprint(games, url_prefix='/api/games')

    from hitguessr.api.challenges import challenges
    flask_app.register_blueprint(challenges, url_prefix='/api/challenges')

    from hitguessr.services.games.errors import GameError

    @flask_app.errorhandler(GameError)
    def handle_game_error(exc):
        return jsonify({'error': exc.message, 'kind': exc.kind, 'code': exc.code}), exc.status_code

    # Register Socket.IO event handlers
    from hitguessr.socketio_events import register_socketio_handlers
    register_socketio_handlers(socketio)

    from hitguessr.models import User

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.request_loader
    def load_user_from_request(req):
        # Bearer tokens are the primary credential for API clients
        header = req.headers.get('Authorization', '')
        if not header.startswith('Bearer '):
            return None
        from hitguessr.services.games.errors import AuthenticationError
        try:
            identity = flask_app.extensions['hitguessr'].identity.resolve(header[len('Bearer '):])
        except AuthenticationError:
            return None
        return db.session.get(User, identity.user_id)

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'Authentication required', 'kind': 'authentication', 'code': 'authentication_required'}), 401

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            # Seed users
            users = ['testuser1', 'testuser2', 'testuser3']
            for u in users:
                user = User(username=u, created_at=datetime.now(timezone.utc))
                user.set_password('password')
                db.session.add(user)

            db.session.commit()
            print('Database has been reset and seeded!')

    flask_app.cli.add_command(db_reset_command)

    return flask_app
