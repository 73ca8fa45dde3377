import logging
import os
import sys
import threading
import uuid
import pytest
from sqlalchemy.pool import StaticPool

# Ensure the backend root (containing the `hitguessr` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from hitguessr import create_app, db, socketio
from hitguessr.services.games.errors import DuplicateSubmissionError, PersistenceError
from hitguessr.services.games.registry import RoomRegistry
from hitguessr.services.games.scheduler import Scheduler
from hitguessr.services.games.session import RoomSession
from hitguessr.services.games.tracks import CATALOG, CatalogTrackProvider
from hitguessr.services.games.types import GameMode, Identity, SessionSettings


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ENGINE_OPTIONS = {'poolclass': StaticPool, 'connect_args': {'check_same_thread': False}}
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    BCRYPT_LOG_ROUNDS = 4
    CORS_ORIGINS = ''
    ROUND_DURATION_SEC = 30
    SETTLE_DELAY_SEC = 5
    COUNTDOWN_INTERVAL_SEC = 1
    DEFAULT_MAX_ROUNDS = 3
    MAX_ROUNDS_LIMIT = 10
    MAX_PLAYERS = 2
    AUTO_START_WHEN_FULL = False
    LOBBY_TIMEOUT_SEC = 0
    TOKEN_MAX_AGE_SEC = 3600
    CHALLENGE_TTL_SEC = 3600
    TRACK_PROVIDER = 'catalog'


class ManualScheduler(Scheduler):
    """Queues background work so tests decide when timers run.

    ``spawn`` collects clock tasks and ``call_later`` collects delayed work
    (round advancement, lobby expiry); sleeping is a no-op.
    """

    def __init__(self):
        self.spawned = []
        self.delayed = []
        self._lock = threading.Lock()

    def spawn(self, fn, *args):
        with self._lock:
            self.spawned.append((fn, args))

    def sleep(self, seconds):
        pass

    def call_later(self, delay, fn, *args):
        with self._lock:
            self.delayed.append((delay, fn, args))

    def _drain(self, queue):
        with self._lock:
            batch = list(queue)
            del queue[:]
        for item in batch:
            item[-2](*item[-1])
        return len(batch)

    def run_clocks(self):
        """Run every queued clock to its deadline (unless cancelled meanwhile)."""
        return self._drain(self.spawned)

    def run_delayed(self):
        return self._drain(self.delayed)


class RecordingBroker:
    def __init__(self):
        self.published = []
        self.sent = []
        self.subscriptions = {}
        self._lock = threading.Lock()

    def subscribe(self, sid, game_id):
        with self._lock:
            self.subscriptions.setdefault(sid, set()).add(game_id)

    def unsubscribe(self, sid, game_id=None):
        with self._lock:
            current = self.subscriptions.get(sid, set())
            dropped = {game_id} & current if game_id else set(current)
            current -= dropped
            return dropped

    def publish(self, game_id, event, payload, skip_sid=None):
        with self._lock:
            self.published.append((game_id, event, payload))

    def send(self, sid, event, payload):
        with self._lock:
            self.sent.append((sid, event, payload))

    def events(self, name=None):
        with self._lock:
            return [(e, p) for _, e, p in self.published if name is None or e == name]

    def names(self):
        return [e for e, _ in self.events()]


class MemoryStore:
    """In-memory stand-in for GameStore; ``fail_on`` names methods that raise."""

    def __init__(self):
        self.games = {}
        self.answers = {}
        self.results = {}
        self.status_updates = []
        self.fail_on = set()
        self._lock = threading.Lock()

    def _check(self, action):
        if action in self.fail_on:
            raise PersistenceError(f'Failed to {action.replace("_", " ")}')

    def create_game(self, mode, max_rounds, creator_id, tracks, started_at=None):
        self._check('create_game')
        game_id = uuid.uuid4().hex
        self.games[game_id] = {'mode': GameMode(mode), 'players': [creator_id], 'tracks': list(tracks)}
        return game_id

    def add_participant(self, game_id, user_id):
        self._check('add_participant')
        self.games.setdefault(game_id, {'players': []})['players'].append(user_id)

    def remove_participant(self, game_id, user_id):
        self._check('remove_participant')
        players = self.games.get(game_id, {}).get('players', [])
        if user_id in players:
            players.remove(user_id)

    def save_answer(self, game_id, record):
        with self._lock:
            self._check('save_answer')
            key = (game_id, record.round_number, record.user.user_id)
            if key in self.answers:
                raise DuplicateSubmissionError('Answer already submitted')
            self.answers[key] = record

    def save_game_results(self, game_id, standings):
        self._check('save_game_results')
        self.results.setdefault(game_id, list(standings))

    def update_game_status(self, game_id, status, current_round=None, started_at=None, finished_at=None):
        self._check('update_game_status')
        self.status_updates.append((game_id, status, current_round))


class FakeTimer:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


ALICE = Identity(1, 'alice')
BOB = Identity(2, 'bob')
CAROL = Identity(3, 'carol')


@pytest.fixture()
def scheduler():
    return ManualScheduler()


@pytest.fixture()
def broker():
    return RecordingBroker()


@pytest.fixture()
def store():
    return MemoryStore()


@pytest.fixture()
def registry():
    return RoomRegistry()


@pytest.fixture()
def timer():
    return FakeTimer()


@pytest.fixture()
def make_session(scheduler, broker, store, registry, timer):
    """Build a registered RoomSession wired to the recording fakes."""

    def _make(mode=GameMode.MULTIPLAYER, max_rounds=2, creator=ALICE, invited_user_id=None, **settings):
        params = {'lobby_timeout': 0}
        params.update(settings)
        tracks = CATALOG[:max_rounds]
        game_id = store.create_game(mode, max_rounds, creator.user_id, tracks)
        session = RoomSession(
            game_id, mode, max_rounds, creator, tracks,
            broker=broker,
            store=store,
            scheduler=scheduler,
            registry=registry,
            settings=SessionSettings(**params),
            logger=logging.getLogger('hitguessr.tests'),
            invited_user_id=invited_user_id,
            timer=timer,
        )
        registry.add(session)
        session.begin()
        return session

    return _make


class OrderedTrackProvider:
    """Serves the catalog in order so tests know each round's answer."""

    def __init__(self, tracks=None):
        self.tracks = list(tracks if tracks is not None else CATALOG)

    def fetch_rounds(self, count):
        return self.tracks[:count]


@pytest.fixture()
def flask_app(scheduler):
    application = create_app(TestConfig, scheduler=scheduler, track_provider=OrderedTrackProvider())
    with application.app_context():
        # Ensure models are imported so tables are created
        import hitguessr.models  # noqa: F401
        db.create_all()
    # Requests and socket events push their own app context and session
    yield application
    with application.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def users(flask_app):
    """Three registered users with bearer tokens, keyed by username."""
    from hitguessr.models import User
    coordinator = flask_app.extensions['hitguessr']
    accounts = {}
    with flask_app.app_context():
        for name in ('alice', 'bob', 'carol'):
            user = User(username=name)
            user.set_password('password')
            db.session.add(user)
            db.session.commit()
            accounts[name] = {'id': user.id, 'token': coordinator.identity.issue(user)}
    return accounts


def auth_headers(account):
    return {'Authorization': f"Bearer {account['token']}"}


@pytest.fixture()
def sio_factory(flask_app):
    clients = []

    def _connect(token=None):
        test_client = socketio.test_client(
            flask_app,
            flask_test_client=flask_app.test_client(),
            namespace='/ws',
            auth={'token': token} if token else None,
        )
        clients.append(test_client)
        return test_client

    yield _connect
    for test_client in clients:
        try:
            if test_client.is_connected('/ws'):
                test_client.disconnect(namespace='/ws')
        except Exception:
            pass
