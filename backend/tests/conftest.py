import os
import random
import sys
from decimal import Decimal

import pytest

# Ensure the backend root (containing the `wagerplay` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from config import Config
from wagerplay import create_app, db, socketio
from wagerplay.models import User
from wagerplay.services.matches import get_gateway, get_state_machine
from wagerplay.services.matches.bot import StrategicStrategy


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = 'test-secret'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    BCRYPT_LOG_ROUNDS = 4
    MIN_BET = 1
    MAX_BET = 100
    PLATFORM_FEE_VS_PLAYER = Decimal('0.20')
    PLATFORM_FEE_VS_BOT = Decimal('0.05')
    BOT_USERNAME = 'bot'
    BOT_INITIAL_BALANCE = 100000
    BOT_MOVE_DELAY_SEC = 0
    WAITING_MATCH_TTL_SEC = 3600
    DISCONNECT_GRACE_SEC = 30
    INVITE_TTL_SEC = 60
    SETTLEMENT_MAX_RETRIES = 2
    SETTLEMENT_RETRY_BACKOFF_SEC = 0


class RecordingTransport:
    """Stands in for Socket.IO; keeps every emit for assertions."""

    def __init__(self):
        self.sent = []

    def emit(self, event, payload, sids):
        for sid in sorted(sids):
            self.sent.append((event, payload, sid))

    def to(self, sid, event=None):
        return [p for e, p, s in self.sent if s == sid and (event is None or e == event)]

    def clear(self):
        self.sent.clear()


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        import wagerplay.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def file_config(tmp_path):
    """Config for a file-backed SQLite database, for tests that use several
    threads or start a second app on the same data."""

    class FileConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'wagerplay.db'}"
        # Writers take the lock up front and wait for each other
        SQLALCHEMY_ENGINE_OPTIONS = {'connect_args': {'timeout': 30, 'isolation_level': 'IMMEDIATE'}}

    return FileConfig


@pytest.fixture()
def file_app(file_config):
    application = create_app(file_config)
    with application.app_context():
        db.create_all()
    yield application
    with application.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def make_user(flask_app):
    def _make(username, balance=1000, **fields):
        user = User(username=username, balance=balance, **fields)
        if not fields.get('is_bot'):
            user.set_password('password')
        db.session.add(user)
        db.session.commit()
        return user
    return _make


@pytest.fixture()
def alice(make_user):
    return make_user('alice')


@pytest.fixture()
def bob(make_user):
    return make_user('bob')


@pytest.fixture()
def carol(make_user):
    return make_user('carol')


@pytest.fixture()
def bot_user(flask_app, make_user):
    return make_user(flask_app.config['BOT_USERNAME'], balance=flask_app.config['BOT_INITIAL_BALANCE'], is_bot=True)


@pytest.fixture()
def transport(flask_app):
    recorder = RecordingTransport()
    get_gateway().transport = recorder
    return recorder


@pytest.fixture()
def gateway(flask_app, transport):
    gw = get_gateway()
    gw.bot_strategy = StrategicStrategy(random.Random(7))
    return gw


@pytest.fixture()
def login(flask_app):
    """Return a test client logged in as ``username``."""
    def _login(username, password='password'):
        http = flask_app.test_client()
        res = http.post('/login', json={'username': username, 'password': password})
        assert res.status_code == 200, res.get_json()
        return http
    return _login


@pytest.fixture()
def sio_client(flask_app):
    clients = []

    def _connect(user_id=None):
        auth = {'user_id': user_id} if user_id is not None else None
        test_client = socketio.test_client(flask_app, namespace='/ws', auth=auth)
        clients.append(test_client)
        return test_client

    yield _connect
    for test_client in clients:
        try:
            if test_client.is_connected('/ws'):
                test_client.disconnect(namespace='/ws')
        except Exception:
            pass


@pytest.fixture()
def play(flask_app):
    """Apply ``(user_id, cell)`` moves in order and return the final state."""
    def _play(match_id, moves):
        match = None
        for user_id, cell in moves:
            match = get_state_machine().apply_move(match_id, user_id, cell)
        return match
    return _play
