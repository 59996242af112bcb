import os
import sys
import pytest

# Ensure the backend root (containing the `betparty` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from betparty import create_app, db, socketio


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    WTF_CSRF_ENABLED = False
    BCRYPT_LOG_ROUNDS = 4
    QUESTION_WINDOW_SEC = 20
    ANSWER_GRACE_SEC = 2
    QUESTION_GAP_SEC = 0
    CORRECT_POINTS = 20
    WRONG_POINTS = 0
    DEFAULT_MAX_PLAYERS = 5
    DEFAULT_BUY_IN = 20
    STARTING_BALANCE = 1000
    POLL_INTERVAL_SEC = 1
    PUSH_STALE_SEC = 3
    HOST_DISCONNECT_GRACE_SEC = 0


class FakeClock:
    def __init__(self, start=1_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds
        return self.now


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    # No app context stays pushed: each request gets its own, so
    # Flask-Login's per-context user cache never leaks between clients.
    with application.app_context():
        # Ensure models are imported so tables are created
        import betparty.models  # noqa: F401
        db.create_all()
    yield application
    with application.app_context():
        db.session.remove()
        db.drop_all()
    application.extensions['betparty'].close()


@pytest.fixture()
def clock(flask_app):
    fake = FakeClock()
    flask_app.extensions['betparty'].clock = fake
    return fake


@pytest.fixture()
def ctx(flask_app, clock):
    """Lobby context inside an app context, for service-level tests."""
    with flask_app.app_context():
        yield flask_app.extensions['betparty']
        db.session.remove()


@pytest.fixture()
def make_user(ctx):
    from betparty.models import User

    def _make(username, balance=1000):
        user = User(username=username, balance=balance)
        user.set_password('password')
        db.session.add(user)
        db.session.commit()
        return user.id

    return _make


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def player_client(flask_app):
    """Factory for logged-in test clients, one per player."""
    def _player(username):
        test_client = flask_app.test_client()
        res = test_client.post('/register', json={'username': username, 'password': 'password'})
        assert res.status_code == 201
        test_client.user = res.get_json()['user']
        return test_client

    return _player


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass
