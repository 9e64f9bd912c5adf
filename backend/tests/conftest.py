import os
import sys
from contextlib import nullcontext

import pytest
from flask import has_app_context

# Ensure the backend root (containing the `wist` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from wist import create_app, db, socketio
from wist.services.rooms import build_session


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    CORS_ORIGINS = ['http://localhost:5173']
    ROOM_CODE_LENGTH = 5
    PERSIST_ASYNC = False
    BCRYPT_LOG_ROUNDS = 4
    LOG_LEVEL = 'DEBUG'


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        import wist.models  # noqa: F401
        db.create_all()
    # No app context stays pushed: every request and Socket.IO event gets its
    # own, so Flask-Login resolves each client's user from its own cookie.
    yield application
    with application.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def app_context(flask_app):
    """Hold an app context for tests that talk to the session layer directly."""
    with flask_app.app_context():
        yield flask_app
        db.session.remove()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def make_user(flask_app):
    from wist.models import User

    def _make(username, password='password'):
        # Reuse a held app context, else open one for just this insert
        with nullcontext() if has_app_context() else flask_app.app_context():
            user = User(username=username)
            user.set_password(password)
            db.session.add(user)
            db.session.commit()
            db.session.refresh(user)
            db.session.expunge(user)
        return user
    return _make


@pytest.fixture()
def login(flask_app, make_user):
    """Return a Flask test client logged in as a freshly created user."""
    def _login(username, password='password'):
        make_user(username, password)
        http = flask_app.test_client()
        res = http.post('/login', json={'username': username, 'password': password})
        assert res.status_code == 200
        return http
    return _login


@pytest.fixture()
def sio_for(flask_app):
    """Open a /ws Socket.IO test client carrying a Flask client's cookies."""
    opened = []

    def _open(http):
        test_client = socketio.test_client(flask_app, flask_test_client=http, namespace='/ws')
        opened.append(test_client)
        return test_client
    yield _open
    for test_client in opened:
        try:
            if test_client.is_connected('/ws'):
                test_client.disconnect(namespace='/ws')
        except Exception:
            pass


class Recorder:
    """Collects events a SessionHandler emits, keyed by connection id."""

    def __init__(self):
        self.sent = []

    def __call__(self, connection_id, event):
        self.sent.append((connection_id, event))

    def to(self, connection_id, name=None):
        return [e for cid, e in self.sent if cid == connection_id and (name is None or e.name == name)]

    def names(self, connection_id):
        return [e.name for cid, e in self.sent if cid == connection_id]

    def clear(self):
        self.sent.clear()


@pytest.fixture()
def recorder():
    return Recorder()


@pytest.fixture()
def session(app_context, recorder):
    """A protocol handler wired to a recorder instead of Socket.IO."""
    return build_session(app_context, emit=recorder)
