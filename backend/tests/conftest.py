import os
import sys
import pytest
from flask import g

# Ensure the backend root (containing the `olympics` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from olympics import create_app, db, socketio


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    BCRYPT_LOG_ROUNDS = 4
    CORS_ORIGINS = ['http://localhost:3000']
    ADMIN_EMAIL = 'admin@example.com'
    COUNTDOWN_DURATION_SEC = 3
    GAME_DURATION_SEC = 10
    WINNER_BONUS_POINTS = 1
    MINIGAME_EVENT_NAME = 'Row Harder!'
    MINIGAME_EVENT_DESCRIPTION = 'Secret button mashing competition'
    ACTIVE_GAME_STATUSES = ['waiting']
    SWEEP_INTERVAL_SEC = 1


@pytest.fixture()
def app_config():
    return TestConfig


@pytest.fixture()
def flask_app(app_config):
    application = create_app(app_config)

    @application.before_request
    def _reload_login_user():
        # Test-client requests reuse the app context pushed below, and with it
        # `g`; drop the cached user so each client resolves its own session
        g.pop('_login_user', None)

    with application.app_context():
        # Ensure models are imported so tables are created
        import olympics.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def make_participant(flask_app):
    """Create a User + Participant; returns the Participant."""
    from olympics.models import User, Participant

    def _make(name, email=None, password='password', is_admin=False):
        email = email or f'{name.lower()}@example.com'
        user = User(email=email)
        user.set_password(password)
        db.session.add(user)
        db.session.flush()
        participant = Participant(user_id=user.id, email=email, name=name, is_admin=is_admin)
        db.session.add(participant)
        db.session.commit()
        return participant

    return _make


@pytest.fixture()
def login_client(flask_app, make_participant):
    """Create a participant and return a test client logged in as them."""

    def _login(name, **kwargs):
        participant = make_participant(name, **kwargs)
        test_client = flask_app.test_client()
        res = test_client.post('/login', json={'email': participant.email, 'password': kwargs.get('password', 'password')})
        assert res.status_code == 200
        return test_client, participant

    return _login


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
