import os
import sys
import pytest

# Ensure the backend root (containing the `playrooms` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from config import Config
from playrooms import create_app, db, socketio
from playrooms.seed import load_catalog, seed_catalog
from playrooms.services.rooms.profiles import register_player


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    BCRYPT_LOG_ROUNDS = 4
    LOG_LEVEL = 'DEBUG'
    CORS_ORIGINS = []
    TRANSACTION_RETRY_DELAY_MS = 0
    # Score submissions in the request so tests can assert right after posting
    TRIGGERS_INLINE = True


def _build_app(config_class):
    application = create_app(config_class)
    with application.app_context():
        # Ensure models are imported so tables are created
        import playrooms.models  # noqa: F401
        db.create_all()
        seed_catalog(load_catalog(application.config['CATALOG_PATH']))
    return application


def _teardown_app(application):
    with application.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture()
def flask_app():
    # No app context is held across requests: Flask-Login caches the user on `g`
    application = _build_app(TestConfig)
    yield application
    _teardown_app(application)


@pytest.fixture()
def file_app(tmp_path):
    """App on a file-backed SQLite database, shared by several threads."""
    class FileConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'rooms.db'}"
        SQLALCHEMY_ENGINE_OPTIONS = {'connect_args': {'check_same_thread': False, 'timeout': 15}}
        TRANSACTION_MAX_RETRIES = 20
        TRANSACTION_RETRY_DELAY_MS = 5

    application = _build_app(FileConfig)
    yield application
    _teardown_app(application)


@pytest.fixture()
def app_ctx(flask_app):
    with flask_app.app_context():
        yield flask_app
        db.session.remove()


@pytest.fixture()
def make_player(app_ctx):
    def _make(name):
        return register_player(name, 'secret', name.title()).uid
    return _make


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def signup(flask_app):
    """Register a user on a fresh test client; returns (client, uid)."""
    def _signup(username, display_name=None):
        user_client = flask_app.test_client()
        res = user_client.post('/api/auth/register', json={
            'username': username,
            'password': f'pw-{username}',
            'display_name': display_name or username.title(),
        })
        assert res.status_code == 201, res.get_json()
        return user_client, res.get_json()['user']['uid']
    return _signup


@pytest.fixture()
def sio_client(flask_app, client):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=client,
        namespace='/ws'
    )
    yield test_client
    if test_client.is_connected('/ws'):
        test_client.disconnect(namespace='/ws')
