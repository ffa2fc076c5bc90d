import os
import sys
from datetime import datetime, timedelta, timezone
import pytest

# Ensure the backend root (containing the `quarterclock` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from quarterclock import create_app, db, socketio
from quarterclock.services.clock import ClockRegistry, RegistrySettings
from quarterclock.services.storage import CachedCollection, ClockStore, EventStore, MemoryBackend, Storage


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    STORAGE_BACKEND = 'database'
    STORAGE_CACHE_TIMEOUT_SEC = 300
    CLOCK_MAINTENANCE_ENABLED = False
    CLOCK_MAX_INSTANCES = 100
    DEFAULT_QUARTER_LENGTH_MIN = 15
    DEFAULT_BREAK_LENGTH_MIN = 3
    DEFAULT_TOTAL_QUARTERS = 4
    CONTROLLER_DEBOUNCE_MS = 0


class FakeTime:
    """Injectable ``now_fn`` that only moves when told to."""

    def __init__(self, start=None):
        self.current = start or datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.current

    def advance(self, seconds):
        self.current = self.current + timedelta(seconds=seconds)


DEFAULT_SETTINGS = {'quarterLengthMinutes': 15, 'breakLengthMinutes': 3, 'totalQuarters': 4}


def make_storage(fake_time, memory=None, cache_timeout=300):
    memory = memory or MemoryBackend()
    events = CachedCollection('events', memory.bind('events'), 'id', cache_timeout, fake_time)
    clocks = CachedCollection('clocks', memory.bind('clocks'), 'eventId', cache_timeout, fake_time)
    return Storage(events=EventStore(events, DEFAULT_SETTINGS), clocks=ClockStore(clocks))


@pytest.fixture()
def fake_time():
    return FakeTime()


@pytest.fixture()
def memory_backend():
    return MemoryBackend()


@pytest.fixture()
def storage(fake_time, memory_backend):
    return make_storage(fake_time, memory_backend)


@pytest.fixture()
def registry(storage, fake_time):
    reg = ClockRegistry(storage, RegistrySettings(), now_fn=fake_time)
    yield reg
    reg.shutdown()


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import quarterclock.models  # noqa: F401
        db.create_all()
        yield application
        application.extensions['clock_registry'].shutdown()
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


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
