import os
import sys
import pytest

# Ensure the backend root (containing the `wordduel` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from wordduel import create_app, db, socketio


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    CORS_ORIGINS = []
    TURN_DURATION_SEC = 60
    MAX_TURNS = 6
    QUEUE_TIMEOUT_SEC = 300
    DUEL_EVICT_GRACE_SEC = 5
    DUEL_ABANDON_GRACE_SEC = 120
    WORD_LIST_PATH = None
    TIMER_HEARTBEAT_SEC = 0


class Outbox:
    """Collects (sid, event, payload) triples sent by a session or registry."""

    def __init__(self):
        self.sent = []

    def __call__(self, sid, event, payload):
        self.sent.append((sid, event, payload))

    def events(self, sid=None, name=None):
        return [
            (s, e, p) for s, e, p in self.sent
            if (sid is None or s == sid) and (name is None or e == name)
        ]

    def payloads(self, name, sid=None):
        return [p for _, _, p in self.events(sid=sid, name=name)]

    def clear(self):
        self.sent.clear()


def received(sio_client, name=None):
    """Drain a Socket.IO test client and return (event, payload) pairs."""
    out = []
    for pkt in sio_client.get_received('/ws'):
        if name is not None and pkt['name'] != name:
            continue
        out.append((pkt['name'], pkt['args'][0] if pkt['args'] else None))
    return out


@pytest.fixture()
def outbox():
    return Outbox()


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import wordduel.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def registry(flask_app):
    return flask_app.extensions['duel_registry']


@pytest.fixture()
def scheduler(registry):
    return registry.scheduler


@pytest.fixture()
def sio_factory(flask_app):
    clients = []

    def make():
        test_client = socketio.test_client(
            flask_app,
            flask_test_client=flask_app.test_client(),
            namespace='/ws'
        )
        test_client.get_received('/ws')  # flush 'connected'
        clients.append(test_client)
        return test_client

    yield make
    for test_client in clients:
        try:
            if test_client.is_connected('/ws'):
                test_client.disconnect(namespace='/ws')
        except Exception:
            pass
