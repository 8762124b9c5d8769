import os
import sys
import threading
import pytest

# Ensure the backend root (containing the `livequiz` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from livequiz import create_app, db, socketio
from livequiz.errors import UpstreamDependencyError
from livequiz.services.sessions.rooms import RoomBroadcaster
from livequiz.services.sessions.scoring import Question
from livequiz.services.sessions.store import generate_code


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    CORS_ORIGINS = []
    QUESTION_GRACE_SEC = 0
    REVEAL_DURATION_SEC = 0
    CODE_MAX_ATTEMPTS = 5


QUIZZES = {
    'quiz-1': [
        {
            'type': 'Single Choice',
            'title': 'Capital of France?',
            'options': ['Berlin', 'Paris', 'Rome', 'Madrid'],
            'correctAnswer': 1,
            'timeLimit': 20,
            'points': 1000,
        },
        {
            'type': 'Multiple Choice',
            'title': 'Which are primes?',
            'options': ['2', '4', '5', '9'],
            'correctAnswer': [0, 2],
            'timeLimit': 20,
            'points': 1000,
        },
    ],
}


class FakeQuizResolver:
    def __init__(self, quizzes=None):
        self.quizzes = dict(QUIZZES if quizzes is None else quizzes)
        self.calls = []

    def get_questions_by_ref(self, quiz_ref):
        self.calls.append(quiz_ref)
        if quiz_ref not in self.quizzes:
            raise UpstreamDependencyError(f'Quiz service unreachable for {quiz_ref}')
        return [Question.from_dict(q) for q in self.quizzes[quiz_ref]]


class RecordingStatsSink:
    def __init__(self, fail=False):
        self.fail = fail
        self.events = []

    def notify(self, event_type, user_id, metadata):
        self.events.append((event_type, user_id, metadata))
        if self.fail:
            raise RuntimeError('analytics down')

    def of_type(self, event_type):
        return [e for e in self.events if e[0] == event_type]


class Outbox:
    """Captures what the room broadcaster sends, keyed by endpoint."""

    def __init__(self):
        self._lock = threading.Lock()
        self.sent = []

    def emit(self, event, payload, to=None, namespace=None):
        with self._lock:
            self.sent.append((to, event, payload))

    def events(self, name, to=None):
        with self._lock:
            return [p for (t, e, p) in self.sent if e == name and (to is None or t == to)]

    def names_for(self, to):
        with self._lock:
            return [e for (t, e, _) in self.sent if t == to]


@pytest.fixture()
def quiz_resolver():
    return FakeQuizResolver()


@pytest.fixture()
def stats_sink():
    return RecordingStatsSink()


@pytest.fixture()
def code_queue():
    """Codes handed out (in order) before falling back to random ones."""
    return []


@pytest.fixture()
def config_class():
    return TestConfig


@pytest.fixture()
def flask_app(config_class, quiz_resolver, stats_sink, code_queue):
    def next_code():
        return code_queue.pop(0) if code_queue else generate_code()

    application = create_app(
        config_class,
        quiz_resolver=quiz_resolver,
        stats_sink=stats_sink,
        code_generator=next_code,
    )
    with application.app_context():
        db.create_all()
        yield application
        application.extensions['livequiz'].scheduler.cancel_all()
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def engine(flask_app):
    return flask_app.extensions['livequiz']


@pytest.fixture()
def outbox(engine):
    """Route room deliveries to an in-memory outbox instead of Socket.IO."""
    box = Outbox()
    rooms = RoomBroadcaster(box.emit)
    engine.rooms = rooms
    engine.scheduler.rooms = rooms
    return box


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_factory(flask_app):
    clients = []

    def make():
        test_client = socketio.test_client(
            flask_app,
            flask_test_client=flask_app.test_client(),
            namespace='/ws',
        )
        test_client.get_received('/ws')  # flush `connected`
        clients.append(test_client)
        return test_client

    yield make
    for test_client in clients:
        if test_client.is_connected('/ws'):
            test_client.disconnect(namespace='/ws')

