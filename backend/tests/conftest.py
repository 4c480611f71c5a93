import os
import sys
import pytest

# Ensure the backend root (containing the `livetrivia` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from config import Config
from livetrivia import create_app, db
from livetrivia.auth import Identity


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    CORS_ORIGINS = ['http://localhost:8080']


class FakeClock:
    """Wall clock under test control; sleeping just moves time forward."""

    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds

    def sleep(self, seconds):
        self.now += seconds


class DeferredTasks:
    """Collects background tasks so tests decide when timers fire."""

    def __init__(self):
        self.pending = []

    def spawn(self, fn, *args, **kwargs):
        self.pending.append((fn, args, kwargs))

    def run_next(self):
        fn, args, kwargs = self.pending.pop(0)
        fn(*args, **kwargs)

    def run_all(self):
        while self.pending:
            self.run_next()

    def discard(self):
        self.pending.clear()


class RecordingGateway:
    """Stand-in for the Socket.IO gateway that records what would be sent."""

    def __init__(self):
        self.broadcasts = []
        self.direct = []
        self.rooms = {}
        self.disconnected = []

    def emit(self, event, data, room, skip_sid=None):
        self.broadcasts.append((room, event, data, skip_sid))

    def send(self, sid, event, data):
        self.direct.append((sid, event, data))

    def enter_room(self, sid, room):
        self.rooms.setdefault(room, [])
        if sid not in self.rooms[room]:
            self.rooms[room].append(sid)

    def leave_room(self, sid, room):
        if sid in self.rooms.get(room, []):
            self.rooms[room].remove(sid)

    def disconnect(self, sid):
        self.disconnected.append(sid)
        for members in self.rooms.values():
            if sid in members:
                members.remove(sid)

    def room_members(self, room):
        return list(self.rooms.get(room, []))

    def updates(self, update_type):
        return [data['data'] for _, event, data, _ in self.broadcasts
                if event == 'lobby-update' and data['type'] == update_type]

    def sent_to(self, sid, event):
        return [data for to, name, data in self.direct if to == sid and name == event]


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def tasks():
    return DeferredTasks()


@pytest.fixture()
def flask_app(clock, tasks):
    application = create_app(TestConfig, spawn=tasks.spawn, sleep=clock.sleep, clock=clock)
    with application.app_context():
        # Ensure models are imported so tables are created
        import livetrivia.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def services(flask_app):
    return flask_app.extensions['livetrivia']


@pytest.fixture()
def gateway(services):
    recording = RecordingGateway()
    services.gateway = recording
    services.orchestrator.gateway = recording
    return recording


@pytest.fixture()
def orchestrator(services, gateway):
    return services.orchestrator


@pytest.fixture()
def make_token(services):
    def _make(user_id, name, email=None):
        return services.verifier.issue(user_id, name, email or f"{user_id}@example.com")
    return _make


def make_identity(user_id, name=None):
    return Identity(user_id, name or user_id.title(), f"{user_id}@example.com")


def seed_round(name, order, num_questions, time_limit=30, points=100, inactive_positions=()):
    """Create a round with questions whose correct answer is always choice 'A'.

    Returns (round_id, [question_id, ...]) in round order.
    """
    from livetrivia.models import Question, Round

    rnd = Round(name=name, order=order, total_questions=num_questions)
    db.session.add(rnd)
    db.session.commit()
    ids = []
    for position in range(1, num_questions + 1):
        question = Question(
            text=f"{name} question {position}?",
            choices=['A', 'B', 'C', 'D'],
            correct_index=0,
            time_limit=time_limit,
            points=points,
            round_id=rnd.id,
            round_index=position,
            is_active=position not in inactive_positions,
        )
        db.session.add(question)
        db.session.commit()
        ids.append(question.id)
    return rnd.id, ids
