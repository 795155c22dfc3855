import json
import os
import tempfile

_DB_DIR = tempfile.mkdtemp(prefix="flashpad-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'flashpad.db')}"
os.environ["JWT_SECRET"] = "flashpad-test-secret-with-enough-length"

import pytest
from fastapi.testclient import TestClient

from flashpad.database import Base, engine
from flashpad import models  # noqa: F401
from flashpad.main import app


class ManualTimer:
    def __init__(self, when, callback, args):
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    """Deterministic stand-in for the event loop's ``call_later``."""

    def __init__(self):
        self.now = 0.0
        self.timers = []

    def call_later(self, delay, callback, *args):
        timer = ManualTimer(self.now + delay, callback, args)
        self.timers.append(timer)
        return timer

    def advance(self, seconds):
        self.now += seconds
        due = [timer for timer in self.timers if not timer.cancelled and timer.when <= self.now]
        for timer in due:
            self.timers.remove(timer)
            timer.callback(*timer.args)

    @property
    def pending(self):
        return [timer for timer in self.timers if not timer.cancelled]


class FakeViewer:
    def __init__(self, ready=True):
        self.ready = ready
        self.frames = []
        self.closed = None

    def send(self, payload):
        self.frames.append(json.loads(payload))

    def close(self, code=1000, reason=""):
        self.closed = (code, reason)

    @property
    def types(self):
        return [frame["type"] for frame in self.frames]


@pytest.fixture(autouse=True)
def fresh_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def viewer_factory():
    return FakeViewer


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def signup(client):
    def _signup(email, username=None, password="secret-pass"):
        body = {"email": email, "password": password}
        if username:
            body["username"] = username
        response = client.post("/api/auth/sign-up", json=body)
        assert response.status_code == 201, response.text
        payload = response.json()
        return {
            "token": payload["token"],
            "user_id": payload["user"]["user_id"],
            "headers": {"Authorization": f"Bearer {payload['token']}"},
        }

    return _signup
