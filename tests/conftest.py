import os
import sys
import time
from datetime import datetime, timedelta

import fakeredis
import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from evalpipe import create_app
from evalpipe.extensions import db
from evalpipe.models import Activity, Group, Question, Response
from evalpipe.pipeline import get_pipeline
from evalpipe.queue import QueueClient

ADMIN_KEY = "test-admin-key"


class StubScorer:
    """Scoring callable for tests: scripted errors first, then `result`."""

    def __init__(self, result=None, errors=(), delay=0.0):
        self.result = result if result is not None else {"overallScore": 7.0, "bloomsLevel": "apply"}
        self.errors = list(errors)
        self.delay = delay
        self.calls = []

    def __call__(self, payload):
        self.calls.append(payload)
        if self.delay:
            time.sleep(self.delay)
        if self.errors:
            err = self.errors.pop(0)
            if err is not None:
                raise err
        return dict(self.result) if isinstance(self.result, dict) else self.result


def make_queue(name="evaluation-test"):
    """rq-backed client on a private fakeredis server."""
    return QueueClient(fakeredis.FakeRedis(server=fakeredis.FakeServer()), name=name)


@pytest.fixture
def scorer():
    return StubScorer()


@pytest.fixture
def app(tmp_path, scorer):
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'test.db'}",
        "JOB_MAX_ATTEMPTS": 3,
        "JOB_BACKOFF_BASE": 0,
        "EVALUATION_WORKERS_ENABLED": True,
        "ANTHROPIC_API_KEY": None,
        "ADMIN_API_KEY": ADMIN_KEY,
        "RECONCILE_GRACE_SECONDS": 0,
    }, queue=make_queue(), scorer=scorer)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def pipeline(app):
    return get_pipeline(app)


@pytest.fixture
def client(app):
    return app.test_client()


class Seed:
    """Row factory; every helper commits so worker sessions can see the rows."""

    def __init__(self):
        self._tick = datetime(2026, 1, 1)

    def _next_time(self):
        self._tick += timedelta(seconds=1)
        return self._tick

    def group(self, name="Class 7B"):
        g = Group(name=name)
        db.session.add(g)
        db.session.commit()
        return g

    def activity(self, group=None, ai_rating_enabled=True, name="Photosynthesis"):
        group = group or self.group()
        a = Activity(group_id=group.id, name=name, ai_rating_enabled=ai_rating_enabled,
                     subject="Biology", topic="Plants", education_level="secondary")
        db.session.add(a)
        db.session.commit()
        return a

    def question(self, activity=None, content="Why do leaves change colour in autumn?",
                 status="pending", is_deleted=False):
        activity = activity or self.activity()
        q = Question(activity_id=activity.id, content=content, evaluation_status=status,
                     is_deleted=is_deleted, created_at=self._next_time())
        db.session.add(q)
        db.session.commit()
        return q

    def response(self, question=None, content="The chlorophyll breaks down first.", status="pending",
                 is_deleted=False):
        question = question or self.question()
        r = Response(question_id=question.id, content=content, evaluation_status=status,
                     is_deleted=is_deleted, created_at=self._next_time())
        db.session.add(r)
        db.session.commit()
        return r


@pytest.fixture
def seed(app):
    return Seed()


def admin_headers():
    return {"X-Admin-Key": ADMIN_KEY}
