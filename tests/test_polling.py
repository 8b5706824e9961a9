import pytest

from evalpipe.errors import EntityNotFound, PollTimeout
from evalpipe.services.polling import EvaluationStatusClient, poll_status


class FakeTime:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def clock(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def test_stops_at_terminal_status():
    t = FakeTime()
    answers = iter([{"status": "evaluating"}, {"status": "evaluating"}, {"status": "completed", "result": {}}])
    out = poll_status(lambda: next(answers), interval=2, timeout=60, sleep=t.sleep, clock=t.clock)
    assert out["status"] == "completed"
    assert t.sleeps == [2, 2]


def test_gives_up_after_timeout():
    t = FakeTime()
    with pytest.raises(PollTimeout) as exc:
        poll_status(lambda: {"status": "evaluating"}, interval=2, timeout=7, sleep=t.sleep, clock=t.clock)
    assert exc.value.last_status == "evaluating"
    assert len(t.sleeps) == 3
    assert t.now <= 7


def test_error_status_is_terminal():
    t = FakeTime()
    out = poll_status(lambda: {"status": "error", "lastError": "HTTP 400"}, sleep=t.sleep, clock=t.clock)
    assert out["lastError"] == "HTTP 400"
    assert t.sleeps == []


class FlaskSession:
    """Routes requests through the Flask test client instead of the network."""

    def __init__(self, client):
        self.client = client

    def request(self, method, url, headers=None, timeout=None, json=None):
        path = url.replace("http://testserver", "")
        return FlaskResponse(self.client.open(path, method=method, headers=headers, json=json))


class FlaskResponse:
    def __init__(self, resp):
        self.status_code = resp.status_code
        self._resp = resp

    def json(self):
        return self._resp.get_json()


def test_status_client_against_app(client, seed, pipeline, scorer):
    q = seed.question()
    api = EvaluationStatusClient("http://testserver", session=FlaskSession(client))
    handle = api.request_evaluation("question", q.id)
    assert api.status("question", q.id) == {"status": "evaluating", "jobId": handle["jobId"]}

    pipeline.pool.work(burst=True)
    done = api.wait("question", q.id, interval=0.01, timeout=1)
    assert done["status"] == "completed"

    with pytest.raises(EntityNotFound):
        api.status("response", "missing")
