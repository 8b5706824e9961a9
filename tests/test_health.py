from datetime import datetime, timedelta, timezone

import fakeredis
from conftest import make_queue
from rq import SimpleWorker

from evalpipe.queue import QueueClient
from evalpipe.services.health import HealthMonitor


class Clock:
    def __init__(self, t=None):
        self.t = t or datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.t


def test_counts_after_five_enqueued_two_completed(pipeline, seed):
    ids = [seed.question(content=f"Q{i}?").id for i in range(5)]
    for qid in ids:
        pipeline.producer.enqueue_entity("question", qid)
    assert pipeline.pool.work(burst=True, max_jobs=2) == 2

    report = pipeline.health.check()
    assert report["storeReachable"] is True
    assert report["queueCounts"]["waiting"] == 3
    assert report["queueCounts"]["completed"] == 2
    assert report["queueCounts"]["active"] == 0
    assert report["queueCounts"]["failed"] == 0
    assert report["workersEnabled"] is False  # no scoring key in tests


def test_check_does_not_change_queue(pipeline, seed):
    pipeline.producer.enqueue_entity("question", seed.question().id)
    before = pipeline.queue.counts()
    pipeline.health.check()
    pipeline.health.check()
    assert pipeline.queue.counts() == before


def test_worker_liveness_follows_heartbeats():
    queue = make_queue()
    clock = Clock()
    monitor = HealthMonitor(queue, stale_after=60, clock=clock)
    assert monitor.check()["workersAlive"] is False

    SimpleWorker([queue.queue], connection=queue.connection, name="host-1").register_birth()
    seen = queue.workers()[0]["last_heartbeat"]
    clock.t = seen + timedelta(seconds=30)
    report = monitor.check()
    assert report["workersAlive"] is True
    assert report["workers"][0]["id"] == "host-1"
    assert report["workers"][0]["lastSeenSecondsAgo"] == 30.0
    assert report["workers"][0]["currentJobId"] is None

    clock.t = seen + timedelta(seconds=61)
    assert monitor.check()["workersAlive"] is False


def test_unreachable_store():
    server = fakeredis.FakeServer()
    queue = QueueClient(fakeredis.FakeRedis(server=server), name="down")
    server.connected = False
    monitor = HealthMonitor(queue)
    report = monitor.check()
    assert report["storeReachable"] is False
    assert report["queueCounts"]["waiting"] == 0
    assert monitor.liveness() == {"status": "degraded", "storeReachable": False}


def test_paused_queue_is_reported(pipeline, seed):
    pipeline.producer.enqueue_entity("question", seed.question().id)
    pipeline.queue.pause()
    report = pipeline.health.check()
    assert report["paused"] is True
    assert report["queueCounts"]["paused"] == 1
    assert report["queueCounts"]["waiting"] == 0
