from conftest import admin_headers

from evalpipe.errors import QueueUnavailable


def test_enqueue_returns_202_and_job_id(client, seed, pipeline):
    q = seed.question()
    r = client.post("/api/queue/evaluate", json={"kind": "question", "entityId": q.id})
    assert r.status_code == 202
    body = r.get_json()
    assert body["jobId"] and body["coalesced"] is False

    again = client.post("/api/queue/evaluate", json={"kind": "question_evaluation", "entityId": q.id})
    assert again.status_code == 202
    assert again.get_json() == {**body, "coalesced": True}


def test_enqueue_validation_errors(client, seed):
    q = seed.question()
    assert client.post("/api/queue/evaluate", data="nope", content_type="text/plain").status_code == 400
    r = client.post("/api/queue/evaluate", json={"kind": "essay", "entityId": q.id})
    assert r.status_code == 400 and r.get_json()["code"] == "invalid_payload"
    r = client.post("/api/queue/evaluate", json={"kind": "question", "entityId": q.id, "content": " "})
    assert r.status_code == 400
    r = client.post("/api/queue/evaluate", json={"kind": "question", "entityId": "missing"})
    assert r.status_code == 404 and r.get_json()["code"] == "not_found"


def test_enqueue_when_queue_is_down(client, seed, pipeline, monkeypatch):
    q = seed.question()

    def down(*args):
        raise QueueUnavailable("queue store unreachable")

    monkeypatch.setattr(pipeline.queue, "enqueue", down)
    r = client.post("/api/queue/evaluate", json={"kind": "question", "entityId": q.id})
    assert r.status_code == 503
    assert r.get_json()["code"] == "queue_unavailable"
    status = client.get(f"/api/questions/{q.id}/evaluation-status").get_json()
    assert status["status"] == "pending"


def test_status_endpoint_through_completion(client, seed, pipeline, scorer):
    scorer.result = {"overallScore": 8.2, "bloomsLevel": "analyze"}
    q = seed.question()
    job_id = client.post("/api/queue/evaluate", json={"kind": "question", "entityId": q.id}).get_json()["jobId"]

    body = client.get(f"/api/questions/{q.id}/evaluation-status").get_json()
    assert body == {"status": "evaluating", "jobId": job_id}

    pipeline.pool.work(burst=True)
    body = client.get(f"/api/questions/{q.id}/evaluation-status").get_json()
    assert body["status"] == "completed"
    assert body["result"]["overallScore"] == 8.2
    assert "lastError" not in body


def test_response_status_and_unknown_ids(client, seed):
    r = seed.response()
    assert client.get(f"/api/responses/{r.id}/evaluation-status").get_json()["status"] == "pending"
    assert client.get("/api/responses/nope/evaluation-status").status_code == 404


def test_bulk_requires_admin_key(client):
    assert client.post("/api/queue/evaluate/bulk").status_code == 401
    r = client.post("/api/queue/evaluate/bulk", headers={"X-Admin-Key": "wrong"})
    assert r.status_code == 403
    assert r.get_json()["code"] == "forbidden"


def test_bulk_backfill_and_summary(client, seed):
    activity = seed.activity()
    for i in range(3):
        seed.question(activity, content=f"Q{i}?")
    seed.question(activity, status="completed")

    summary = client.get(f"/api/queue/evaluate/bulk?activityId={activity.id}", headers=admin_headers())
    assert summary.get_json() == {"unevaluated": 3, "total": 4, "evaluated": 1}

    r = client.post(f"/api/queue/evaluate/bulk?activityId={activity.id}&limit=2", headers=admin_headers())
    body = r.get_json()
    assert r.status_code == 200
    assert body["queuedCount"] == 2 and body["failedCount"] == 0
    assert len(body["jobIds"]) == 2 and body["perItemErrors"] == []

    r = client.post("/api/queue/evaluate/bulk?limit=-1", headers=admin_headers())
    assert r.status_code == 400


def test_health_endpoints(client, seed, pipeline):
    assert client.get("/api/health").get_json() == {"status": "ok", "storeReachable": True}
    assert client.get("/api/health/queue").status_code == 401

    client.post("/api/queue/evaluate", json={"kind": "question", "entityId": seed.question().id})
    body = client.get("/api/health/queue", headers=admin_headers()).get_json()
    assert body["storeReachable"] is True
    assert body["queueCounts"]["waiting"] == 1
