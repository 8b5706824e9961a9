from datetime import datetime

import pytest

from evalpipe.errors import AlreadyInFlight, EntityNotFound, InvalidStatusTransition
from evalpipe.extensions import db
from evalpipe.models import EvaluationResult
from evalpipe.services.status import EvaluationStatus, can_transition, short_reason


def test_transition_table():
    assert can_transition("pending", "evaluating")
    assert can_transition("completed", "evaluating")
    assert can_transition("error", "evaluating")
    assert not can_transition("pending", "completed")
    assert not can_transition("completed", "error")


def test_begin_commits_then_complete(pipeline, seed):
    tracker = pipeline.tracker
    seen = []
    tracker.add_listener(lambda kind, eid, old, new: seen.append((old.value, new.value)))
    q = seed.question()

    assert tracker.begin("question", q.id, "job-1").status is EvaluationStatus.PENDING
    db.session.rollback()
    view = tracker.read("question", q.id)
    assert view.status is EvaluationStatus.EVALUATING and view.job_id == "job-1"
    assert "result" not in view.to_dict()

    assert tracker.complete("question", q.id, "job-1", {"overallScore": 6.5}, ai_model="m", processing_time_ms=12)
    view = tracker.read("question", q.id)
    assert view.to_dict()["result"] == {"overallScore": 6.5}
    row = db.session.execute(db.select(EvaluationResult)).scalar_one()
    assert row.overall_score == 6.5 and row.job_id == "job-1"
    assert seen == [("pending", "evaluating"), ("evaluating", "completed")]


def test_revert_restores_previous_state(pipeline, seed):
    tracker = pipeline.tracker
    q = seed.question(status="error")
    tracker.begin("question", q.id, "job-0")
    tracker.fail("question", q.id, "job-0", "HTTP 529")

    previous = tracker.begin("question", q.id, "job-1")
    assert tracker.revert("question", q.id, "job-1", previous)
    view = tracker.read("question", q.id)
    assert view.status is EvaluationStatus.ERROR
    assert view.job_id == "job-0" and view.last_error == "HTTP 529"


def test_revert_does_not_touch_entity_held_by_other_job(pipeline, seed):
    tracker = pipeline.tracker
    q = seed.question()
    previous = tracker.begin("question", q.id, "job-1")
    assert tracker.complete("question", q.id, "job-1", {"overallScore": 5})
    assert tracker.revert("question", q.id, "job-1", previous) is False
    assert tracker.read("question", q.id).status is EvaluationStatus.COMPLETED


def test_in_flight_lists_evaluating_entities(pipeline, seed):
    tracker = pipeline.tracker
    q = seed.question()
    r = seed.response()
    seed.question(status="completed")
    tracker.begin("question", q.id, "job-q")
    tracker.begin("response", r.id, "job-r")
    found = sorted(tracker.in_flight(), key=lambda row: row[2])
    assert [(k.entity_kind, eid, jid) for k, eid, jid in found] == [
        ("question", q.id, "job-q"), ("response", r.id, "job-r")]
    assert tracker.in_flight(requested_before=datetime(2000, 1, 1)) == []


def test_second_begin_reports_holder(pipeline, seed):
    tracker = pipeline.tracker
    q = seed.question()
    tracker.begin("question", q.id, "job-1")
    with pytest.raises(AlreadyInFlight) as exc:
        tracker.begin("question", q.id, "job-2")
    assert exc.value.job_id == "job-1"


def test_pending_cannot_jump_to_completed(pipeline, seed):
    q = seed.question()
    with pytest.raises(InvalidStatusTransition):
        pipeline.tracker.complete("question", q.id, "job-1", {"overallScore": 1})
    assert pipeline.tracker.read("question", q.id).status is EvaluationStatus.PENDING


def test_terminal_write_from_stale_job_is_skipped(pipeline, seed):
    tracker = pipeline.tracker
    q = seed.question()
    tracker.begin("question", q.id, "job-2")
    assert tracker.fail("question", q.id, "job-1", "old failure") is False
    assert tracker.read("question", q.id).status is EvaluationStatus.EVALUATING


def test_error_view_carries_short_reason(pipeline, seed):
    tracker = pipeline.tracker
    q = seed.question()
    tracker.begin("question", q.id, "job-1")
    assert tracker.fail("question", q.id, "job-1", "x" * 500)
    body = tracker.read("question", q.id).to_dict()
    assert body["status"] == "error"
    assert len(body["lastError"]) == 200 and body["lastError"].endswith("...")
    assert "result" not in body


def test_unknown_entity(pipeline):
    with pytest.raises(EntityNotFound):
        pipeline.tracker.read("response", "missing")


def test_short_reason_collapses_whitespace():
    assert short_reason("  HTTP\n 529 \t overloaded ") == "HTTP 529 overloaded"
    assert short_reason(None) == "evaluation failed"
