import json

import pytest
import requests

from evalpipe.errors import PermanentScoringFailure, TransientScoringFailure
from evalpipe.queue import build_payload
from evalpipe.services.scoring import (
    ScoringClient,
    build_prompt,
    normalize_question_result,
    normalize_response_result,
    parse_json_from_text,
)


class FakeResponse:
    def __init__(self, status_code=200, body=None, headers=None):
        self.status_code = status_code
        self._body = body
        self.headers = headers or {}

    def json(self):
        if self._body is None:
            raise ValueError("no json")
        return self._body


class FakeSession:
    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.requests = []

    def post(self, url, headers=None, json=None, timeout=None):
        self.requests.append({"url": url, "headers": headers, "json": json, "timeout": timeout})
        if self.exc:
            raise self.exc
        return self.response


def message(text, stop_reason="end_turn"):
    return {"content": [{"type": "text", "text": text}], "stop_reason": stop_reason}


def question_payload():
    return build_payload("question", "q1", "Why is the sky blue?", {"activityName": "Light", "subject": "Physics"})


def client_with(session):
    return ScoringClient(api_key="sk-test", model="claude-test", timeout=5, session=session)


def test_question_is_scored_from_model_json():
    body = {"bloomsLevel": "Analyze", "overallScore": 12, "clarityScore": "7.5", "strengths": ["clear"]}
    session = FakeSession(FakeResponse(200, message(json.dumps(body))))
    out = client_with(session)(question_payload())

    assert out["bloomsLevel"] == "analyze"
    assert out["overallScore"] == 10.0
    assert out["clarityScore"] == 7.5
    assert out["improvements"] == []

    sent = session.requests[0]
    assert sent["url"] == "https://api.anthropic.com/v1/messages"
    assert sent["headers"]["x-api-key"] == "sk-test"
    assert sent["json"]["model"] == "claude-test"
    assert "Why is the sky blue?" in sent["json"]["messages"][0]["content"]
    assert sent["timeout"] == 5


def test_json_is_found_in_fences_and_prose():
    assert parse_json_from_text('```json\n{"overallScore": 3}\n```') == {"overallScore": 3}
    assert parse_json_from_text('Here you go: {"overallScore": 4} hope it helps') == {"overallScore": 4}
    with pytest.raises(ValueError):
        parse_json_from_text("I cannot score this.")


def test_unknown_blooms_level_defaults_to_remember():
    assert normalize_question_result({"overallScore": 5, "bloomsLevel": "memorise"})["bloomsLevel"] == "remember"


def test_response_rating_is_derived_from_score():
    assert normalize_response_result({"overallScore": 8.5})["rating"] == "excellent"
    assert normalize_response_result({"overallScore": 6})["rating"] == "good"
    assert normalize_response_result({"overallScore": 2, "rating": "meh"})["rating"] == "needs_improvement"


def test_response_prompt_includes_case_scenario():
    payload = build_payload("response", "r1", "Lower the price.", {"questionContent": "Sales are falling."})
    system, user = build_prompt(payload)
    assert "case-study" in system
    assert "Sales are falling." in user and "Lower the price." in user


@pytest.mark.parametrize("status", [429, 500, 503, 529])
def test_retryable_http_statuses_are_transient(status):
    body = {"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}}
    session = FakeSession(FakeResponse(status, body, headers={"retry-after": "10"}))
    with pytest.raises(TransientScoringFailure) as exc:
        client_with(session)(question_payload())
    assert str(status) in str(exc.value)


@pytest.mark.parametrize("status", [400, 401, 403, 413])
def test_client_errors_are_permanent(status):
    body = {"type": "error", "error": {"type": "invalid_request_error", "message": "bad"}}
    with pytest.raises(PermanentScoringFailure):
        client_with(FakeSession(FakeResponse(status, body)))(question_payload())


def test_timeout_and_connection_errors_are_transient():
    with pytest.raises(TransientScoringFailure):
        client_with(FakeSession(exc=requests.exceptions.ReadTimeout()))(question_payload())
    with pytest.raises(TransientScoringFailure):
        client_with(FakeSession(exc=requests.exceptions.ConnectionError()))(question_payload())


def test_unparseable_output_is_transient_and_refusal_is_permanent():
    with pytest.raises(TransientScoringFailure):
        client_with(FakeSession(FakeResponse(200, message("no json here"))))(question_payload())
    with pytest.raises(PermanentScoringFailure):
        client_with(FakeSession(FakeResponse(200, message("", stop_reason="refusal"))))(question_payload())


def test_missing_key_is_permanent():
    client = ScoringClient(api_key=None, model="m", session=FakeSession())
    assert not client.configured
    with pytest.raises(PermanentScoringFailure):
        client(question_payload())
