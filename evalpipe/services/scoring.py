"""Scoring service client (Anthropic Messages HTTP API via `requests`).

The client makes exactly one HTTP call per job attempt; retries belong to the
queue. Failures are classified here:

- TransientScoringFailure: timeouts, connection errors, 429, 5xx/529,
  unparseable model output.
- PermanentScoringFailure: other 4xx (bad request, auth, payload too large),
  policy refusals, missing credentials.
"""
import json
import logging
import re
from typing import Any, Dict, assert_never

import requests

from ..errors import PermanentScoringFailure, TransientScoringFailure
from ..queue.jobs import QuestionEvalPayload, ResponseEvalPayload

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"

BLOOMS_LEVELS = ["remember", "understand", "apply", "analyze", "evaluate", "create"]
RATINGS = ["excellent", "good", "average", "needs_improvement"]

QUESTION_SYSTEM_PROMPT = """You assess student-written questions using Bloom's Taxonomy.
Judge each question's cognitive level, clarity and educational value.

Levels, lowest to highest:
1. Remember - recall facts and basic concepts
2. Understand - explain ideas or concepts
3. Apply - use information in new situations
4. Analyze - draw connections among ideas
5. Evaluate - justify a stand or decision
6. Create - produce new or original work

Reply with a single JSON object and nothing else."""

QUESTION_SCHEMA_HINT = """{
  "bloomsLevel": "remember | understand | apply | analyze | evaluate | create",
  "bloomsConfidence": 0.0-1.0,
  "overallScore": 0.0-10.0,
  "creativityScore": 0.0-10.0,
  "clarityScore": 0.0-10.0,
  "relevanceScore": 0.0-10.0,
  "complexityScore": 0.0-10.0,
  "evaluationText": "feedback explaining the scores",
  "strengths": ["..."],
  "improvements": ["..."],
  "keywordsFound": ["..."],
  "enhancedQuestions": ["2-3 rewrites at higher Bloom's levels"]
}"""

RESPONSE_SYSTEM_PROMPT = """You grade student answers to case-study questions.
Weigh problem identification (40%), solution quality (40%) and clarity (20%).

Reply with a single JSON object and nothing else."""

RESPONSE_SCHEMA_HINT = """{
  "overallScore": 0.0-10.0,
  "problemIdentificationScore": 0.0-10.0,
  "solutionQualityScore": 0.0-10.0,
  "clarityScore": 0.0-10.0,
  "rating": "excellent | good | average | needs_improvement",
  "feedback": "feedback for the student",
  "strengths": ["..."],
  "areasForImprovement": ["..."]
}"""


def _context_lines(ctx):
    lines = [
        f"- Activity: {ctx.activity_name or 'Not specified'}",
        f"- Group: {ctx.group_name or 'Not specified'}",
        f"- Subject: {ctx.subject or 'Not specified'}",
        f"- Topic: {ctx.topic or 'Not specified'}",
        f"- Education level: {ctx.education_level or 'Not specified'}",
    ]
    if ctx.reference_material:
        lines.append(f"- Reference material: {ctx.reference_material}")
    return lines


def build_prompt(payload):
    """Return (system, user) prompt text for a job payload."""
    if isinstance(payload, QuestionEvalPayload):
        user = "\n".join(
            ["Evaluate this student-generated question:", "", f'Question: "{payload.content}"', "", "Context:"]
            + _context_lines(payload.context)
            + ["", "Answer in this JSON shape:", QUESTION_SCHEMA_HINT]
        )
        return QUESTION_SYSTEM_PROMPT, user
    elif isinstance(payload, ResponseEvalPayload):
        user = "\n".join(
            ["Evaluate this case-study response:", "",
             f'Case scenario: "{payload.context.question_content or ""}"', "",
             f'Student response: "{payload.content}"', "", "Context:"]
            + _context_lines(payload.context)
            + ["", "Answer in this JSON shape:", RESPONSE_SCHEMA_HINT]
        )
        return RESPONSE_SYSTEM_PROMPT, user
    else:
        assert_never(payload)


_FENCED = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?```", re.IGNORECASE)
_OBJECT = re.compile(r"\{[\s\S]*\}")
_CONTROL = re.compile(r"[\x00-\x1f\x7f]")


def parse_json_from_text(text) -> Dict[str, Any]:
    """Pull a JSON object out of model text: plain, fenced, or the outermost {...}."""
    candidates = [text]
    m = _FENCED.search(text)
    if m:
        candidates.append(m.group(1).strip())
    m = _OBJECT.search(text)
    if m:
        candidates.append(m.group(0))
    candidates.append(_CONTROL.sub(" ", text).strip())
    for cand in candidates:
        try:
            data = json.loads(cand)
        except (TypeError, ValueError):
            continue
        if isinstance(data, dict):
            return data
    raise ValueError(f"no JSON object in model output: {text[:200]!r}")


def _score(val, default=None):
    try:
        return max(0.0, min(10.0, float(val)))
    except (TypeError, ValueError):
        return default


def _str_list(val):
    if not isinstance(val, list):
        return []
    return [str(v) for v in val if v is not None]


def normalize_question_result(data):
    if _score(data.get("overallScore")) is None:
        raise TransientScoringFailure("model output has no overallScore")
    level = str(data.get("bloomsLevel") or "").strip().lower()
    out = dict(data)
    out["bloomsLevel"] = level if level in BLOOMS_LEVELS else "remember"
    for key in ("overallScore", "creativityScore", "clarityScore", "relevanceScore", "complexityScore"):
        if key in out:
            out[key] = _score(out[key])
    try:
        out["bloomsConfidence"] = max(0.0, min(1.0, float(data.get("bloomsConfidence", 0.0))))
    except (TypeError, ValueError):
        out["bloomsConfidence"] = 0.0
    for key in ("strengths", "improvements", "keywordsFound", "enhancedQuestions"):
        out[key] = _str_list(data.get(key))
    out["evaluationText"] = str(data.get("evaluationText") or "")
    return out


def rating_for(score):
    if score >= 8:
        return "excellent"
    if score >= 6:
        return "good"
    if score >= 4:
        return "average"
    return "needs_improvement"


def normalize_response_result(data):
    overall = _score(data.get("overallScore"))
    if overall is None:
        raise TransientScoringFailure("model output has no overallScore")
    out = dict(data)
    out["overallScore"] = overall
    for key in ("problemIdentificationScore", "solutionQualityScore", "clarityScore"):
        if key in out:
            out[key] = _score(out[key])
    if out.get("rating") not in RATINGS:
        out["rating"] = rating_for(overall)
    out["feedback"] = str(data.get("feedback") or "Evaluation completed.")
    out["strengths"] = _str_list(data.get("strengths"))
    out["areasForImprovement"] = _str_list(data.get("areasForImprovement"))
    return out


class ScoringClient:
    """Callable scorer: ``client(payload) -> dict``.

    Built once at startup and handed to the job processor.
    """

    def __init__(self, api_key, model, base_url="https://api.anthropic.com", timeout=90.0,
                 max_tokens=2048, session=None):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config):
        return cls(
            api_key=config.get("ANTHROPIC_API_KEY"),
            model=config.get("ANTHROPIC_MODEL"),
            base_url=config.get("ANTHROPIC_BASE_URL") or "https://api.anthropic.com",
            timeout=float(config.get("SCORING_TIMEOUT", 90)),
            max_tokens=int(config.get("SCORING_MAX_TOKENS", 2048)),
        )

    @property
    def configured(self):
        return bool(self.api_key)

    def __call__(self, payload):
        system, user = build_prompt(payload)
        text = self.complete(system, user)
        try:
            data = parse_json_from_text(text)
        except ValueError as exc:
            raise TransientScoringFailure(str(exc)) from exc
        if isinstance(payload, QuestionEvalPayload):
            return normalize_question_result(data)
        elif isinstance(payload, ResponseEvalPayload):
            return normalize_response_result(data)
        else:
            assert_never(payload)

    def complete(self, system, user) -> str:
        if not self.api_key:
            raise PermanentScoringFailure("scoring service is not configured")
        body = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "system": system,
            "messages": [{"role": "user", "content": user}],
        }
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }
        try:
            r = self.session.post(f"{self.base_url}/v1/messages", headers=headers, json=body, timeout=self.timeout)
        except requests.exceptions.Timeout as exc:
            raise TransientScoringFailure(f"scoring request timed out after {self.timeout}s") from exc
        except requests.exceptions.RequestException as exc:
            raise TransientScoringFailure(f"scoring request failed: {exc.__class__.__name__}") from exc

        if r.status_code >= 400:
            raise classify_http_error(r)

        try:
            jr = r.json()
        except ValueError as exc:
            raise TransientScoringFailure("scoring service returned non-JSON body") from exc

        if jr.get("stop_reason") == "refusal":
            raise PermanentScoringFailure("content was declined by the scoring model")
        parts = [c.get("text", "") for c in jr.get("content") or [] if isinstance(c, dict) and c.get("type") == "text"]
        text = "\n".join(p for p in parts if p)
        if not text:
            raise TransientScoringFailure("scoring service returned no text")
        logger.debug("scoring response stop_reason=%s chars=%d", jr.get("stop_reason"), len(text))
        return text


def classify_http_error(r):
    status = r.status_code
    err_type = None
    message = None
    try:
        err = (r.json() or {}).get("error") or {}
        err_type = err.get("type")
        message = err.get("message")
    except ValueError:
        pass
    detail = f"scoring service HTTP {status}" + (f" ({err_type})" if err_type else "")
    if status in (408, 409, 429) or status >= 500:
        retry_after = r.headers.get("retry-after")
        if retry_after:
            detail += f", retry after {retry_after}s"
        logger.warning("%s: %s", detail, (message or "")[:500])
        return TransientScoringFailure(detail)
    logger.error("%s: %s", detail, (message or "")[:500])
    return PermanentScoringFailure(detail)
