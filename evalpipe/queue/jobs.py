"""Evaluation job payloads and the view of a job stored in rq.

Payloads are a closed union (`JobPayload`); anything dispatching on a payload
should end in ``assert_never`` so a new kind cannot be silently ignored. The
payload travels to rq as a plain dict (``payload_to_dict``).
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Union

from rq import Retry
from rq.job import JobStatus


class JobState(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    DELAYED = "delayed"
    PAUSED = "paused"


class JobKind(str, Enum):
    QUESTION_EVALUATION = "question_evaluation"
    RESPONSE_EVALUATION = "response_evaluation"

    @property
    def entity_kind(self) -> str:
        return ENTITY_KINDS[self]


ENTITY_KINDS = {
    JobKind.QUESTION_EVALUATION: "question",
    JobKind.RESPONSE_EVALUATION: "response",
}


def parse_kind(value) -> JobKind:
    """Accept 'question_evaluation', 'question' or a JobKind."""
    if isinstance(value, JobKind):
        return value
    value = (value or "").strip().lower()
    for kind, short in ENTITY_KINDS.items():
        if value in (kind.value, short):
            return kind
    raise ValueError(f"unknown job kind: {value!r}")


@dataclass(frozen=True)
class EvaluationContext:
    activity_name: str = ""
    group_name: str = ""
    subject: Optional[str] = None
    topic: Optional[str] = None
    education_level: Optional[str] = None
    reference_material: Optional[str] = None
    # responses are scored against the question they answer
    question_content: Optional[str] = None

    @classmethod
    def from_dict(cls, data) -> "EvaluationContext":
        data = data or {}
        aliases = {
            "activityName": "activity_name",
            "groupName": "group_name",
            "educationLevel": "education_level",
            "ragContext": "reference_material",
            "referenceMaterial": "reference_material",
            "questionContent": "question_content",
        }
        known = {f for f in cls.__dataclass_fields__}
        kwargs = {}
        for key, val in data.items():
            key = aliases.get(key, key)
            if key in known:
                kwargs[key] = val
        return cls(**kwargs)


@dataclass(frozen=True)
class QuestionEvalPayload:
    question_id: str
    content: str
    context: EvaluationContext = field(default_factory=EvaluationContext)
    activity_id: Optional[str] = None

    @property
    def kind(self) -> JobKind:
        return JobKind.QUESTION_EVALUATION

    @property
    def entity_id(self) -> str:
        return self.question_id


@dataclass(frozen=True)
class ResponseEvalPayload:
    response_id: str
    content: str
    context: EvaluationContext = field(default_factory=EvaluationContext)
    question_id: Optional[str] = None
    activity_id: Optional[str] = None

    @property
    def kind(self) -> JobKind:
        return JobKind.RESPONSE_EVALUATION

    @property
    def entity_id(self) -> str:
        return self.response_id


JobPayload = Union[QuestionEvalPayload, ResponseEvalPayload]

_PAYLOAD_TYPES = {
    JobKind.QUESTION_EVALUATION: QuestionEvalPayload,
    JobKind.RESPONSE_EVALUATION: ResponseEvalPayload,
}


def build_payload(kind, entity_id, content, context=None, **ids) -> JobPayload:
    kind = parse_kind(kind)
    if not isinstance(context, EvaluationContext):
        context = EvaluationContext.from_dict(context)
    if kind is JobKind.QUESTION_EVALUATION:
        return QuestionEvalPayload(question_id=entity_id, content=content, context=context,
                                   activity_id=ids.get("activity_id"))
    return ResponseEvalPayload(response_id=entity_id, content=content, context=context,
                               question_id=ids.get("question_id"), activity_id=ids.get("activity_id"))


def payload_to_dict(payload: JobPayload) -> dict:
    return asdict(payload)


def payload_from_dict(kind, data: dict) -> JobPayload:
    kind = parse_kind(kind)
    data = dict(data)
    data["context"] = EvaluationContext.from_dict(data.get("context"))
    return _PAYLOAD_TYPES[kind](**data)


def entity_key(kind, entity_id) -> str:
    return f"{parse_kind(kind).value}:{entity_id}"


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff: base * 2^(attempts-1), capped at max_delay."""
    max_attempts: int = 3
    base_delay: float = 5.0
    max_delay: float = 300.0

    def delay_for(self, attempts: int) -> float:
        if self.base_delay <= 0:
            return 0.0
        return min(self.max_delay, self.base_delay * (2 ** max(attempts - 1, 0)))

    def exhausted(self, attempts: int) -> bool:
        return attempts >= self.max_attempts

    def to_rq(self) -> Optional[Retry]:
        """rq Retry for the attempts after the first; None when only one attempt is allowed."""
        retries = self.max_attempts - 1
        if retries < 1:
            return None
        intervals = [int(round(self.delay_for(n))) for n in range(1, retries + 1)]
        return Retry(max=retries, interval=intervals if any(intervals) else 0)

    @classmethod
    def from_config(cls, config) -> "RetryPolicy":
        return cls(
            max_attempts=int(config.get("JOB_MAX_ATTEMPTS", 3)),
            base_delay=float(config.get("JOB_BACKOFF_BASE", 5.0)),
            max_delay=float(config.get("JOB_BACKOFF_MAX", 300.0)),
        )


# rq job status -> queue state reported by this package
RQ_STATES = {
    JobStatus.QUEUED: JobState.WAITING,
    JobStatus.STARTED: JobState.ACTIVE,
    JobStatus.FINISHED: JobState.COMPLETED,
    JobStatus.FAILED: JobState.FAILED,
    JobStatus.STOPPED: JobState.FAILED,
    JobStatus.CANCELED: JobState.FAILED,
    JobStatus.SCHEDULED: JobState.DELAYED,
    JobStatus.DEFERRED: JobState.DELAYED,
}


@dataclass
class Job:
    """Evaluation job as read back from rq.

    rq owns the stored record; attempts, the attempt cap and the last error
    live in the job's ``meta``.
    """
    id: str
    kind: JobKind
    payload: JobPayload
    max_attempts: int = 1
    state: JobState = JobState.WAITING
    attempts: int = 0
    enqueued_at: Optional[datetime] = None
    last_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None
    worker_id: Optional[str] = None
    finished_at: Optional[datetime] = None

    @property
    def entity_id(self) -> str:
        return self.payload.entity_id

    @property
    def entity_key(self) -> str:
        return entity_key(self.kind, self.entity_id)

    @classmethod
    def from_rq(cls, rq_job, status=None, paused=False) -> "Job":
        kind_value, payload = rq_job.args[:2]
        kind = parse_kind(kind_value)
        meta = rq_job.meta or {}
        state = RQ_STATES.get(status or rq_job.get_status(), JobState.WAITING)
        if paused and state is JobState.WAITING:
            state = JobState.PAUSED
        return cls(
            id=rq_job.id,
            kind=kind,
            payload=payload_from_dict(kind, payload),
            max_attempts=int(meta.get("max_attempts", 1)),
            state=state,
            attempts=int(meta.get("attempts", 0)),
            enqueued_at=rq_job.enqueued_at,
            last_attempt_at=rq_job.started_at,
            last_error=meta.get("last_error"),
            worker_id=getattr(rq_job, "worker_name", None),
            finished_at=rq_job.ended_at,
        )
