from .client import QueueClient
from .jobs import (
    EvaluationContext,
    Job,
    JobKind,
    JobPayload,
    JobState,
    QuestionEvalPayload,
    ResponseEvalPayload,
    RetryPolicy,
    build_payload,
    entity_key,
    parse_kind,
)


def connect_queue(config) -> QueueClient:
    """Build the queue client for this process from app config.

    Called once by the app factory; everything else receives the instance.
    """
    return QueueClient.from_config(config)


__all__ = [
    "QueueClient",
    "connect_queue",
    "EvaluationContext",
    "Job",
    "JobKind",
    "JobPayload",
    "JobState",
    "QuestionEvalPayload",
    "ResponseEvalPayload",
    "RetryPolicy",
    "build_payload",
    "entity_key",
    "parse_kind",
]
