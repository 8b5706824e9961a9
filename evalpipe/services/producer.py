"""Validates evaluation requests and turns them into queued jobs."""
import logging
from dataclasses import asdict, dataclass
from typing import Optional

from ..errors import AlreadyInFlight, EntityNotFound, InvalidPayload, QueueUnavailable
from ..extensions import db
from ..queue.jobs import EvaluationContext, JobKind, RetryPolicy, build_payload, parse_kind
from .status import ENTITY_MODELS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobHandle:
    job_id: Optional[str]
    kind: JobKind
    entity_id: str
    coalesced: bool = False

    def to_dict(self):
        return {"jobId": self.job_id, "kind": self.kind.value, "entityId": self.entity_id,
                "coalesced": self.coalesced}


class EvaluationProducer:

    def __init__(self, queue, tracker, retry_policy=None, max_content_chars=8000):
        self.queue = queue
        self.tracker = tracker
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_content_chars = max_content_chars

    def validate(self, kind, content, context):
        if content is None or not str(content).strip():
            raise InvalidPayload("content is empty")
        content = str(content).strip()
        if len(content) > self.max_content_chars:
            # rejected rather than truncated: a clipped text would be scored as if complete
            raise InvalidPayload(
                f"content is {len(content)} characters, limit is {self.max_content_chars}")
        if kind is JobKind.RESPONSE_EVALUATION and not (context.question_content or "").strip():
            raise InvalidPayload("response evaluation needs the question text")
        return content

    def enqueue(self, kind, entity_id, content, context=None, **ids) -> JobHandle:
        """Queue one evaluation; returns the in-flight handle if one exists.

        The entity is committed as 'evaluating' for a reserved job id before
        the job is queued, so a worker never finds its entity in an older
        state. If the queue store refuses the job the flip is reverted.
        """
        kind = parse_kind(kind)
        if not isinstance(context, EvaluationContext):
            context = EvaluationContext.from_dict(context)
        content = self.validate(kind, content, context)
        payload = build_payload(kind, entity_id, content, context, **ids)

        job_id = self.queue.reserve_id()
        try:
            previous = self.tracker.begin(kind, entity_id, job_id)
        except AlreadyInFlight as exc:
            logger.info("%s %s already evaluating (job %s), coalescing", kind.entity_kind, entity_id, exc.job_id)
            return JobHandle(exc.job_id, kind, entity_id, coalesced=True)

        try:
            self.queue.enqueue(job_id, payload, self.retry_policy)
        except QueueUnavailable:
            self.tracker.revert(kind, entity_id, job_id, previous)
            logger.warning("queue unavailable, %s %s left %s", kind.entity_kind, entity_id, previous.status.value)
            raise
        except Exception:
            self.tracker.revert(kind, entity_id, job_id, previous)
            raise

        logger.info("queued job %s for %s %s", job_id, kind.entity_kind, entity_id)
        return JobHandle(job_id, kind, entity_id)

    def enqueue_question(self, question) -> JobHandle:
        if question is None or question.is_deleted:
            raise EntityNotFound("question not found")
        activity = question.activity
        return self.enqueue(
            JobKind.QUESTION_EVALUATION,
            question.id,
            question.content,
            activity_context(activity),
            activity_id=question.activity_id,
        )

    def enqueue_entity(self, kind, entity_id, content=None, context=None) -> JobHandle:
        """Queue an evaluation for a stored entity.

        `content` and `context` default to what the database holds; a passed
        context is merged over the one derived from the activity.
        """
        try:
            kind = parse_kind(kind)
        except ValueError as exc:
            raise InvalidPayload(str(exc)) from exc
        if not entity_id:
            raise InvalidPayload("entityId is required")
        entity = db.session.get(ENTITY_MODELS[kind], entity_id)
        if entity is None or entity.is_deleted:
            raise EntityNotFound(f"{kind.entity_kind} {entity_id} not found")
        if content is None and context is None:
            if kind is JobKind.RESPONSE_EVALUATION:
                return self.enqueue_response(entity)
            return self.enqueue_question(entity)

        if kind is JobKind.RESPONSE_EVALUATION:
            question = entity.question
            ctx = activity_context(question.activity, question_content=question.content)
            ids = {"question_id": question.id, "activity_id": question.activity_id}
        else:
            ctx = activity_context(entity.activity)
            ids = {"activity_id": entity.activity_id}
        if context:
            ctx = EvaluationContext.from_dict({**asdict(ctx), **context})
        return self.enqueue(kind, entity.id, entity.content if content is None else content, ctx, **ids)

    def enqueue_response(self, response) -> JobHandle:
        if response is None or response.is_deleted:
            raise EntityNotFound("response not found")
        question = response.question
        ctx = activity_context(question.activity, question_content=question.content)
        return self.enqueue(
            JobKind.RESPONSE_EVALUATION,
            response.id,
            response.content,
            ctx,
            question_id=question.id,
            activity_id=question.activity_id,
        )


def activity_context(activity, **extra) -> EvaluationContext:
    return EvaluationContext(
        activity_name=activity.name if activity else "",
        group_name=activity.group.name if activity is not None and activity.group is not None else "",
        subject=getattr(activity, "subject", None),
        topic=getattr(activity, "topic", None),
        education_level=getattr(activity, "education_level", None),
        **extra,
    )

