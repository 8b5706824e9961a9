"""Bulk enqueue of entities that were never evaluated."""
import logging
from dataclasses import dataclass, field
from typing import List

from sqlalchemy import func, select

from ..errors import EvaluationPipelineError, InvalidPayload
from ..extensions import db
from ..models import Activity, Question, Response
from ..queue.jobs import JobKind, parse_kind
from .status import ENTITY_MODELS, EvaluationStatus

logger = logging.getLogger(__name__)


@dataclass
class BackfillReport:
    queued: int = 0
    # entities another request put in flight between selection and enqueue
    already_in_flight: int = 0
    failed_to_queue: int = 0
    errors: List[dict] = field(default_factory=list)
    job_ids: List[str] = field(default_factory=list)

    def to_dict(self):
        return {
            "queuedCount": self.queued,
            "alreadyInFlightCount": self.already_in_flight,
            "failedCount": self.failed_to_queue,
            "perItemErrors": self.errors,
            "jobIds": self.job_ids,
        }


class BackfillOrchestrator:

    def __init__(self, producer, default_limit=50, max_limit=500):
        self.producer = producer
        self.default_limit = default_limit
        self.max_limit = max_limit

    def _eligible(self, kind, activity_id=None):
        """Base select over pending, live entities of ai-rating-enabled activities."""
        model = ENTITY_MODELS[kind]
        q = select(model.id)
        if kind is JobKind.RESPONSE_EVALUATION:
            q = q.join(Question, Response.question_id == Question.id).where(Question.is_deleted.is_(False))
        activity_col = Question.activity_id
        q = (
            q.join(Activity, Activity.id == activity_col)
            .where(model.evaluation_status == EvaluationStatus.PENDING.value,
                   model.is_deleted.is_(False),
                   Activity.ai_rating_enabled.is_(True))
        )
        if activity_id:
            q = q.where(activity_col == activity_id)
        return q, model

    def clamp_limit(self, limit):
        if limit is None:
            return self.default_limit
        try:
            limit = int(limit)
        except (TypeError, ValueError):
            raise InvalidPayload("limit must be an integer")
        if limit < 1:
            raise InvalidPayload("limit must be positive")
        return min(limit, self.max_limit)

    def backfill(self, activity_id=None, limit=None, kind=JobKind.QUESTION_EVALUATION) -> BackfillReport:
        kind = parse_kind(kind)
        limit = self.clamp_limit(limit)
        q, model = self._eligible(kind, activity_id)
        ids = db.session.execute(q.order_by(model.created_at, model.id).limit(limit)).scalars().all()
        logger.info("backfill: %d pending %s(s) selected (activity=%s, limit=%d)",
                    len(ids), kind.entity_kind, activity_id or "*", limit)

        report = BackfillReport()
        for entity_id in ids:
            entity = db.session.get(model, entity_id)
            try:
                if kind is JobKind.RESPONSE_EVALUATION:
                    handle = self.producer.enqueue_response(entity)
                else:
                    handle = self.producer.enqueue_question(entity)
            except EvaluationPipelineError as exc:
                report.failed_to_queue += 1
                report.errors.append({"entityId": entity_id, "code": exc.code, "error": exc.message})
                logger.warning("backfill: %s %s not queued: %s", kind.entity_kind, entity_id, exc)
                continue
            if handle.coalesced:
                report.already_in_flight += 1
                continue
            report.queued += 1
            report.job_ids.append(handle.job_id)
        logger.info("backfill done: queued=%d in_flight=%d failed=%d", report.queued,
                    report.already_in_flight, report.failed_to_queue)
        return report

    def summary(self, activity_id=None, kind=JobKind.QUESTION_EVALUATION):
        """Counts of live entities in ai-rating activities, and how many are still pending."""
        kind = parse_kind(kind)
        pending_q, model = self._eligible(kind, activity_id)
        unevaluated = db.session.execute(
            select(func.count()).select_from(pending_q.subquery())
        ).scalar_one()

        total_q = select(func.count(model.id))
        if kind is JobKind.RESPONSE_EVALUATION:
            total_q = total_q.join(Question, Response.question_id == Question.id)
        total_q = (
            total_q.join(Activity, Activity.id == Question.activity_id)
            .where(model.is_deleted.is_(False), Activity.ai_rating_enabled.is_(True))
        )
        if activity_id:
            total_q = total_q.where(Question.activity_id == activity_id)
        total = db.session.execute(total_q).scalar_one()
        return {"unevaluated": unevaluated, "total": total, "evaluated": total - unevaluated}
