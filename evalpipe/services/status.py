"""Per-entity evaluation status.

    pending -> evaluating -> completed
                          -> error
    completed | error -> evaluating   (re-evaluation)

Every write is a conditional UPDATE on (id, expected status[, job id]), so the
database serializes concurrent writers for one entity: of two re-evaluation
requests that both saw 'completed', only one flips the row.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from sqlalchemy import or_, select, update

from ..errors import AlreadyInFlight, EntityNotFound, InvalidStatusTransition
from ..extensions import db
from ..models import EvaluationResult, Question, Response
from ..models.base import utcnow
from ..queue.jobs import JobKind, parse_kind

logger = logging.getLogger(__name__)


class EvaluationStatus(str, Enum):
    PENDING = "pending"
    EVALUATING = "evaluating"
    COMPLETED = "completed"
    ERROR = "error"


TERMINAL_STATUSES = frozenset({EvaluationStatus.COMPLETED, EvaluationStatus.ERROR})

TRANSITIONS = {
    EvaluationStatus.PENDING: {EvaluationStatus.EVALUATING},
    EvaluationStatus.EVALUATING: {EvaluationStatus.COMPLETED, EvaluationStatus.ERROR},
    EvaluationStatus.COMPLETED: {EvaluationStatus.EVALUATING},
    EvaluationStatus.ERROR: {EvaluationStatus.EVALUATING},
}

ENTITY_MODELS = {
    JobKind.QUESTION_EVALUATION: Question,
    JobKind.RESPONSE_EVALUATION: Response,
}

# longest reason stored on the entity; full detail stays on the job
MAX_REASON_CHARS = 200


def can_transition(current, target) -> bool:
    return EvaluationStatus(target) in TRANSITIONS[EvaluationStatus(current)]


def check_transition(current, target):
    if not can_transition(current, target):
        raise InvalidStatusTransition(EvaluationStatus(current).value, EvaluationStatus(target).value)


@dataclass
class StatusView:
    kind: JobKind
    entity_id: str
    status: EvaluationStatus
    job_id: Optional[str] = None
    result: Optional[dict] = None
    last_error: Optional[str] = None
    requested_at: Optional[object] = None
    evaluated_at: Optional[object] = None

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self):
        out = {"status": self.status.value, "jobId": self.job_id}
        if self.status is EvaluationStatus.COMPLETED:
            out["result"] = self.result
            out["evaluatedAt"] = self.evaluated_at.isoformat() if self.evaluated_at else None
        if self.status is EvaluationStatus.ERROR:
            out["lastError"] = self.last_error
        return out


def short_reason(text) -> str:
    text = " ".join(str(text or "evaluation failed").split())
    if len(text) > MAX_REASON_CHARS:
        text = text[:MAX_REASON_CHARS - 3] + "..."
    return text


class StatusTracker:
    """Reads and guarded writes of the evaluation status columns.

    Must be used inside an app context (it works on ``db.session``).
    """

    def __init__(self):
        self._listeners = []

    def add_listener(self, fn):
        """fn(kind, entity_id, old_status, new_status), called after commit."""
        self._listeners.append(fn)

    def _notify(self, kind, entity_id, old, new):
        logger.info("evaluation status %s %s: %s -> %s", kind.entity_kind, entity_id,
                    EvaluationStatus(old).value, EvaluationStatus(new).value)
        for fn in self._listeners:
            fn(kind, entity_id, EvaluationStatus(old), EvaluationStatus(new))

    def _model(self, kind):
        return ENTITY_MODELS[parse_kind(kind)]

    def current(self, kind, entity_id) -> Optional[StatusView]:
        kind = parse_kind(kind)
        model = self._model(kind)
        row = db.session.execute(
            select(model.evaluation_status, model.evaluation_job_id, model.evaluation_error,
                   model.evaluation_requested_at, model.evaluated_at).where(model.id == entity_id)
        ).first()
        if row is None:
            return None
        return StatusView(kind=kind, entity_id=entity_id, status=EvaluationStatus(row[0]), job_id=row[1],
                          last_error=row[2], requested_at=row[3], evaluated_at=row[4])

    def read(self, kind, entity_id) -> StatusView:
        view = self.current(kind, entity_id)
        if view is None:
            raise EntityNotFound(f"{parse_kind(kind).entity_kind} {entity_id} not found")
        if view.status is EvaluationStatus.COMPLETED:
            res = db.session.execute(
                select(EvaluationResult.result_json).where(
                    EvaluationResult.entity_kind == view.kind.entity_kind,
                    EvaluationResult.entity_id == entity_id,
                )
            ).scalar_one_or_none()
            view.result = res
        return view

    def begin(self, kind, entity_id, job_id) -> StatusView:
        """Flip the entity to 'evaluating' for `job_id` and commit.

        Returns the view from before the flip, which `revert` needs if the job
        cannot be queued. Raises AlreadyInFlight, carrying the holder's job id,
        if another job holds the entity.
        """
        kind = parse_kind(kind)
        model = self._model(kind)
        view = self.current(kind, entity_id)
        if view is None:
            raise EntityNotFound(f"{kind.entity_kind} {entity_id} not found")
        if view.status is EvaluationStatus.EVALUATING:
            raise AlreadyInFlight(job_id=view.job_id)
        check_transition(view.status, EvaluationStatus.EVALUATING)
        res = db.session.execute(
            update(model)
            .where(model.id == entity_id, model.evaluation_status == view.status.value)
            .values(evaluation_status=EvaluationStatus.EVALUATING.value, evaluation_job_id=job_id,
                    evaluation_error=None, evaluation_requested_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            # lost the race; whoever won now holds the entity
            db.session.rollback()
            now = self.current(kind, entity_id)
            raise AlreadyInFlight(job_id=now.job_id if now else None)
        db.session.commit()
        self._notify(kind, entity_id, view.status, EvaluationStatus.EVALUATING)
        return view

    def revert(self, kind, entity_id, job_id, previous: StatusView) -> bool:
        """Undo `begin` for a job that never reached the queue.

        Only applies while the entity is still held by `job_id`.
        """
        kind = parse_kind(kind)
        model = self._model(kind)
        res = db.session.execute(
            update(model)
            .where(model.id == entity_id,
                   model.evaluation_status == EvaluationStatus.EVALUATING.value,
                   model.evaluation_job_id == job_id)
            .values(evaluation_status=previous.status.value, evaluation_job_id=previous.job_id,
                    evaluation_error=previous.last_error, evaluation_requested_at=previous.requested_at)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            db.session.rollback()
            logger.info("%s %s no longer held by job %s; revert skipped", kind.entity_kind, entity_id, job_id)
            return False
        db.session.commit()
        self._notify(kind, entity_id, EvaluationStatus.EVALUATING, previous.status)
        return True

    def in_flight(self, requested_before=None):
        """(kind, entity_id, job_id) for every entity currently 'evaluating'."""
        out = []
        for kind, model in ENTITY_MODELS.items():
            stmt = select(model.id, model.evaluation_job_id).where(
                model.evaluation_status == EvaluationStatus.EVALUATING.value)
            if requested_before is not None:
                stmt = stmt.where(or_(model.evaluation_requested_at.is_(None),
                                      model.evaluation_requested_at <= requested_before))
            out.extend((kind, entity_id, job_id) for entity_id, job_id in db.session.execute(stmt))
        return out

    def complete(self, kind, entity_id, job_id, result, ai_model=None, processing_time_ms=None) -> bool:
        """Persist `result` and flip evaluating -> completed in one transaction.

        False if the entity is now held by a different job.
        """
        kind = parse_kind(kind)
        model = self._model(kind)
        if not self._finish(kind, model, entity_id, job_id, EvaluationStatus.COMPLETED,
                            evaluated_at=utcnow(), evaluation_score=_overall_score(result),
                            evaluation_error=None):
            return False
        row = db.session.execute(
            select(EvaluationResult).where(EvaluationResult.entity_kind == kind.entity_kind,
                                           EvaluationResult.entity_id == entity_id)
        ).scalar_one_or_none()
        if row is None:
            row = EvaluationResult(entity_kind=kind.entity_kind, entity_id=entity_id)
            db.session.add(row)
        row.job_id = job_id
        row.ai_model = ai_model
        row.overall_score = _overall_score(result)
        row.result_json = result
        row.processing_time_ms = processing_time_ms
        db.session.commit()
        self._notify(kind, entity_id, EvaluationStatus.EVALUATING, EvaluationStatus.COMPLETED)
        return True

    def fail(self, kind, entity_id, job_id, reason) -> bool:
        """Flip evaluating -> error, keeping a short reason for users."""
        kind = parse_kind(kind)
        model = self._model(kind)
        if not self._finish(kind, model, entity_id, job_id, EvaluationStatus.ERROR,
                            evaluation_error=short_reason(reason)):
            return False
        db.session.commit()
        self._notify(kind, entity_id, EvaluationStatus.EVALUATING, EvaluationStatus.ERROR)
        return True

    def _finish(self, kind, model, entity_id, job_id, target, **values):
        view = self.current(kind, entity_id)
        if view is None:
            raise EntityNotFound(f"{kind.entity_kind} {entity_id} not found")
        if view.status is not EvaluationStatus.EVALUATING:
            check_transition(view.status, target)
        res = db.session.execute(
            update(model)
            .where(model.id == entity_id,
                   model.evaluation_status == EvaluationStatus.EVALUATING.value,
                   model.evaluation_job_id == job_id)
            .values(evaluation_status=target.value, **values)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            db.session.rollback()
            logger.info("%s %s no longer held by job %s; %s write skipped",
                        kind.entity_kind, entity_id, job_id, target.value)
            return False
        return True


def _overall_score(result):
    if not isinstance(result, dict):
        return None
    val = result.get("overallScore", result.get("overall_score"))
    try:
        return float(val) if val is not None else None
    except (TypeError, ValueError):
        return None
