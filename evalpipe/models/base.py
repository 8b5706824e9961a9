import uuid
from datetime import datetime, timezone

from ..extensions import db


def new_id():
    return uuid.uuid4().hex


class TimestampMixin:
    created_at = db.Column(db.DateTime, server_default=db.func.now())
    updated_at = db.Column(db.DateTime, server_default=db.func.now(), onupdate=db.func.now())


class EvaluableMixin:
    """Evaluation status columns carried by every entity the pipeline scores.

    status: pending -> evaluating -> completed | error
    Only the producer and the worker write these (see services/status.py).
    """
    evaluation_status = db.Column(db.String(20), nullable=False, default="pending", server_default="pending", index=True)
    evaluation_job_id = db.Column(db.String(64), nullable=True)
    # short, non-sensitive reason shown to users when status == 'error'
    evaluation_error = db.Column(db.Text, nullable=True)
    evaluation_requested_at = db.Column(db.DateTime, nullable=True)
    evaluated_at = db.Column(db.DateTime, nullable=True)
    evaluation_score = db.Column(db.Float, nullable=True)


def utcnow():
    """Naive UTC timestamp, matching the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
