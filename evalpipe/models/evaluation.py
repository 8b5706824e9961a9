from ..extensions import db
from .base import TimestampMixin


class EvaluationResult(db.Model, TimestampMixin):
    """Current AI evaluation of one question or response.

    One row per entity; a re-evaluation overwrites it in the same transaction
    that flips the entity to 'completed'.
    """
    __tablename__ = "evaluation_results"
    __table_args__ = (
        db.UniqueConstraint("entity_kind", "entity_id", name="uq_evaluation_results_entity"),
    )

    id = db.Column(db.Integer, primary_key=True)
    entity_kind = db.Column(db.String(20), nullable=False)  # question/response
    entity_id = db.Column(db.String(36), nullable=False)
    job_id = db.Column(db.String(64))
    ai_model = db.Column(db.String(120))
    overall_score = db.Column(db.Float)
    # scorer output exactly as returned
    result_json = db.Column(db.JSON, nullable=False)
    processing_time_ms = db.Column(db.Integer)
