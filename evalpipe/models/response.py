from ..extensions import db
from .base import EvaluableMixin, TimestampMixin, new_id


class Response(db.Model, TimestampMixin, EvaluableMixin):
    __tablename__ = "responses"
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    question_id = db.Column(db.String(36), db.ForeignKey("questions.id"), nullable=False, index=True)
    creator_id = db.Column(db.String(36))
    content = db.Column(db.Text, nullable=False)
    is_deleted = db.Column(db.Boolean, nullable=False, default=False)

    question = db.relationship("Question", lazy="joined")

    def __repr__(self) -> str:
        return f"<Response id={self.id} status={self.evaluation_status}>"
