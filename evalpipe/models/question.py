from ..extensions import db
from .base import EvaluableMixin, TimestampMixin, new_id


class Question(db.Model, TimestampMixin, EvaluableMixin):
    __tablename__ = "questions"
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    activity_id = db.Column(db.String(36), db.ForeignKey("activities.id"), nullable=False, index=True)
    creator_id = db.Column(db.String(36))
    content = db.Column(db.Text, nullable=False)
    is_deleted = db.Column(db.Boolean, nullable=False, default=False)

    activity = db.relationship("Activity", lazy="joined")

    def __repr__(self) -> str:
        return f"<Question id={self.id} status={self.evaluation_status}>"
