from ..extensions import db
from .base import TimestampMixin, new_id


class Activity(db.Model, TimestampMixin):
    __tablename__ = "activities"
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    group_id = db.Column(db.String(36), db.ForeignKey("groups.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    # feature flag: questions/responses of this activity are eligible for AI scoring
    ai_rating_enabled = db.Column(db.Boolean, nullable=False, default=True)
    subject = db.Column(db.String(120))
    topic = db.Column(db.String(255))
    education_level = db.Column(db.String(60))

    group = db.relationship("Group", lazy="joined")

    def __repr__(self) -> str:
        return f"<Activity id={self.id} ai_rating_enabled={self.ai_rating_enabled}>"
