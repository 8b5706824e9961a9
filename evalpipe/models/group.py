from ..extensions import db
from .base import TimestampMixin, new_id


class Group(db.Model, TimestampMixin):
    __tablename__ = "groups"
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(255), nullable=False)

    def __repr__(self) -> str:
        return f"<Group id={self.id} name={self.name!r}>"
