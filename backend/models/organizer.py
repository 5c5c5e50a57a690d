"""
Canonical Organizer Model
"""
from datetime import datetime

from models.database import db
from models._common import new_uuid
from models.event_state import EventState


class Organizer(db.Model):
    __tablename__ = "organizers"

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    name = db.Column(db.String(255), nullable=False, index=True)
    description = db.Column(db.Text)
    image_url = db.Column(db.Text)
    website = db.Column(db.Text)

    field_sources = db.Column(db.JSON, nullable=False, default=dict)
    status = db.Column(db.String(32), nullable=False, default=EventState.SCRAPED_DRAFT.value)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "website": self.website,
            "field_sources": self.field_sources or {},
        }

    def __repr__(self):
        return f"<Organizer {self.id} {self.name!r}>"
