"""
Canonical Venue Model
"""
from datetime import datetime

from models.database import db
from models._common import new_uuid, iso
from models.event_state import EventState


class Venue(db.Model):
    __tablename__ = "venues"

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    source_code = db.Column(db.String(32))
    source_id = db.Column(db.String(255))

    name = db.Column(db.String(255), nullable=False, index=True)
    address = db.Column(db.Text)
    postal_code = db.Column(db.String(20))
    city = db.Column(db.String(255), index=True)
    country = db.Column(db.String(255))
    latitude = db.Column(db.Float)
    longitude = db.Column(db.Float)
    content_url = db.Column(db.Text)
    description = db.Column(db.Text)

    field_sources = db.Column(db.JSON, nullable=False, default=dict)
    status = db.Column(db.String(32), nullable=False, default=EventState.SCRAPED_DRAFT.value)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "postal_code": self.postal_code,
            "city": self.city,
            "country": self.country,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "field_sources": self.field_sources or {},
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Venue {self.id} {self.name!r} ({self.city})>"
