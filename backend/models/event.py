"""
Canonical Event Model - The single authoritative record per real-world event.

Field values are fused from every linked scraped event (see
convergence.refresher). field_sources records which source supplied each
value; fields attributed to 'manual' are never overwritten by scrapes.
"""
from datetime import datetime

from models.database import db
from models._common import new_uuid, iso
from models.event_state import EventState


event_artists = db.Table(
    "event_artists",
    db.Column("event_id", db.String(36), db.ForeignKey("events.id", ondelete="CASCADE"), primary_key=True),
    db.Column("artist_id", db.String(36), db.ForeignKey("artists.id", ondelete="CASCADE"), primary_key=True),
)

event_organizers = db.Table(
    "event_organizers",
    db.Column("event_id", db.String(36), db.ForeignKey("events.id", ondelete="CASCADE"), primary_key=True),
    db.Column("organizer_id", db.String(36), db.ForeignKey("organizers.id", ondelete="CASCADE"), primary_key=True),
)


class Event(db.Model):
    __tablename__ = "events"

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)

    # Origin of the record that created this event
    source_code = db.Column(db.String(32))
    source_id = db.Column(db.String(255))

    title = db.Column(db.Text)
    date = db.Column(db.Date, index=True)
    start_time = db.Column(db.DateTime)
    end_time = db.Column(db.DateTime)
    description = db.Column(db.Text)
    flyer_front = db.Column(db.Text)
    content_url = db.Column(db.Text)
    ticket_url = db.Column(db.Text)
    price_info = db.Column(db.JSON)

    # Venue (denormalized copy + reference)
    venue_id = db.Column(db.String(36), db.ForeignKey("venues.id", ondelete="SET NULL"), index=True)
    venue_name = db.Column(db.String(255))
    venue_address = db.Column(db.Text)
    venue_city = db.Column(db.String(255), index=True)
    venue_country = db.Column(db.String(255))
    latitude = db.Column(db.Float)
    longitude = db.Column(db.Float)

    artists = db.Column(db.JSON)  # [{name, genres, ...}]
    organizers = db.Column(db.JSON)  # [{name, ...}]

    field_sources = db.Column(db.JSON, nullable=False, default=dict)

    # Workflow
    status = db.Column(db.String(32), nullable=False, default=EventState.SCRAPED_DRAFT.value, index=True)
    publish_status = db.Column(db.String(20), nullable=False, default="pending")  # pending, rejected
    is_published = db.Column(db.Boolean, nullable=False, default=False)
    has_pending_changes = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    venue = db.relationship("Venue")
    linked_artists = db.relationship("Artist", secondary=event_artists, lazy="selectin")
    linked_organizers = db.relationship("Organizer", secondary=event_organizers, lazy="selectin")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "date": iso(self.date),
            "start_time": iso(self.start_time),
            "end_time": iso(self.end_time),
            "venue_id": self.venue_id,
            "venue_name": self.venue_name,
            "venue_city": self.venue_city,
            "status": self.status,
            "publish_status": self.publish_status,
            "has_pending_changes": self.has_pending_changes,
            "field_sources": self.field_sources or {},
        }

    def __repr__(self):
        return f"<Event {self.id} {self.title!r} {self.date}>"
