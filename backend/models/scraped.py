"""
Scraped Record Models - One source's version of an entity.

Keyed by (source_code, source id). Ingestion upserts these rows; the
convergence engine links them to canonical entities and fuses their fields.
raw_data is the source payload as delivered and is never interpreted here.
"""
from datetime import datetime

from models.database import db
from models._common import iso


class ScrapedRecordMixin:
    """Columns shared by every scraped table."""

    id = db.Column(db.Integer, primary_key=True)
    source_code = db.Column(db.String(32), nullable=False, index=True)
    raw_data = db.Column(db.Text)

    # Pending change review
    has_changes = db.Column(db.Boolean, nullable=False, default=False)
    changes = db.Column(db.JSON)  # {field: {old, new}}

    processing_errors = db.Column(db.JSON)  # [{at, stage, message}]

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Name of the per-source id column, set by each subclass
    SOURCE_ID_FIELD = "source_id"

    @property
    def source_key(self) -> str:
        return getattr(self, self.SOURCE_ID_FIELD)

    def record_error(self, stage: str, message: str):
        """Append to the operator-visible processing trail."""
        entries = list(self.processing_errors or [])
        entries.append({
            "at": datetime.utcnow().isoformat(),
            "stage": stage,
            "message": message,
        })
        self.processing_errors = entries

    def ref(self) -> dict:
        return {
            "id": self.id,
            "source": self.source_code,
            "source_id": self.source_key,
            "label": getattr(self, "title", None) or getattr(self, "name", None),
        }


class ScrapedEvent(ScrapedRecordMixin, db.Model):
    __tablename__ = "scraped_events"
    SOURCE_ID_FIELD = "source_event_id"

    source_event_id = db.Column(db.String(255), nullable=False)
    title = db.Column(db.Text)
    date = db.Column(db.Date, index=True)
    start_time = db.Column(db.String(8))  # HH:MM:SS
    end_time = db.Column(db.String(8))
    content_url = db.Column(db.Text)
    ticket_url = db.Column(db.Text)
    flyer_front = db.Column(db.Text)
    description = db.Column(db.Text)
    venue_name = db.Column(db.String(255))
    venue_address = db.Column(db.Text)
    venue_postal_code = db.Column(db.String(20))
    venue_city = db.Column(db.String(255))
    venue_country = db.Column(db.String(255))
    venue_latitude = db.Column(db.Float)
    venue_longitude = db.Column(db.Float)
    artists_json = db.Column(db.JSON)
    organizers_json = db.Column(db.JSON)
    price_info = db.Column(db.JSON)

    is_dismissed = db.Column(db.Boolean, nullable=False, default=False)

    __table_args__ = (
        db.UniqueConstraint("source_code", "source_event_id", name="uq_scraped_event_source"),
    )

    def to_dict(self) -> dict:
        return {
            **self.ref(),
            "date": iso(self.date),
            "start_time": self.start_time,
            "venue_name": self.venue_name,
            "venue_city": self.venue_city,
            "has_changes": self.has_changes,
            "changes": self.changes,
            "is_dismissed": self.is_dismissed,
        }

    def __repr__(self):
        return f"<ScrapedEvent {self.source_code}:{self.source_event_id}>"


class ScrapedVenue(ScrapedRecordMixin, db.Model):
    __tablename__ = "scraped_venues"
    SOURCE_ID_FIELD = "source_venue_id"

    source_venue_id = db.Column(db.String(255), nullable=False)
    name = db.Column(db.String(255))
    address = db.Column(db.Text)
    city = db.Column(db.String(255))
    country = db.Column(db.String(255))
    latitude = db.Column(db.Float)
    longitude = db.Column(db.Float)
    content_url = db.Column(db.Text)
    description = db.Column(db.Text)

    __table_args__ = (
        db.UniqueConstraint("source_code", "source_venue_id", name="uq_scraped_venue_source"),
    )

    def __repr__(self):
        return f"<ScrapedVenue {self.source_code}:{self.source_venue_id}>"


class ScrapedArtist(ScrapedRecordMixin, db.Model):
    __tablename__ = "scraped_artists"
    SOURCE_ID_FIELD = "source_artist_id"

    source_artist_id = db.Column(db.String(255), nullable=False)
    name = db.Column(db.String(255))
    country = db.Column(db.String(100))
    artist_type = db.Column(db.String(50))
    genres = db.Column(db.JSON)
    image_url = db.Column(db.Text)
    content_url = db.Column(db.Text)
    bio = db.Column(db.Text)
    website = db.Column(db.Text)
    instagram_url = db.Column(db.Text)
    soundcloud_url = db.Column(db.Text)
    spotify_url = db.Column(db.Text)

    __table_args__ = (
        db.UniqueConstraint("source_code", "source_artist_id", name="uq_scraped_artist_source"),
    )

    def __repr__(self):
        return f"<ScrapedArtist {self.source_code}:{self.source_artist_id}>"


class ScrapedOrganizer(ScrapedRecordMixin, db.Model):
    __tablename__ = "scraped_organizers"
    SOURCE_ID_FIELD = "source_id"

    source_id = db.Column(db.String(255), nullable=False)
    name = db.Column(db.String(255))
    description = db.Column(db.Text)
    image_url = db.Column(db.Text)
    url = db.Column(db.Text)

    __table_args__ = (
        db.UniqueConstraint("source_code", "source_id", name="uq_scraped_organizer_source"),
    )

    def __repr__(self):
        return f"<ScrapedOrganizer {self.source_code}:{self.source_id}>"
