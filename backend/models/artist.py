"""
Canonical Artist Model
"""
from datetime import datetime

from models.database import db
from models._common import new_uuid
from models.event_state import EventState


class Artist(db.Model):
    __tablename__ = "artists"

    id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    source_code = db.Column(db.String(32))
    source_id = db.Column(db.String(255))

    name = db.Column(db.String(255), nullable=False, index=True)
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

    field_sources = db.Column(db.JSON, nullable=False, default=dict)
    status = db.Column(db.String(32), nullable=False, default=EventState.SCRAPED_DRAFT.value)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "country": self.country,
            "artist_type": self.artist_type,
            "genres": self.genres,
            "content_url": self.content_url,
            "field_sources": self.field_sources or {},
        }

    def __repr__(self):
        return f"<Artist {self.id} {self.name!r}>"
