"""
Scraped Links - Which scraped record feeds which canonical entity.

One table per kind. A scraped record feeds at most one canonical entity
(unique on the scraped column); a canonical entity may be fed by many.
"""
from datetime import datetime

from models.database import db


class EventScrapedLink(db.Model):
    __tablename__ = "event_scraped_links"

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.String(36), db.ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    scraped_event_id = db.Column(
        db.Integer, db.ForeignKey("scraped_events.id", ondelete="CASCADE"), nullable=False, unique=True,
    )
    match_confidence = db.Column(db.Float, nullable=False, default=1.0)
    is_primary = db.Column(db.Boolean, nullable=False, default=False)
    last_synced_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    scraped = db.relationship("ScrapedEvent")

    canonical_column = "event_id"
    scraped_column = "scraped_event_id"


class VenueScrapedLink(db.Model):
    __tablename__ = "venue_scraped_links"

    id = db.Column(db.Integer, primary_key=True)
    venue_id = db.Column(db.String(36), db.ForeignKey("venues.id", ondelete="CASCADE"), nullable=False, index=True)
    scraped_venue_id = db.Column(
        db.Integer, db.ForeignKey("scraped_venues.id", ondelete="CASCADE"), nullable=False, unique=True,
    )
    match_confidence = db.Column(db.Float, nullable=False, default=1.0)
    is_primary = db.Column(db.Boolean, nullable=False, default=False)
    last_synced_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    scraped = db.relationship("ScrapedVenue")

    canonical_column = "venue_id"
    scraped_column = "scraped_venue_id"


class ArtistScrapedLink(db.Model):
    __tablename__ = "artist_scraped_links"

    id = db.Column(db.Integer, primary_key=True)
    artist_id = db.Column(db.String(36), db.ForeignKey("artists.id", ondelete="CASCADE"), nullable=False, index=True)
    scraped_artist_id = db.Column(
        db.Integer, db.ForeignKey("scraped_artists.id", ondelete="CASCADE"), nullable=False, unique=True,
    )
    match_confidence = db.Column(db.Float, nullable=False, default=1.0)
    is_primary = db.Column(db.Boolean, nullable=False, default=False)
    last_synced_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    scraped = db.relationship("ScrapedArtist")

    canonical_column = "artist_id"
    scraped_column = "scraped_artist_id"


class OrganizerScrapedLink(db.Model):
    __tablename__ = "organizer_scraped_links"

    id = db.Column(db.Integer, primary_key=True)
    organizer_id = db.Column(
        db.String(36), db.ForeignKey("organizers.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    scraped_organizer_id = db.Column(
        db.Integer, db.ForeignKey("scraped_organizers.id", ondelete="CASCADE"), nullable=False, unique=True,
    )
    match_confidence = db.Column(db.Float, nullable=False, default=1.0)
    is_primary = db.Column(db.Boolean, nullable=False, default=False)
    last_synced_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    scraped = db.relationship("ScrapedOrganizer")

    canonical_column = "organizer_id"
    scraped_column = "scraped_organizer_id"
