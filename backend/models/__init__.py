"""
Models package - SQLAlchemy models
"""
from models.database import db
from models.event import Event, event_artists, event_organizers
from models.venue import Venue
from models.artist import Artist
from models.organizer import Organizer
from models.scraped import ScrapedEvent, ScrapedVenue, ScrapedArtist, ScrapedOrganizer
from models.links import EventScrapedLink, VenueScrapedLink, ArtistScrapedLink, OrganizerScrapedLink
from models.audit_log import AuditLogEntry
from models.event_state import EventState

__all__ = [
    'db',
    'Event',
    'Venue',
    'Artist',
    'Organizer',
    'event_artists',
    'event_organizers',
    'ScrapedEvent',
    'ScrapedVenue',
    'ScrapedArtist',
    'ScrapedOrganizer',
    'EventScrapedLink',
    'VenueScrapedLink',
    'ArtistScrapedLink',
    'OrganizerScrapedLink',
    'AuditLogEntry',
    'EventState',
]
