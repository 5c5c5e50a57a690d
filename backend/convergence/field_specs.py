"""
Field Specs - Per-kind wiring between canonical and scraped tables.

Each KindSpec names the canonical model, the scraped model, the link model,
and the canonical field -> scraped attribute map that fusion works over.
"""
from dataclasses import dataclass
from typing import Dict, Tuple

from models.artist import Artist
from models.event import Event
from models.links import ArtistScrapedLink, EventScrapedLink, OrganizerScrapedLink, VenueScrapedLink
from models.organizer import Organizer
from models.scraped import ScrapedArtist, ScrapedEvent, ScrapedOrganizer, ScrapedVenue
from models.venue import Venue


@dataclass(frozen=True)
class KindSpec:
    kind: str
    entity_type: str
    canonical_model: type
    scraped_model: type
    link_model: type
    # canonical field -> scraped attribute
    fields: Dict[str, str]
    # Fields whose change on refresh warrants an audit entry
    headline: Tuple[str, ...]
    default_min_confidence: float

    @property
    def canonical_fk(self) -> str:
        return self.link_model.canonical_column

    @property
    def scraped_fk(self) -> str:
        return self.link_model.scraped_column

    @property
    def scraped_to_canonical(self) -> Dict[str, str]:
        return {scraped: canonical for canonical, scraped in self.fields.items()}


EVENT_SPEC = KindSpec(
    kind="event",
    entity_type="EVENT",
    canonical_model=Event,
    scraped_model=ScrapedEvent,
    link_model=EventScrapedLink,
    fields={
        "title": "title",
        "date": "date",
        "start_time": "start_time",
        "end_time": "end_time",
        "description": "description",
        "flyer_front": "flyer_front",
        "content_url": "content_url",
        "ticket_url": "ticket_url",
        "price_info": "price_info",
        "venue_name": "venue_name",
        "venue_address": "venue_address",
        "venue_city": "venue_city",
        "venue_country": "venue_country",
        "latitude": "venue_latitude",
        "longitude": "venue_longitude",
        "artists": "artists_json",
        "organizers": "organizers_json",
    },
    headline=("title", "date", "start_time", "venue_name"),
    default_min_confidence=0.6,
)

VENUE_SPEC = KindSpec(
    kind="venue",
    entity_type="VENUE",
    canonical_model=Venue,
    scraped_model=ScrapedVenue,
    link_model=VenueScrapedLink,
    fields={
        "name": "name",
        "address": "address",
        "city": "city",
        "country": "country",
        "latitude": "latitude",
        "longitude": "longitude",
        "content_url": "content_url",
        "description": "description",
    },
    headline=("name", "address", "city"),
    default_min_confidence=0.7,
)

ARTIST_SPEC = KindSpec(
    kind="artist",
    entity_type="ARTIST",
    canonical_model=Artist,
    scraped_model=ScrapedArtist,
    link_model=ArtistScrapedLink,
    fields={
        "name": "name",
        "country": "country",
        "artist_type": "artist_type",
        "genres": "genres",
        "image_url": "image_url",
        "content_url": "content_url",
        "bio": "bio",
        "website": "website",
        "instagram_url": "instagram_url",
        "soundcloud_url": "soundcloud_url",
        "spotify_url": "spotify_url",
    },
    headline=("name",),
    default_min_confidence=0.7,
)

ORGANIZER_SPEC = KindSpec(
    kind="organizer",
    entity_type="ORGANIZER",
    canonical_model=Organizer,
    scraped_model=ScrapedOrganizer,
    link_model=OrganizerScrapedLink,
    fields={
        "name": "name",
        "description": "description",
        "image_url": "image_url",
        "website": "url",
    },
    headline=("name",),
    default_min_confidence=0.7,
)

SPECS: Dict[str, KindSpec] = {
    spec.kind: spec for spec in (EVENT_SPEC, VENUE_SPEC, ARTIST_SPEC, ORGANIZER_SPEC)
}

# Accept plural forms from the CLI
KIND_ALIASES = {f"{kind}s": kind for kind in SPECS}


def get_spec(kind: str) -> KindSpec:
    key = (kind or "").strip().lower()
    key = KIND_ALIASES.get(key, key)
    try:
        return SPECS[key]
    except KeyError:
        raise ValueError(f"Unknown entity kind: {kind!r}")
