"""
Venue Resolution & Geocoding

- clean_venue_address: split a free-text address into street part and
  postal code, dropping city/country tokens the source repeated
- VenueResolver.find_or_create_venue: case-insensitive (name, city) lookup,
  otherwise create with a cleaned address and geocoded coordinates

Geocoding failures are logged; the venue is created without coordinates.
"""
import logging
import re
from typing import Optional, Tuple

from sqlalchemy import func

from convergence.audit import AuditLogWriter
from models.venue import Venue
from utils.normalize import coordinate_pair

logger = logging.getLogger(__name__)

POSTAL_CODE_PATTERNS = (
    re.compile(r"\b\d{5}\b"),                                   # 5-digit (DE, US, FR...)
    re.compile(r"\b[A-Z]{1,2}\d{1,2}[A-Z]?\s?\d[A-Z]{2}\b", re.I),  # UK
    re.compile(r"\b[A-Z]\d[A-Z]\s?\d[A-Z]\d\b", re.I),          # Canada
)


def extract_postal_code(address: Optional[str]) -> Optional[str]:
    if not address:
        return None
    for pattern in POSTAL_CODE_PATTERNS:
        match = pattern.search(address)
        if match:
            return match.group(0).strip()
    return None


def _strip_token(text: str, token: Optional[str]) -> str:
    if not token or token.lower() not in text.lower():
        return text
    return re.sub(rf"[,\s]*{re.escape(token)}[,\s]*", " ", text, flags=re.I)


def clean_venue_address(
    address: Optional[str],
    city: Optional[str] = None,
    country: Optional[str] = None,
) -> Tuple[Optional[str], Optional[str]]:
    """
    Clean a venue address.

    "Am Wriezener Bahnhof; Friedrichshain; 10243 Berlin; Germany"
        -> ("Am Wriezener Bahnhof", "10243")

    Returns:
        (cleaned address, postal code or None)
    """
    if not address:
        return address, None

    postal_code = extract_postal_code(address)

    cleaned = address
    if ";" in cleaned:
        cleaned = cleaned.split(";")[0].strip()

    cleaned = _strip_token(cleaned, city)
    cleaned = _strip_token(cleaned, country)
    if postal_code:
        cleaned = cleaned.replace(postal_code, "")

    cleaned = re.sub(r",+", ",", cleaned)
    cleaned = re.sub(r"\s+", " ", cleaned)
    cleaned = re.sub(r"^[,\s]+|[,\s]+$", "", cleaned).strip()
    return cleaned or None, postal_code


class VenueResolver:
    def __init__(self, session, gateway=None, audit: Optional[AuditLogWriter] = None):
        self.session = session
        self.gateway = gateway
        self.audit = audit or AuditLogWriter(session)

    def find_existing(self, name: str, city: Optional[str] = None) -> Optional[Venue]:
        query = self.session.query(Venue).filter(func.lower(Venue.name) == name.strip().lower())
        if city:
            query = query.filter(func.lower(Venue.city) == city.strip().lower())
        return query.order_by(Venue.created_at).first()

    def geocode(self, address, city, country):
        if self.gateway is None:
            return None
        return self.gateway.geocode_address(address, city, country)

    def create_venue(
        self,
        name: str,
        address: Optional[str] = None,
        city: Optional[str] = None,
        country: Optional[str] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        source_code: Optional[str] = None,
        source_id: Optional[str] = None,
        **extra,
    ) -> Venue:
        """Create a canonical venue, geocoding it when no coordinates are given."""
        cleaned, postal_code = clean_venue_address(address, city, country)

        if coordinate_pair(latitude, longitude) is None:
            latitude = longitude = None
            coords = self.geocode(cleaned, city, country)
            if coords:
                latitude, longitude = coords["latitude"], coords["longitude"]

        venue = Venue(
            name=name.strip(),
            address=cleaned,
            postal_code=postal_code,
            city=city,
            country=country,
            latitude=latitude,
            longitude=longitude,
            source_code=source_code,
            source_id=source_id,
            **extra,
        )
        if source_code:
            venue.field_sources = {
                field_name: source_code
                for field_name in ("name", "address", "city", "country", "latitude", "longitude", *extra)
                if getattr(venue, field_name) not in (None, "")
            }
        self.session.add(venue)
        self.session.flush()

        self.audit.log_create("VENUE", venue.id, {
            "name": venue.name, "city": venue.city, "source": source_code,
        })
        logger.info(f"[Venue] Created {venue.name!r} ({venue.city}) geocoded={venue.latitude is not None}")
        return venue

    def find_or_create_venue(
        self,
        name: Optional[str],
        address: Optional[str] = None,
        city: Optional[str] = None,
        country: Optional[str] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        source_code: Optional[str] = None,
    ) -> Optional[str]:
        """
        Canonical venue id for a venue reference.

        Returns None when no name is given.
        """
        if not name or not name.strip():
            return None

        existing = self.find_existing(name, city)
        if existing is not None:
            if coordinate_pair(existing.latitude, existing.longitude) is None and coordinate_pair(latitude, longitude):
                existing.latitude = latitude
                existing.longitude = longitude
                logger.info(f"[Venue] Filled coordinates for {existing.name!r}")
            return existing.id

        venue = self.create_venue(
            name, address, city, country, latitude, longitude, source_code=source_code,
        )
        return venue.id
