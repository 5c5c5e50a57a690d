"""
Ingestion Processor - Upsert normalized records into the scraped tables.

Per record:
1. Clean the venue address (postal code split off)
2. Reuse known coordinates before geocoding
3. Upsert by (source_code, source id)
4. On update: detect changes, COALESCE the new values in, hand changed
   linked records to the auto-apply workflow

Nested venue/artists/organizers of an event with their own source ids are
saved as scraped records of their own kinds.
"""
import logging
from typing import Any, Dict, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from convergence.change_detector import detect_changes, mark_changed
from convergence.errors import ConflictError
from convergence.field_specs import EVENT_SPEC, VENUE_SPEC, KindSpec, get_spec
from convergence.fusion import is_empty_field
from convergence.link_store import LinkStore
from convergence.records import ArtistRecord, OrganizerRecord, VenueRecord
from convergence.results import IngestStats
from convergence.venue_resolver import clean_venue_address
from convergence.workflow import AutoApplyWorkflow
from models.scraped import ScrapedVenue
from models.venue import Venue
from utils.normalize import coordinate_pair

logger = logging.getLogger(__name__)

INSERTED = "inserted"
UPDATED = "updated"
UNMODIFIED = "unmodified"

NESTED_COUNTERS = {
    "venue": "venues_created",
    "artist": "artists_created",
    "organizer": "organizers_created",
}


def _has_coordinates(row) -> bool:
    return row is not None and coordinate_pair(row.latitude, row.longitude) is not None


class IngestionProcessor:
    def __init__(
        self,
        session,
        gateway=None,
        workflow: Optional[AutoApplyWorkflow] = None,
        links: Optional[LinkStore] = None,
    ):
        self.session = session
        self.gateway = gateway
        self.links = links or LinkStore(session)
        self.workflow = workflow or AutoApplyWorkflow(session, self.links)
        self.stats = IngestStats()

    # =========================================================================
    # ENTRY POINT
    # =========================================================================

    def process_record(self, record) -> Tuple[str, Any]:
        """
        Upsert one validated record.

        Returns:
            (action, scraped row) with action inserted, updated or unmodified
        """
        spec = get_spec(record.kind)
        existing = self.find_scraped(spec, record.source_code, record.source_key)

        if spec is EVENT_SPEC:
            self._ingest_nested(record)
            values = self._prepare_event(record, existing)
        elif spec is VENUE_SPEC:
            values = self._prepare_venue(record, existing)
        else:
            values = record.scraped_columns()

        action, scraped = self.upsert(spec, values, existing)
        self.stats.count(action)
        return action, scraped

    # =========================================================================
    # PREPARATION
    # =========================================================================

    def _prepare_event(self, record, existing) -> Dict[str, Any]:
        values = record.scraped_columns()

        if values.get("venue_address"):
            cleaned, postal_code = clean_venue_address(
                values["venue_address"], record.venue_city, record.venue_country,
            )
            if cleaned:
                values["venue_address"] = cleaned
            else:
                values.pop("venue_address")
            if postal_code and not values.get("venue_postal_code"):
                values["venue_postal_code"] = postal_code

        if record.venue_latitude is None or record.venue_longitude is None:
            coords = self._known_event_coordinates(record, existing)
            if coords is None and (record.venue_name or values.get("venue_address")):
                coords = self._geocode(values.get("venue_address") or record.venue_name,
                                       record.venue_city, record.venue_country)
            if coords:
                values["venue_latitude"], values["venue_longitude"] = coords

        return values

    def _prepare_venue(self, record, existing) -> Dict[str, Any]:
        values = record.scraped_columns()

        if values.get("address"):
            cleaned, _ = clean_venue_address(values["address"], record.city, record.country)
            if cleaned:
                values["address"] = cleaned
            else:
                values.pop("address")

        if record.latitude is None or record.longitude is None:
            if _has_coordinates(existing):
                coords = (existing.latitude, existing.longitude)
            else:
                coords = self._geocode(values.get("address") or record.name, record.city, record.country)
            if coords:
                values["latitude"], values["longitude"] = coords

        return values

    def _known_event_coordinates(self, record, existing) -> Optional[Tuple[float, float]]:
        """Coordinates already on file for this event's venue, cheapest lookup first."""
        if existing is not None:
            known = coordinate_pair(existing.venue_latitude, existing.venue_longitude)
            if known:
                return known

        venue_id = (record.venue_raw or {}).get("source_venue_id")
        if venue_id:
            scraped_venue = (
                self.session.query(ScrapedVenue)
                .filter_by(source_code=record.source_code, source_venue_id=str(venue_id))
                .first()
            )
            if _has_coordinates(scraped_venue):
                return scraped_venue.latitude, scraped_venue.longitude

        if not record.venue_name:
            return None
        name = record.venue_name.strip().lower()
        city = (record.venue_city or "").strip().lower()

        for model in (ScrapedVenue, Venue):
            query = (
                self.session.query(model)
                .filter(func.lower(model.name) == name)
                .filter(model.latitude.isnot(None), model.latitude != 0)
                .filter(model.longitude.isnot(None), model.longitude != 0)
            )
            if city:
                query = query.filter(func.lower(model.city) == city)
            row = query.order_by(model.created_at).first()
            if row is not None:
                logger.debug(f"[Ingest] Reusing coordinates of {row!r} for {record.venue_name!r}")
                return row.latitude, row.longitude
        return None

    def _geocode(self, address, city, country) -> Optional[Tuple[float, float]]:
        if self.gateway is None:
            return None
        coords = self.gateway.geocode_address(address, city, country)
        pair = coordinate_pair(coords["latitude"], coords["longitude"]) if coords else None
        if pair is None:
            return None
        self.stats.geocoded += 1
        return pair

    # =========================================================================
    # NESTED RECORDS
    # =========================================================================

    def _ingest_nested(self, record):
        nested = []
        if record.venue_raw:
            payload = {k: v for k, v in record.venue_raw.items() if k != "kind"}
            payload["source_code"] = record.source_code
            nested.append((VenueRecord, payload))

        for artist in record.artists_json:
            if artist.source_artist_id:
                nested.append((ArtistRecord, {
                    **artist.model_dump(exclude_none=True),
                    "source_code": record.source_code,
                }))

        for organizer in record.organizers_json:
            if organizer.source_organizer_id:
                nested.append((OrganizerRecord, {
                    "source_code": record.source_code,
                    "source_id": organizer.source_organizer_id,
                    "name": organizer.name,
                    "description": organizer.description,
                    "image_url": organizer.image_url,
                    "url": organizer.content_url,
                }))

        for model, payload in nested:
            try:
                child = model.model_validate(payload)
            except PydanticValidationError as e:
                logger.warning(
                    f"[Ingest] Skipping nested {model.__name__} of "
                    f"{record.source_code}:{record.source_key}: {e.error_count()} validation error(s)"
                )
                continue
            spec = get_spec(child.kind)
            existing = self.find_scraped(spec, child.source_code, child.source_key)
            if spec is VENUE_SPEC:
                values = self._prepare_venue(child, existing)
            else:
                values = child.scraped_columns()
            action, _ = self.upsert(spec, values, existing)
            if action == INSERTED:
                counter = NESTED_COUNTERS[spec.kind]
                setattr(self.stats, counter, getattr(self.stats, counter) + 1)

    # =========================================================================
    # UPSERT
    # =========================================================================

    def find_scraped(self, spec: KindSpec, source_code: str, source_id: str):
        model = spec.scraped_model
        return (
            self.session.query(model)
            .filter(model.source_code == source_code)
            .filter(getattr(model, model.SOURCE_ID_FIELD) == source_id)
            .one_or_none()
        )

    def upsert(self, spec: KindSpec, values: Dict[str, Any], existing=None) -> Tuple[str, Any]:
        model = spec.scraped_model
        source_code = values["source_code"]
        source_id = values[model.SOURCE_ID_FIELD]

        if existing is None:
            try:
                with self.session.begin_nested():
                    scraped = model(**values)
                    self.session.add(scraped)
                logger.debug(f"[Ingest] Inserted {scraped!r}")
                return INSERTED, scraped
            except IntegrityError as e:
                conflict = ConflictError(f"{spec.kind} {source_code}:{source_id} inserted concurrently")
                logger.info(f"[Ingest] {conflict}, updating instead")
                existing = self.find_scraped(spec, source_code, source_id)
                if existing is None:
                    raise conflict from e

        return self._update(spec, existing, values)

    def _update(self, spec: KindSpec, scraped, values: Dict[str, Any]) -> Tuple[str, Any]:
        changes = detect_changes(spec.kind, scraped, values)

        for name, value in values.items():
            if name == "raw_data":
                scraped.raw_data = value
            elif not is_empty_field(name, value):
                setattr(scraped, name, value)

        if not changes:
            return UNMODIFIED, scraped

        if self.links.canonical_id_for(spec, scraped.id) is not None:
            mark_changed(scraped, changes)
            self.session.flush()
            outcome = self.workflow.handle_changed(spec.kind, scraped)
            logger.info(f"[Ingest] {scraped!r} changed, workflow: {outcome.decision}")
        return UPDATED, scraped
