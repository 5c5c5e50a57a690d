"""
Candidate Matcher - Find or create the canonical counterpart of a scraped record.

Per unlinked scraped record:
1. Narrow canonical candidates for the kind
2. Score each; skip candidates already fed by the same source
3. Best score >= kind threshold -> link + refresh ('matched')
4. Events only: near-duplicate fallback via an already-linked sibling
5. Otherwise create the canonical entity, link it as primary ('created')

Only unlinked records reach this module, so a linked record is never
matched twice.
"""
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import func, or_

from convergence.audit import AuditLogWriter
from convergence.errors import ValidationError
from convergence.event_scoring import artist_names, score_event_pair
from convergence.field_specs import (
    ARTIST_SPEC,
    EVENT_SPEC,
    ORGANIZER_SPEC,
    VENUE_SPEC,
    KindSpec,
    get_spec,
)
from convergence.link_store import LinkStore
from convergence.refresher import CanonicalRefresher
from convergence.results import MatchResult
from convergence.similarity import normalize_for_match, string_similarity
from convergence.venue_resolver import VenueResolver
from models.artist import Artist
from models.event import Event
from models.event_state import EventState
from models.links import EventScrapedLink
from models.organizer import Organizer
from models.scraped import ScrapedEvent
from models.venue import Venue
from utils.normalize import event_window, to_bool

logger = logging.getLogger(__name__)

NEAR_DUPLICATE_NOTE = "near-duplicate match"
VENUE_NAME_PREFIX = 15


@dataclass
class MatchSettings:
    min_confidence: Dict[str, float] = field(default_factory=lambda: {
        "event": EVENT_SPEC.default_min_confidence,
        "venue": VENUE_SPEC.default_min_confidence,
        "artist": ARTIST_SPEC.default_min_confidence,
        "organizer": ORGANIZER_SPEC.default_min_confidence,
    })
    near_duplicate_threshold: float = 0.5
    # Fixed confidence; the sibling's own score is not carried over
    near_duplicate_confidence: float = 0.5
    enrich_on_create: bool = True
    batch_limit: int = 1000

    @classmethod
    def from_config(cls, config) -> "MatchSettings":
        settings = cls()
        for kind in settings.min_confidence:
            key = f"MATCH_MIN_CONFIDENCE_{kind.upper()}S"
            if config.get(key) is not None:
                settings.min_confidence[kind] = float(config[key])
        if config.get("NEAR_DUPLICATE_TITLE_THRESHOLD") is not None:
            settings.near_duplicate_threshold = float(config["NEAR_DUPLICATE_TITLE_THRESHOLD"])
        if config.get("ENRICH_ARTISTS_ON_CREATE") is not None:
            settings.enrich_on_create = to_bool(config["ENRICH_ARTISTS_ON_CREATE"], default=True)
        if config.get("MATCH_BATCH_LIMIT") is not None:
            settings.batch_limit = int(config["MATCH_BATCH_LIMIT"])
        return settings


def significant_tokens(name: Optional[str]) -> List[str]:
    return [w for w in normalize_for_match(name).split(" ") if len(w) > 2]


def canonical_label(row) -> Optional[str]:
    return getattr(row, "title", None) or getattr(row, "name", None)


class CandidateMatcher:
    def __init__(
        self,
        session,
        refresher: Optional[CanonicalRefresher] = None,
        links: Optional[LinkStore] = None,
        audit: Optional[AuditLogWriter] = None,
        venue_resolver: Optional[VenueResolver] = None,
        enricher=None,
        settings: Optional[MatchSettings] = None,
        today: Callable[[], date] = date.today,
    ):
        self.session = session
        self.audit = audit or AuditLogWriter(session)
        self.links = links or LinkStore(session)
        self.refresher = refresher or CanonicalRefresher(session, self.links, self.audit)
        self.venue_resolver = venue_resolver or VenueResolver(session, audit=self.audit)
        self.enricher = enricher
        self.settings = settings or MatchSettings()
        self.today = today

    # =========================================================================
    # ENTRY POINT
    # =========================================================================

    def match_record(self, kind: str, scraped, dry_run: bool = False) -> MatchResult:
        spec = get_spec(kind)
        candidates = self.score_candidates(spec, scraped)
        threshold = self.settings.min_confidence[spec.kind]

        if candidates and candidates[0][1] >= threshold:
            canonical, score = candidates[0]
            logger.info(
                f"[Match {spec.kind.title()}s] {scraped!r} -> {canonical.id} "
                f"({canonical_label(canonical)!r}) score={score:.2f}"
            )
            if not dry_run:
                self.links.create_link(spec, canonical.id, scraped.id, score)
                self.refresher.refresh(spec.kind, canonical.id)
            return MatchResult("matched", scraped.ref(), self._ref(canonical), score)

        if spec is EVENT_SPEC:
            duplicate = self.find_near_duplicate(scraped)
            if duplicate is not None:
                canonical, sibling = duplicate
                confidence = self.settings.near_duplicate_confidence
                logger.info(
                    f"[Match Events] {scraped!r} near-duplicate of {sibling!r}, "
                    f"linking to {canonical.id} at {confidence}"
                )
                if not dry_run:
                    self.links.create_link(spec, canonical.id, scraped.id, confidence)
                    self.refresher.refresh(spec.kind, canonical.id)
                return MatchResult("matched", scraped.ref(), self._ref(canonical), confidence, NEAR_DUPLICATE_NOTE)

        if dry_run:
            return MatchResult("created", scraped.ref(), None, 1.0, "dry run")

        canonical = self.create_canonical(spec, scraped)
        return MatchResult("created", scraped.ref(), self._ref(canonical), 1.0)

    def link_manually(self, kind: str, canonical_id: str, scraped_id: int) -> MatchResult:
        """Operator-confirmed link at full confidence, followed by a refresh."""
        spec = get_spec(kind)
        canonical = self.session.get(spec.canonical_model, canonical_id)
        if canonical is None:
            raise ValidationError(f"{spec.kind} {canonical_id} not found")
        scraped = self.session.get(spec.scraped_model, scraped_id)
        if scraped is None:
            raise ValidationError(f"{spec.kind} scraped record {scraped_id} not found")

        link = self.links.create_link(spec, canonical.id, scraped.id, 1.0)
        linked_to = getattr(link, spec.canonical_fk)
        if linked_to != canonical.id:
            raise ValidationError(f"{scraped!r} is already linked to {spec.kind} {linked_to}")

        self.refresher.refresh(spec.kind, canonical.id)
        logger.info(f"[Match {spec.kind.title()}s] Manually linked {scraped!r} -> {canonical.id}")
        return MatchResult("matched", scraped.ref(), self._ref(canonical), 1.0, "manual link")

    def _ref(self, canonical) -> Dict[str, Any]:
        return {"id": canonical.id, "label": canonical_label(canonical)}

    # =========================================================================
    # CANDIDATES & SCORING
    # =========================================================================

    def score_candidates(self, spec: KindSpec, scraped) -> List[Tuple[Any, float]]:
        """Candidates with scores, best first."""
        if spec is EVENT_SPEC:
            candidates = self._event_candidates(scraped)
            scorer = self.score_event
        elif spec is VENUE_SPEC:
            candidates = self._venue_candidates(scraped)
            scorer = self.score_venue
        else:
            candidates = self._named_candidates(spec, scraped.name)
            scorer = self.score_named

        excluded = self.links.canonical_ids_linked_from_source(
            spec, [c.id for c in candidates], scraped.source_code
        )
        scored = [(c, scorer(scraped, c)) for c in candidates if c.id not in excluded]
        scored.sort(key=lambda pair: pair[1], reverse=True)
        return scored

    def _event_candidates(self, scraped) -> List[Event]:
        if scraped.date is None:
            return []
        conditions = []
        if scraped.venue_city:
            conditions.append(func.lower(Event.venue_city) == scraped.venue_city.strip().lower())
        if scraped.venue_name:
            prefix = scraped.venue_name.strip().lower()[:VENUE_NAME_PREFIX]
            conditions.append(func.lower(Event.venue_name).contains(prefix, autoescape=True))
        if not conditions:
            return []
        return (
            self.session.query(Event)
            .filter(Event.date == scraped.date)
            .filter(or_(*conditions))
            .order_by(Event.created_at)
            .all()
        )

    def _venue_candidates(self, scraped) -> List[Venue]:
        query = self.session.query(Venue)
        if scraped.city:
            query = query.filter(func.lower(Venue.city) == scraped.city.strip().lower())
        return query.order_by(Venue.created_at).all()

    def _named_candidates(self, spec: KindSpec, name: Optional[str]) -> List:
        if not name:
            return []
        model = spec.canonical_model
        tokens = significant_tokens(name)
        if tokens:
            condition = or_(*[func.lower(model.name).contains(t, autoescape=True) for t in tokens])
        else:
            condition = func.lower(model.name) == name.strip().lower()
        return self.session.query(model).filter(condition).order_by(model.created_at).all()

    def score_event(self, scraped, candidate: Event) -> float:
        result = score_event_pair(
            scraped_title=scraped.title,
            scraped_venue=scraped.venue_name,
            scraped_artists=artist_names(scraped.artists_json),
            scraped_start=scraped.start_time,
            candidate_title=candidate.title,
            candidate_venue=candidate.venue_name,
            candidate_artists=artist_names(candidate.artists),
            candidate_start=candidate.start_time,
        )
        logger.debug(f"[Match Events] {scraped!r} vs {candidate.id}: {result.to_dict()}")
        return result.score

    @staticmethod
    def score_venue(scraped, candidate: Venue) -> float:
        name = string_similarity(scraped.name, candidate.name)
        city_exact = 1.0 if (
            scraped.city and candidate.city
            and scraped.city.strip().lower() == candidate.city.strip().lower()
        ) else 0.0
        address = string_similarity(scraped.address, candidate.address)
        return 0.8 * name + 0.2 * max(city_exact, address)

    @staticmethod
    def score_named(scraped, candidate) -> float:
        return string_similarity(scraped.name, candidate.name)

    def find_near_duplicate(self, scraped) -> Optional[Tuple[Event, ScrapedEvent]]:
        """
        Canonical event of an already-linked scraped event with the same date
        and venue name whose title is similar enough.
        """
        if scraped.date is None or not scraped.venue_name or not scraped.title:
            return None
        siblings = (
            self.session.query(ScrapedEvent, EventScrapedLink.event_id)
            .join(EventScrapedLink, EventScrapedLink.scraped_event_id == ScrapedEvent.id)
            .filter(ScrapedEvent.date == scraped.date)
            .filter(func.lower(ScrapedEvent.venue_name) == scraped.venue_name.strip().lower())
            .filter(ScrapedEvent.id != scraped.id)
            .order_by(ScrapedEvent.id)
            .all()
        )
        for sibling, event_id in siblings:
            if string_similarity(scraped.title, sibling.title) >= self.settings.near_duplicate_threshold:
                return self.session.get(Event, event_id), sibling
        return None

    # =========================================================================
    # CREATION
    # =========================================================================

    def create_canonical(self, spec: KindSpec, scraped):
        creators = {
            "event": self._create_event,
            "venue": self._create_venue,
            "artist": self._create_artist,
            "organizer": self._create_organizer,
        }
        canonical = creators[spec.kind](scraped)
        self.links.create_link(spec, canonical.id, scraped.id, 1.0, is_primary=True)
        self.refresher.refresh(spec.kind, canonical.id)
        if spec is ARTIST_SPEC:
            self._maybe_enrich(canonical)
        logger.info(f"[Match {spec.kind.title()}s] Created {spec.kind} {canonical.id} from {scraped!r}")
        return canonical

    def _resolve_event_venue(self, scraped) -> Optional[str]:
        """Venue id for a new event; failures leave the event without a venue."""
        mark = len(self.audit.entries)
        try:
            with self.session.begin_nested():
                return self.venue_resolver.find_or_create_venue(
                    scraped.venue_name,
                    scraped.venue_address,
                    scraped.venue_city,
                    scraped.venue_country,
                    scraped.venue_latitude,
                    scraped.venue_longitude,
                    source_code=scraped.source_code,
                )
        except Exception as e:
            logger.warning(f"[Match Events] Venue resolution failed for {scraped!r}: {e}")
            del self.audit.entries[mark:]
            scraped.record_error("venue", f"venue resolution failed: {e}")
            return None

    def _create_event(self, scraped) -> Event:
        venue_id = self._resolve_event_venue(scraped)
        venue = self.session.get(Venue, venue_id) if venue_id else None

        start_at, end_at = event_window(scraped.date, scraped.start_time, scraped.end_time)
        is_past = scraped.date is not None and scraped.date < self.today()

        event = Event(
            source_code=scraped.source_code,
            source_id=scraped.source_event_id,
            title=scraped.title,
            date=scraped.date,
            start_time=start_at,
            end_time=end_at,
            description=scraped.description,
            flyer_front=scraped.flyer_front,
            content_url=scraped.content_url,
            ticket_url=scraped.ticket_url,
            price_info=dict(scraped.price_info) if scraped.price_info else None,
            venue_id=venue_id,
            venue_name=scraped.venue_name,
            venue_address=scraped.venue_address,
            venue_city=scraped.venue_city,
            venue_country=scraped.venue_country,
            latitude=scraped.venue_latitude if scraped.venue_latitude is not None else getattr(venue, "latitude", None),
            longitude=scraped.venue_longitude if scraped.venue_longitude is not None else getattr(venue, "longitude", None),
            artists=[dict(a) for a in scraped.artists_json or []],
            organizers=[dict(o) for o in scraped.organizers_json or []],
            status=EventState.SCRAPED_DRAFT.value,
            publish_status="rejected" if is_past else "pending",
            field_sources={},
        )
        self.session.add(event)
        self.session.flush()

        self._link_participants(event, scraped)
        self.audit.log_create("EVENT", event.id, {
            "title": event.title,
            "date": event.date,
            "venue_name": event.venue_name,
            "source": scraped.source_code,
            "publish_status": event.publish_status,
        })
        return event

    def _link_participants(self, event: Event, scraped):
        for ref in scraped.artists_json or []:
            artist = self.find_or_create_artist(ref, scraped.source_code)
            if artist is not None and artist not in event.linked_artists:
                event.linked_artists.append(artist)
        for ref in scraped.organizers_json or []:
            organizer = self.find_or_create_organizer(ref, scraped.source_code)
            if organizer is not None and organizer not in event.linked_organizers:
                event.linked_organizers.append(organizer)

    def find_or_create_artist(self, ref: Dict[str, Any], source_code: str) -> Optional[Artist]:
        name = (ref.get("name") or "").strip()
        if not name:
            return None
        existing = self.session.query(Artist).filter(func.lower(Artist.name) == name.lower()).first()
        if existing is not None:
            return existing

        values = {
            "name": name,
            "genres": list(ref["genres"]) if ref.get("genres") else None,
            "image_url": ref.get("image_url"),
            "content_url": ref.get("content_url"),
        }
        artist = Artist(
            source_code=source_code,
            source_id=ref.get("source_artist_id"),
            field_sources={k: source_code for k, v in values.items() if v},
            **values,
        )
        self.session.add(artist)
        self.session.flush()
        self.audit.log_create("ARTIST", artist.id, {"name": name, "source": source_code})
        self._maybe_enrich(artist)
        return artist

    def find_or_create_organizer(self, ref: Dict[str, Any], source_code: str) -> Optional[Organizer]:
        name = (ref.get("name") or "").strip()
        if not name:
            return None
        existing = self.session.query(Organizer).filter(func.lower(Organizer.name) == name.lower()).first()
        if existing is not None:
            return existing

        values = {
            "name": name,
            "description": ref.get("description"),
            "image_url": ref.get("image_url"),
            "website": ref.get("content_url"),
        }
        organizer = Organizer(field_sources={k: source_code for k, v in values.items() if v}, **values)
        self.session.add(organizer)
        self.session.flush()
        self.audit.log_create("ORGANIZER", organizer.id, {"name": name, "source": source_code})
        return organizer

    def _create_venue(self, scraped) -> Venue:
        return self.venue_resolver.create_venue(
            scraped.name or scraped.address,
            scraped.address,
            scraped.city,
            scraped.country,
            scraped.latitude,
            scraped.longitude,
            source_code=scraped.source_code,
            source_id=scraped.source_venue_id,
            content_url=scraped.content_url,
            description=scraped.description,
        )

    def _create_artist(self, scraped) -> Artist:
        values = {
            canonical: getattr(scraped, attr)
            for canonical, attr in ARTIST_SPEC.fields.items()
        }
        artist = Artist(source_code=scraped.source_code, source_id=scraped.source_artist_id, **values)
        self.session.add(artist)
        self.session.flush()
        self.audit.log_create("ARTIST", artist.id, {"name": artist.name, "source": scraped.source_code})
        return artist

    def _create_organizer(self, scraped) -> Organizer:
        values = {
            canonical: getattr(scraped, attr)
            for canonical, attr in ORGANIZER_SPEC.fields.items()
        }
        organizer = Organizer(**values)
        self.session.add(organizer)
        self.session.flush()
        self.audit.log_create("ORGANIZER", organizer.id, {"name": organizer.name, "source": scraped.source_code})
        return organizer

    def _maybe_enrich(self, artist: Artist):
        if self.enricher is not None and self.settings.enrich_on_create:
            self.enricher.enrich_artist(artist)
