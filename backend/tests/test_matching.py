"""
Tests for convergence/matching.py

Covers candidate scoring per kind, the same-source exclusion, the
near-duplicate fallback, canonical creation (venue geocoding, participants,
past events), dry runs and manual links.
"""

from datetime import date

import pytest

from conftest import TODAY, FakeGateway
from convergence.audit import AuditLogWriter, CREATE
from convergence.errors import ValidationError
from convergence.field_specs import EVENT_SPEC, VENUE_SPEC
from convergence.link_store import LinkStore
from convergence.matching import NEAR_DUPLICATE_NOTE, CandidateMatcher, MatchSettings, significant_tokens
from convergence.refresher import CanonicalRefresher
from convergence.source_priority import SourcePriority
from convergence.venue_resolver import VenueResolver
from models.artist import Artist
from models.audit_log import AuditLogEntry
from models.event import Event
from models.links import EventScrapedLink, VenueScrapedLink
from models.organizer import Organizer
from models.scraped import ScrapedArtist, ScrapedOrganizer, ScrapedVenue
from models.venue import Venue


def build_matcher(session, gateway=None, venue_resolver=None, **settings):
    audit = AuditLogWriter(session)
    links = LinkStore(session)
    refresher = CanonicalRefresher(session, links, audit, SourcePriority())
    return CandidateMatcher(
        session,
        refresher=refresher,
        links=links,
        audit=audit,
        venue_resolver=venue_resolver or VenueResolver(session, gateway, audit),
        settings=MatchSettings(**settings),
        today=lambda: TODAY,
    )


@pytest.fixture
def matcher(session, gateway):
    return build_matcher(session, gateway)


def _match_all(matcher, kind):
    spec = EVENT_SPEC if kind == "event" else VENUE_SPEC
    results = []
    for scraped in matcher.links.unlinked_query(spec).all():
        results.append(matcher.match_record(kind, scraped))
        matcher.session.flush()
    return results


# =============================================================================
# Settings
# =============================================================================

class TestMatchSettings:
    """Tests for MatchSettings.from_config()"""

    def test_defaults(self):
        settings = MatchSettings.from_config({})
        assert settings.min_confidence == {"event": 0.6, "venue": 0.7, "artist": 0.7, "organizer": 0.7}
        assert settings.near_duplicate_threshold == 0.5

    def test_overrides(self):
        settings = MatchSettings.from_config({
            "MATCH_MIN_CONFIDENCE_EVENTS": "0.75",
            "ENRICH_ARTISTS_ON_CREATE": "false",
            "MATCH_BATCH_LIMIT": 50,
        })
        assert settings.min_confidence["event"] == 0.75
        assert settings.enrich_on_create is False
        assert settings.batch_limit == 50

    def test_significant_tokens(self):
        assert significant_tokens("DJ Ben Klock") == ["ben", "klock"]
        assert significant_tokens(None) == []


# =============================================================================
# Events
# =============================================================================

class TestEventMatching:
    """Tests for event matching and creation"""

    def test_cross_source_listings_converge(self, session, matcher, make_scraped_event):
        ra = make_scraped_event(source_code="ra", title="Techno Night", start_time="23:00:00")
        tm = make_scraped_event(source_code="tm", title="Techno Night Special", start_time="23:10:00")

        first = matcher.match_record("event", ra)
        second = matcher.match_record("event", tm)

        assert first.action == "created"
        assert second.action == "matched"
        assert second.confidence >= 0.9
        assert second.canonical_ref["id"] == first.canonical_ref["id"]

        event = session.get(Event, first.canonical_ref["id"])
        assert event.title == "Techno Night"
        assert event.field_sources["title"] == "ra"
        assert len(matcher.links.links_for(EVENT_SPEC, event.id)) == 2

    def test_matching_is_idempotent(self, session, matcher, make_scraped_event):
        make_scraped_event(source_code="ra")
        make_scraped_event(source_code="tm", title="Techno Night Special", start_time="23:10:00")

        assert len(_match_all(matcher, "event")) == 2
        assert _match_all(matcher, "event") == []
        assert session.query(Event).count() == 1
        assert session.query(EventScrapedLink).count() == 2

    def test_different_event_same_night_is_created(self, session, matcher, make_scraped_event):
        make_scraped_event(source_code="ra", title="Techno Night")
        make_scraped_event(
            source_code="tm", title="Jazz Brunch", start_time="11:00:00", artists_json=[{"name": "Some Trio"}],
        )

        results = _match_all(matcher, "event")

        assert [r.action for r in results] == ["created", "created"]
        assert session.query(Event).count() == 2

    def test_same_source_canonical_is_skipped(self, session, matcher, make_scraped_event):
        first = make_scraped_event(source_code="ra", title="Techno Night")
        matcher.match_record("event", first)
        other = make_scraped_event(source_code="ra", title="Jazz Brunch", artists_json=[])

        result = matcher.match_record("event", other)

        assert result.action == "created"

    def test_near_duplicate_fallback(self, session, matcher, make_scraped_event):
        first = make_scraped_event(source_code="ra", title="Techno Night")
        created = matcher.match_record("event", first)
        late_entry = make_scraped_event(source_code="ra", title="Techno Night - Late Entry")

        result = matcher.match_record("event", late_entry)

        assert result.action == "matched"
        assert result.confidence == 0.5
        assert result.note == NEAR_DUPLICATE_NOTE
        assert result.canonical_ref["id"] == created.canonical_ref["id"]
        link = matcher.links.get_link(EVENT_SPEC, late_entry.id)
        assert link.match_confidence == 0.5

    def test_created_event_links_primary_with_audit(self, session, matcher, make_scraped_event):
        scraped = make_scraped_event()

        result = matcher.match_record("event", scraped)

        link = matcher.links.get_link(EVENT_SPEC, scraped.id)
        assert link.match_confidence == 1.0
        assert link.is_primary is True
        event = session.get(Event, result.canonical_ref["id"])
        assert event.status == "SCRAPED_DRAFT"
        assert event.publish_status == "pending"
        actions = {
            (e.entity_type, e.action)
            for e in session.query(AuditLogEntry).all()
        }
        assert ("EVENT", CREATE) in actions
        assert ("VENUE", CREATE) in actions
        assert ("ARTIST", CREATE) in actions

    def test_created_event_gets_venue_and_participants(self, session, matcher, make_scraped_event):
        scraped = make_scraped_event(
            artists_json=[{"name": "Ben Klock"}, {"name": "Marcel Dettmann"}],
            organizers_json=[{"name": "Ostgut Ton", "content_url": "https://ostgut.de"}],
        )
        result = matcher.match_record("event", scraped)
        event = session.get(Event, result.canonical_ref["id"])

        assert event.venue is not None
        assert event.venue.name == "Berghain"
        assert sorted(a.name for a in event.linked_artists) == ["Ben Klock", "Marcel Dettmann"]
        assert [o.name for o in event.linked_organizers] == ["Ostgut Ton"]
        assert event.linked_organizers[0].website == "https://ostgut.de"

    def test_participants_are_reused_case_insensitively(self, session, matcher, make_scraped_event):
        matcher.match_record("event", make_scraped_event())
        other = make_scraped_event(
            source_code="tm", title="Sunday Session", date=date(2024, 5, 5), artists_json=[{"name": "BEN KLOCK"}],
        )
        matcher.match_record("event", other)

        assert session.query(Artist).count() == 1
        assert session.query(Venue).count() == 1

    def test_past_event_is_created_rejected(self, session, matcher, make_scraped_event):
        scraped = make_scraped_event(date=date(2024, 3, 1))

        result = matcher.match_record("event", scraped)

        assert session.get(Event, result.canonical_ref["id"]).publish_status == "rejected"

    def test_venue_failure_keeps_event(self, session, make_scraped_event):
        class BrokenResolver:
            def find_or_create_venue(self, *args, **kwargs):
                raise RuntimeError("geocoder exploded")

        matcher = build_matcher(session, venue_resolver=BrokenResolver())
        scraped = make_scraped_event()

        result = matcher.match_record("event", scraped)

        event = session.get(Event, result.canonical_ref["id"])
        assert event.venue_id is None
        assert event.venue_name == "Berghain"
        assert scraped.processing_errors[0]["stage"] == "venue"

    def test_dry_run_writes_nothing(self, session, matcher, make_scraped_event):
        scraped = make_scraped_event()

        result = matcher.match_record("event", scraped, dry_run=True)

        assert result.action == "created"
        assert result.canonical_ref is None
        assert session.query(Event).count() == 0
        assert matcher.links.get_link(EVENT_SPEC, scraped.id) is None


# =============================================================================
# Venues
# =============================================================================

class TestVenueMatching:
    """Tests for venue scoring and creation"""

    def test_identical_name_and_city_score_high(self):
        scraped = ScrapedVenue(name="Berghain", city="Berlin")
        candidate = Venue(name="BERGHAIN", city="berlin")
        assert CandidateMatcher.score_venue(scraped, candidate) >= 0.99

    def test_existing_venue_is_matched(self, session, matcher):
        venue = Venue(name="Berghain", city="Berlin", field_sources={})
        scraped = ScrapedVenue(source_code="tm", source_venue_id="v-9", name="Berghain", city="Berlin",
                               address="Am Wriezener Bahnhof")
        session.add_all([venue, scraped])
        session.flush()

        result = matcher.match_record("venue", scraped)

        assert result.action == "matched"
        assert result.canonical_ref["id"] == venue.id
        assert venue.address == "Am Wriezener Bahnhof"
        assert venue.field_sources["address"] == "tm"

    def test_new_venue_is_created_and_geocoded(self, session):
        gateway = FakeGateway(coordinates={"hauptstr": {"latitude": 52.52, "longitude": 13.40}})
        matcher = build_matcher(session, gateway)
        scraped = ScrapedVenue(source_code="ra", source_venue_id="v-1", name="Klub X",
                               address="Hauptstr. 1", city="Berlin")
        session.add(scraped)
        session.flush()

        result = matcher.match_record("venue", scraped)

        assert result.action == "created"
        assert gateway.geocode_calls
        venue = session.get(Venue, result.canonical_ref["id"])
        assert (venue.latitude, venue.longitude) == (52.52, 13.40)
        link = session.query(VenueScrapedLink).filter_by(scraped_venue_id=scraped.id).one()
        assert link.match_confidence == 1.0
        assert link.is_primary is True


# =============================================================================
# Artists & organizers
# =============================================================================

class TestNamedMatching:
    """Tests for artist and organizer matching"""

    def test_artist_matched_by_name(self, session, matcher):
        artist = Artist(name="Ben Klock", field_sources={})
        scraped = ScrapedArtist(source_code="ra", source_artist_id="a-1", name="ben klock", country="DE")
        session.add_all([artist, scraped])
        session.flush()

        result = matcher.match_record("artist", scraped)

        assert result.action == "matched"
        assert result.confidence == 1.0
        assert artist.country == "DE"

    def test_unknown_artist_is_created(self, session, matcher):
        session.add(Artist(name="Ben Klock", field_sources={}))
        scraped = ScrapedArtist(source_code="ra", source_artist_id="a-2", name="Nina Kraviz", genres=["techno"])
        session.add(scraped)
        session.flush()

        result = matcher.match_record("artists", scraped)

        assert result.action == "created"
        created = session.get(Artist, result.canonical_ref["id"])
        assert created.genres == ["techno"]
        assert created.field_sources["name"] == "ra"

    def test_organizer_created_with_website(self, session, matcher):
        scraped = ScrapedOrganizer(source_code="ra", source_id="o-1", name="Ostgut Ton", url="https://ostgut.de")
        session.add(scraped)
        session.flush()

        result = matcher.match_record("organizer", scraped)

        organizer = session.get(Organizer, result.canonical_ref["id"])
        assert organizer.website == "https://ostgut.de"
        assert organizer.field_sources["website"] == "ra"


# =============================================================================
# Manual links
# =============================================================================

class TestLinkManually:
    """Tests for CandidateMatcher.link_manually()"""

    def test_links_and_refreshes(self, session, matcher, make_event, make_scraped_event):
        event = make_event(title="Placeholder", ticket_url=None)
        scraped = make_scraped_event(ticket_url="https://ra.example/t/1")

        result = matcher.link_manually("event", event.id, scraped.id)

        assert result.confidence == 1.0
        assert matcher.links.get_link(EVENT_SPEC, scraped.id).event_id == event.id
        assert event.ticket_url == "https://ra.example/t/1"

    def test_already_linked_elsewhere(self, session, matcher, make_event, make_scraped_event):
        first = make_event()
        second = make_event(title="Other")
        scraped = make_scraped_event()
        matcher.link_manually("event", first.id, scraped.id)

        with pytest.raises(ValidationError):
            matcher.link_manually("event", second.id, scraped.id)

    def test_unknown_ids(self, session, matcher, make_event):
        with pytest.raises(ValidationError):
            matcher.link_manually("event", "missing", 1)
        event = make_event()
        with pytest.raises(ValidationError):
            matcher.link_manually("event", event.id, 999)
