"""
Root pytest configuration for backend tests.

Provides:
- Flask app on in-memory SQLite with all tables created
- Shared fixtures (app, session, orchestrator, fake gateway)
- Factories for scraped and canonical rows
"""

import sys
from datetime import date, datetime
from pathlib import Path

# Add backend directory to Python path so imports like
# `from convergence.similarity import ...` and `from utils.normalize import ...` work
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

import pytest
from sqlalchemy import event

TODAY = date(2024, 4, 1)


def _enable_sqlite_savepoints(engine):
    """pysqlite only honours SAVEPOINT when SQLAlchemy emits BEGIN itself."""

    @event.listens_for(engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")


@pytest.fixture
def app():
    """Create test Flask application with a fresh in-memory database."""
    from app import create_app
    from config import TestingConfig
    from models.database import db

    app = create_app(TestingConfig)
    with app.app_context():
        _enable_sqlite_savepoints(db.engine)
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def session(app):
    from models.database import db
    return db.session


# =============================================================================
# Fake collaborators
# =============================================================================

class FakeGateway:
    """
    In-memory ExternalGateway.

    coordinates: lowercase fragment -> {'latitude', 'longitude'}; the first
    fragment found in "address city country" wins.
    """

    def __init__(self, coordinates=None, artists=None, details=None, summaries=None):
        self.coordinates = coordinates or {}
        self.artists = artists or {}
        self.details = details or {}
        self.summaries = summaries or {}
        self.geocode_calls = []
        self.artist_searches = []

    def geocode_address(self, address, city=None, country=None):
        self.geocode_calls.append((address, city, country))
        text = " ".join(p for p in (address, city, country) if p).lower()
        for fragment, coords in self.coordinates.items():
            if fragment in text:
                return dict(coords)
        return None

    def search_artist(self, name, country=None):
        self.artist_searches.append(name)
        return list(self.artists.get(name.lower(), []))

    def get_artist_details(self, mbid):
        return self.details.get(mbid)

    def search_summary(self, name):
        return self.summaries.get(name.lower())


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def orchestrator(session):
    from convergence.orchestrator import ConvergenceOrchestrator
    return ConvergenceOrchestrator(session, gateway=None, config={}, today=lambda: TODAY, warmup_store=False)


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture
def make_scraped_event(session):
    from models.scraped import ScrapedEvent

    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        values = {
            "source_code": "ra",
            "source_event_id": f"evt-{counter['n']}",
            "title": "Techno Night",
            "date": date(2024, 5, 1),
            "start_time": "23:00:00",
            "venue_name": "Berghain",
            "venue_city": "Berlin",
            "venue_country": "Germany",
            "artists_json": [{"name": "Ben Klock"}],
        }
        values.update(overrides)
        scraped = ScrapedEvent(**values)
        session.add(scraped)
        session.flush()
        return scraped

    return _make


@pytest.fixture
def make_event(session):
    from models.event import Event

    def _make(**overrides):
        values = {
            "title": "Techno Night",
            "date": date(2024, 5, 1),
            "start_time": datetime(2024, 5, 1, 23, 0),
            "venue_name": "Berghain",
            "venue_city": "Berlin",
            "artists": [{"name": "Ben Klock"}],
            "field_sources": {},
        }
        values.update(overrides)
        canonical = Event(**values)
        session.add(canonical)
        session.flush()
        return canonical

    return _make
