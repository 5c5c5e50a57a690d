"""
Tests for the external HTTP clients (services/)

requests.Session is mocked; live calls only run with --run-integration.
"""

from unittest.mock import Mock

import pytest
import requests

from convergence.errors import ExternalServiceError
from services.geocoder import NominatimGeocoder
from services.musicbrainz_client import MusicBrainzClient
from services.wikipedia_client import WikipediaClient


def _response(status_code=200, payload=None, json_error=False):
    response = Mock()
    response.status_code = status_code
    if json_error:
        response.json.side_effect = ValueError("not json")
    else:
        response.json.return_value = payload
    return response


def _session(*responses):
    session = Mock()
    session.headers = {}
    session.get.side_effect = list(responses)
    return session


# =============================================================================
# Nominatim
# =============================================================================

class TestNominatimGeocoder:
    """Tests for NominatimGeocoder.search()"""

    def test_first_result(self):
        session = _session(_response(payload=[{"lat": "52.5112", "lon": "13.4432", "display_name": "Berghain"}]))
        geocoder = NominatimGeocoder(session=session)

        result = geocoder.search("Am Wriezener Bahnhof, Berlin")

        assert result.to_dict() == {"latitude": 52.5112, "longitude": 13.4432}
        params = session.get.call_args.kwargs["params"]
        assert params == {"format": "json", "q": "Am Wriezener Bahnhof, Berlin", "limit": 1}

    def test_no_match(self):
        geocoder = NominatimGeocoder(session=_session(_response(payload=[])))
        assert geocoder.search("Nowhere") is None

    def test_blank_query_skips_request(self):
        session = _session()
        assert NominatimGeocoder(session=session).search("  ") is None
        session.get.assert_not_called()

    def test_http_error_carries_status(self):
        geocoder = NominatimGeocoder(session=_session(_response(status_code=429)))
        with pytest.raises(ExternalServiceError) as exc_info:
            geocoder.search("Berlin")
        assert exc_info.value.is_throttled

    def test_timeout(self):
        session = _session(requests.exceptions.Timeout("slow"))
        with pytest.raises(ExternalServiceError):
            NominatimGeocoder(session=session).search("Berlin")

    def test_unusable_result(self):
        geocoder = NominatimGeocoder(session=_session(_response(payload=[{"display_name": "no coords"}])))
        assert geocoder.search("Berlin") is None

    def test_rate_limiter_called(self):
        limiter = Mock()
        geocoder = NominatimGeocoder(session=_session(_response(payload=[])), rate_limiter=limiter)
        geocoder.search("Berlin")
        limiter.wait.assert_called_once_with("geocoding")

    def test_user_agent_header(self):
        session = _session()
        NominatimGeocoder(user_agent="tests/1.0", session=session)
        assert session.headers["User-Agent"] == "tests/1.0"


# =============================================================================
# MusicBrainz
# =============================================================================

class TestMusicBrainzClient:
    """Tests for MusicBrainzClient"""

    def test_search(self):
        session = _session(_response(payload={"artists": [{"id": "mbid-1", "name": "Ben Klock"}]}))
        client = MusicBrainzClient(session=session)

        hits = client.search_artist("Ben Klock", country="DE")

        assert hits == [{"id": "mbid-1", "name": "Ben Klock"}]
        params = session.get.call_args.kwargs["params"]
        assert params["query"] == 'artist:"Ben Klock" AND country:DE'
        assert params["fmt"] == "json"

    def test_details_normalized(self):
        payload = {
            "id": "mbid-1",
            "name": "Ben Klock",
            "country": "DE",
            "type": "Person",
            "genres": [{"name": "techno"}],
            "tags": [{"name": "house", "count": 1}, {"name": "techno", "count": 5}, {"name": "minimal", "count": 3}],
            "relations": [
                {"type": "official homepage", "url": {"resource": "https://benklock.com"}},
                {"type": "wikidata", "url": {"resource": "https://wikidata.org/x"}},
            ],
        }
        client = MusicBrainzClient(session=_session(_response(payload=payload)))

        details = client.get_artist_details("mbid-1")

        assert details["source_code"] == "musicbrainz"
        assert details["source_artist_id"] == "mbid-1"
        assert details["genres"] == ["techno", "minimal", "house"]
        assert details["website"] == "https://benklock.com"
        assert details["artist_type"] == "Person"

    def test_unknown_id(self):
        client = MusicBrainzClient(session=_session(_response(status_code=404)))
        assert client.get_artist_details("missing") is None

    def test_server_error(self):
        client = MusicBrainzClient(session=_session(_response(status_code=503)))
        with pytest.raises(ExternalServiceError):
            client.search_artist("Ben Klock")

    def test_bad_json(self):
        client = MusicBrainzClient(session=_session(_response(json_error=True)))
        with pytest.raises(ExternalServiceError):
            client.search_artist("Ben Klock")


# =============================================================================
# Wikipedia
# =============================================================================

class TestWikipediaClient:
    """Tests for WikipediaClient"""

    def test_summary_for_artist(self):
        search = _response(payload={"query": {"search": [
            {"title": "Ben Klock", "snippet": "German <b>DJ</b> and producer", "pageid": 42},
            {"title": "Klock (surname)", "snippet": "Klock is a surname", "pageid": 7},
        ]}})
        summary = _response(payload={
            "title": "Ben Klock",
            "pageid": 42,
            "extract": "Ben Klock is a German DJ.",
            "content_urls": {"desktop": {"page": "https://en.wikipedia.org/wiki/Ben_Klock"}},
        })
        client = WikipediaClient(session=_session(search, summary))

        result = client.search_summary("Ben Klock")

        assert result == {
            "source_code": "wiki",
            "source_id": "42",
            "name": "Ben Klock",
            "description": "Ben Klock is a German DJ.",
            "image_url": None,
            "content_url": "https://en.wikipedia.org/wiki/Ben_Klock",
        }

    def test_surname_page_penalized(self):
        hit = {"title": "Klock", "description": "Klock is a surname"}
        assert WikipediaClient.score_hit(hit, "Klock", ("dj",)) < 0.5

    def test_falls_back_to_second_language(self):
        empty = _response(payload={"query": {"search": []}})
        german = _response(payload={"query": {"search": [
            {"title": "Ben Klock", "snippet": "deutscher Musiker", "pageid": 9},
        ]}})
        summary = _response(payload={"title": "Ben Klock", "pageid": 9, "extract": "Deutscher DJ."})
        session = _session(empty, german, summary)

        result = WikipediaClient(session=session).search_summary("Ben Klock")

        assert result["description"] == "Deutscher DJ."
        assert "de.wikipedia.org" in session.get.call_args_list[1].args[0]

    def test_disambiguation_skipped(self):
        search = _response(payload={"query": {"search": [{"title": "Ben Klock", "snippet": "dj", "pageid": 1}]}})
        disambiguation = _response(payload={"type": "disambiguation", "title": "Ben Klock"})
        empty = _response(payload={"query": {"search": []}})
        client = WikipediaClient(session=_session(search, disambiguation, empty))

        assert client.search_summary("Ben Klock") is None


# =============================================================================
# Live services
# =============================================================================

@pytest.mark.integration
def test_live_nominatim():
    result = NominatimGeocoder().search("Am Wriezener Bahnhof, Berlin, Germany")
    assert result is not None
    assert 52.4 < result.latitude < 52.6


@pytest.mark.integration
def test_live_musicbrainz_search():
    hits = MusicBrainzClient().search_artist("Ben Klock")
    assert any(hit.get("name") == "Ben Klock" for hit in hits)
