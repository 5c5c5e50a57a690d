"""
Tests for convergence/rate_limiter.py and convergence/gateway.py

Clock and sleep are faked; no test waits or touches the network.
"""

from unittest.mock import Mock

import pytest

from convergence.errors import ExternalServiceError
from convergence.gateway import ExternalGateway, build_gateway, geocode_queries
from convergence.rate_limiter import DEFAULT_CONFIG, RateLimiter, ResultCache, load_rate_limit_config
from services.geocoder import GeocodingResult, NominatimGeocoder


class FakeClock:
    def __init__(self):
        self.now = 100.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(round(seconds, 3))
        self.now += seconds


def _result(lat=52.5, lon=13.4):
    return GeocodingResult(latitude=lat, longitude=lon, display_name="x", raw_response={})


# =============================================================================
# Rate limiter
# =============================================================================

class TestRateLimiter:
    """Tests for RateLimiter"""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    def test_first_call_never_waits(self, clock):
        limiter = RateLimiter({"geocoding": 1.1}, clock=clock, sleep=clock.sleep)
        assert limiter.wait("geocoding") == 0.0
        assert clock.sleeps == []

    def test_back_to_back_calls_are_paced(self, clock):
        limiter = RateLimiter({"geocoding": 1.1}, clock=clock, sleep=clock.sleep)
        limiter.wait("geocoding")
        clock.now += 0.3
        limiter.wait("geocoding")
        assert clock.sleeps == [0.8]

    def test_services_are_independent(self, clock):
        limiter = RateLimiter({"geocoding": 1.1, "wikipedia": 0.5}, clock=clock, sleep=clock.sleep)
        limiter.wait("geocoding")
        limiter.wait("wikipedia")
        assert clock.sleeps == []

    def test_unknown_service_uses_default(self, clock):
        limiter = RateLimiter({}, default_interval=2.0, clock=clock, sleep=clock.sleep)
        assert limiter.interval_for("other") == 2.0

    def test_from_config(self):
        limiter = RateLimiter.from_config(DEFAULT_CONFIG)
        assert limiter.interval_for("geocoding") == 1.1
        assert limiter.interval_for("wikipedia") == 0.5
        assert limiter.interval_for("other") == 1.0

    def test_missing_yaml_falls_back(self, tmp_path):
        assert load_rate_limit_config(str(tmp_path / "missing.yaml")) == DEFAULT_CONFIG

    def test_shipped_yaml(self):
        limiter = RateLimiter.from_config(load_rate_limit_config())
        assert limiter.interval_for("geocoding") >= 1.0


class TestResultCache:
    """Tests for ResultCache"""

    def test_misses_are_cached(self):
        cache = ResultCache()
        cache.set("geocode", "nowhere", None)
        assert cache.contains("geocode", "nowhere")
        assert cache.get("geocode", "nowhere", default="missing") is None
        assert not cache.contains("geocode", "elsewhere")
        assert cache.hits == 1


# =============================================================================
# Gateway
# =============================================================================

class TestGeocodeQueries:
    """Tests for geocode_queries()"""

    def test_degrading_strategies(self):
        assert geocode_queries("Hauptstr. 1", "Berlin", "Germany") == [
            "Hauptstr. 1, Berlin, Germany",
            "Hauptstr. 1, Berlin",
            "Berlin, Germany",
        ]

    def test_deduplicates(self):
        assert geocode_queries("Hauptstr. 1", None, None) == ["Hauptstr. 1"]
        assert geocode_queries(None, None, None) == []


class TestExternalGateway:
    """Tests for ExternalGateway"""

    def test_falls_through_strategies(self):
        geocoder = Mock()
        geocoder.search.side_effect = [None, _result()]
        gateway = ExternalGateway(geocoder=geocoder)

        assert gateway.geocode_address("Hauptstr. 1", "Berlin", "Germany") == {"latitude": 52.5, "longitude": 13.4}
        assert geocoder.search.call_count == 2

    def test_results_and_misses_cached(self):
        geocoder = Mock()
        geocoder.search.return_value = None
        gateway = ExternalGateway(geocoder=geocoder)

        gateway.geocode_address("Nowhere 1", "Atlantis")
        gateway.geocode_address("nowhere 1", "atlantis")

        assert geocoder.search.call_count == 2
        assert gateway.geocode_calls == 2

    def test_throttling_disables_geocoding(self):
        geocoder = Mock()
        geocoder.search.side_effect = ExternalServiceError("geocoding", "HTTP 429", status_code=429)
        gateway = ExternalGateway(geocoder=geocoder, max_consecutive_errors=2)

        assert gateway.geocode_address("Hauptstr. 1", "Berlin") is None
        assert gateway.geocoding_disabled
        assert gateway.geocode_address("Other 2", "Berlin") is None
        assert geocoder.search.call_count == 2

    def test_success_resets_error_count(self):
        geocoder = Mock()
        geocoder.search.side_effect = [
            ExternalServiceError("geocoding", "HTTP 403", status_code=403),
            _result(),
        ]
        gateway = ExternalGateway(geocoder=geocoder, max_consecutive_errors=2)

        assert gateway.geocode_address("Hauptstr. 1", "Berlin", "Germany") is not None
        assert gateway.consecutive_errors == 0

    def test_server_errors_do_not_disable(self):
        geocoder = Mock()
        geocoder.search.side_effect = ExternalServiceError("geocoding", "HTTP 500", status_code=500)
        gateway = ExternalGateway(geocoder=geocoder, max_consecutive_errors=1)

        gateway.geocode_address("Hauptstr. 1", "Berlin")

        assert not gateway.geocoding_disabled

    def test_enrichment_failures_are_swallowed(self):
        musicbrainz = Mock()
        musicbrainz.search_artist.side_effect = ExternalServiceError("musicbrainz", "timeout")
        musicbrainz.get_artist_details.side_effect = ExternalServiceError("musicbrainz", "timeout")
        wikipedia = Mock()
        wikipedia.search_summary.side_effect = ExternalServiceError("wikipedia", "HTTP 503", status_code=503)
        gateway = ExternalGateway(musicbrainz=musicbrainz, wikipedia=wikipedia)

        assert gateway.search_artist("Ben Klock") == []
        assert gateway.get_artist_details("mbid-1") is None
        assert gateway.search_summary("Ben Klock") is None

    def test_missing_clients(self):
        gateway = ExternalGateway()
        assert gateway.geocode_address("Hauptstr. 1", "Berlin") is None
        assert gateway.search_artist("Ben Klock") == []

    def test_build_gateway_from_config(self):
        gateway = build_gateway({
            "GEOCODER_URL": "http://localhost:8080/search",
            "GEOCODER_USER_AGENT": "tests/1.0",
            "HTTP_TIMEOUT_SECONDS": "3",
        })
        assert isinstance(gateway.geocoder, NominatimGeocoder)
        assert gateway.geocoder.base_url == "http://localhost:8080/search"
        assert gateway.geocoder.timeout == 3.0
        assert gateway.geocoder.session.headers["User-Agent"] == "tests/1.0"
        assert gateway.geocoder.rate_limiter is gateway.musicbrainz.rate_limiter
