"""
Geocoder Service - Nominatim (OpenStreetMap) wrapper for venue addresses

Nominatim usage policy: https://operations.osmfoundation.org/policies/nominatim/

Endpoint: GET https://nominatim.openstreetmap.org/search?format=json&q=...&limit=1
Rate limit: 1 request/second, identifying User-Agent required.
Pacing is done by the injected RateLimiter (1.1s for 'geocoding').

Usage:
    from services.geocoder import NominatimGeocoder

    geocoder = NominatimGeocoder()
    result = geocoder.search("Am Wriezener Bahnhof, Berlin, Germany")
    if result:
        print(f"Lat: {result.latitude}, Lng: {result.longitude}")
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from convergence.errors import ExternalServiceError

logger = logging.getLogger(__name__)

DEFAULT_URL = "https://nominatim.openstreetmap.org/search"
DEFAULT_USER_AGENT = "EventConvergence/1.0 (venue geocoding)"


@dataclass
class GeocodingResult:
    """Result from geocoding operation"""
    latitude: float
    longitude: float
    display_name: str
    raw_response: Dict[str, Any]

    def to_dict(self) -> Dict[str, float]:
        return {"latitude": self.latitude, "longitude": self.longitude}


class NominatimGeocoder:
    """Free-text address geocoder backed by Nominatim."""

    SERVICE = "geocoding"

    def __init__(
        self,
        base_url: str = DEFAULT_URL,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = 10,
        rate_limiter=None,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self.rate_limiter = rate_limiter
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": user_agent})

    def _wait_for_rate_limit(self):
        if self.rate_limiter is not None:
            self.rate_limiter.wait(self.SERVICE)

    def search(self, query: str) -> Optional[GeocodingResult]:
        """
        Geocode one free-text query.

        Returns:
            First result, or None when Nominatim has no match

        Raises:
            ExternalServiceError: HTTP failure, timeout or unreadable body
        """
        if not query or not query.strip():
            return None

        self._wait_for_rate_limit()

        params = {"format": "json", "q": query.strip(), "limit": 1}
        try:
            response = self.session.get(self.base_url, params=params, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise ExternalServiceError(self.SERVICE, f"request failed for {query!r}: {e}")

        if response.status_code != 200:
            raise ExternalServiceError(
                self.SERVICE,
                f"HTTP {response.status_code} for {query!r}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ExternalServiceError(self.SERVICE, f"JSON parse error for {query!r}: {e}")

        if not data:
            return None

        first = data[0]
        try:
            return GeocodingResult(
                latitude=float(first["lat"]),
                longitude=float(first["lon"]),
                display_name=first.get("display_name", ""),
                raw_response=first,
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"[Geocode] Unusable result for {query!r}: {e}")
            return None
