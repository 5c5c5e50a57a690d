"""
External Gateway - Rate-limited, cached access to geocoding and enrichment.

All lookups go through one gateway instance per run:
- pacing via the injected RateLimiter (shared by all clients)
- geocoding results cached per normalized query, misses included
- after N consecutive 403/429 responses geocoding is skipped for the run
- never raises on failure or no-match; returns None / []
"""
import logging
from typing import Any, Dict, List, Optional

from convergence.errors import ExternalServiceError
from convergence.rate_limiter import RateLimiter, ResultCache, load_rate_limit_config
from convergence.similarity import normalize_for_match

logger = logging.getLogger(__name__)

GEOCODE_NAMESPACE = "geocode"


def geocode_queries(address: Optional[str], city: Optional[str], country: Optional[str]) -> List[str]:
    """
    Degrading query strategies, most specific first.

    1. address, city, country
    2. address, city
    3. city, country
    """
    def join(*parts):
        return ", ".join(p.strip() for p in parts if p and p.strip())

    candidates = []
    if address:
        candidates.append(join(address, city, country))
        candidates.append(join(address, city))
    if city:
        candidates.append(join(city, country))

    queries = []
    for query in candidates:
        if query and query not in queries:
            queries.append(query)
    return queries


class ExternalGateway:
    def __init__(
        self,
        geocoder=None,
        musicbrainz=None,
        wikipedia=None,
        cache: Optional[ResultCache] = None,
        max_consecutive_errors: int = 5,
    ):
        self.geocoder = geocoder
        self.musicbrainz = musicbrainz
        self.wikipedia = wikipedia
        self.cache = cache if cache is not None else ResultCache()
        self.max_consecutive_errors = max_consecutive_errors
        self.consecutive_errors = 0
        self.geocode_calls = 0

    # =========================================================================
    # GEOCODING
    # =========================================================================

    @property
    def geocoding_disabled(self) -> bool:
        return self.consecutive_errors >= self.max_consecutive_errors

    def _geocode_query(self, query: str) -> Optional[Dict[str, float]]:
        key = normalize_for_match(query)
        if self.cache.contains(GEOCODE_NAMESPACE, key):
            return self.cache.get(GEOCODE_NAMESPACE, key)

        if self.geocoding_disabled:
            return None

        self.geocode_calls += 1
        try:
            result = self.geocoder.search(query)
        except ExternalServiceError as e:
            if e.is_throttled:
                self.consecutive_errors += 1
                if self.geocoding_disabled:
                    logger.error(
                        f"[Geocode] {self.consecutive_errors} consecutive throttling errors, "
                        f"skipping geocoding for the rest of the run"
                    )
            logger.warning(f"[Geocode] Lookup failed for {query!r}: {e}")
            return None

        self.consecutive_errors = 0
        coords = result.to_dict() if result else None
        self.cache.set(GEOCODE_NAMESPACE, key, coords)
        return coords

    def geocode_address(
        self,
        address: Optional[str],
        city: Optional[str] = None,
        country: Optional[str] = None,
    ) -> Optional[Dict[str, float]]:
        """
        Coordinates for a venue address.

        Returns:
            {'latitude', 'longitude'} from the first strategy with a hit, or None
        """
        if self.geocoder is None:
            return None
        for query in geocode_queries(address, city, country):
            coords = self._geocode_query(query)
            if coords:
                logger.info(f"[Geocode] {query!r} -> {coords['latitude']:.5f}, {coords['longitude']:.5f}")
                return coords
        logger.info(f"[Geocode] No result for {address!r} ({city}, {country})")
        return None

    # =========================================================================
    # ENRICHMENT
    # =========================================================================

    def search_artist(self, name: str, country: Optional[str] = None) -> List[Dict[str, Any]]:
        if self.musicbrainz is None:
            return []
        try:
            return self.musicbrainz.search_artist(name, country=country) or []
        except ExternalServiceError as e:
            logger.warning(f"[MusicBrainz] Search failed for {name!r}: {e}")
            return []

    def get_artist_details(self, mbid: str) -> Optional[Dict[str, Any]]:
        if self.musicbrainz is None:
            return None
        try:
            return self.musicbrainz.get_artist_details(mbid)
        except ExternalServiceError as e:
            logger.warning(f"[MusicBrainz] Details failed for {mbid}: {e}")
            return None

    def search_summary(self, name: str) -> Optional[Dict[str, Any]]:
        if self.wikipedia is None:
            return None
        try:
            return self.wikipedia.search_summary(name)
        except ExternalServiceError as e:
            logger.warning(f"[Wikipedia] Summary failed for {name!r}: {e}")
            return None


def build_gateway(config, rate_limiter: Optional[RateLimiter] = None) -> ExternalGateway:
    """
    Gateway wired to the real HTTP clients.

    Args:
        config: Flask app.config (or any mapping with the GEOCODER_* keys)
        rate_limiter: Shared limiter; built from gateway_rate_limits.yaml if omitted
    """
    from services.geocoder import NominatimGeocoder
    from services.musicbrainz_client import MusicBrainzClient
    from services.wikipedia_client import WikipediaClient

    limits = load_rate_limit_config(config.get("RATE_LIMITS_FILE"))
    rate_limiter = rate_limiter or RateLimiter.from_config(limits)
    timeout = float(config.get("HTTP_TIMEOUT_SECONDS", 10))
    user_agent = config.get("GEOCODER_USER_AGENT")
    client_kwargs = {"timeout": timeout, "rate_limiter": rate_limiter}
    if user_agent:
        client_kwargs["user_agent"] = user_agent

    geocoder_kwargs = dict(client_kwargs)
    if config.get("GEOCODER_URL"):
        geocoder_kwargs["base_url"] = config["GEOCODER_URL"]

    geocoding = (limits.get("services") or {}).get("geocoding") or {}
    max_errors = geocoding.get(
        "max_consecutive_errors",
        (limits.get("defaults") or {}).get("max_consecutive_errors", 5),
    )

    return ExternalGateway(
        geocoder=NominatimGeocoder(**geocoder_kwargs),
        musicbrainz=MusicBrainzClient(**client_kwargs),
        wikipedia=WikipediaClient(**client_kwargs),
        max_consecutive_errors=int(max_errors),
    )
