"""
MusicBrainz Client - Artist search and detail lookups.

API: https://musicbrainz.org/doc/MusicBrainz_API
Rate limit: 1 request/second per client; we pace at 1.1s via the
injected RateLimiter ('musicbrainz').
"""
import logging
from typing import Any, Dict, List, Optional

import requests

from convergence.errors import ExternalServiceError

logger = logging.getLogger(__name__)

BASE_URL = "https://musicbrainz.org/ws/2"
DEFAULT_USER_AGENT = "EventConvergence/1.0 ( artist enrichment )"

# Relation types worth keeping as artist links
URL_RELATION_TYPES = ("official homepage", "social network", "discogs", "streaming")


class MusicBrainzClient:
    SERVICE = "musicbrainz"

    def __init__(
        self,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = 10,
        rate_limiter=None,
        session: Optional[requests.Session] = None,
    ):
        self.timeout = timeout
        self.rate_limiter = rate_limiter
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": user_agent, "Accept": "application/json"})

    def _get(self, path: str, params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if self.rate_limiter is not None:
            self.rate_limiter.wait(self.SERVICE)

        url = f"{BASE_URL}/{path}"
        logger.debug(f"[MusicBrainz] GET {url} {params}")
        try:
            response = self.session.get(url, params={**params, "fmt": "json"}, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise ExternalServiceError(self.SERVICE, f"request failed: {e}")

        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise ExternalServiceError(
                self.SERVICE, f"HTTP {response.status_code}", status_code=response.status_code
            )
        try:
            return response.json()
        except ValueError as e:
            raise ExternalServiceError(self.SERVICE, f"JSON parse error: {e}")

    def search_artist(self, name: str, country: Optional[str] = None) -> List[Dict[str, Any]]:
        """Raw artist search hits, best first."""
        if not name or not name.strip():
            return []
        query = f'artist:"{name.strip()}"'
        if country:
            query += f" AND country:{country}"
        data = self._get("artist", {"query": query})
        return (data or {}).get("artists", [])

    def get_artist_details(self, mbid: str) -> Optional[Dict[str, Any]]:
        """
        Artist details normalized to scraped-artist fields.

        Returns None when the id is unknown.
        """
        data = self._get(f"artist/{mbid}", {"inc": "url-rels+tags+genres"})
        if not data:
            return None

        tags = [t["name"] for t in sorted(data.get("tags") or [], key=lambda t: -t.get("count", 0))]
        genres = [g["name"] for g in data.get("genres") or []]
        urls = [
            r for r in data.get("relations") or []
            if r.get("type") in URL_RELATION_TYPES and r.get("url")
        ]
        website = next((r["url"].get("resource") for r in urls if r["type"] == "official homepage"), None)

        return {
            "source_code": "musicbrainz",
            "source_artist_id": data["id"],
            "name": data.get("name"),
            "country": data.get("country"),
            "artist_type": data.get("type"),
            "genres": (genres + [t for t in tags if t not in genres])[:10],
            "website": website,
            "content_url": website or f"https://musicbrainz.org/artist/{data['id']}",
        }
