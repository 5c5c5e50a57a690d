"""
Wikipedia Client - Encyclopedia summaries for artists.

Search: action=query&list=search on {lang}.wikipedia.org/w/api.php
Summary: {lang}.wikipedia.org/api/rest_v1/page/summary/{title}

Pacing at 0.5s via the injected RateLimiter ('wikipedia').
"""
import logging
import re
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from convergence.errors import ExternalServiceError
from convergence.similarity import string_similarity

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "EventConvergence/1.0 (artist summaries)"

CONTEXT_KEYWORDS = ("band", "musician", "rapper", "singer", "group", "musiker", "dj", "producer")
LANGUAGES = ("en", "de")

# Name / disambiguation pages
PENALTY_TERMS = (
    "surname", "given name", "disambiguation",
    "nachname", "vorname", "begriffsklärung",
)

ACCEPT_SCORE = 0.5

_TAGS = re.compile(r"<[^>]+>")
_PARENS = re.compile(r"\s*\(.*?\)\s*")


class WikipediaClient:
    SERVICE = "wikipedia"

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

    def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        if self.rate_limiter is not None:
            self.rate_limiter.wait(self.SERVICE)
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
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

    def search(self, query: str, lang: str = "en") -> List[Dict[str, Any]]:
        data = self._get_json(
            f"https://{lang}.wikipedia.org/w/api.php",
            {"action": "query", "list": "search", "srsearch": query, "srlimit": 5, "format": "json"},
        )
        hits = ((data or {}).get("query") or {}).get("search") or []
        return [
            {
                "title": hit.get("title", ""),
                "description": _TAGS.sub("", hit.get("snippet") or ""),
                "pageid": hit.get("pageid"),
            }
            for hit in hits
        ]

    def get_page_summary(self, title: str, lang: str = "en") -> Optional[Dict[str, Any]]:
        slug = quote(title.replace(" ", "_"), safe="")
        return self._get_json(f"https://{lang}.wikipedia.org/api/rest_v1/page/summary/{slug}")

    @staticmethod
    def score_hit(hit: Dict[str, Any], name: str, keywords=CONTEXT_KEYWORDS) -> float:
        """Name similarity plus context boosts, minus name-page penalties."""
        title = (hit.get("title") or "").lower()
        description = (hit.get("description") or "").lower()
        score = string_similarity(name, _PARENS.sub(" ", hit.get("title") or ""))

        if any(k in description or k in title for k in keywords):
            score += 0.35
        if name.lower() in title or (title and title in name.lower()):
            score += 0.2
        if any(term in description for term in PENALTY_TERMS) or "(name)" in title or "(vorname)" in title:
            score -= 1.0
        return score

    def search_summary(self, name: str) -> Optional[Dict[str, Any]]:
        """
        Best-matching page summary for an artist name.

        Returns:
            Dict with name, description, image_url, content_url; None if no
            hit scores at least ACCEPT_SCORE
        """
        if not name or not name.strip():
            return None
        for lang in LANGUAGES:
            hits = self.search(name, lang)
            if not hits:
                continue
            best = max(hits, key=lambda h: self.score_hit(h, name))
            if self.score_hit(best, name) < ACCEPT_SCORE:
                continue

            summary = self.get_page_summary(best["title"], lang)
            if not summary or summary.get("type") == "disambiguation":
                continue

            content_urls = (summary.get("content_urls") or {}).get("desktop") or {}
            return {
                "source_code": "wiki",
                "source_id": str(summary.get("pageid") or best["title"]),
                "name": summary.get("title"),
                "description": summary.get("extract"),
                "image_url": (summary.get("thumbnail") or {}).get("source"),
                "content_url": content_urls.get("page"),
            }
        return None
