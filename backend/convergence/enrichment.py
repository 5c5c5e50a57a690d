"""
Artist Enricher - MusicBrainz and Wikipedia as extra artist sources.

Enrichment results are stored as scraped artists of their own source
('musicbrainz', 'wiki') and linked like any other source, so fusion and
provenance treat them uniformly. MusicBrainz ranks high in source priority;
'wiki' ranks last and in practice only fills an empty bio.
"""
import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select

from convergence.audit import AuditLogWriter
from convergence.field_specs import ARTIST_SPEC
from convergence.link_store import LinkStore
from convergence.records import ArtistRecord
from convergence.refresher import CanonicalRefresher
from convergence.similarity import string_similarity
from models.artist import Artist
from models.links import ArtistScrapedLink
from models.scraped import ScrapedArtist

logger = logging.getLogger(__name__)

MUSICBRAINZ_SOURCE = "musicbrainz"
WIKIPEDIA_SOURCE = "wiki"
NAME_SIMILARITY_THRESHOLD = 0.8


class ArtistEnricher:
    def __init__(
        self,
        session,
        gateway,
        links: Optional[LinkStore] = None,
        refresher: Optional[CanonicalRefresher] = None,
        audit: Optional[AuditLogWriter] = None,
        name_threshold: float = NAME_SIMILARITY_THRESHOLD,
    ):
        self.session = session
        self.gateway = gateway
        self.links = links or LinkStore(session)
        self.refresher = refresher or CanonicalRefresher(session, self.links, audit)
        self.name_threshold = name_threshold

    def enrich_artist(self, artist: Artist) -> bool:
        """
        Look the artist up on MusicBrainz, then Wikipedia.

        Returns:
            True if any enrichment source was linked
        """
        if self.gateway is None or not artist.name:
            return False
        linked = self._from_musicbrainz(artist)
        if not artist.bio:
            linked = self._from_wikipedia(artist) or linked
        return linked

    def _from_musicbrainz(self, artist: Artist) -> bool:
        hits = self.gateway.search_artist(artist.name, country=artist.country)
        if not hits:
            logger.debug(f"[Enrich] No MusicBrainz hit for {artist.name!r}")
            return False

        top = hits[0]
        similarity = string_similarity(artist.name, top.get("name"))
        if similarity <= self.name_threshold:
            logger.info(
                f"[Enrich] Top MusicBrainz hit {top.get('name')!r} too far from "
                f"{artist.name!r} ({similarity:.2f})"
            )
            return False

        details = self.gateway.get_artist_details(top["id"]) if top.get("id") else None
        if not details:
            return False

        scraped = self._store(details)
        if scraped is None or not self._link(artist, scraped, similarity):
            return False
        self.links.set_primary(ARTIST_SPEC, artist.id, scraped.id)
        self.refresher.refresh(ARTIST_SPEC.kind, artist.id)
        logger.info(f"[Enrich] {artist.name!r} enriched from MusicBrainz {scraped.source_artist_id}")
        return True

    def _from_wikipedia(self, artist: Artist) -> bool:
        summary = self.gateway.search_summary(artist.name)
        if not summary or not summary.get("description"):
            return False

        scraped = self._store({
            "source_code": WIKIPEDIA_SOURCE,
            "source_artist_id": summary["source_id"],
            "name": summary.get("name") or artist.name,
            "bio": summary["description"],
            "image_url": summary.get("image_url"),
            "content_url": summary.get("content_url"),
        })
        confidence = string_similarity(artist.name, summary.get("name") or artist.name)
        if scraped is None or not self._link(artist, scraped, confidence):
            return False
        self.refresher.refresh(ARTIST_SPEC.kind, artist.id)
        logger.info(f"[Enrich] {artist.name!r} bio from Wikipedia {scraped.source_artist_id}")
        return True

    def _store(self, payload: Dict[str, Any]) -> Optional[ScrapedArtist]:
        """Upsert an enrichment result as a scraped artist."""
        try:
            record = ArtistRecord.model_validate(payload)
        except PydanticValidationError as e:
            logger.warning(f"[Enrich] Unusable {payload.get('source_code')} result: {e.error_count()} error(s)")
            return None

        values = record.scraped_columns()
        scraped = (
            self.session.query(ScrapedArtist)
            .filter_by(source_code=record.source_code, source_artist_id=record.source_artist_id)
            .one_or_none()
        )
        if scraped is None:
            scraped = ScrapedArtist(**values)
            self.session.add(scraped)
        else:
            for name, value in values.items():
                setattr(scraped, name, value)
        self.session.flush()
        return scraped

    def _link(self, artist: Artist, scraped: ScrapedArtist, confidence: float) -> bool:
        link = self.links.create_link(ARTIST_SPEC, artist.id, scraped.id, confidence)
        if link.artist_id != artist.id:
            logger.info(f"[Enrich] {scraped!r} already feeds artist {link.artist_id}, not relinking")
            return False
        return True

    # =========================================================================
    # BATCH
    # =========================================================================

    def artists_needing_enrichment(self, limit: int = 20) -> List[Artist]:
        """Canonical artists with no MusicBrainz link, oldest first."""
        enriched = (
            select(ArtistScrapedLink.artist_id)
            .join(ScrapedArtist, ScrapedArtist.id == ArtistScrapedLink.scraped_artist_id)
            .where(ScrapedArtist.source_code == MUSICBRAINZ_SOURCE)
        )
        return (
            self.session.query(Artist)
            .filter(Artist.id.notin_(enriched))
            .order_by(Artist.created_at)
            .limit(limit)
            .all()
        )
