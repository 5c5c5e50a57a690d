"""
Link Store - Fan-in between canonical entities and scraped records.

A scraped record has at most one link. create_link resolves the race where
two runs link the same record: the unique constraint rejects the second
insert and the existing link is returned.
"""
import logging
from datetime import datetime
from typing import Iterable, List, Optional, Set

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from convergence.field_specs import KindSpec

logger = logging.getLogger(__name__)


class LinkStore:
    def __init__(self, session):
        self.session = session

    def _scraped_col(self, spec: KindSpec):
        return getattr(spec.link_model, spec.scraped_fk)

    def _canonical_col(self, spec: KindSpec):
        return getattr(spec.link_model, spec.canonical_fk)

    def get_link(self, spec: KindSpec, scraped_id: int):
        return self.session.query(spec.link_model).filter(self._scraped_col(spec) == scraped_id).one_or_none()

    def canonical_id_for(self, spec: KindSpec, scraped_id: int) -> Optional[str]:
        link = self.get_link(spec, scraped_id)
        return getattr(link, spec.canonical_fk) if link else None

    def links_for(self, spec: KindSpec, canonical_id: str) -> List:
        return (
            self.session.query(spec.link_model)
            .filter(self._canonical_col(spec) == canonical_id)
            .order_by(spec.link_model.id)
            .all()
        )

    def unlinked_query(self, spec: KindSpec):
        """Scraped records of a kind that have no link yet, oldest first."""
        linked = select(self._scraped_col(spec))
        return (
            self.session.query(spec.scraped_model)
            .filter(spec.scraped_model.id.notin_(linked))
            .order_by(spec.scraped_model.id)
        )

    def canonical_ids_linked_from_source(
        self, spec: KindSpec, canonical_ids: Iterable[str], source_code: str
    ) -> Set[str]:
        """Which of the given canonical ids already hold a link from source_code."""
        canonical_ids = list(canonical_ids)
        if not canonical_ids:
            return set()
        rows = (
            self.session.query(self._canonical_col(spec))
            .join(spec.scraped_model, self._scraped_col(spec) == spec.scraped_model.id)
            .filter(self._canonical_col(spec).in_(canonical_ids))
            .filter(spec.scraped_model.source_code == source_code)
            .all()
        )
        return {row[0] for row in rows}

    def create_link(
        self,
        spec: KindSpec,
        canonical_id: str,
        scraped_id: int,
        confidence: float,
        is_primary: bool = False,
    ):
        """
        Link a scraped record to a canonical entity.

        Returns the existing link when the record was linked concurrently.
        """
        link = spec.link_model(
            match_confidence=max(0.0, min(1.0, confidence)),
            is_primary=is_primary,
        )
        setattr(link, spec.canonical_fk, canonical_id)
        setattr(link, spec.scraped_fk, scraped_id)

        try:
            with self.session.begin_nested():
                self.session.add(link)
        except IntegrityError as e:
            logger.info(f"[Links] {spec.kind} scraped record {scraped_id} already linked, reusing: {e.orig}")
            existing = self.get_link(spec, scraped_id)
            if existing is None:
                raise
            return existing
        return link

    def mark_synced(self, spec: KindSpec, links: Iterable, source_codes: Set[str], at: Optional[datetime] = None):
        at = at or datetime.utcnow()
        for link in links:
            if link.scraped is not None and link.scraped.source_code in source_codes:
                link.last_synced_at = at

    def set_primary(self, spec: KindSpec, canonical_id: str, scraped_id: int):
        """Make one link the primary for its canonical entity."""
        for link in self.links_for(spec, canonical_id):
            link.is_primary = getattr(link, spec.scraped_fk) == scraped_id
