"""
Canonical Refresher - Re-fuse a canonical entity from its linked sources.

refresh(kind, id):
1. Lock the canonical row (SELECT ... FOR UPDATE)
2. Collect linked scraped records + the manual pseudo-source
3. Fuse by source priority
4. Write back with COALESCE semantics (unresolved fields keep their value)
5. Replace field_sources wholesale
6. Stamp last_synced_at on links whose source contributed
7. One SYSTEM_UPDATE audit entry if a headline field changed
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from convergence.audit import AuditLogWriter, field_changes
from convergence.field_specs import EVENT_SPEC, KindSpec, get_spec
from convergence.fusion import FusionResult, is_empty_field, manual_source, merge_source_data, source_from_scraped
from convergence.link_store import LinkStore
from convergence.source_priority import SourcePriority, get_source_priority
from utils.normalize import event_window, to_date

logger = logging.getLogger(__name__)


@dataclass
class RefreshResult:
    kind: str
    canonical_id: str
    field_sources: Dict[str, str] = field(default_factory=dict)
    headline_changes: Dict[str, Any] = field(default_factory=dict)
    sources_used: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "canonical_id": self.canonical_id,
            "field_sources": self.field_sources,
            "headline_changes": self.headline_changes,
            "sources_used": self.sources_used,
        }


def _copy(value):
    # JSON columns need a fresh object to register as changed
    if isinstance(value, list):
        return [dict(v) if isinstance(v, dict) else v for v in value]
    if isinstance(value, dict):
        return dict(value)
    return value


def load_for_update(session, spec: KindSpec, canonical_id: str):
    """Canonical row locked for the rest of the transaction."""
    return (
        session.query(spec.canonical_model)
        .filter(spec.canonical_model.id == canonical_id)
        .with_for_update()
        .one_or_none()
    )


def write_event_values(row, values: Dict[str, Any]):
    """
    Write fused event values; 'HH:MM:SS' times become timestamps on the
    event date, rolling the end over midnight when needed.
    """
    values = dict(values)
    if "date" in values:
        row.date = to_date(values.pop("date"))

    start = values.pop("start_time", None) or row.start_time
    end = values.pop("end_time", None) or row.end_time
    start_at, end_at = event_window(row.date, start, end)
    if start_at is not None:
        row.start_time = start_at
    if end_at is not None:
        row.end_time = end_at

    for name, value in values.items():
        if not is_empty_field(name, value):
            setattr(row, name, _copy(value))


def write_values(spec: KindSpec, row, values: Dict[str, Any]):
    if spec is EVENT_SPEC:
        write_event_values(row, values)
        return
    for name, value in values.items():
        if not is_empty_field(name, value):
            setattr(row, name, _copy(value))


class CanonicalRefresher:
    def __init__(
        self,
        session,
        links: Optional[LinkStore] = None,
        audit: Optional[AuditLogWriter] = None,
        priority: Optional[SourcePriority] = None,
    ):
        self.session = session
        self.links = links or LinkStore(session)
        self.audit = audit or AuditLogWriter(session)
        self.priority = priority or get_source_priority()

    def fuse(self, spec: KindSpec, row, links) -> FusionResult:
        sources = [source_from_scraped(spec, link.scraped) for link in links if link.scraped is not None]
        manual = manual_source(spec, row)
        if manual is not None:
            sources.append(manual)
        return merge_source_data(sources, spec.fields.keys(), self.priority)

    def refresh(self, kind: str, canonical_id: str) -> Optional[RefreshResult]:
        spec = get_spec(kind)
        row = load_for_update(self.session, spec, canonical_id)
        if row is None:
            logger.warning(f"[Refresh] {spec.kind} {canonical_id} not found")
            return None

        links = self.links.links_for(spec, canonical_id)
        result = self.fuse(spec, row, links)

        before = {name: getattr(row, name) for name in spec.headline}
        write_values(spec, row, result.merged)
        row.field_sources = dict(result.field_sources)
        row.updated_at = datetime.utcnow()
        after = {name: getattr(row, name) for name in spec.headline}

        self.links.mark_synced(spec, links, result.contributing_sources)

        changes = field_changes(before, after)
        if changes:
            self.audit.log_system_update(spec.entity_type, canonical_id, changes)
            logger.info(f"[Refresh] {spec.kind} {canonical_id} headline changed: {sorted(changes)}")

        self.session.flush()
        return RefreshResult(
            kind=spec.kind,
            canonical_id=canonical_id,
            field_sources=dict(result.field_sources),
            headline_changes=changes,
            sources_used=len(links),
        )
