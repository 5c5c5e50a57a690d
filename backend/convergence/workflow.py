"""
Auto-Apply Workflow - Apply detected source changes now, or queue them.

Canonical entities in a draft state take changes immediately, except for
fields with manual provenance or owned by a higher-priority source.
Anything further along the review workflow keeps the diff on the scraped
record as a pending, dismissible suggestion.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from convergence.audit import AuditLogWriter
from convergence.errors import ValidationError
from convergence.field_specs import EVENT_SPEC, KindSpec, get_spec
from convergence.link_store import LinkStore
from convergence.refresher import load_for_update, write_values
from convergence.source_priority import SourcePriority, get_source_priority, is_manual
from models.event_state import is_draft

logger = logging.getLogger(__name__)

APPLIED = "applied"
PENDING = "pending"
UNLINKED = "unlinked"


@dataclass
class WorkflowOutcome:
    decision: str  # applied, pending, unlinked
    canonical_id: Optional[str] = None
    applied_fields: List[str] = field(default_factory=list)
    skipped_manual: List[str] = field(default_factory=list)
    skipped_outranked: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "decision": self.decision,
            "canonical_id": self.canonical_id,
            "applied_fields": self.applied_fields,
            "skipped_manual": self.skipped_manual,
            "skipped_outranked": self.skipped_outranked,
        }


class AutoApplyWorkflow:
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

    def _outranked(self, owner: Optional[str], source_code: str) -> bool:
        """A field owned by a higher-priority source keeps its value."""
        if not owner or owner == source_code:
            return False
        return self.priority.priority(owner) < self.priority.priority(source_code)

    def _apply(
        self,
        spec: KindSpec,
        row,
        scraped,
        attributes: Iterable[str],
        automatic: bool,
        performed_by: Optional[str] = None,
    ) -> WorkflowOutcome:
        outcome = WorkflowOutcome(decision=APPLIED, canonical_id=row.id)
        provenance = dict(row.field_sources or {})
        mapping = spec.scraped_to_canonical
        pending = scraped.changes or {}

        values = {}
        for attribute in attributes:
            canonical_field = mapping.get(attribute)
            if canonical_field is None or attribute not in pending:
                continue
            owner = provenance.get(canonical_field)
            if automatic and is_manual(owner):
                outcome.skipped_manual.append(canonical_field)
                continue
            if automatic and self._outranked(owner, scraped.source_code):
                outcome.skipped_outranked.append(canonical_field)
                continue
            values[canonical_field] = pending[attribute]["new"]

        before = {name: getattr(row, name) for name in values}
        write_values(spec, row, values)
        for name in values:
            provenance[name] = scraped.source_code
        row.field_sources = provenance
        row.updated_at = datetime.utcnow()

        outcome.applied_fields = sorted(values)
        if values:
            self.audit.log_system_update(
                spec.entity_type,
                row.id,
                {
                    name: {"old": before[name], "new": getattr(row, name)}
                    for name in values
                },
                performed_by=performed_by,
            )
        return outcome

    def refresh_pending_flag(self, event_id: str):
        """has_pending_changes = any linked scraped event still awaiting review."""
        from models.event import Event

        event = self.session.get(Event, event_id)
        if event is None:
            return
        event.has_pending_changes = any(
            link.scraped.has_changes and not link.scraped.is_dismissed
            for link in self.links.links_for(EVENT_SPEC, event_id)
            if link.scraped is not None
        )

    def handle_changed(self, kind: str, scraped) -> WorkflowOutcome:
        """
        Route a freshly changed scraped record.

        Draft canonical -> apply now, one SYSTEM_UPDATE.
        Otherwise -> leave pending (events flag has_pending_changes).
        """
        spec = get_spec(kind)
        canonical_id = self.links.canonical_id_for(spec, scraped.id)
        if canonical_id is None:
            return WorkflowOutcome(decision=UNLINKED)

        row = load_for_update(self.session, spec, canonical_id)
        if row is None:
            return WorkflowOutcome(decision=UNLINKED)

        if not is_draft(row.status):
            if spec is EVENT_SPEC:
                row.has_pending_changes = True
            logger.info(
                f"[Workflow] {spec.kind} {canonical_id} is {row.status}, "
                f"changes from {scraped.source_code} left for review"
            )
            return WorkflowOutcome(decision=PENDING, canonical_id=canonical_id)

        outcome = self._apply(spec, row, scraped, list((scraped.changes or {}).keys()), automatic=True)
        scraped.has_changes = False
        scraped.changes = None
        if spec is EVENT_SPEC:
            self.session.flush()
            self.refresh_pending_flag(canonical_id)
        logger.info(f"[Workflow] Auto-applied {outcome.applied_fields} to draft {spec.kind} {canonical_id}")
        return outcome

    def apply_changes(
        self,
        kind: str,
        scraped_id: int,
        fields: Optional[Iterable[str]] = None,
        performed_by: Optional[str] = None,
    ) -> WorkflowOutcome:
        """
        Explicitly apply pending changes (all, or the named attributes).

        Applied attributes leave the pending map; the rest stay queued.
        """
        spec = get_spec(kind)
        scraped = self.session.get(spec.scraped_model, scraped_id)
        if scraped is None or not scraped.has_changes:
            raise ValidationError(f"{spec.kind} scraped record {scraped_id} has no pending changes")
        canonical_id = self.links.canonical_id_for(spec, scraped_id)
        if canonical_id is None:
            raise ValidationError(f"{spec.kind} scraped record {scraped_id} is not linked")

        row = load_for_update(self.session, spec, canonical_id)
        selected = list(fields) if fields else list(scraped.changes.keys())
        outcome = self._apply(spec, row, scraped, selected, automatic=False, performed_by=performed_by)

        remaining = {k: v for k, v in scraped.changes.items() if k not in selected}
        scraped.changes = remaining or None
        scraped.has_changes = bool(remaining)
        if spec is EVENT_SPEC:
            self.session.flush()
            self.refresh_pending_flag(canonical_id)
        return outcome

    def dismiss_changes(self, kind: str, scraped_id: int):
        """Drop a pending suggestion; events keep the diff but mark it dismissed."""
        spec = get_spec(kind)
        scraped = self.session.get(spec.scraped_model, scraped_id)
        if scraped is None:
            raise ValidationError(f"{spec.kind} scraped record {scraped_id} not found")

        if spec is EVENT_SPEC:
            scraped.is_dismissed = True
            self.session.flush()
            canonical_id = self.links.canonical_id_for(spec, scraped_id)
            if canonical_id:
                self.refresh_pending_flag(canonical_id)
        else:
            scraped.has_changes = False
            scraped.changes = None
        return scraped
