"""
Run results - Per-item outcomes and the per-run report.

Every record processed by a run produces exactly one ItemResult, success
or failure; BatchReport aggregates them. A failed item never stops the run.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass
class MatchResult:
    """Outcome of matching one scraped record."""
    action: str  # 'matched', 'created'
    scraped_ref: Dict[str, Any]
    canonical_ref: Optional[Dict[str, Any]]
    confidence: float
    note: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "scraped_ref": self.scraped_ref,
            "canonical_ref": self.canonical_ref,
            "confidence": round(self.confidence, 4),
            "note": self.note,
        }

    def __repr__(self):
        return f"<MatchResult {self.action} {self.scraped_ref.get('id')} conf={self.confidence:.2f}>"


@dataclass
class ItemResult:
    """
    Result<T, ProcessingError> for one record.

    status: 'ok', 'skipped' (validation) or 'failed' (processing error)
    """
    ref: Dict[str, Any]
    status: str = "ok"
    action: Optional[str] = None
    value: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    def to_dict(self) -> Dict[str, Any]:
        value = self.value.to_dict() if hasattr(self.value, "to_dict") else self.value
        return {
            "ref": self.ref,
            "status": self.status,
            "action": self.action,
            "value": value,
            "error": self.error,
        }


@dataclass
class IngestStats:
    inserted: int = 0
    updated: int = 0
    unmodified: int = 0
    geocoded: int = 0
    venues_created: int = 0
    artists_created: int = 0
    organizers_created: int = 0
    skipped: int = 0
    failed: int = 0

    def count(self, action: Optional[str]):
        if action in ("inserted", "updated", "unmodified"):
            setattr(self, action, getattr(self, action) + 1)

    def to_dict(self) -> Dict[str, int]:
        return dict(self.__dict__)


@dataclass
class BatchReport:
    """Aggregated outcome of one run."""
    run_type: str  # 'ingest', 'match', 'enrich', 'reject-past'
    kind: Optional[str] = None
    dry_run: bool = False
    started_at: datetime = field(default_factory=datetime.utcnow)
    finished_at: Optional[datetime] = None

    items: List[ItemResult] = field(default_factory=list)
    audit_entries: List[Dict[str, Any]] = field(default_factory=list)
    ingest_stats: Optional[IngestStats] = None

    def add(self, item: ItemResult):
        self.items.append(item)

    def finish(self):
        self.finished_at = datetime.utcnow()
        return self

    @property
    def results(self) -> List[MatchResult]:
        return [item.value for item in self.items if isinstance(item.value, MatchResult)]

    @property
    def matched_count(self) -> int:
        return sum(1 for r in self.results if r.action == "matched")

    @property
    def created_count(self) -> int:
        return sum(1 for r in self.results if r.action == "created")

    @property
    def failed_count(self) -> int:
        return sum(1 for item in self.items if item.status == "failed")

    @property
    def skipped_count(self) -> int:
        return sum(1 for item in self.items if item.status == "skipped")

    @property
    def total_count(self) -> int:
        return len(self.items)

    def summary(self) -> Dict[str, Any]:
        summary = {
            "total": self.total_count,
            "matched": self.matched_count,
            "created": self.created_count,
            "skipped": self.skipped_count,
            "failed": self.failed_count,
            "audit_entries": len(self.audit_entries),
        }
        if self.ingest_stats is not None:
            summary["ingest"] = self.ingest_stats.to_dict()
        return summary

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_type": self.run_type,
            "kind": self.kind,
            "dry_run": self.dry_run,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "summary": self.summary(),
            "items": [item.to_dict() for item in self.items],
            "audit_entries": self.audit_entries,
        }
