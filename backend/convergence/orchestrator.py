"""
Convergence Orchestrator - Runs ingestion, matching and enrichment batches.

Responsibilities:
1. Wires the engine components around one session
2. Owns transactions: one per record, committed on success
3. Isolates failures: a failed record is rolled back, its error kept on the
   scraped row, and the run continues
4. Auto-rejects past events after an event matching run

Only an unreachable store aborts a run (checked once per run via warmup).
"""
import logging
from datetime import date
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from convergence.audit import AuditLogWriter
from convergence.enrichment import ArtistEnricher
from convergence.errors import ProcessingError, ValidationError
from convergence.field_specs import EVENT_SPEC, get_spec
from convergence.ingestion import IngestionProcessor
from convergence.link_store import LinkStore
from convergence.matching import CandidateMatcher, MatchSettings
from convergence.records import parse_record
from convergence.refresher import CanonicalRefresher, RefreshResult
from convergence.results import BatchReport, IngestStats, ItemResult
from convergence.source_priority import SourcePriority
from convergence.venue_resolver import VenueResolver
from convergence.workflow import AutoApplyWorkflow, WorkflowOutcome
from db.engine import warmup
from models.artist import Artist
from models.event import Event

logger = logging.getLogger(__name__)


class ConvergenceOrchestrator:
    """
    Entry point for batch runs.

    Args:
        session: SQLAlchemy session (db.session inside the Flask app)
        gateway: ExternalGateway; None disables geocoding and enrichment
        config: Mapping with the MATCH_* / ENRICH_* settings (app.config)
        today: Clock for past-event decisions
        priority: Source priority table; YAML-backed default if omitted
    """

    def __init__(
        self,
        session,
        gateway=None,
        config: Optional[Dict[str, Any]] = None,
        today: Callable[[], date] = date.today,
        priority: Optional[SourcePriority] = None,
        warmup_store: bool = True,
    ):
        self.session = session
        self.gateway = gateway
        self.config = config or {}
        self.today = today
        self.warmup_store = warmup_store
        if priority is None and self.config.get("SOURCE_PRIORITY_FILE"):
            priority = SourcePriority.from_yaml(self.config["SOURCE_PRIORITY_FILE"])

        self.audit = AuditLogWriter(session)
        self.links = LinkStore(session)
        self.refresher = CanonicalRefresher(session, self.links, self.audit, priority)
        self.workflow = AutoApplyWorkflow(session, self.links, self.audit, self.refresher.priority)
        self.venue_resolver = VenueResolver(session, gateway, self.audit)
        self.enricher = ArtistEnricher(session, gateway, self.links, self.refresher, self.audit) if gateway else None
        self.settings = MatchSettings.from_config(self.config)
        self.matcher = CandidateMatcher(
            session,
            refresher=self.refresher,
            links=self.links,
            audit=self.audit,
            venue_resolver=self.venue_resolver,
            enricher=self.enricher,
            settings=self.settings,
            today=today,
        )
        self.ingestion = IngestionProcessor(session, gateway, self.workflow, self.links)

    # =========================================================================
    # TRANSACTION BOUNDARY
    # =========================================================================

    def _ensure_store(self):
        if self.warmup_store:
            warmup(self.session.get_bind())

    def _process(
        self,
        report: BatchReport,
        ref: Dict[str, Any],
        work: Callable[[], Tuple[Optional[str], Any]],
        locate: Optional[Callable[[], Any]] = None,
        dry_run: bool = False,
    ) -> ItemResult:
        """
        Run one record's work in its own transaction.

        Args:
            work: Returns (action, value); value must be built before commit
            locate: Re-reads the scraped row a failure is recorded on
        """
        try:
            action, value = work()
            if dry_run:
                self.session.rollback()
                self.audit.discard()
                entries = []
            else:
                self.session.flush()
                entries = self.audit.drain()
                self.session.commit()
            report.audit_entries.extend(entries)
            item = ItemResult(ref=ref, action=action, value=value)
        except (PydanticValidationError, ValidationError) as e:
            self.session.rollback()
            self.audit.discard()
            logger.warning(f"[Orchestrator] Skipping {ref}: {e}")
            item = ItemResult(ref=ref, status="skipped", error=str(e))
        except Exception as e:
            self.session.rollback()
            self.audit.discard()
            error = e if isinstance(e, ProcessingError) else ProcessingError(f"{type(e).__name__}: {e}")
            logger.exception(f"[Orchestrator] Failed {ref}: {error}")
            if locate is not None:
                self._record_failure(locate, error)
            item = ItemResult(ref=ref, status="failed", error=str(error))

        report.add(item)
        return item

    def _record_failure(self, locate: Callable[[], Any], error: ProcessingError):
        """Keep the error on the scraped row in a transaction of its own."""
        try:
            scraped = locate()
            if scraped is None:
                return
            scraped.record_error(error.stage, str(error))
            self.session.commit()
        except Exception as e:
            self.session.rollback()
            logger.error(f"[Orchestrator] Could not record failure ({error}): {e}")

    # =========================================================================
    # INGEST
    # =========================================================================

    def run_ingest(self, payloads: Iterable[Dict[str, Any]], kind: Optional[str] = None) -> BatchReport:
        """Upsert normalized payloads into the scraped tables."""
        self._ensure_store()
        report = BatchReport(run_type="ingest", kind=kind)
        stats = IngestStats()
        self.ingestion.stats = stats
        report.ingest_stats = stats

        for index, payload in enumerate(payloads):
            ref = {"index": index, "source": payload.get("source_code"), "kind": payload.get("kind", kind)}
            try:
                record = parse_record(payload, kind)
            except PydanticValidationError as e:
                stats.skipped += 1
                logger.warning(f"[Ingest] Skipping payload {index}: {e.error_count()} validation error(s)")
                report.add(ItemResult(ref=ref, status="skipped", error=str(e)))
                continue

            ref["source_id"] = record.source_key
            spec = get_spec(record.kind)

            def work(record=record):
                action, scraped = self.ingestion.process_record(record)
                self.session.flush()
                return action, scraped.ref()

            def locate(record=record, spec=spec):
                return self.ingestion.find_scraped(spec, record.source_code, record.source_key)

            item = self._process(report, ref, work, locate)
            if item.status == "failed":
                stats.failed += 1
            elif item.status == "skipped":
                stats.skipped += 1

        report.finish()
        logger.info(f"[Ingest] Done: {stats.to_dict()}")
        return report

    # =========================================================================
    # MATCHING
    # =========================================================================

    def run_matching(self, kind: str, limit: Optional[int] = None, dry_run: bool = False) -> BatchReport:
        """
        Match every unlinked scraped record of a kind, oldest first.

        After an event run (not a dry run), past events are auto-rejected.
        """
        self._ensure_store()
        spec = get_spec(kind)
        limit = limit or self.settings.batch_limit
        report = BatchReport(run_type="match", kind=spec.kind, dry_run=dry_run)

        scraped_ids = [row.id for row in self.links.unlinked_query(spec).limit(limit).all()]
        logger.info(f"[Match {spec.kind.title()}s] {len(scraped_ids)} unlinked record(s), dry_run={dry_run}")

        for scraped_id in scraped_ids:
            def locate(scraped_id=scraped_id):
                return self.session.get(spec.scraped_model, scraped_id)

            def work(scraped_id=scraped_id):
                scraped = locate()
                if scraped is None or self.links.get_link(spec, scraped_id) is not None:
                    return "skipped", None
                result = self.matcher.match_record(spec.kind, scraped, dry_run=dry_run)
                return result.action, result

            self._process(report, {"id": scraped_id, "kind": spec.kind}, work, locate, dry_run=dry_run)

        if spec is EVENT_SPEC and not dry_run:
            rejection = self.reject_past_events()
            report.audit_entries.extend(rejection.audit_entries)

        report.finish()
        logger.info(f"[Match {spec.kind.title()}s] Done: {report.summary()}")
        return report

    def link_manually(self, kind: str, canonical_id: str, scraped_id: int) -> BatchReport:
        self._ensure_store()
        spec = get_spec(kind)
        report = BatchReport(run_type="link", kind=spec.kind)

        def work():
            result = self.matcher.link_manually(spec.kind, canonical_id, scraped_id)
            return result.action, result

        self._process(report, {"id": scraped_id, "kind": spec.kind}, work)
        return report.finish()

    # =========================================================================
    # SINGLE-ENTITY OPERATIONS
    # =========================================================================

    def _single(self, operation: Callable[[], Any]):
        """One operator-requested operation in one transaction; errors propagate."""
        self._ensure_store()
        try:
            result = operation()
            self.session.commit()
        except Exception:
            self.session.rollback()
            self.audit.discard()
            raise
        self.audit.drain()
        return result

    def refresh(self, kind: str, canonical_id: str) -> Optional[RefreshResult]:
        return self._single(lambda: self.refresher.refresh(kind, canonical_id))

    def apply_changes(
        self,
        kind: str,
        scraped_id: int,
        fields: Optional[List[str]] = None,
        performed_by: Optional[str] = None,
    ) -> WorkflowOutcome:
        return self._single(lambda: self.workflow.apply_changes(kind, scraped_id, fields, performed_by))

    def dismiss_changes(self, kind: str, scraped_id: int):
        return self._single(lambda: self.workflow.dismiss_changes(kind, scraped_id))

    # =========================================================================
    # ENRICHMENT & HOUSEKEEPING
    # =========================================================================

    def enrich_artists(self, limit: Optional[int] = None) -> BatchReport:
        """Enrich canonical artists that have no MusicBrainz link yet."""
        self._ensure_store()
        report = BatchReport(run_type="enrich", kind="artist")
        if self.enricher is None:
            logger.warning("[Enrich] No gateway configured, nothing to do")
            return report.finish()

        limit = limit or int(self.config.get("ENRICHMENT_BATCH_SIZE", 20))
        artist_ids = [artist.id for artist in self.enricher.artists_needing_enrichment(limit)]

        for artist_id in artist_ids:
            def work(artist_id=artist_id):
                artist = self.session.get(Artist, artist_id)
                enriched = self.enricher.enrich_artist(artist)
                return ("enriched" if enriched else "unchanged"), artist_id

            self._process(report, {"id": artist_id, "kind": "artist"}, work)

        report.finish()
        logger.info(f"[Enrich] Done: {report.summary()}")
        return report

    def reject_past_events(self) -> BatchReport:
        """Pending, unpublished events dated before today become rejected."""
        report = BatchReport(run_type="reject-past", kind="event")
        today = self.today()

        def work():
            events = (
                self.session.query(Event)
                .filter(Event.date < today)
                .filter(Event.publish_status == "pending")
                .filter(Event.is_published.is_(False))
                .order_by(Event.date)
                .all()
            )
            for event in events:
                event.publish_status = "rejected"
                self.audit.log_auto_rejection(event.id, f"event date {event.date.isoformat()} is before {today.isoformat()}")
            if events:
                logger.info(f"[Reject] Auto-rejected {len(events)} past event(s)")
            return "rejected", [event.id for event in events]

        self._process(report, {"kind": "event", "before": today.isoformat()}, work)
        return report.finish()
