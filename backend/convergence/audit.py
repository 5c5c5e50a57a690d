"""
Audit Log Writer - Append-only trail of engine mutations.

Entries are added to the caller's session and committed with the record
they describe, so a rolled-back record leaves no audit entry behind.
"""
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from models.audit_log import AuditLogEntry

logger = logging.getLogger(__name__)

CREATE = "CREATE"
SYSTEM_UPDATE = "SYSTEM_UPDATE"
AUTO_REJECTION = "AUTO_REJECTION"


def to_jsonable(value: Any) -> Any:
    """Serialize value for a JSON column."""
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


def field_changes(before: Dict[str, Any], after: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    """{field: {old, new}} for the fields whose value differs."""
    return {
        name: {"old": to_jsonable(before.get(name)), "new": to_jsonable(after.get(name))}
        for name in after
        if before.get(name) != after.get(name)
    }


class AuditLogWriter:
    def __init__(self, session, performed_by: str = "system"):
        self.session = session
        self.performed_by = performed_by
        self.entries: List[AuditLogEntry] = []

    def record(
        self,
        entity_type: str,
        entity_id: str,
        action: str,
        changes: Optional[Dict[str, Any]] = None,
        performed_by: Optional[str] = None,
    ) -> AuditLogEntry:
        entry = AuditLogEntry(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action,
            changes=to_jsonable(changes) if changes else None,
            performed_by=performed_by or self.performed_by,
        )
        self.session.add(entry)
        self.entries.append(entry)
        logger.debug(f"[Audit] {action} {entity_type}:{entity_id}")
        return entry

    def log_create(self, entity_type: str, entity_id: str, values: Dict[str, Any]) -> AuditLogEntry:
        return self.record(entity_type, entity_id, CREATE, values)

    def log_system_update(self, entity_type: str, entity_id: str, changes: Dict[str, Any], **kwargs) -> AuditLogEntry:
        return self.record(entity_type, entity_id, SYSTEM_UPDATE, changes, **kwargs)

    def log_auto_rejection(self, entity_id: str, reason: str) -> AuditLogEntry:
        return self.record("EVENT", entity_id, AUTO_REJECTION, {"publish_status": {"new": "rejected"}, "reason": reason})

    def drain(self) -> List[Dict[str, Any]]:
        """Serialized entries written since the last drain."""
        drained = [entry.to_dict() for entry in self.entries]
        self.entries = []
        return drained

    def discard(self):
        """Forget entries from a rolled-back transaction."""
        self.entries = []
