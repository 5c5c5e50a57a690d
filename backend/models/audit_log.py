"""
Audit Log Model - Append-only record of engine mutations.
"""
from datetime import datetime

from models.database import db
from models._common import iso


class AuditLogEntry(db.Model):
    __tablename__ = "audit_logs"

    ACTIONS = ("CREATE", "SYSTEM_UPDATE", "AUTO_REJECTION")

    id = db.Column(db.Integer, primary_key=True)
    entity_type = db.Column(db.String(20), nullable=False)  # EVENT, VENUE, ARTIST, ORGANIZER
    entity_id = db.Column(db.String(36), nullable=False)
    action = db.Column(db.String(20), nullable=False)
    changes = db.Column(db.JSON)
    performed_by = db.Column(db.String(64), nullable=False, default="system")
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        db.Index("ix_audit_logs_entity", "entity_type", "entity_id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "changes": self.changes,
            "performed_by": self.performed_by,
            "created_at": iso(self.created_at),
        }

    def __repr__(self):
        return f"<AuditLogEntry {self.action} {self.entity_type}:{self.entity_id}>"
