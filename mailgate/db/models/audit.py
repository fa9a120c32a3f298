"""Audit log model for MailGate.

This table is append-only. ORM listeners refuse UPDATE and DELETE, and the
migration adds matching database triggers on PostgreSQL.
"""

import logging
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Column, DateTime, String, Uuid, event

from mailgate.core.clock import utcnow
from mailgate.core.exceptions import ImmutabilityViolationError
from mailgate.db.base import Base

logger = logging.getLogger(__name__)


class AuditSeverity(str, Enum):
    """Severity levels for audit log entries."""
    INFO = "info"         # Standard operations
    WARNING = "warning"   # Soft errors (malformed replies, conflicts)
    ERROR = "error"       # Failed operations


class AuditLog(Base):
    """
    Immutable audit log entry.

    Rows tied to a document carry its id; run summaries of the approval
    check have no document.
    """
    __tablename__ = "audit_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    document_id = Column(Uuid, nullable=True, index=True)

    action = Column(String(100), nullable=False, index=True)
    actor = Column(String(255), nullable=False, default="system")

    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)
    details = Column(JSON, nullable=True)

    severity = Column(String(20), nullable=False, default="info", index=True)
    timestamp = Column(DateTime, default=utcnow, index=True)

    def __repr__(self) -> str:
        return f"<AuditLog {self.action} doc={self.document_id} by {self.actor}>"

    @classmethod
    def create_entry(
        cls,
        action: str,
        *,
        actor: str = "system",
        document_id: Optional[uuid.UUID] = None,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        details: Optional[Dict[str, Any]] = None,
        severity: AuditSeverity = AuditSeverity.INFO,
        timestamp: Optional[datetime] = None,
    ) -> "AuditLog":
        """
        Factory method to create a new audit log entry.

        Args:
            action: Classified action (see ``AuditAction``)
            actor: Who performed it (user id, approver e-mail or "system")
            document_id: Affected document, if any
            old_values: Previous values (for transitions)
            new_values: New values (for transitions)
            details: Additional context such as the source message id
            severity: Log severity level
            timestamp: When it happened (defaults to now)
        """
        return cls(
            id=uuid.uuid4(),
            action=getattr(action, "value", action),
            actor=actor,
            document_id=document_id,
            old_values=old_values,
            new_values=new_values,
            details=details,
            severity=severity.value if isinstance(severity, AuditSeverity) else severity,
            timestamp=timestamp or utcnow(),
        )


def _block_audit_update(mapper, connection, target):
    logger.error("Blocked UPDATE of audit log entry %s", target.id)
    raise ImmutabilityViolationError(
        entity_type="AuditLog",
        entity_id=str(target.id),
        reason="Audit entries are immutable and cannot be modified",
    )


def _block_audit_delete(mapper, connection, target):
    logger.error("Blocked DELETE of audit log entry %s", target.id)
    raise ImmutabilityViolationError(
        entity_type="AuditLog",
        entity_id=str(target.id),
        reason="Audit entries cannot be deleted",
    )


def register_immutability_listeners() -> None:
    """Install the append-only guards (idempotent)."""
    if not event.contains(AuditLog, "before_update", _block_audit_update):
        event.listen(AuditLog, "before_update", _block_audit_update)
    if not event.contains(AuditLog, "before_delete", _block_audit_delete):
        event.listen(AuditLog, "before_delete", _block_audit_delete)


register_immutability_listeners()
