"""Store primitives over documents and the audit trail.

Every status change goes through ``conditional_update``: the row is only
touched if its current status is the one the caller expects, and the affected
row count tells the caller whether it won.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from mailgate.core.approval.states import DocumentStatus
from mailgate.core.clock import Clock, SystemClock
from mailgate.db.models import AuditLog, AuditSeverity, Document
from mailgate.db.records import AuditRecord, DocumentRecord


def conditional_update(
    session: Session,
    model,
    entity_id: Any,
    expected_status: str,
    values: Dict[str, Any],
    *extra_criteria,
) -> bool:
    """UPDATE ``model`` SET ``values`` WHERE id matches AND status == expected.

    Returns True if exactly this call changed the row.
    """
    stmt = (
        update(model)
        .where(model.id == entity_id, model.status == expected_status, *extra_criteria)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = session.execute(stmt)
    return result.rowcount == 1


class DocumentStore:
    """Document reads and guarded status changes within a caller's session."""

    def __init__(self, db: Session, clock: Optional[Clock] = None):
        self.db = db
        self.clock = clock or SystemClock()

    def create(
        self,
        title: str,
        *,
        author_id: Optional[str] = None,
        author_email: Optional[str] = None,
        status: DocumentStatus = DocumentStatus.DRAFT,
    ) -> DocumentRecord:
        now = self.clock.now()
        document = Document(
            id=uuid.uuid4(),
            title=title,
            status=status.value,
            author_id=author_id,
            author_email=author_email,
            created_at=now,
            modified_date=now,
        )
        self.db.add(document)
        self.db.flush()
        return DocumentRecord.from_model(document)

    def get(self, document_id: UUID) -> Optional[DocumentRecord]:
        document = self.db.get(Document, document_id, populate_existing=True)
        return DocumentRecord.from_model(document) if document else None

    def transition(
        self,
        document_id: UUID,
        expected: DocumentStatus,
        new: DocumentStatus,
    ) -> bool:
        """Move the document to ``new`` only if it is currently ``expected``."""
        return conditional_update(
            self.db,
            Document,
            document_id,
            expected.value,
            {"status": new.value, "modified_date": self.clock.now()},
        )


class AuditStore:
    """Append-only access to the audit trail."""

    def __init__(self, db: Session, clock: Optional[Clock] = None):
        self.db = db
        self.clock = clock or SystemClock()

    def append(
        self,
        action: str,
        *,
        actor: str = "system",
        document_id: Optional[UUID] = None,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        details: Optional[Dict[str, Any]] = None,
        severity: AuditSeverity = AuditSeverity.INFO,
        timestamp: Optional[datetime] = None,
    ) -> AuditRecord:
        entry = AuditLog.create_entry(
            action,
            actor=actor,
            document_id=document_id,
            old_values=old_values,
            new_values=new_values,
            details=details,
            severity=severity,
            timestamp=timestamp or self.clock.now(),
        )
        self.db.add(entry)
        self.db.flush()
        return AuditRecord.from_model(entry)

    def list_entries(
        self,
        *,
        document_id: Optional[UUID] = None,
        action: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[AuditRecord]:
        """Audit entries, newest first."""
        query = select(AuditLog)
        if document_id is not None:
            query = query.where(AuditLog.document_id == document_id)
        if action:
            query = query.where(AuditLog.action == action)
        query = query.order_by(AuditLog.timestamp.desc()).offset(offset).limit(limit)
        return [AuditRecord.from_model(e) for e in self.db.scalars(query).all()]
