"""Immutable value records passed into and out of the stores.

ORM objects never leave a store; callers work with these snapshots.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID


@dataclass(frozen=True)
class DocumentRecord:
    id: UUID
    title: str
    status: str
    author_id: Optional[str]
    author_email: Optional[str]
    modified_date: Optional[datetime]

    @classmethod
    def from_model(cls, document) -> "DocumentRecord":
        return cls(
            id=document.id,
            title=document.title,
            status=document.status,
            author_id=document.author_id,
            author_email=document.author_email,
            modified_date=document.modified_date,
        )


@dataclass(frozen=True)
class TokenRecord:
    id: str
    document_id: UUID
    approver_email: str
    status: str
    issued_at: datetime
    expires_at: Optional[datetime] = None
    outcome: Optional[str] = None
    consumed_at: Optional[datetime] = None
    source_message_id: Optional[str] = None

    @classmethod
    def from_model(cls, token) -> "TokenRecord":
        return cls(
            id=token.id,
            document_id=token.document_id,
            approver_email=token.approver_email,
            status=token.status,
            issued_at=token.issued_at,
            expires_at=token.expires_at,
            outcome=token.outcome,
            consumed_at=token.consumed_at,
            source_message_id=token.source_message_id,
        )

    def is_past_expiry(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now


@dataclass(frozen=True)
class AuditRecord:
    id: UUID
    document_id: Optional[UUID]
    timestamp: datetime
    action: str
    actor: str
    severity: str
    old_values: Optional[Dict[str, Any]] = None
    new_values: Optional[Dict[str, Any]] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_model(cls, entry) -> "AuditRecord":
        return cls(
            id=entry.id,
            document_id=entry.document_id,
            timestamp=entry.timestamp,
            action=entry.action,
            actor=entry.actor,
            severity=entry.severity,
            old_values=entry.old_values,
            new_values=entry.new_values,
            details=entry.details or {},
        )
