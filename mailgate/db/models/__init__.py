"""Database models for MailGate."""

from mailgate.db.models.document import Document
from mailgate.db.models.approval_token import ApprovalToken
from mailgate.db.models.audit import AuditLog, AuditSeverity
from mailgate.db.models.run_lease import RunLease

__all__ = [
    "Document",
    "ApprovalToken",
    "AuditLog",
    "AuditSeverity",
    "RunLease",
]
