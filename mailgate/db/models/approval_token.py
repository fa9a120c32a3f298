"""Approval token model.

One row per approval request e-mail. The token id travels in the request's
subject line and comes back in the approver's reply.
"""


from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Uuid, text

from mailgate.core.clock import utcnow
from mailgate.db.base import Base


class ApprovalToken(Base):
    """
    Binds a document, an approver and a pending decision.

    At most one pending token may exist per (document, approver) pair; the
    partial unique index enforces this on SQLite and PostgreSQL.
    """
    __tablename__ = "approval_tokens"

    id = Column(String(64), primary_key=True)
    document_id = Column(Uuid, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    approver_email = Column(String(255), nullable=False)

    status = Column(String(20), nullable=False, default="pending", index=True)
    outcome = Column(String(20), nullable=True)

    issued_at = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=True, index=True)
    consumed_at = Column(DateTime, nullable=True)

    # Message-ID of the reply that consumed the token
    source_message_id = Column(String(998), nullable=True)

    __table_args__ = (
        Index(
            "uq_approval_tokens_pending_pair",
            "document_id",
            "approver_email",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )

    def __repr__(self) -> str:
        return f"<ApprovalToken {self.id} doc={self.document_id} [{self.status}]>"
