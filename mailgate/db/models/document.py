"""Document model (the subset the approval workflow needs)."""

import uuid

from sqlalchemy import Column, DateTime, String, Uuid

from mailgate.core.clock import utcnow
from mailgate.db.base import Base


class Document(Base):
    """
    A document whose status is driven by the approval workflow.

    ``status`` only reaches approved/rejected through the decision applier.
    """
    __tablename__ = "documents"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String(255), nullable=False)
    status = Column(String(50), nullable=False, default="draft", index=True)

    author_id = Column(String(64), nullable=True, index=True)
    author_email = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=utcnow)
    modified_date = Column(DateTime, default=utcnow, index=True)

    def __repr__(self) -> str:
        return f"<Document {self.title!r} [{self.status}]>"
