"""Named lease rows shared by every process that runs approval checks."""

from sqlalchemy import Column, DateTime, String

from mailgate.db.base import Base


class RunLease(Base):
    """
    At most one holder per ``name`` until ``expires_at``.

    A row with no holder, or one past its expiry, is free to take.
    """
    __tablename__ = "run_leases"

    name = Column(String(64), primary_key=True)
    holder = Column(String(64), nullable=True)
    acquired_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<RunLease {self.name} holder={self.holder}>"
