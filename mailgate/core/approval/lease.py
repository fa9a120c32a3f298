"""Database lease serializing approval checks across processes.

The engine's in-process lock only covers one engine. The Celery worker and
the API each build their own, so a check must also hold the shared
``approval-check`` lease row before it touches the mailbox.
"""

import logging
import uuid
from datetime import timedelta
from typing import Optional

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from mailgate.core.clock import Clock, SystemClock
from mailgate.core.exceptions import StoreUnavailableError
from mailgate.db.models import RunLease

logger = logging.getLogger(__name__)

CHECK_LEASE_NAME = "approval-check"


class CheckLease:
    """
    Exclusive, expiring claim on a named lease row.

    ``ttl`` bounds how long a crashed holder can block everyone else; it
    should exceed the longest expected check.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        name: str = CHECK_LEASE_NAME,
        ttl: timedelta = timedelta(minutes=15),
        clock: Optional[Clock] = None,
        holder: Optional[str] = None,
    ):
        self.session_factory = session_factory
        self.name = name
        self.ttl = ttl
        self.clock = clock or SystemClock()
        self.holder = holder or uuid.uuid4().hex

    def acquire(self) -> bool:
        """
        Take the lease if it is free or its holder's claim has lapsed.

        Returns:
            True if this holder now owns the lease

        Raises:
            StoreUnavailableError: The lease row could not be read or written
        """
        now = self.clock.now()
        db = self.session_factory()
        try:
            self._ensure_row(db)
            result = db.execute(
                update(RunLease)
                .where(
                    RunLease.name == self.name,
                    or_(RunLease.holder.is_(None), RunLease.expires_at <= now),
                )
                .values(holder=self.holder, acquired_at=now, expires_at=now + self.ttl)
                .execution_options(synchronize_session=False)
            )
            won = result.rowcount == 1
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise StoreUnavailableError(f"Could not acquire lease {self.name}", cause=exc) from exc
        finally:
            db.close()

        if won:
            logger.debug("Lease %s acquired by %s", self.name, self.holder)
        else:
            logger.info("Lease %s is held by another process", self.name)
        return won

    def release(self) -> bool:
        """Give the lease back; only the current holder can. Never raises."""
        db = self.session_factory()
        try:
            result = db.execute(
                update(RunLease)
                .where(RunLease.name == self.name, RunLease.holder == self.holder)
                .values(holder=None, acquired_at=None, expires_at=None)
                .execution_options(synchronize_session=False)
            )
            released = result.rowcount == 1
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Could not release lease %s; it lapses at its expiry", self.name)
            return False
        finally:
            db.close()
        return released

    def _ensure_row(self, db: Session) -> None:
        if db.get(RunLease, self.name) is not None:
            return
        try:
            with db.begin_nested():
                db.add(RunLease(name=self.name))
        except IntegrityError:
            # Created by a concurrent first acquire
            logger.debug("Lease row %s already created", self.name)
