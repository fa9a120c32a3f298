"""Approval token store.

Tokens are issued when a document is sent out for approval and consumed
exactly once when a decision arrives. Expiry is detected lazily: a pending
token past ``expires_at`` is flipped to ``expired`` the first time anyone
looks it up or tries to consume it.
"""

import logging
import secrets
from datetime import timedelta
from typing import List, Optional
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mailgate.core.approval.states import Outcome, TokenStatus
from mailgate.core.clock import Clock, SystemClock
from mailgate.core.exceptions import (
    AlreadyConsumedError,
    ConflictError,
    ExpiredError,
    TokenNotFoundError,
)
from mailgate.db.models import ApprovalToken
from mailgate.db.records import TokenRecord
from mailgate.db.store import conditional_update

logger = logging.getLogger(__name__)


def generate_token_id() -> str:
    """Opaque token identifier: 32 lowercase hex characters."""
    return secrets.token_hex(16)


def normalize_email(email: str) -> str:
    return email.strip().lower()


class TokenStore:
    """
    Durable mapping from token id to its metadata and lifecycle state.

    All operations run inside the caller's session so they can share a
    transaction with document and audit writes.
    """

    def __init__(self, db: Session, clock: Optional[Clock] = None):
        self.db = db
        self.clock = clock or SystemClock()

    def issue(
        self,
        document_id: UUID,
        approver_email: str,
        ttl: Optional[timedelta] = None,
    ) -> TokenRecord:
        """
        Create a pending token for a document/approver pair.

        Args:
            document_id: Owning document
            approver_email: Who is asked to decide
            ttl: Lifetime of the token; None means it never expires

        Raises:
            ConflictError: If a pending token already exists for the pair
        """
        approver_email = normalize_email(approver_email)
        now = self.clock.now()

        # A stale pending token for the pair must not block a new request
        self._expire_stale_for_pair(document_id, approver_email)

        existing = self.db.scalars(
            select(ApprovalToken).where(
                ApprovalToken.document_id == document_id,
                ApprovalToken.approver_email == approver_email,
                ApprovalToken.status == TokenStatus.PENDING.value,
            )
        ).first()
        if existing is not None:
            raise ConflictError(document_id, approver_email)

        token = ApprovalToken(
            id=generate_token_id(),
            document_id=document_id,
            approver_email=approver_email,
            status=TokenStatus.PENDING.value,
            issued_at=now,
            expires_at=now + ttl if ttl else None,
        )
        self.db.add(token)
        try:
            self.db.flush()
        except IntegrityError as exc:
            # Lost a race with a concurrent issue for the same pair
            raise ConflictError(document_id, approver_email) from exc

        logger.debug("Issued approval token %s for document %s", token.id, document_id)
        return TokenRecord.from_model(token)

    def lookup(self, token_id: str) -> Optional[TokenRecord]:
        """Return the token, reporting it as expired if it is past its TTL."""
        token = self._load(token_id)
        if token is None:
            return None
        if token.status == TokenStatus.PENDING.value and self._is_past_expiry(token):
            self._mark_expired(token_id)
            token = self._load(token_id)
        return TokenRecord.from_model(token)

    def mark_consumed(
        self,
        token_id: str,
        outcome: Outcome,
        *,
        source_message_id: Optional[str] = None,
    ) -> TokenRecord:
        """
        Atomically move a pending token to consumed.

        Exactly one of any number of concurrent callers succeeds.

        Raises:
            TokenNotFoundError: No such token
            ExpiredError: Token is past its expiry (and is now marked expired)
            AlreadyConsumedError: Another caller already moved it out of pending
        """
        now = self.clock.now()
        won = conditional_update(
            self.db,
            ApprovalToken,
            token_id,
            TokenStatus.PENDING.value,
            {
                "status": TokenStatus.CONSUMED.value,
                "outcome": Outcome(outcome).value,
                "consumed_at": now,
                "source_message_id": source_message_id,
            },
            or_(ApprovalToken.expires_at.is_(None), ApprovalToken.expires_at > now),
        )
        if won:
            return TokenRecord.from_model(self._load(token_id))

        token = self._load(token_id)
        if token is None:
            raise TokenNotFoundError(token_id)
        if token.status == TokenStatus.PENDING.value:
            # Still pending, so the expiry criterion is what failed
            self._mark_expired(token_id)
            raise ExpiredError(token_id)
        if token.status == TokenStatus.EXPIRED.value:
            raise ExpiredError(token_id)
        raise AlreadyConsumedError(token_id, token.status)

    def pending_for_document(self, document_id: UUID) -> List[TokenRecord]:
        tokens = self.db.scalars(
            select(ApprovalToken).where(
                ApprovalToken.document_id == document_id,
                ApprovalToken.status == TokenStatus.PENDING.value,
            ).order_by(ApprovalToken.issued_at)
        ).all()
        now = self.clock.now()
        records = [TokenRecord.from_model(t) for t in tokens]
        return [r for r in records if not r.is_past_expiry(now)]

    def _load(self, token_id: str) -> Optional[ApprovalToken]:
        return self.db.get(ApprovalToken, token_id, populate_existing=True)

    def _is_past_expiry(self, token: ApprovalToken) -> bool:
        return token.expires_at is not None and token.expires_at <= self.clock.now()

    def _mark_expired(self, token_id: str) -> bool:
        expired = conditional_update(
            self.db,
            ApprovalToken,
            token_id,
            TokenStatus.PENDING.value,
            {"status": TokenStatus.EXPIRED.value},
        )
        if expired:
            logger.info("Approval token %s expired", token_id)
        return expired

    def _expire_stale_for_pair(self, document_id: UUID, approver_email: str) -> None:
        stale_ids = self.db.scalars(
            select(ApprovalToken.id).where(
                ApprovalToken.document_id == document_id,
                ApprovalToken.approver_email == approver_email,
                ApprovalToken.status == TokenStatus.PENDING.value,
                ApprovalToken.expires_at.is_not(None),
                ApprovalToken.expires_at <= self.clock.now(),
            )
        ).all()
        for token_id in stale_ids:
            self._mark_expired(token_id)

    def close_round(self, document_id: UUID) -> List[str]:
        """Expire every token of the document still pending after a decision.

        Returns the ids of the tokens this call expired.
        """
        open_ids = self.db.scalars(
            select(ApprovalToken.id).where(
                ApprovalToken.document_id == document_id,
                ApprovalToken.status == TokenStatus.PENDING.value,
            )
        ).all()
        closed = [token_id for token_id in open_ids if self._mark_expired(token_id)]
        if closed:
            logger.info(
                "Closed approval round for document %s: %d token(s) expired",
                document_id, len(closed),
            )
        return closed
