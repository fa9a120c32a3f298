"""Decision applier.

Turns a parsed decision into a token consumption, a document transition and
one audit entry, committed together or not at all.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from mailgate.core.approval.parser import ParsedDecision
from mailgate.core.approval.states import (
    OUTCOME_AUDIT_ACTIONS,
    OUTCOME_TRANSITIONS,
    AuditAction,
    DocumentStatus,
    Outcome,
    TokenStatus,
    get_target_status,
)
from mailgate.core.approval.tokens import TokenStore
from mailgate.core.clock import Clock, SystemClock
from mailgate.core.exceptions import (
    AlreadyConsumedError,
    ExpiredError,
    StoreUnavailableError,
    TokenNotFoundError,
)
from mailgate.db.models import AuditSeverity
from mailgate.db.records import TokenRecord
from mailgate.db.store import AuditStore, DocumentStore

logger = logging.getLogger(__name__)


class ApplyStatus(str, Enum):
    """Result variants of applying one decision."""

    APPLIED = "applied"
    ALREADY_CONSUMED = "already_consumed"
    TOKEN_INVALID = "token_invalid"
    DOCUMENT_CONFLICT = "document_conflict"


@dataclass(frozen=True)
class ApplyResult:
    status: ApplyStatus
    token_id: str
    document_id: Optional[UUID] = None
    old_status: Optional[str] = None
    new_status: Optional[str] = None
    detail: Optional[str] = None

    @property
    def applied(self) -> bool:
        return self.status == ApplyStatus.APPLIED


class DecisionApplier:
    """
    Applies decisions as one unit of work each.

    The token consumption is the only race point: concurrent applies of the
    same token see exactly one ``APPLIED`` and the rest ``ALREADY_CONSUMED``.
    If the document cannot follow (it is no longer awaiting approval), the
    whole unit is rolled back so the token stays pending, and an ``Error``
    audit entry is written instead.
    """

    def __init__(self, session_factory: sessionmaker, clock: Optional[Clock] = None):
        self.session_factory = session_factory
        self.clock = clock or SystemClock()

    def apply(self, decision: ParsedDecision, *, actor: Optional[str] = None) -> ApplyResult:
        """
        Apply a decision.

        Args:
            decision: Parsed decision from a reply (or a manual resolution)
            actor: Who decided; defaults to the reply sender, then the approver

        Returns:
            ApplyResult describing what happened

        Raises:
            StoreUnavailableError: The store failed mid-way; nothing was changed
        """
        db = self.session_factory()
        try:
            result = self._apply_in_session(db, decision, actor)
            if result.status == ApplyStatus.DOCUMENT_CONFLICT:
                db.rollback()
            else:
                db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Store failure while applying decision for token %s", decision.token_id)
            self._record_error(decision, f"store failure: {exc.__class__.__name__}")
            raise StoreUnavailableError(
                f"Could not apply decision for token {decision.token_id}", cause=exc
            ) from exc
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        if result.status == ApplyStatus.DOCUMENT_CONFLICT:
            self._record_error(decision, result.detail, document_id=result.document_id)
        elif result.applied:
            logger.info(
                "Document %s moved %s -> %s by token %s",
                result.document_id, result.old_status, result.new_status, result.token_id,
            )
        else:
            logger.info("Decision for token %s not applied: %s", result.token_id, result.status.value)
        return result

    def _apply_in_session(
        self, db: Session, decision: ParsedDecision, actor: Optional[str]
    ) -> ApplyResult:
        tokens = TokenStore(db, self.clock)
        documents = DocumentStore(db, self.clock)
        audit = AuditStore(db, self.clock)
        token_id = decision.token_id

        token = tokens.lookup(token_id)
        if token is None:
            return ApplyResult(ApplyStatus.TOKEN_INVALID, token_id, detail="token not found")
        if token.status == TokenStatus.EXPIRED.value:
            return ApplyResult(
                ApplyStatus.TOKEN_INVALID, token_id, document_id=token.document_id, detail="token expired"
            )
        if token.status != TokenStatus.PENDING.value:
            return self._already_consumed(token)

        outcome = Outcome(decision.outcome)
        try:
            tokens.mark_consumed(token_id, outcome, source_message_id=decision.source_message_id)
        except AlreadyConsumedError:
            return self._already_consumed(token)
        except ExpiredError:
            return ApplyResult(
                ApplyStatus.TOKEN_INVALID, token_id, document_id=token.document_id, detail="token expired"
            )
        except TokenNotFoundError:
            return ApplyResult(ApplyStatus.TOKEN_INVALID, token_id, detail="token not found")

        document = documents.get(token.document_id)
        old_status = DocumentStatus.PENDING_APPROVAL
        new_status = get_target_status(old_status, OUTCOME_TRANSITIONS[outcome])
        if document is None or not documents.transition(token.document_id, old_status, new_status):
            current = document.status if document else None
            return ApplyResult(
                ApplyStatus.DOCUMENT_CONFLICT,
                token_id,
                document_id=token.document_id,
                old_status=current,
                detail=(
                    f"document is {current}, expected {old_status.value}"
                    if document else "document not found"
                ),
            )

        # The decision closes the round for every other approver
        closed = tokens.close_round(token.document_id)

        audit.append(
            OUTCOME_AUDIT_ACTIONS[outcome],
            actor=actor or decision.sender or token.approver_email,
            document_id=token.document_id,
            old_values={"status": old_status.value},
            new_values={"status": new_status.value},
            details={
                "token_id": token_id,
                "outcome": outcome.value,
                "source_message_id": decision.source_message_id,
                "approver_email": token.approver_email,
                "expired_tokens": closed,
            },
        )
        return ApplyResult(
            ApplyStatus.APPLIED,
            token_id,
            document_id=token.document_id,
            old_status=old_status.value,
            new_status=new_status.value,
        )

    @staticmethod
    def _already_consumed(token: TokenRecord) -> ApplyResult:
        return ApplyResult(
            ApplyStatus.ALREADY_CONSUMED,
            token.id,
            document_id=token.document_id,
            detail=f"token is {token.status}",
        )

    def _record_error(
        self,
        decision: ParsedDecision,
        reason: Optional[str],
        *,
        document_id: Optional[UUID] = None,
    ) -> None:
        """Write an Error audit entry in its own transaction."""
        db = self.session_factory()
        try:
            AuditStore(db, self.clock).append(
                AuditAction.ERROR,
                actor="system",
                document_id=document_id,
                details={
                    "token_id": decision.token_id,
                    "outcome": Outcome(decision.outcome).value,
                    "source_message_id": decision.source_message_id,
                    "reason": reason,
                },
                severity=AuditSeverity.ERROR,
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Could not record audit error for token %s", decision.token_id)
        finally:
            db.close()
