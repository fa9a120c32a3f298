"""Approval service for document approval workflows.

Provides the high-level API around the workflow core: sending documents out
for approval, resending requests, resolving a token by hand, and reading the
audit trail.
"""

import logging
from datetime import timedelta
from typing import List, Optional
from uuid import UUID

import aiosmtplib
from sqlalchemy.orm import sessionmaker

from mailgate.core.approval.applier import ApplyResult, DecisionApplier
from mailgate.core.approval.parser import ParsedDecision
from mailgate.core.approval.states import (
    AuditAction,
    DocumentStatus,
    Outcome,
    TokenStatus,
    get_target_status,
    submit_transition_for,
)
from mailgate.core.approval.tokens import TokenStore
from mailgate.core.clock import Clock, SystemClock
from mailgate.core.exceptions import (
    AlreadyConsumedError,
    DocumentNotFoundError,
    ExpiredError,
    InvalidTransitionError,
    TokenNotFoundError,
)
from mailgate.db.models import AuditSeverity
from mailgate.db.records import AuditRecord, DocumentRecord, TokenRecord
from mailgate.db.session import session_scope
from mailgate.db.store import AuditStore, DocumentStore
from mailgate.services.notifications import NotificationService, run_sync

logger = logging.getLogger(__name__)

DELIVERY_ERRORS = (aiosmtplib.SMTPException, OSError)


class ApprovalService:
    """
    High-level service for document approvals.

    Handles:
    - Creating documents and sending them out for approval
    - Resending pending requests
    - Manual resolution through the same atomic path as e-mail replies
    - Reading the audit trail
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        notifier: Optional[NotificationService] = None,
        applier: Optional[DecisionApplier] = None,
        clock: Optional[Clock] = None,
        token_ttl: Optional[timedelta] = None,
    ):
        """
        Initialize the approval service.

        Args:
            session_factory: Factory for database sessions
            notifier: Outbound mail; None disables e-mail
            applier: Decision applier shared with the engine
            clock: Time source
            token_ttl: Lifetime of issued tokens; None means no expiry
        """
        self.session_factory = session_factory
        self.notifier = notifier
        self.clock = clock or SystemClock()
        self.applier = applier or DecisionApplier(session_factory, self.clock)
        self.token_ttl = token_ttl

    def create_document(
        self,
        title: str,
        *,
        author_id: Optional[str] = None,
        author_email: Optional[str] = None,
    ) -> DocumentRecord:
        with session_scope(self.session_factory) as db:
            return DocumentStore(db, self.clock).create(
                title, author_id=author_id, author_email=author_email
            )

    def get_document(self, document_id: UUID) -> Optional[DocumentRecord]:
        with session_scope(self.session_factory) as db:
            return DocumentStore(db, self.clock).get(document_id)

    def request_approval(
        self,
        document_id: UUID,
        approver_email: str,
        *,
        actor: str = "system",
    ) -> TokenRecord:
        """
        Put a document into approval and e-mail the approver.

        A draft or rejected document moves to pending approval; a document
        already pending may gain further approvers.

        Returns:
            The issued token

        Raises:
            DocumentNotFoundError: No such document
            InvalidTransitionError: Document is approved (or changed underneath us)
            ConflictError: A pending token already exists for this approver
        """
        with session_scope(self.session_factory) as db:
            documents = DocumentStore(db, self.clock)
            document = documents.get(document_id)
            if document is None:
                raise DocumentNotFoundError(document_id)

            current = DocumentStatus(document.status)
            if current != DocumentStatus.PENDING_APPROVAL:
                transition = submit_transition_for(current)
                if transition is None:
                    raise InvalidTransitionError(
                        f"Cannot request approval for a document that is {current.value}",
                        current.value,
                        "submit",
                    )
                target = get_target_status(current, transition)
                if not documents.transition(document_id, current, target):
                    raise InvalidTransitionError(
                        f"Document {document_id} changed while requesting approval",
                        current.value,
                        transition.value,
                    )

            token = TokenStore(db, self.clock).issue(document_id, approver_email, self.token_ttl)
            AuditStore(db, self.clock).append(
                AuditAction.APPROVAL_REQUESTED,
                actor=actor,
                document_id=document_id,
                old_values={"status": current.value},
                new_values={"status": DocumentStatus.PENDING_APPROVAL.value},
                details={
                    "token_id": token.id,
                    "approver_email": token.approver_email,
                    "expires_at": token.expires_at.isoformat() if token.expires_at else None,
                },
            )

        logger.info("Approval requested for document %s from %s", document_id, token.approver_email)
        self._send_request(document, token, actor)
        return token

    def resend_request(self, token_id: str, *, actor: str = "system") -> TokenRecord:
        """Send the request e-mail again for a token that is still pending."""
        # Lookup commits a lazily detected expiry before we refuse the resend
        with session_scope(self.session_factory) as db:
            token = TokenStore(db, self.clock).lookup(token_id)
            document = DocumentStore(db, self.clock).get(token.document_id) if token else None

        if token is None:
            raise TokenNotFoundError(token_id)
        if token.status == TokenStatus.EXPIRED.value:
            raise ExpiredError(token_id)
        if token.status != TokenStatus.PENDING.value:
            raise AlreadyConsumedError(token_id, token.status)

        self._send_request(document, token, actor)
        return token

    def resolve_manually(self, token_id: str, outcome: Outcome, *, actor: str) -> ApplyResult:
        """Decide a pending token from inside the application."""
        decision = ParsedDecision(
            token_id=token_id,
            outcome=Outcome(outcome),
            source_message_id=f"manual:{actor}",
        )
        result = self.applier.apply(decision, actor=actor)
        if result.applied:
            self.notify_decision(result.document_id, result.new_status, actor)
        return result

    def notify_decision(self, document_id: UUID, new_status: str, actor: str) -> bool:
        """Best-effort notice to the document author."""
        if self.notifier is None:
            return False
        document = self.get_document(document_id)
        if document is None:
            return False
        try:
            return run_sync(
                self.notifier.send_decision_notice(document, new_status=new_status, actor=actor)
            )
        except DELIVERY_ERRORS:
            logger.exception("Could not send decision notice for document %s", document_id)
            return False

    def list_pending_tokens(self, document_id: UUID) -> List[TokenRecord]:
        with session_scope(self.session_factory) as db:
            return TokenStore(db, self.clock).pending_for_document(document_id)

    def list_audit_entries(
        self,
        *,
        document_id: Optional[UUID] = None,
        action: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[AuditRecord]:
        with session_scope(self.session_factory) as db:
            return AuditStore(db, self.clock).list_entries(
                document_id=document_id, action=action, limit=limit, offset=offset
            )

    def _send_request(self, document: DocumentRecord, token: TokenRecord, actor: str) -> None:
        if self.notifier is None:
            return
        try:
            run_sync(self.notifier.send_approval_request(document, token, requested_by=actor))
        except DELIVERY_ERRORS as exc:
            logger.exception("Failed to send approval request for token %s", token.id)
            with session_scope(self.session_factory) as db:
                AuditStore(db, self.clock).append(
                    AuditAction.ERROR,
                    actor=actor,
                    document_id=document.id,
                    details={
                        "token_id": token.id,
                        "approver_email": token.approver_email,
                        "reason": f"approval request e-mail not sent: {exc}",
                    },
                    severity=AuditSeverity.ERROR,
                )
