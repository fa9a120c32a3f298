"""Exception hierarchy for MailGate.

Expected contention (a token already consumed, a document no longer awaiting
approval) is reported through result values by the decision applier. The
exceptions here are for callers that must stop: conflicts on issuance,
unavailable mailboxes, busy engines and failed stores.
"""

from typing import Optional


class MailGateError(Exception):
    """Base class for all MailGate errors."""


class ConflictError(MailGateError):
    """A pending token already exists for the document/approver pair."""

    def __init__(self, document_id, approver_email: str):
        super().__init__(
            f"Document {document_id} already has a pending approval token for {approver_email}"
        )
        self.document_id = document_id
        self.approver_email = approver_email


class TokenNotFoundError(MailGateError):
    """No token with the given identifier exists."""

    def __init__(self, token_id: str):
        super().__init__(f"Approval token {token_id} not found")
        self.token_id = token_id


class AlreadyConsumedError(MailGateError):
    """The token already left the pending state."""

    def __init__(self, token_id: str, status: Optional[str] = None):
        message = f"Approval token {token_id} was already consumed"
        if status:
            message += f" (status: {status})"
        super().__init__(message)
        self.token_id = token_id
        self.status = status


class ExpiredError(MailGateError):
    """The token passed its expiry time before it was used."""

    def __init__(self, token_id: str):
        super().__init__(f"Approval token {token_id} has expired")
        self.token_id = token_id


class DocumentNotFoundError(MailGateError):
    """No document with the given identifier exists."""

    def __init__(self, document_id):
        super().__init__(f"Document {document_id} not found")
        self.document_id = document_id


class InvalidTransitionError(MailGateError):
    """A document cannot move to the requested status from its current one."""

    def __init__(self, message: str, from_status: str, transition: str):
        super().__init__(message)
        self.from_status = from_status
        self.transition = transition


class MailboxUnavailableError(MailGateError):
    """The inbound mailbox could not be reached (auth, network, protocol)."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class AlreadyRunningError(MailGateError):
    """An approval check is already in progress."""

    def __init__(self):
        super().__init__("An approval check is already running")


class StoreUnavailableError(MailGateError):
    """The store failed during an atomic apply step; nothing was changed."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class ImmutabilityViolationError(MailGateError):
    """An append-only record was about to be modified or deleted."""

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        super().__init__(f"{entity_type} {entity_id}: {reason}")
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
