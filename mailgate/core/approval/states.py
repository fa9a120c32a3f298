"""Document and approval token states, and the rules that connect them.

Document lifecycle:

    ┌──────────┐  submit   ┌──────────────────┐  resubmit
    │  DRAFT   │──────────►│ PENDING_APPROVAL │◄─────────────┐
    └──────────┘           └────────┬─────────┘              │
                          ┌─────────┴─────────┐              │
                   approve│                   │reject        │
                  ┌───────▼──┐          ┌─────▼────┐         │
                  │ APPROVED │          │ REJECTED │─────────┘
                  └──────────┘          └──────────┘

Deciding a round closes it: the other approvers' pending tokens expire.

Token lifecycle: PENDING moves exactly once to a terminal status. Reply
decisions move it to CONSUMED (the outcome is stored alongside); lazily
detected expiry moves it to EXPIRED.
"""

from enum import Enum
from typing import Dict, NamedTuple, Optional, Set


class DocumentStatus(str, Enum):
    """States a document passes through on its way to approval."""

    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"


class DocumentTransition(str, Enum):
    """Actions that move a document between states."""

    SUBMIT = "submit"          # DRAFT → PENDING_APPROVAL
    RESUBMIT = "resubmit"      # REJECTED → PENDING_APPROVAL
    APPROVE = "approve"        # PENDING_APPROVAL → APPROVED
    REJECT = "reject"          # PENDING_APPROVAL → REJECTED


class TokenStatus(str, Enum):
    """Lifecycle of an approval token."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"
    CONSUMED = "consumed"


class Outcome(str, Enum):
    """Decision carried by a reply."""

    APPROVE = "approve"
    REJECT = "reject"


class AuditAction(str, Enum):
    """Classified actions recorded in the audit trail."""

    APPROVAL_REQUESTED = "ApprovalRequested"
    APPROVAL_PROCESSED = "ApprovalProcessed"
    APPROVAL_REJECTED = "ApprovalRejected"
    APPROVAL_CHECK = "ApprovalCheck"
    ERROR = "Error"


class TransitionRule(NamedTuple):
    """Defines a valid document transition."""
    from_status: DocumentStatus
    to_status: DocumentStatus
    transition: DocumentTransition


TRANSITION_RULES: list[TransitionRule] = [
    TransitionRule(DocumentStatus.DRAFT, DocumentStatus.PENDING_APPROVAL, DocumentTransition.SUBMIT),
    TransitionRule(DocumentStatus.REJECTED, DocumentStatus.PENDING_APPROVAL, DocumentTransition.RESUBMIT),
    TransitionRule(DocumentStatus.PENDING_APPROVAL, DocumentStatus.APPROVED, DocumentTransition.APPROVE),
    TransitionRule(DocumentStatus.PENDING_APPROVAL, DocumentStatus.REJECTED, DocumentTransition.REJECT),
]

VALID_TRANSITIONS: Dict[DocumentStatus, Set[DocumentTransition]] = {}
TRANSITION_TARGETS: Dict[tuple[DocumentStatus, DocumentTransition], TransitionRule] = {}

for rule in TRANSITION_RULES:
    VALID_TRANSITIONS.setdefault(rule.from_status, set()).add(rule.transition)
    TRANSITION_TARGETS[(rule.from_status, rule.transition)] = rule


OUTCOME_TRANSITIONS: Dict[Outcome, DocumentTransition] = {
    Outcome.APPROVE: DocumentTransition.APPROVE,
    Outcome.REJECT: DocumentTransition.REJECT,
}

OUTCOME_AUDIT_ACTIONS: Dict[Outcome, AuditAction] = {
    Outcome.APPROVE: AuditAction.APPROVAL_PROCESSED,
    Outcome.REJECT: AuditAction.APPROVAL_REJECTED,
}


def can_transition(from_status: DocumentStatus, transition: DocumentTransition) -> bool:
    """Check if a transition is valid from the given status."""
    return transition in VALID_TRANSITIONS.get(from_status, set())


def get_target_status(
    from_status: DocumentStatus, transition: DocumentTransition
) -> Optional[DocumentStatus]:
    """Get the target status for a transition, or None if it is not allowed."""
    rule = TRANSITION_TARGETS.get((from_status, transition))
    return rule.to_status if rule else None


def submit_transition_for(status: DocumentStatus) -> Optional[DocumentTransition]:
    """Transition that puts a document with ``status`` into approval."""
    for transition in (DocumentTransition.SUBMIT, DocumentTransition.RESUBMIT):
        if can_transition(status, transition):
            return transition
    return None
