"""Reply parsing: inbound message → decision, ignored, or malformed.

Grammar
-------
Token reference, subject first, then body::

    [MG-APPROVAL:<32 hex chars>]      (subject or body)
    Approval-Token: <32 hex chars>    (body line, may be quoted with ">")

Outcome keywords, whole words, case-insensitive, taken from the reply's own
text (quoted lines and anything below an ``On ... wrote:`` or
``-----Original Message-----`` line are dropped)::

    approve | approved | accept | accepted
    reject | rejected | decline | declined | deny | denied

A keyword preceded by a negation ("not approved", "don't accept") makes the
reply ambiguous. When the body has no keyword the subject is consulted.
Keywords from both sets, or from neither, make the reply malformed.

Parsing is pure: it never touches a store.
"""

import email
import re
from dataclasses import dataclass
from datetime import datetime
from email import policy
from email.utils import parseaddr, parsedate_to_datetime
from typing import Optional, Union

from mailgate.core.approval.states import Outcome

TOKEN_MARKER_PREFIX = "MG-APPROVAL"

SUBJECT_MARKER_RE = re.compile(
    r"\[\s*MG-APPROVAL\s*:\s*([0-9a-f]{32})\s*\]", re.IGNORECASE
)
BODY_TOKEN_LINE_RE = re.compile(
    r"^[\s>]*Approval-Token\s*:\s*([0-9a-f]{32})\b", re.IGNORECASE | re.MULTILINE
)

APPROVE_WORDS = ("approve", "approved", "accept", "accepted")
REJECT_WORDS = ("reject", "rejected", "decline", "declined", "deny", "denied")

_APPROVE_RE = re.compile(r"\b(?:%s)\b" % "|".join(APPROVE_WORDS), re.IGNORECASE)
_REJECT_RE = re.compile(r"\b(?:%s)\b" % "|".join(REJECT_WORDS), re.IGNORECASE)
_NEGATED_RE = re.compile(
    r"\b(?:not|never|don['’]?t|do\s+not|cannot|can['’]?t|won['’]?t)\s+(?:be\s+)?(?:%s)\b"
    % "|".join(APPROVE_WORDS + REJECT_WORDS),
    re.IGNORECASE,
)
_QUOTE_HEADER_RE = re.compile(r"^\s*On\s.+wrote:\s*$", re.IGNORECASE)
_ORIGINAL_MESSAGE_RE = re.compile(r"^\s*-{2,}\s*Original Message\s*-{2,}\s*$", re.IGNORECASE)
_HTML_TAG_RE = re.compile(r"<[^>]+>")


def subject_marker(token_id: str) -> str:
    """Marker embedded in outgoing approval request subjects."""
    return f"[{TOKEN_MARKER_PREFIX}:{token_id}]"


@dataclass(frozen=True)
class RawMessage:
    """An inbound message as retrieved from the mailbox."""
    uid: str
    message_id: str
    subject: str
    sender: str
    body: str
    received_at: Optional[datetime] = None

    @classmethod
    def from_bytes(cls, uid: str, raw: bytes) -> "RawMessage":
        """Build a message from its RFC 822 bytes, keeping only what parsing needs."""
        msg = email.message_from_bytes(raw, policy=policy.default)
        received_at = None
        if msg["Date"]:
            try:
                received_at = parsedate_to_datetime(str(msg["Date"]))
            except (TypeError, ValueError):
                received_at = None
        return cls(
            uid=uid,
            message_id=str(msg["Message-ID"] or f"<uid-{uid}>").strip(),
            subject=str(msg["Subject"] or ""),
            sender=parseaddr(str(msg["From"] or ""))[1].lower(),
            body=_extract_text(msg),
            received_at=received_at,
        )


@dataclass(frozen=True)
class ParsedDecision:
    token_id: str
    outcome: Outcome
    source_message_id: str
    sender: str = ""


@dataclass(frozen=True)
class Ignored:
    """No token reference: not an approval reply."""
    source_message_id: str
    reason: str = "no approval token reference"


@dataclass(frozen=True)
class Malformed:
    """Token present but the decision is missing or ambiguous."""
    token_id: str
    source_message_id: str
    reason: str


ParseResult = Union[ParsedDecision, Ignored, Malformed]


def _extract_text(msg) -> str:
    part = msg.get_body(preferencelist=("plain", "html"))
    if part is None:
        return ""
    try:
        content = part.get_content()
    except (LookupError, UnicodeDecodeError):
        payload = part.get_payload(decode=True) or b""
        content = payload.decode("utf-8", errors="replace")
    if part.get_content_subtype() == "html":
        content = _HTML_TAG_RE.sub(" ", content)
    return content


def find_token(subject: str, body: str) -> Optional[str]:
    """Locate the token reference, subject first."""
    match = SUBJECT_MARKER_RE.search(subject or "")
    if match is None:
        match = SUBJECT_MARKER_RE.search(body or "") or BODY_TOKEN_LINE_RE.search(body or "")
    return match.group(1).lower() if match else None


def strip_quoted(body: str) -> str:
    """Keep only the reply's own text."""
    kept = []
    for line in (body or "").splitlines():
        if _QUOTE_HEADER_RE.match(line) or _ORIGINAL_MESSAGE_RE.match(line):
            break
        if line.lstrip().startswith(">"):
            continue
        kept.append(line)
    return "\n".join(kept)


def classify_outcome(text: str) -> tuple[Optional[Outcome], Optional[str]]:
    """Return (outcome, None) or (None, reason)."""
    if _NEGATED_RE.search(text):
        return None, "negated decision keyword"
    approve = bool(_APPROVE_RE.search(text))
    reject = bool(_REJECT_RE.search(text))
    if approve and reject:
        return None, "both approve and reject keywords present"
    if approve:
        return Outcome.APPROVE, None
    if reject:
        return Outcome.REJECT, None
    return None, "no decision keyword"


def parse_reply(message: RawMessage) -> ParseResult:
    """Classify an inbound message."""
    token_id = find_token(message.subject, message.body)
    if token_id is None:
        return Ignored(source_message_id=message.message_id)

    outcome, reason = classify_outcome(strip_quoted(message.body))
    if outcome is None and reason == "no decision keyword":
        subject = SUBJECT_MARKER_RE.sub(" ", message.subject or "")
        outcome, reason = classify_outcome(subject)

    if outcome is None:
        return Malformed(
            token_id=token_id,
            source_message_id=message.message_id,
            reason=reason,
        )
    return ParsedDecision(
        token_id=token_id,
        outcome=outcome,
        source_message_id=message.message_id,
        sender=message.sender,
    )


class ReplyParser:
    """Callable wrapper so the engine can take any parser."""

    def parse(self, message: RawMessage) -> ParseResult:
        return parse_reply(message)

    __call__ = parse
