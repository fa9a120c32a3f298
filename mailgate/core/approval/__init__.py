"""Approval workflow module for MailGate.

States and reply parsing are importable from here; the store-backed pieces
live in their own modules (``tokens``, ``applier``, ``engine``, ``service``).
"""

from .states import (
    AuditAction,
    DocumentStatus,
    DocumentTransition,
    Outcome,
    TokenStatus,
)
from .parser import Ignored, Malformed, ParsedDecision, RawMessage, ReplyParser, parse_reply

__all__ = [
    "AuditAction",
    "DocumentStatus",
    "DocumentTransition",
    "Outcome",
    "TokenStatus",
    "Ignored",
    "Malformed",
    "ParsedDecision",
    "RawMessage",
    "ReplyParser",
    "parse_reply",
]
