"""Pydantic schemas for the MailGate API."""

from .approvals import (
    ApplyResultResponse,
    ApprovalRequestCreate,
    DocumentCreate,
    DocumentResponse,
    MessageOutcomeResponse,
    ResolveRequest,
    RunSummaryResponse,
    TokenResponse,
)
from .audit import AuditEntryResponse, AuditListResponse
from .common import ErrorResponse

__all__ = [
    "ApplyResultResponse",
    "ApprovalRequestCreate",
    "AuditEntryResponse",
    "AuditListResponse",
    "DocumentCreate",
    "DocumentResponse",
    "ErrorResponse",
    "MessageOutcomeResponse",
    "ResolveRequest",
    "RunSummaryResponse",
    "TokenResponse",
]
