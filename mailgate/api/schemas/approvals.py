"""Approval workflow schemas."""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from mailgate.core.approval.states import Outcome


class DocumentCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    author_id: Optional[str] = None
    author_email: Optional[str] = None


class DocumentResponse(BaseModel):
    id: UUID
    title: str
    status: str
    author_id: Optional[str]
    author_email: Optional[str]
    modified_date: Optional[datetime]

    class Config:
        from_attributes = True


class ApprovalRequestCreate(BaseModel):
    approver_email: str = Field(..., min_length=3, max_length=320)
    requested_by: str = "system"


class TokenResponse(BaseModel):
    id: str
    document_id: UUID
    approver_email: str
    status: str
    issued_at: datetime
    expires_at: Optional[datetime] = None
    outcome: Optional[str] = None
    consumed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ResolveRequest(BaseModel):
    outcome: Outcome
    actor: str = Field(..., min_length=1)


class ApplyResultResponse(BaseModel):
    status: str
    token_id: str
    document_id: Optional[UUID] = None
    old_status: Optional[str] = None
    new_status: Optional[str] = None
    detail: Optional[str] = None


class MessageOutcomeResponse(BaseModel):
    uid: str
    message_id: str
    result: str
    token_id: Optional[str] = None
    detail: Optional[str] = None
    document_id: Optional[UUID] = None
    new_status: Optional[str] = None
    actor: Optional[str] = None


class RunSummaryResponse(BaseModel):
    trigger: str
    message: str
    processed_count: int
    error_count: int
    already_consumed_count: int
    ignored_count: int
    messages: List[str] = []
    outcomes: List[MessageOutcomeResponse] = []
    mailbox_error: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
