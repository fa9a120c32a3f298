"""Audit trail schemas."""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel


class AuditEntryResponse(BaseModel):
    id: UUID
    document_id: Optional[UUID]
    timestamp: datetime
    action: str
    actor: str
    severity: str
    old_values: Optional[dict] = None
    new_values: Optional[dict] = None
    details: dict = {}

    class Config:
        from_attributes = True


class AuditListResponse(BaseModel):
    items: List[AuditEntryResponse]
    limit: int
    offset: int
