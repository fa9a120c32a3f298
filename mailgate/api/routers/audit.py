"""Audit trail query API endpoints."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from mailgate.api.deps import get_service
from mailgate.api.schemas import AuditEntryResponse, AuditListResponse
from mailgate.core.approval.service import ApprovalService

router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("", response_model=AuditListResponse)
def list_audit_entries(
    service: ApprovalService = Depends(get_service),
    document_id: Optional[UUID] = None,
    action: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    """
    List audit entries, newest first.

    Supports filtering by document and action.
    """
    entries = service.list_audit_entries(
        document_id=document_id, action=action, limit=limit, offset=offset
    )
    return AuditListResponse(
        items=[AuditEntryResponse.model_validate(e) for e in entries],
        limit=limit,
        offset=offset,
    )
