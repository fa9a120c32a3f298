"""Document API endpoints."""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status

from mailgate.api.deps import get_service
from mailgate.api.schemas import ApprovalRequestCreate, DocumentCreate, DocumentResponse, TokenResponse
from mailgate.core.approval.service import ApprovalService
from mailgate.core.exceptions import ConflictError, DocumentNotFoundError, InvalidTransitionError

router = APIRouter(prefix="/documents", tags=["documents"])


@router.post("", response_model=DocumentResponse, status_code=status.HTTP_201_CREATED)
def create_document(
    body: DocumentCreate,
    service: ApprovalService = Depends(get_service),
):
    """Create a draft document."""
    document = service.create_document(
        body.title, author_id=body.author_id, author_email=body.author_email
    )
    return DocumentResponse.model_validate(document)


@router.get("/{document_id}", response_model=DocumentResponse)
def get_document(
    document_id: UUID,
    service: ApprovalService = Depends(get_service),
):
    document = service.get_document(document_id)
    if document is None:
        raise HTTPException(status_code=404, detail="Document not found")
    return DocumentResponse.model_validate(document)


@router.post(
    "/{document_id}/approval-requests",
    response_model=TokenResponse,
    status_code=status.HTTP_201_CREATED,
)
def request_approval(
    document_id: UUID,
    body: ApprovalRequestCreate,
    service: ApprovalService = Depends(get_service),
):
    """
    Send a document out for approval.

    Issues a token for the approver and e-mails the request. Returns 409 if
    the approver already holds a pending token for this document, and 400 if
    the document cannot be sent out in its current status.
    """
    try:
        token = service.request_approval(document_id, body.approver_email, actor=body.requested_by)
    except DocumentNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except InvalidTransitionError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return TokenResponse.model_validate(token)


@router.get("/{document_id}/tokens", response_model=List[TokenResponse])
def list_pending_tokens(
    document_id: UUID,
    service: ApprovalService = Depends(get_service),
):
    """List the document's pending approval tokens."""
    if service.get_document(document_id) is None:
        raise HTTPException(status_code=404, detail="Document not found")
    return [TokenResponse.model_validate(t) for t in service.list_pending_tokens(document_id)]
