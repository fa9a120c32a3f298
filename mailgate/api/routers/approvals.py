"""Approval workflow API endpoints."""

from fastapi import APIRouter, Depends, HTTPException, status

from mailgate.api.deps import get_engine, get_service
from mailgate.api.schemas import ApplyResultResponse, ResolveRequest, RunSummaryResponse, TokenResponse
from mailgate.bootstrap import notify_applied
from mailgate.core.approval.applier import ApplyStatus
from mailgate.core.approval.engine import ApprovalWorkflowEngine, RunTrigger
from mailgate.core.approval.service import ApprovalService
from mailgate.core.exceptions import (
    AlreadyConsumedError,
    AlreadyRunningError,
    ExpiredError,
    StoreUnavailableError,
    TokenNotFoundError,
)

router = APIRouter(prefix="/approvals", tags=["approvals"])

RESOLVE_ERROR_CODES = {
    ApplyStatus.TOKEN_INVALID: status.HTTP_404_NOT_FOUND,
    ApplyStatus.ALREADY_CONSUMED: status.HTTP_409_CONFLICT,
    ApplyStatus.DOCUMENT_CONFLICT: status.HTTP_409_CONFLICT,
}


@router.post("/check", response_model=RunSummaryResponse)
def check_approvals(
    engine: ApprovalWorkflowEngine = Depends(get_engine),
    service: ApprovalService = Depends(get_service),
):
    """
    Run an approval check now.

    Returns 409 while another check (manual or scheduled, in this process or
    a Celery worker) is in progress, and 503 if the check lease is unreachable.
    """
    try:
        summary = engine.run_check(RunTrigger.MANUAL)
    except AlreadyRunningError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except StoreUnavailableError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    notify_applied(service, summary)
    return summary.to_dict()


@router.post("/tokens/{token_id}/resolve", response_model=ApplyResultResponse)
def resolve_token(
    token_id: str,
    body: ResolveRequest,
    service: ApprovalService = Depends(get_service),
):
    """Approve or reject a pending token without an e-mail reply."""
    try:
        result = service.resolve_manually(token_id, body.outcome, actor=body.actor)
    except StoreUnavailableError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    if not result.applied:
        raise HTTPException(
            status_code=RESOLVE_ERROR_CODES[result.status],
            detail=result.detail or result.status.value,
        )
    return ApplyResultResponse(
        status=result.status.value,
        token_id=result.token_id,
        document_id=result.document_id,
        old_status=result.old_status,
        new_status=result.new_status,
        detail=result.detail,
    )


@router.post("/tokens/{token_id}/resend", response_model=TokenResponse)
def resend_token(
    token_id: str,
    service: ApprovalService = Depends(get_service),
):
    """Send the approval request e-mail again."""
    try:
        token = service.resend_request(token_id)
    except TokenNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except (AlreadyConsumedError, ExpiredError) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return TokenResponse.model_validate(token)
