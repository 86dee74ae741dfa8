"""
Job Completion API Routes
Drivers mark their own deliveries and collections as done.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from app.auth.verify import auth_dependency
from app.infrastructure.observability.logging import get_logger
from app.models.api.completion_request import CompleteJobRequest
from app.models.api.completion_response import CompleteJobResponse, CompletionErrorDetail
from app.models.domain.completion_domain import CompletionError, CompletionFailure, CompletionRequest
from app.services.completion.pipeline import completion_pipeline

logger = get_logger(__name__)

router = APIRouter(prefix="/jobs", tags=["jobs"])

FAILURE_STATUS_CODES = {
    CompletionFailure.VALIDATION: status.HTTP_400_BAD_REQUEST,
    CompletionFailure.NOT_FOUND_OR_NOT_ASSIGNED: status.HTTP_404_NOT_FOUND,
    CompletionFailure.ALREADY_COMPLETED: status.HTTP_409_CONFLICT,
    CompletionFailure.WRITE_FAILED: status.HTTP_502_BAD_GATEWAY,
}


@router.post("/{job_id}/complete", response_model=CompleteJobResponse)
async def complete_job(
    job_id: str, request: CompleteJobRequest, claims: dict = Depends(auth_dependency)
):
    """Complete a job assigned to the authenticated driver."""
    caller_email = claims.get("email")
    if not caller_email:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    completion = CompletionRequest(
        job_id=job_id,
        caller_email=caller_email,
        customer_present=request.customer_present,
        notes=request.notes,
        signature=request.signature,
        photos=request.photos,
        client_emails=request.client_emails,
        send_client_email=request.send_client_email,
    )

    try:
        outcome = await completion_pipeline.complete(completion)
    except CompletionError as e:
        raise HTTPException(
            status_code=FAILURE_STATUS_CODES[e.kind],
            detail=CompletionErrorDetail(
                error=e.kind.value, message=str(e), job_id=e.job_id
            ).model_dump(),
        ) from e
    except Exception as e:
        logger.error("Unexpected error completing job", job_id=job_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to complete job",
        ) from e

    return CompleteJobResponse(
        success=outcome.success,
        job_id=outcome.job_id,
        completed_at=outcome.completed_at,
        warnings=outcome.warnings,
    )
