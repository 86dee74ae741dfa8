"""
Internal API Routes
Service-to-service endpoints guarded by the background secret:
the remote Phase 2 worker and the external cron trigger for escalations.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import Field

from app.auth.verify import background_secret_dependency
from app.infrastructure.observability.logging import get_logger
from app.jobs.escalation_job import run_escalation_job
from app.models.api.completion_response import BackgroundTaskResponse
from app.models.api.escalation_response import EscalationRunResponse
from app.models.domain.completion_domain import BackgroundTask
from app.services.completion.background_worker import background_worker
from app.services.escalation.scheduler import EscalationJobError

logger = get_logger(__name__)

router = APIRouter(
    prefix="/internal",
    tags=["internal"],
    dependencies=[Depends(background_secret_dependency)],
)

BackgroundTaskBody = Annotated[BackgroundTask, Field(discriminator="task_type")]


@router.post("/completion-background", response_model=BackgroundTaskResponse)
async def run_completion_background(task: BackgroundTaskBody):
    """Run Phase 2 for one task; step failures are reported, not raised."""
    try:
        summary = await background_worker.process(task)
    except Exception as e:
        logger.error(
            "Background task crashed", task_type=task.task_type, error=str(e), error_type=type(e).__name__
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Background processing failed",
        ) from e

    return BackgroundTaskResponse(
        success=True,
        task_id=summary["task_id"],
        steps=summary["steps"],
        duration_ms=summary["duration_ms"],
    )


@router.post("/escalations/run", response_model=EscalationRunResponse)
async def run_escalations():
    """Run one escalation pass (external cron)."""
    try:
        summary = await run_escalation_job()
    except EscalationJobError as e:
        logger.error("Escalation run failed", operation=e.operation, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Escalation run failed",
        ) from e

    return EscalationRunResponse(
        success=True,
        skipped=summary.get("skipped", False),
        reason=summary.get("reason"),
        jobs_checked=summary.get("jobs_checked", 0),
        reminders_sent=summary.get("reminders_sent", 0),
        staff_notifications_sent=summary.get("staff_notifications_sent", 0),
        levels_advanced=summary.get("levels_advanced", 0),
        skip_reasons=summary.get("skip_reasons", {}),
        errors_count=summary.get("errors_count", 0),
    )
