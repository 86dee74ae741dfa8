"""
Completion escalation job.
Runs the escalation scheduler every ESCALATION_INTERVAL_MINUTES, either as a
long-running loop (worker process) or one pass at a time (internal trigger).
"""

import asyncio
from datetime import datetime, timedelta

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.services.email.mailer import mailer
from app.services.escalation.scheduler import EscalationScheduler
from app.services.infrastructure.claim_store import escalation_claims
from app.services.monday.client import monday_client
from app.services.reminder_rate_limiter import reminder_rate_limiter

logger = get_logger(__name__)

JOB_INTERVAL_MINUTES = settings.ESCALATION_INTERVAL_MINUTES
ERROR_BACKOFF_SECONDS = 60

# Singleton instance for application use
escalation_scheduler = EscalationScheduler(
    record_store=monday_client,
    mailer=mailer,
    claims=escalation_claims,
    rate_limiter=reminder_rate_limiter,
)


async def run_escalation_job() -> dict:
    """Run a single escalation pass."""
    return await escalation_scheduler.run_once()


def get_escalation_job_status() -> dict:
    return escalation_scheduler.get_status()


def escalation_job_health() -> dict:
    """Healthy unless the loop has not completed a run in twice the interval."""
    last_run = escalation_scheduler.last_run_time
    overdue = last_run is not None and datetime.utcnow() - last_run > timedelta(
        minutes=JOB_INTERVAL_MINUTES * 2
    )
    return {
        "healthy": not overdue,
        "service": "completion_escalation_job",
        "is_running": escalation_scheduler.is_running,
        "last_run_time": last_run.isoformat() if last_run else None,
        "is_overdue": overdue,
        "interval_minutes": JOB_INTERVAL_MINUTES,
    }


async def start_escalation_scheduler():
    """Run the escalation job forever; used by the worker process."""
    logger.info("Starting completion escalation scheduler", interval_minutes=JOB_INTERVAL_MINUTES)

    while True:
        try:
            metrics = await run_escalation_job()

            if not metrics.get("skipped", False):
                logger.info(
                    "Escalation job cycle completed",
                    **{k: v for k, v in metrics.items() if k not in ("errors", "job_run")},
                )

            await asyncio.sleep(JOB_INTERVAL_MINUTES * 60)

        except asyncio.CancelledError:
            logger.info("Completion escalation scheduler stopped")
            raise
        except Exception as e:
            logger.error(
                "Error in completion escalation scheduler", error=str(e), error_type=type(e).__name__
            )
            await asyncio.sleep(ERROR_BACKOFF_SECONDS)
