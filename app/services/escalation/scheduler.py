# app/services/escalation/scheduler.py
"""
Escalation Scheduler
Scans confirmed, uncompleted jobs and escalates completion reminders to the
assigned driver, one level per run, with a staff alert after the final level.

Ordering per job: re-read, gate, claim, write the new level, then send.
A committed level is never reverted when the email fails, so each level is
emailed at most once.
"""

import uuid
from collections.abc import Callable
from datetime import datetime, tzinfo
from typing import Protocol
from zoneinfo import ZoneInfo

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.job_domain import EscalationPolicy, Job, JobStatus, eligibility_window
from app.services.email import templates
from app.services.email.mailer import EmailMessage
from app.services.infrastructure.claim_store import EscalationClaimStore
from app.services.monday.client import FreelancerRecord
from app.services.notification_preferences import (
    NotificationPreferenceGate,
    evaluate,
    preference_from_record,
)
from app.services.reminder_rate_limiter import ReminderRateLimiter

logger = get_logger(__name__)


class EscalationJobError(Exception):
    """Custom exception for escalation run failures."""

    def __init__(self, message: str, operation: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class JobRecordStore(Protocol):
    async def list_jobs(self, tz: tzinfo) -> list[Job]: ...

    async def get_job(self, job_id: str, tz: tzinfo) -> Job | None: ...

    async def set_escalation_level(self, job_id: str, level: int) -> None: ...

    async def find_freelancer(self, email: str) -> FreelancerRecord | None: ...


class MessageSender(Protocol):
    async def send(self, message: EmailMessage, *, operation: str = ..., **log_context) -> None: ...


class EscalationMetrics:
    """Metrics tracking for one escalation run."""

    def __init__(self):
        self.reset()

    def reset(self):
        self.start_time = datetime.utcnow()
        self.jobs_scanned = 0
        self.jobs_checked = 0
        self.levels_advanced = 0
        self.reminders_sent = 0
        self.reminder_failures = 0
        self.staff_notifications_sent = 0
        self.staff_notification_failures = 0
        self.write_failures = 0
        self.skipped: dict[str, int] = {}
        self.errors: list[dict] = []
        self.total_duration_seconds = 0.0

    def record_skip(self, job_id: str, reason: str, **context):
        self.skipped[reason] = self.skipped.get(reason, 0) + 1
        logger.info("Escalation skipped", job_id=job_id, reason=reason, **context)

    def record_error(self, job_id: str, operation: str, error: str):
        self.errors.append(
            {
                "job_id": job_id,
                "operation": operation,
                "error": error,
                "timestamp": datetime.utcnow().isoformat(),
            }
        )

    def finalize(self):
        self.total_duration_seconds = (datetime.utcnow() - self.start_time).total_seconds()

    def to_dict(self) -> dict:
        return {
            "job_run": "completion_escalation",
            "start_time": self.start_time.isoformat(),
            "total_duration_seconds": round(self.total_duration_seconds, 2),
            "jobs_scanned": self.jobs_scanned,
            "jobs_checked": self.jobs_checked,
            "levels_advanced": self.levels_advanced,
            "reminders_sent": self.reminders_sent,
            "reminder_failures": self.reminder_failures,
            "staff_notifications_sent": self.staff_notifications_sent,
            "staff_notification_failures": self.staff_notification_failures,
            "write_failures": self.write_failures,
            "skip_reasons": dict(self.skipped),
            "errors_count": len(self.errors),
        }


class EscalationScheduler:
    def __init__(
        self,
        record_store: JobRecordStore,
        mailer: MessageSender,
        claims: EscalationClaimStore,
        rate_limiter: ReminderRateLimiter,
        policy: EscalationPolicy | None = None,
        tz: tzinfo | None = None,
        business_hours: tuple[int, int] | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.record_store = record_store
        self.mailer = mailer
        self.claims = claims
        self.rate_limiter = rate_limiter
        self.gate = NotificationPreferenceGate(record_store)
        self.policy = policy or EscalationPolicy(settings.escalation_thresholds())
        self.tz = tz or ZoneInfo(settings.BUSINESS_TIMEZONE)
        self.business_hours = business_hours or (
            settings.BUSINESS_HOURS_START,
            settings.BUSINESS_HOURS_END,
        )
        self._clock = clock
        self.is_running = False
        self.last_run_time: datetime | None = None
        self.metrics = EscalationMetrics()

    def now(self) -> datetime:
        if self._clock:
            return self._clock().astimezone(self.tz)
        return datetime.now(self.tz)

    def within_business_hours(self, now: datetime) -> bool:
        start, end = self.business_hours
        return start <= now.hour < end

    def candidate_skip_reason(self, job: Job, now: datetime) -> str | None:
        """Eligibility filter; None means the job is a candidate this cycle."""
        yesterday, today = eligibility_window(now)
        if job.scheduled_date not in (yesterday, today):
            return "outside_date_window"
        if job.is_completed:
            return "completed"
        if job.status is not JobStatus.CONFIRMED:
            return "status_not_confirmed"
        if not job.assignee_email:
            return "no_assignee"
        if job.escalation_level >= self.policy.max_level:
            return "max_level_reached"
        elapsed = job.hours_since_scheduled(now)
        if elapsed is None:
            return "no_scheduled_time"
        if elapsed < 0:
            return "not_yet_due"
        return None

    async def run_once(self) -> dict:
        """
        Run a single escalation pass.

        Returns:
            Dict: run summary (jobs_checked, reminders_sent, staff_notifications_sent, ...)

        Raises:
            EscalationJobError: the job list could not be read
        """
        if self.is_running:
            logger.warning("Escalation run already in progress, skipping this iteration")
            return {"skipped": True, "reason": "already_running"}

        self.is_running = True
        self.metrics.reset()
        run_id = uuid.uuid4().hex
        now = self.now()

        try:
            if not self.within_business_hours(now):
                logger.info("Outside business hours, skipping escalation run", hour=now.hour)
                self.metrics.finalize()
                self.last_run_time = datetime.utcnow()
                return {**self.metrics.to_dict(), "skipped": True, "reason": "outside_business_hours"}

            try:
                jobs = await self.record_store.list_jobs(self.tz)
            except Exception as e:
                logger.error("Failed to list jobs for escalation", error=str(e))
                raise EscalationJobError(f"Failed to list jobs: {e}", operation="list_jobs") from e

            self.metrics.jobs_scanned = len(jobs)
            candidates = [job for job in jobs if self.candidate_skip_reason(job, now) is None]
            self.metrics.jobs_checked = len(candidates)

            logger.info(
                "Starting escalation run",
                run_id=run_id,
                jobs_scanned=len(jobs),
                candidates=len(candidates),
            )

            for job in candidates:
                try:
                    await self._process_job(job.id, now, run_id)
                except Exception as e:
                    logger.error(
                        "Escalation processing error",
                        job_id=job.id,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    self.metrics.record_error(job.id, "process_job", str(e))

            self.metrics.finalize()
            self.last_run_time = datetime.utcnow()
            summary = self.metrics.to_dict()
            logger.info("Escalation run completed", run_id=run_id, **summary)
            return summary

        finally:
            self.is_running = False

    async def _process_job(self, job_id: str, now: datetime, run_id: str) -> None:
        # Fresh read; another run or a completion may have moved the job on
        job = await self.record_store.get_job(job_id, self.tz)
        if job is None:
            self.metrics.record_skip(job_id, "not_found")
            return

        reason = self.candidate_skip_reason(job, now)
        if reason:
            self.metrics.record_skip(job_id, reason)
            return

        elapsed = job.hours_since_scheduled(now)
        level = self.policy.next_level(job.escalation_level, elapsed)
        if level is None:
            self.metrics.record_skip(job_id, "threshold_not_reached", elapsed_hours=round(elapsed, 2))
            return

        freelancer = await self.gate.load(job.assignee_email)
        mute_reason = evaluate(preference_from_record(freelancer, job.assignee_email), job.id, now)
        if mute_reason:
            self.metrics.record_skip(job_id, mute_reason, recipient=job.assignee_email)
            return

        if await self.rate_limiter.is_limited(job.assignee_email):
            self.metrics.record_skip(job_id, "rate_limited", recipient=job.assignee_email)
            return

        if not await self.claims.claim(job.id, level, run_id):
            self.metrics.record_skip(job_id, "claimed_by_other_run", level=level)
            return

        try:
            await self.record_store.set_escalation_level(job.id, level)
        except Exception as e:
            await self.claims.release(job.id, level)
            self.metrics.write_failures += 1
            self.metrics.record_error(job.id, "set_escalation_level", str(e))
            logger.error(
                "Failed to write escalation level, retrying next cycle",
                job_id=job.id,
                level=level,
                error=str(e),
            )
            return

        self.metrics.levels_advanced += 1
        logger.info(
            "Escalation level advanced",
            job_id=job.id,
            previous_level=job.escalation_level,
            level=level,
            elapsed_hours=round(elapsed, 2),
        )

        driver_name = freelancer.name if freelancer else job.assignee_email
        await self._send_reminder(job, level, driver_name)

        if level == self.policy.max_level:
            await self._send_staff_notification(job, driver_name)

    async def _send_reminder(self, job: Job, level: int, driver_name: str) -> None:
        message = templates.completion_reminder(
            job_id=job.id,
            kind=job.kind,
            venue=job.venue_name,
            job_date=job.scheduled_date or job.scheduled_date_text,
            job_time=job.scheduled_time_text,
            driver_name=driver_name,
            driver_email=job.assignee_email,
            level=level,
        )
        try:
            await self.mailer.send(message, operation="completion_reminder", job_id=job.id, level=level)
        except Exception as e:
            # Level stays committed; a lost reminder is preferred to a duplicate
            self.metrics.reminder_failures += 1
            self.metrics.record_error(job.id, "send_reminder", str(e))
            logger.warning(
                "Reminder email failed after level was committed",
                job_id=job.id,
                level=level,
                error=str(e),
            )
            return

        await self.rate_limiter.record_send(job.assignee_email)
        self.metrics.reminders_sent += 1

    async def _send_staff_notification(self, job: Job, driver_name: str) -> None:
        message = templates.staff_escalation(
            job_id=job.id,
            kind=job.kind,
            venue=job.venue_name,
            job_date=job.scheduled_date or job.scheduled_date_text,
            job_time=job.scheduled_time_text,
            driver_name=driver_name,
            driver_email=job.assignee_email,
            reminders_sent=self.policy.max_level,
        )
        try:
            await self.mailer.send(message, operation="staff_escalation", job_id=job.id)
        except Exception as e:
            self.metrics.staff_notification_failures += 1
            self.metrics.record_error(job.id, "send_staff_notification", str(e))
            logger.warning("Staff escalation email failed", job_id=job.id, error=str(e))
            return

        self.metrics.staff_notifications_sent += 1

    def get_status(self) -> dict:
        return {
            "job_name": "completion_escalation",
            "is_running": self.is_running,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "claim_backend": self.claims.backend,
            "thresholds_hours": dict(self.policy.thresholds),
            "business_hours": list(self.business_hours),
            "last_run_metrics": self.metrics.to_dict() if self.last_run_time else None,
        }
