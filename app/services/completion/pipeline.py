# app/services/completion/pipeline.py
"""
Completion Pipeline (Phase 1)
The synchronous part of completing a job: attachments, then one multi-field
write that marks the job done, then a background dispatch for everything else.
Only the completion write is fatal; attachment and dispatch failures become
warnings on the outcome.
"""

import base64
import binascii
from collections.abc import Callable
from datetime import datetime, tzinfo
from typing import Protocol
from zoneinfo import ZoneInfo

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.completion_domain import (
    BackgroundCompletionPayload,
    CompletionError,
    CompletionFailure,
    CompletionOutcome,
    CompletionRequest,
)
from app.models.domain.job_domain import Job
from app.services.completion.dispatcher import BackgroundDispatcher, background_dispatcher
from app.services.monday.client import FreelancerRecord, monday_client
from app.services.monday.columns import DC_COLUMNS, STATUS_LABEL_DONE

logger = get_logger(__name__)

_EXTENSIONS = {"image/png": "png", "image/jpeg": "jpg", "image/jpg": "jpg", "image/webp": "webp"}


class CompletionRecordStore(Protocol):
    async def get_job(self, job_id: str, tz: tzinfo) -> Job | None: ...

    async def upload_file_to_column(
        self, item_id: str, column_id: str, content: bytes, filename: str, mime_type: str
    ) -> str: ...

    async def mark_job_completed(
        self, job_id: str, notes: str, completed_at: datetime, status_label: str
    ) -> None: ...

    async def find_freelancer(self, email: str) -> FreelancerRecord | None: ...


def decode_media(payload: str) -> tuple[bytes, str]:
    """
    Decode a base64 image (optionally a data: URL) into (bytes, mime type).

    Raises:
        ValueError: payload is not valid base64
    """
    mime_type = "image/jpeg"
    raw = payload
    if payload.startswith("data:"):
        header, _, raw = payload.partition(",")
        mime_type = header[5:].split(";", 1)[0] or mime_type
    try:
        content = base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError("Invalid base64 image data") from e
    if not content:
        raise ValueError("Empty image data")
    return content, mime_type


class CompletionPipeline:
    def __init__(
        self,
        record_store: CompletionRecordStore,
        dispatcher: BackgroundDispatcher,
        tz: tzinfo | None = None,
        max_photos: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.record_store = record_store
        self.dispatcher = dispatcher
        self.tz = tz or ZoneInfo(settings.BUSINESS_TIMEZONE)
        self.max_photos = max_photos if max_photos is not None else settings.MAX_COMPLETION_PHOTOS
        self._clock = clock

    def now(self) -> datetime:
        if self._clock:
            return self._clock().astimezone(self.tz)
        return datetime.now(self.tz)

    async def complete(self, request: CompletionRequest) -> CompletionOutcome:
        """
        Mark a job done on behalf of the assigned driver.

        Raises:
            CompletionError: validation, not-found-or-not-assigned,
                already-completed or write-failed; nothing is committed
        """
        request.validate(self.max_photos)
        job = await self._load_job(request)

        completed_at = self.now()
        warnings: list[str] = []

        logger.info(
            "Completing job",
            job_id=job.id,
            kind=job.kind.value,
            customer_present=request.customer_present,
            photos=len(request.photos),
            has_signature=bool(request.signature),
        )

        if request.signature:
            warning = await self._upload(
                job.id, DC_COLUMNS["signature"], request.signature, f"signature-{job.id}", "signature"
            )
            if warning:
                warnings.append(warning)

        for index, photo in enumerate(request.photos, start=1):
            warning = await self._upload(
                job.id,
                DC_COLUMNS["completion_photos"],
                photo,
                f"completion-{job.id}-{index}",
                f"photo {index}",
            )
            if warning:
                warnings.append(warning)

        try:
            await self.record_store.mark_job_completed(
                job.id, request.notes_for_record(), completed_at, STATUS_LABEL_DONE
            )
        except Exception as e:
            logger.error("Completion write failed", job_id=job.id, error=str(e))
            raise CompletionError(
                "Failed to save completion", CompletionFailure.WRITE_FAILED, job.id
            ) from e

        logger.info("Job marked complete", job_id=job.id, warnings=len(warnings))

        payload = BackgroundCompletionPayload(
            job_id=job.id,
            job_name=job.display_name(),
            job_kind=job.kind,
            job_date=job.scheduled_date_text or None,
            hh_ref=job.hh_ref,
            venue_id=job.venue_id,
            venue_name=job.venue_name,
            driver_email=request.caller_email,
            driver_name=await self._driver_name(request.caller_email),
            notes=request.trimmed_notes() or None,
            customer_present=request.customer_present,
            client_emails=request.client_emails,
            send_client_email=request.send_client_email,
            completed_at=completed_at,
            signature=request.signature,
            photos=request.photos,
        )
        try:
            await self.dispatcher.dispatch(payload)
        except Exception as e:
            # Completion is committed; follow-up emails are the only loss
            logger.error("Background dispatch failed", job_id=job.id, error=str(e))
            warnings.append("Follow-up emails could not be scheduled")

        return CompletionOutcome(
            success=True, job_id=job.id, completed_at=completed_at, warnings=warnings
        )

    async def _load_job(self, request: CompletionRequest) -> Job:
        try:
            job = await self.record_store.get_job(request.job_id, self.tz)
        except Exception as e:
            logger.error("Failed to read job for completion", job_id=request.job_id, error=str(e))
            raise CompletionError(
                "Could not read job", CompletionFailure.WRITE_FAILED, request.job_id
            ) from e

        if job is None or not job.is_assigned_to(request.caller_email):
            logger.warning(
                "Completion rejected: job not found or not assigned",
                job_id=request.job_id,
                caller=request.caller_email,
            )
            raise CompletionError(
                "Job not found", CompletionFailure.NOT_FOUND_OR_NOT_ASSIGNED, request.job_id
            )

        if job.is_completed:
            logger.warning("Completion rejected: already completed", job_id=job.id)
            raise CompletionError(
                "Job has already been completed", CompletionFailure.ALREADY_COMPLETED, job.id
            )

        return job

    async def _upload(
        self, job_id: str, column_id: str, payload: str, basename: str, label: str
    ) -> str | None:
        """Upload one attachment; returns a warning instead of raising."""
        try:
            content, mime_type = decode_media(payload)
            filename = f"{basename}.{_EXTENSIONS.get(mime_type, 'jpg')}"
            await self.record_store.upload_file_to_column(
                job_id, column_id, content, filename, mime_type
            )
            return None
        except Exception as e:
            logger.warning("Attachment upload failed", job_id=job_id, attachment=label, error=str(e))
            return f"Failed to upload {label}"

    async def _driver_name(self, email: str) -> str:
        try:
            record = await self.record_store.find_freelancer(email)
        except Exception as e:
            logger.warning("Driver name lookup failed", email=email, error=str(e))
            return email
        return record.name if record else email


# Singleton instance for application use
completion_pipeline = CompletionPipeline(record_store=monday_client, dispatcher=background_dispatcher)
