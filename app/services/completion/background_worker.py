# app/services/completion/background_worker.py
"""
Background Side-Effect Worker (Phase 2)
Runs the follow-up work of a committed completion: display data, delivery
note, client and driver emails, driver-note alert to staff.

Each step is independent: a failure is logged and recorded in the step
results, and never stops the remaining steps.
"""

from datetime import date, datetime, tzinfo
from typing import Protocol
from zoneinfo import ZoneInfo

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.completion_domain import (
    BackgroundCompletionPayload,
    BackgroundTask,
    LineItem,
    WarehouseCompletionPayload,
    flag_absent_customer,
)
from app.models.domain.job_domain import Job, JobKind
from app.services.completion.steps import DocumentGenerator, MessageSender, StepResults
from app.services.completion.warehouse_pipeline import warehouse_processor
from app.services.documents.delivery_note import DeliveryNoteData, delivery_note_generator
from app.services.email import templates
from app.services.email.mailer import mailer
from app.services.hirehop_client import hirehop_client
from app.services.monday.client import RelatedJob, monday_client

logger = get_logger(__name__)


class BackgroundRecordStore(Protocol):
    async def get_job(self, job_id: str, tz: tzinfo) -> Job | None: ...

    async def list_related_upcoming_jobs(
        self, exclude_job_id: str, venue_id: str | None, hh_ref: str | None, today: date, tz: tzinfo
    ) -> list[RelatedJob]: ...


class LineItemSource(Protocol):
    async def get_equipment_items(self, hh_ref: str | None) -> list[LineItem]: ...


class WarehouseProcessor(Protocol):
    async def process(self, payload: WarehouseCompletionPayload) -> dict: ...


class BackgroundWorker:
    def __init__(
        self,
        record_store: BackgroundRecordStore,
        mailer: MessageSender,
        line_items: LineItemSource,
        documents: DocumentGenerator,
        warehouse: WarehouseProcessor,
        tz: tzinfo | None = None,
    ):
        self.record_store = record_store
        self.mailer = mailer
        self.line_items = line_items
        self.documents = documents
        self.warehouse = warehouse
        self.tz = tz or ZoneInfo(settings.BUSINESS_TIMEZONE)

    async def process(self, task: BackgroundTask) -> dict:
        """Entry point for both transports (queue worker and internal route)."""
        if isinstance(task, WarehouseCompletionPayload):
            return await self.warehouse.process(task)
        return await self.process_job_completion(task)

    async def process_job_completion(self, payload: BackgroundCompletionPayload) -> dict:
        logger.info(
            "Processing completion follow-up",
            job_id=payload.job_id,
            kind=payload.job_kind.value,
            send_client_email=payload.send_client_email,
            has_notes=bool(payload.notes),
        )
        results = StepResults(payload.job_id)
        context = {"venue": payload.venue_name or payload.job_name, "client_name": None}

        async def resolve_display_data() -> bool:
            job = await self.record_store.get_job(payload.job_id, self.tz)
            if job is None:
                return False
            context["venue"] = job.venue_name or context["venue"]
            context["client_name"] = job.client_name
            return True

        async def send_driver_receipt() -> bool:
            await self.mailer.send(
                templates.driver_completion_receipt(
                    job_id=payload.job_id,
                    kind=payload.job_kind,
                    venue=context["venue"],
                    job_date=payload.job_date,
                    driver_name=payload.driver_name,
                    driver_email=payload.driver_email,
                    completed_at=payload.completed_at,
                    customer_present=payload.customer_present,
                ),
                operation="driver_completion_receipt",
                job_id=payload.job_id,
            )
            return True

        async def send_client_email() -> bool | None:
            recipients = [e for e in payload.client_emails if e.strip()]
            if not payload.send_client_email or not recipients:
                return None

            if payload.job_kind is JobKind.DELIVERY:
                items = await self.line_items.get_equipment_items(payload.hh_ref)
                note = DeliveryNoteData(
                    title="Delivery Note",
                    venue=context["venue"],
                    job_date=payload.job_date,
                    hh_ref=payload.hh_ref,
                    completed_at=payload.completed_at,
                    client_name=context["client_name"],
                    driver_name=payload.driver_name,
                    notes=payload.notes,
                    items=items,
                    signature=payload.signature,
                    photos=payload.photos,
                    customer_present=payload.customer_present,
                )
                pdf = await self.documents.generate(note)
                message = templates.client_delivery_note(
                    recipients=recipients,
                    venue=context["venue"],
                    job_date=payload.job_date,
                    hh_ref=payload.hh_ref,
                    pdf=pdf,
                    filename=note.filename,
                )
            else:
                message = templates.client_collection_confirmation(
                    recipients=recipients,
                    venue=context["venue"],
                    job_date=payload.job_date,
                    hh_ref=payload.hh_ref,
                )

            await self.mailer.send(message, operation="client_notification", job_id=payload.job_id)
            return True

        async def send_driver_notes_alert() -> bool | None:
            if not (payload.notes or "").strip():
                return None
            try:
                related = await self.record_store.list_related_upcoming_jobs(
                    payload.job_id,
                    payload.venue_id,
                    payload.hh_ref,
                    datetime.now(self.tz).date(),
                    self.tz,
                )
            except Exception as e:
                logger.warning("Related jobs lookup failed", job_id=payload.job_id, error=str(e))
                related = []

            await self.mailer.send(
                templates.driver_notes_alert(
                    job_id=payload.job_id,
                    kind=payload.job_kind,
                    venue=context["venue"],
                    job_date=payload.job_date,
                    driver_name=payload.driver_name,
                    notes=flag_absent_customer(payload.notes, payload.customer_present),
                    related_jobs=related,
                ),
                operation="driver_notes_alert",
                job_id=payload.job_id,
                related_jobs=len(related),
            )
            return True

        await results.run("resolve_display_data", resolve_display_data)
        await results.run("driver_receipt", send_driver_receipt)
        await results.run("client_email", send_client_email)
        await results.run("driver_notes_alert", send_driver_notes_alert)

        summary = results.to_dict()
        logger.info("Completion follow-up finished", **summary)
        return summary


# Singleton instance for application use
background_worker = BackgroundWorker(
    record_store=monday_client,
    mailer=mailer,
    line_items=hirehop_client,
    documents=delivery_note_generator,
    warehouse=warehouse_processor,
)
