# app/services/completion/warehouse_pipeline.py
"""
Warehouse collection completion.
Phase 1 only validates and hands off; the signature update, the on-hire
status flip and the client email all run in the background.
"""

from collections.abc import Callable
from datetime import datetime, tzinfo
from typing import Protocol
from zoneinfo import ZoneInfo

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.completion_domain import LineItem, WarehouseCompletionPayload
from app.services.completion.dispatcher import BackgroundDispatcher, background_dispatcher
from app.services.completion.pipeline import decode_media
from app.services.completion.steps import DocumentGenerator, MessageSender, StepResults
from app.services.documents.delivery_note import DeliveryNoteData, delivery_note_generator
from app.services.email import templates
from app.services.email.mailer import mailer
from app.services.monday.client import monday_client
from app.services.monday.columns import STATUS_LABEL_ON_HIRE, WAREHOUSE_COLUMNS

logger = get_logger(__name__)


class WarehouseCompletionError(Exception):
    def __init__(self, message: str, operation: str | None = None, status_code: int = 400):
        super().__init__(message)
        self.operation = operation
        self.status_code = status_code


class WarehouseRecordStore(Protocol):
    async def create_update(self, item_id: str, body: str) -> str: ...

    async def upload_file_to_update(
        self, update_id: str, content: bytes, filename: str, mime_type: str
    ) -> str: ...

    async def change_column_value(
        self, board_id: str, item_id: str, column_id: str, value: dict
    ) -> None: ...


class WarehouseCompletionPipeline:
    def __init__(
        self,
        dispatcher: BackgroundDispatcher,
        tz: tzinfo | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.dispatcher = dispatcher
        self.tz = tz or ZoneInfo(settings.BUSINESS_TIMEZONE)
        self._clock = clock

    def now(self) -> datetime:
        if self._clock:
            return self._clock().astimezone(self.tz)
        return datetime.now(self.tz)

    async def submit(
        self,
        item_id: str,
        *,
        signature: str | None,
        job_name: str,
        client_name: str = "",
        client_emails: list[str] | None = None,
        send_email: bool = False,
        hire_start_date: str | None = None,
        hh_ref: str | None = None,
        items: list[LineItem] | None = None,
    ) -> WarehouseCompletionPayload:
        """
        Validate and queue a warehouse collection.

        Raises:
            WarehouseCompletionError: missing signature (400) or the task
                could not be handed off (503); nothing has been written
        """
        if not signature:
            raise WarehouseCompletionError("Signature required", operation="validate")

        payload = WarehouseCompletionPayload(
            item_id=item_id,
            job_name=job_name,
            client_name=client_name,
            client_emails=client_emails or [],
            send_email=send_email,
            hire_start_date=hire_start_date,
            hh_ref=hh_ref,
            items=items or [],
            signature=signature,
            completed_at=self.now(),
        )

        try:
            await self.dispatcher.dispatch(payload)
        except Exception as e:
            logger.error("Warehouse completion dispatch failed", item_id=item_id, error=str(e))
            raise WarehouseCompletionError(
                "Collection could not be processed, please try again",
                operation="dispatch",
                status_code=503,
            ) from e

        logger.info("Warehouse collection queued", item_id=item_id, job_name=job_name)
        return payload


class WarehouseCompletionProcessor:
    def __init__(
        self,
        record_store: WarehouseRecordStore,
        mailer: MessageSender,
        documents: DocumentGenerator,
    ):
        self.record_store = record_store
        self.mailer = mailer
        self.documents = documents

    async def process(self, payload: WarehouseCompletionPayload) -> dict:
        results = StepResults(payload.item_id)
        timestamp = payload.completed_at.strftime("%d %b %Y, %H:%M")

        async def add_signature_update() -> bool:
            body = (
                "📝 **Collected in-person**\n\n"
                f"👤 Collected by: {payload.client_name or 'Customer'}\n"
                f"📅 Date/Time: {timestamp}\n\n"
                "_Signature captured via Warehouse Portal_"
            )
            update_id = await self.record_store.create_update(payload.item_id, body)
            if not update_id:
                return False
            try:
                content, mime_type = decode_media(payload.signature)
                await self.record_store.upload_file_to_update(
                    update_id, content, f"signature-{payload.item_id}.png", mime_type
                )
            except Exception as e:
                # The update text is already posted; the image is a nice-to-have
                logger.warning(
                    "Signature image upload failed", item_id=payload.item_id, error=str(e)
                )
            return True

        async def set_on_hire_status() -> bool:
            await self.record_store.change_column_value(
                settings.MONDAY_BOARD_ID_WAREHOUSE,
                payload.item_id,
                WAREHOUSE_COLUMNS["on_hire_status"],
                {"label": STATUS_LABEL_ON_HIRE},
            )
            logger.info("Warehouse item on hire", item_id=payload.item_id)
            return True

        async def send_client_email() -> bool | None:
            recipients = [e for e in payload.client_emails if e.strip()]
            if not payload.send_email or not recipients:
                return None
            note = DeliveryNoteData(
                title="Delivery Note",
                venue=payload.job_name,
                job_date=payload.hire_start_date,
                hh_ref=payload.hh_ref,
                completed_at=payload.completed_at,
                client_name=payload.client_name or None,
                items=payload.items,
                signature=payload.signature,
            )
            pdf = await self.documents.generate(note)
            await self.mailer.send(
                templates.warehouse_collection_note(
                    recipients=recipients,
                    job_name=payload.job_name,
                    client_name=payload.client_name,
                    hire_start_date=payload.hire_start_date,
                    hh_ref=payload.hh_ref,
                    pdf=pdf,
                    filename=note.filename,
                ),
                operation="warehouse_collection_note",
                item_id=payload.item_id,
            )
            return True

        await results.run("signature_update", add_signature_update)
        await results.run("on_hire_status", set_on_hire_status)
        await results.run("client_email", send_client_email)

        summary = results.to_dict()
        logger.info("Warehouse collection processed", **summary)
        return summary


# Singleton instances for application use
warehouse_pipeline = WarehouseCompletionPipeline(dispatcher=background_dispatcher)
warehouse_processor = WarehouseCompletionProcessor(
    record_store=monday_client,
    mailer=mailer,
    documents=delivery_note_generator,
)
