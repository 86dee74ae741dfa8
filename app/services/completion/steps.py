# app/services/completion/steps.py
"""Shared pieces of the Phase 2 processors."""

import time
from collections.abc import Awaitable, Callable
from typing import Protocol

from app.infrastructure.observability.logging import get_logger
from app.services.documents.delivery_note import DeliveryNoteData
from app.services.email.mailer import EmailMessage

logger = get_logger(__name__)


class MessageSender(Protocol):
    async def send(self, message: EmailMessage, *, operation: str = ..., **log_context) -> None: ...


class DocumentGenerator(Protocol):
    async def generate(self, data: DeliveryNoteData) -> bytes: ...


class StepResults:
    """Outcome of each Phase 2 step: ok, failed or skipped."""

    def __init__(self, task_id: str):
        self.task_id = task_id
        self.steps: dict[str, str] = {}
        self.start_time = time.monotonic()

    async def run(self, name: str, step: Callable[[], Awaitable[bool | None]]) -> None:
        """Run one step; a failure is logged and recorded, never raised."""
        try:
            result = await step()
        except Exception as e:
            self.steps[name] = "failed"
            logger.error(
                "Background step failed",
                task_id=self.task_id,
                step=name,
                error=str(e),
                error_type=type(e).__name__,
            )
            return
        self.steps[name] = "skipped" if result is None else ("ok" if result else "failed")

    def to_dict(self) -> dict:
        return {
            "task_id": self.task_id,
            "steps": dict(self.steps),
            "duration_ms": round((time.monotonic() - self.start_time) * 1000, 2),
        }
