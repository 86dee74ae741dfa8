# app/models/domain/completion_domain.py
"""
Completion Domain Models
Value objects for the two-phase completion pipeline.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

from app.models.domain.job_domain import JobKind

CUSTOMER_NOT_PRESENT = "Customer not present"


def flag_absent_customer(notes: str, customer_present: bool) -> str:
    if customer_present:
        return notes
    return f"{CUSTOMER_NOT_PRESENT}\n\n{notes}".strip()


class CompletionFailure(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND_OR_NOT_ASSIGNED = "not-found-or-not-assigned"
    ALREADY_COMPLETED = "already-completed"
    WRITE_FAILED = "write-failed"


class CompletionError(Exception):
    """Typed failure of Phase 1; nothing has been committed when raised."""

    def __init__(self, message: str, kind: CompletionFailure, job_id: str | None = None):
        super().__init__(message)
        self.kind = kind
        self.job_id = job_id
        self.recoverable = kind is CompletionFailure.WRITE_FAILED


@dataclass
class CompletionRequest:
    """Submitted once by the acting freelancer; never persisted."""

    job_id: str
    caller_email: str
    customer_present: bool
    notes: str | None = None
    signature: str | None = None
    photos: list[str] = field(default_factory=list)
    client_emails: list[str] = field(default_factory=list)
    send_client_email: bool = False

    def validate(self, max_photos: int) -> None:
        """
        Enforce the photo/signature invariant.

        Raises:
            CompletionError: validation failure, before any external call
        """
        if self.customer_present and not self.signature:
            raise CompletionError(
                "Signature is required when customer is present",
                CompletionFailure.VALIDATION,
                self.job_id,
            )
        if not self.customer_present and self.signature:
            raise CompletionError(
                "Signature is only accepted when customer is present",
                CompletionFailure.VALIDATION,
                self.job_id,
            )
        if not self.customer_present and not self.photos:
            raise CompletionError(
                "At least one photo is required when customer is not present",
                CompletionFailure.VALIDATION,
                self.job_id,
            )
        if len(self.photos) > max_photos:
            raise CompletionError(
                f"Maximum {max_photos} photos allowed",
                CompletionFailure.VALIDATION,
                self.job_id,
            )

    def trimmed_notes(self) -> str:
        return (self.notes or "").strip()

    def notes_for_record(self) -> str:
        """Notes as stored on the job; absent customers are flagged first."""
        return flag_absent_customer(self.trimmed_notes(), self.customer_present)


@dataclass
class CompletionOutcome:
    success: bool
    job_id: str
    completed_at: datetime
    warnings: list[str] = field(default_factory=list)


class LineItem(BaseModel):
    name: str
    quantity: int = 1
    category: str | None = None


class BackgroundCompletionPayload(BaseModel):
    """Everything the background worker needs; discarded after one run."""

    task_type: Literal["job_completion"] = "job_completion"
    job_id: str
    job_name: str
    job_kind: JobKind
    job_date: str | None = None
    hh_ref: str | None = None
    venue_id: str | None = None
    venue_name: str | None = None
    driver_email: str
    driver_name: str
    notes: str | None = None
    customer_present: bool
    client_emails: list[str] = Field(default_factory=list)
    send_client_email: bool = False
    completed_at: datetime
    signature: str | None = None
    photos: list[str] = Field(default_factory=list)


class WarehouseCompletionPayload(BaseModel):
    """Warehouse collection: every external mutation runs in the background."""

    task_type: Literal["warehouse_collection"] = "warehouse_collection"
    item_id: str
    job_name: str
    client_name: str = ""
    client_emails: list[str] = Field(default_factory=list)
    send_email: bool = False
    hire_start_date: str | None = None
    hh_ref: str | None = None
    items: list[LineItem] = Field(default_factory=list)
    signature: str
    completed_at: datetime


BackgroundTask = BackgroundCompletionPayload | WarehouseCompletionPayload
