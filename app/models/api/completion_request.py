# app/models/api/completion_request.py
"""
Completion API request models.
Used by routes for input validation; the photo/signature rules are enforced
by the completion pipeline so they surface as typed validation failures.
"""

from pydantic import BaseModel, Field

from app.models.domain.completion_domain import LineItem


class CompleteJobRequest(BaseModel):
    """Request for completing a delivery or collection."""

    notes: str | None = Field(default=None, max_length=5000, description="Driver notes")
    signature: str | None = Field(default=None, description="Base64 PNG signature (customer present)")
    photos: list[str] = Field(default_factory=list, description="Base64 photos (customer absent)")
    customer_present: bool = Field(..., description="Was the customer present at handover")
    client_emails: list[str] = Field(
        default_factory=list, description="Client addresses for the delivery note/confirmation"
    )
    send_client_email: bool = Field(default=False, description="Email the client after completion")


class CompleteWarehouseCollectionRequest(BaseModel):
    """Request for completing an in-person warehouse collection."""

    signature: str | None = Field(default=None, description="Base64 PNG signature")
    job_name: str = Field(..., min_length=1, description="Job name shown to the client")
    client_name: str = Field(default="", description="Name of the person collecting")
    client_emails: list[str] = Field(default_factory=list, description="Client addresses")
    send_email: bool = Field(default=False, description="Email the signed note to the client")
    hire_start_date: str | None = Field(default=None, description="Hire start date (YYYY-MM-DD)")
    hh_ref: str | None = Field(default=None, description="HireHop job reference")
    items: list[LineItem] = Field(default_factory=list, description="Equipment being collected")
