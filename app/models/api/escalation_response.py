# app/models/api/escalation_response.py
"""
Escalation API response models.
"""

from pydantic import BaseModel, Field


class EscalationRunResponse(BaseModel):
    """Summary of one escalation run."""

    success: bool = Field(..., description="Run finished without a system error")
    skipped: bool = Field(default=False, description="Run did nothing (outside hours, overlap)")
    reason: str | None = Field(None, description="Why the run was skipped")
    jobs_checked: int = Field(default=0, description="Candidate jobs examined")
    reminders_sent: int = Field(default=0, description="Reminder emails delivered")
    staff_notifications_sent: int = Field(default=0, description="Staff alerts delivered")
    levels_advanced: int = Field(default=0, description="Escalation levels written")
    skip_reasons: dict[str, int] = Field(default_factory=dict, description="Skip counts by reason")
    errors_count: int = Field(default=0, description="Per-job errors")
