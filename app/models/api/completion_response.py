# app/models/api/completion_response.py
"""
Completion API response models.
Used by routes for output formatting.
"""

from datetime import datetime

from pydantic import BaseModel, Field


class CompleteJobResponse(BaseModel):
    """Response after Phase 1 of a job completion."""

    success: bool = Field(..., description="Job was marked complete")
    job_id: str = Field(..., description="Job ID")
    completed_at: datetime = Field(..., description="Completion timestamp")
    warnings: list[str] = Field(default_factory=list, description="Non-fatal problems")


class CompletionErrorDetail(BaseModel):
    """Error body for a rejected completion."""

    error: str = Field(..., description="Failure kind")
    message: str = Field(..., description="Human readable message")
    job_id: str | None = Field(None, description="Job ID")


class WarehouseCollectionResponse(BaseModel):
    """Response after a warehouse collection was accepted."""

    success: bool = Field(..., description="Collection accepted for processing")
    item_id: str = Field(..., description="Warehouse item ID")
    completed_at: datetime = Field(..., description="Collection timestamp")
    queued: bool = Field(default=True, description="Status flip and emails run in the background")


class BackgroundTaskResponse(BaseModel):
    """Result of a background task run via the internal endpoint."""

    success: bool = Field(..., description="Task ran (individual steps may have failed)")
    task_id: str = Field(..., description="Job or item ID")
    steps: dict[str, str] = Field(default_factory=dict, description="Per-step outcome")
    duration_ms: float = Field(..., description="Processing time")
