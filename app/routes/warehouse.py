"""
Warehouse API Routes
In-person collections signed for at the warehouse tablet.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from app.auth.verify import warehouse_pin_dependency
from app.infrastructure.observability.logging import get_logger
from app.models.api.completion_request import CompleteWarehouseCollectionRequest
from app.models.api.completion_response import WarehouseCollectionResponse
from app.services.completion.warehouse_pipeline import (
    WarehouseCompletionError,
    warehouse_pipeline,
)

logger = get_logger(__name__)

router = APIRouter(
    prefix="/warehouse",
    tags=["warehouse"],
    dependencies=[Depends(warehouse_pin_dependency)],
)


@router.post("/collections/{item_id}/complete", response_model=WarehouseCollectionResponse)
async def complete_warehouse_collection(item_id: str, request: CompleteWarehouseCollectionRequest):
    """Accept a signed collection; the board update and email run in the background."""
    try:
        payload = await warehouse_pipeline.submit(
            item_id,
            signature=request.signature,
            job_name=request.job_name,
            client_name=request.client_name,
            client_emails=request.client_emails,
            send_email=request.send_email,
            hire_start_date=request.hire_start_date,
            hh_ref=request.hh_ref,
            items=request.items,
        )
    except WarehouseCompletionError as e:
        logger.warning(
            "Warehouse collection rejected", item_id=item_id, operation=e.operation, error=str(e)
        )
        raise HTTPException(status_code=e.status_code, detail=str(e)) from e

    return WarehouseCollectionResponse(
        success=True, item_id=item_id, completed_at=payload.completed_at, queued=True
    )
