"""
Stock ledger API routes.

Stock is never edited directly: it is the sum of ledger movements.
"""

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse, Response
from typing import Optional
from datetime import date
import structlog

from models.base import PaginatedResponse
from models.inventory import (
    LedgerIntegrityReport,
    ManualOutCreate,
    MovementResponse,
    MovementSource,
    MovementType,
    ProductStockResponse,
)
from services.inventory_ledger_service import get_inventory_ledger_service
from exceptions import AppError

logger = structlog.get_logger(__name__)

router = APIRouter()


# ===================
# EXCEPTION HANDLER
# ===================

def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
    logger.error("unexpected_error", error=str(e), type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        }
    )


# ===================
# STOCK
# ===================

@router.get("", response_model=ProductStockResponse)
async def get_product_stock(
    as_of: Optional[date] = Query(None, description="Reference date for curing, defaults to today")
):
    """
    Stock per product: available, curing and loose pieces.

    Products without any activity are omitted.
    """
    try:
        return get_inventory_ledger_service().get_product_stock(as_of)
    except Exception as e:
        return handle_error(e)


@router.get("/{product_id}/integrity", response_model=LedgerIntegrityReport)
async def verify_integrity(product_id: str):
    """Compare the aggregated balance with a replay of the movements."""
    try:
        return get_inventory_ledger_service().verify_integrity(product_id)
    except Exception as e:
        return handle_error(e)


# ===================
# MOVEMENTS
# ===================

@router.get("/movements", response_model=PaginatedResponse)
async def list_movements(
    product_id: Optional[str] = Query(None, description="Filter by product"),
    movement_type: Optional[MovementType] = Query(None, alias="type", description="IN or OUT"),
    source: Optional[MovementSource] = Query(None, description="Filter by source"),
    start_date: Optional[date] = Query(None, description="Movement date from"),
    end_date: Optional[date] = Query(None, description="Movement date to"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=200, description="Items per page")
):
    """List ledger movements, newest first."""
    try:
        movements, total = get_inventory_ledger_service().get_movements(
            product_id=product_id,
            movement_type=movement_type,
            source=source,
            start_date=start_date,
            end_date=end_date,
            page=page,
            page_size=page_size,
        )
        return PaginatedResponse.create(movements, total, page, page_size)
    except Exception as e:
        return handle_error(e)


@router.post("/movements/manual-out", response_model=MovementResponse, status_code=201)
async def create_manual_out(data: ManualOutCreate):
    """
    Withdraw stock by hand.

    Raises:
        404: Product not found
        422: Not enough stock
    """
    try:
        return get_inventory_ledger_service().create_manual_out(data)
    except Exception as e:
        return handle_error(e)


@router.delete("/movements/{movement_id}", status_code=204, response_class=Response)
async def delete_movement(movement_id: str):
    """
    Delete a manual movement.

    Raises:
        404: Movement not found
        409: Movement belongs to palletization, delivery or legacy production
    """
    try:
        get_inventory_ledger_service().delete_movement(movement_id)
        return Response(status_code=204)
    except Exception as e:
        return handle_error(e)
