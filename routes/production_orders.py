"""
Production order API routes.

Reads refresh production order statuses against stock first.
"""

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
from typing import Optional
import structlog

from models.base import PaginatedResponse
from models.production_order import (
    ProductionOrderKpis,
    ProductionOrderResponse,
    ProductionOrderStatus,
    RefreshResult,
)
from services.production_order_service import get_production_order_service
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
# ROUTES
# ===================

@router.get("", response_model=PaginatedResponse)
async def list_production_orders(
    status: Optional[ProductionOrderStatus] = Query(None, description="Filter by status"),
    order_id: Optional[str] = Query(None, description="Filter by order"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page")
):
    """List production orders newest first."""
    try:
        production_orders, total = get_production_order_service().get_all(
            status=status,
            order_id=order_id,
            page=page,
            page_size=page_size,
        )
        return PaginatedResponse.create(production_orders, total, page, page_size)
    except Exception as e:
        return handle_error(e)


@router.get("/kpis", response_model=ProductionOrderKpis)
async def get_kpis():
    """Counts per status and pieces still to produce."""
    try:
        return get_production_order_service().get_kpis()
    except Exception as e:
        return handle_error(e)


@router.post("/refresh", response_model=RefreshResult)
async def refresh_statuses():
    """Re-evaluate active production orders against stock."""
    try:
        return get_production_order_service().refresh_statuses()
    except Exception as e:
        return handle_error(e)


@router.get("/{production_order_id}", response_model=ProductionOrderResponse)
async def get_production_order(production_order_id: str):
    """
    Get a single production order.

    Raises:
        404: Production order not found
    """
    try:
        return get_production_order_service().get_by_id(production_order_id)
    except Exception as e:
        return handle_error(e)


@router.post("/{production_order_id}/cancel", response_model=ProductionOrderResponse)
async def cancel_production_order(production_order_id: str):
    """
    Cancel a pending or in-progress production order.

    Raises:
        404: Production order not found
        422: Already completed or cancelled
    """
    try:
        return get_production_order_service().cancel(production_order_id)
    except Exception as e:
        return handle_error(e)
