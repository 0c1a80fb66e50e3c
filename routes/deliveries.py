"""
Delivery API routes.

Deliveries are created from an order (POST /api/orders/{id}/deliveries);
these routes read them and move them along.
"""

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
from typing import Optional
import structlog

from models.base import PaginatedResponse
from models.delivery import DeliveryResponse, DeliveryStatus, DeliveryStatusUpdate
from services.delivery_service import get_delivery_service
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
async def list_deliveries(
    order_id: Optional[str] = Query(None, description="Filter by order"),
    status: Optional[DeliveryStatus] = Query(None, description="Filter by status"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page")
):
    """List deliveries newest first."""
    try:
        deliveries, total = get_delivery_service().get_all(
            order_id=order_id,
            status=status,
            page=page,
            page_size=page_size,
        )
        return PaginatedResponse.create(deliveries, total, page, page_size)
    except Exception as e:
        return handle_error(e)


@router.get("/{delivery_id}", response_model=DeliveryResponse)
async def get_delivery(delivery_id: str):
    """
    Get a single delivery with its items.

    Raises:
        404: Delivery not found
    """
    try:
        return get_delivery_service().get_by_id(delivery_id)
    except Exception as e:
        return handle_error(e)


@router.patch("/{delivery_id}/status", response_model=DeliveryResponse)
async def update_delivery_status(delivery_id: str, data: DeliveryStatusUpdate):
    """
    Move a delivery along, or cancel it.

    Cancelling returns the loaded pieces to stock.

    Raises:
        404: Delivery not found
        422: Transition not allowed
    """
    try:
        return get_delivery_service().update_status(delivery_id, data)
    except Exception as e:
        return handle_error(e)
