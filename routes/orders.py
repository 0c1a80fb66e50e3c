"""
Order API routes.

Besides CRUD, exposes the allocation steps of an order: stock check,
production order generation, delivery availability and loading.
"""

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse, Response
from typing import Optional
import structlog

from models.base import PaginatedResponse
from models.order import OrderCreate, OrderResponse, OrderStatus, OrderStatusUpdate
from models.allocation import (
    DeliveryAvailabilityResponse,
    DeliveryRequest,
    GenerateProductionOrdersRequest,
    StockCheckResponse,
)
from models.delivery import DeliveryResponse
from models.production_order import ProductionOrderResponse
from services.order_service import get_order_service
from services.allocation_service import get_allocation_service
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
# ORDERS
# ===================

@router.get("", response_model=PaginatedResponse)
async def list_orders(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page"),
    status: Optional[OrderStatus] = Query(None, description="Filter by status")
):
    """List orders newest first."""
    try:
        orders, total = get_order_service().get_all(page=page, page_size=page_size, status=status)
        return PaginatedResponse.create(orders, total, page, page_size)
    except Exception as e:
        return handle_error(e)


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: str):
    """
    Get a single order with its items.

    Raises:
        404: Order not found
    """
    try:
        return get_order_service().get_by_id(order_id)
    except Exception as e:
        return handle_error(e)


@router.post("", response_model=OrderResponse, status_code=201)
async def create_order(data: OrderCreate):
    """
    Create a confirmed order.

    Raises:
        404: Product not found
        422: Validation error
    """
    try:
        return get_order_service().create(data)
    except Exception as e:
        return handle_error(e)


@router.put("/{order_id}", response_model=OrderResponse)
async def update_order(order_id: str, data: OrderCreate):
    """
    Replace a confirmed order's header and items.

    Raises:
        404: Order not found
        409: Order not editable
    """
    try:
        return get_order_service().update(order_id, data)
    except Exception as e:
        return handle_error(e)


@router.patch("/{order_id}/status", response_model=OrderResponse)
async def update_order_status(order_id: str, data: OrderStatusUpdate):
    """
    Change an order's status by hand (cancellation).

    Raises:
        404: Order not found
        422: Transition not allowed
    """
    try:
        return get_order_service().update_status(order_id, data)
    except Exception as e:
        return handle_error(e)


@router.delete("/{order_id}", status_code=204, response_class=Response)
async def delete_order(order_id: str):
    """
    Delete a confirmed order without production orders.

    Raises:
        404: Order not found
        409: Order not deletable
    """
    try:
        get_order_service().delete(order_id)
        return Response(status_code=204)
    except Exception as e:
        return handle_error(e)


# ===================
# ALLOCATION
# ===================

@router.get("/{order_id}/stock-check", response_model=StockCheckResponse)
async def check_stock(order_id: str):
    """
    Stock available to this order per line and suggested production.

    Raises:
        404: Order not found
        422: M2 line without pieces per m²
    """
    try:
        return get_allocation_service().check_stock(order_id)
    except Exception as e:
        return handle_error(e)


@router.post(
    "/{order_id}/production-orders",
    response_model=list[ProductionOrderResponse],
    status_code=201
)
async def generate_production_orders(order_id: str, data: GenerateProductionOrdersRequest):
    """
    Create production orders for the given order lines.

    Raises:
        404: Order not found
        409: A line already has a production order
        422: Order not confirmed or quantity out of range
    """
    try:
        return get_allocation_service().generate_production_orders(order_id, data.items)
    except Exception as e:
        return handle_error(e)


@router.delete("/{order_id}/production-orders")
async def cancel_production_orders(order_id: str):
    """
    Cancel every active production order of an order.

    Raises:
        404: Order not found
    """
    try:
        cancelled = get_production_order_service().cancel_all_for_order(order_id)
        return {"order_id": order_id, "cancelled": cancelled}
    except Exception as e:
        return handle_error(e)


@router.get("/{order_id}/delivery-availability", response_model=DeliveryAvailabilityResponse)
async def check_delivery_availability(order_id: str):
    """What can be loaded for each line right now."""
    try:
        return get_allocation_service().check_delivery_availability(order_id)
    except Exception as e:
        return handle_error(e)


@router.post("/{order_id}/deliveries", response_model=DeliveryResponse, status_code=201)
async def record_delivery(order_id: str, data: DeliveryRequest):
    """
    Load goods for an order and take them out of stock.

    Raises:
        404: Order not found
        422: Order not deliverable, above remaining or above stock
    """
    try:
        return get_allocation_service().record_delivery(order_id, data)
    except Exception as e:
        return handle_error(e)
