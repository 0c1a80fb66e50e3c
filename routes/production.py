"""
Production ledger API routes.

Cycles run per machine per day.
"""

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse, Response
from datetime import date
import structlog

from models.production import (
    ProductionDayCreate,
    ProductionDayResponse,
    ProductionDayUpdate,
)
from services.production_service import get_production_service
from exceptions import AppError, ProductionDayNotFoundError

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

@router.get("", response_model=list[ProductionDayResponse])
async def get_production_days(
    production_date: date = Query(..., alias="date", description="Production date")
):
    """All machines' production on a date."""
    try:
        return get_production_service().get_production_days(production_date)
    except Exception as e:
        return handle_error(e)


@router.get("/machines/{machine_id}", response_model=ProductionDayResponse)
async def get_production_day(
    machine_id: str,
    production_date: date = Query(..., alias="date", description="Production date")
):
    """
    One machine's production on a date.

    Raises:
        404: Nothing recorded for that machine and date
    """
    try:
        day = get_production_service().get_production_day(machine_id, production_date)
        if day is None:
            raise ProductionDayNotFoundError(f"{machine_id}@{production_date.isoformat()}")
        return day
    except Exception as e:
        return handle_error(e)


@router.post("", response_model=ProductionDayResponse, status_code=201)
async def create_production_day(data: ProductionDayCreate):
    """
    Record a machine's production for a date.

    Raises:
        404: Machine or product not found
        409: Day already recorded or already palletized
        422: Too many products
    """
    try:
        return get_production_service().create_production_day(data)
    except Exception as e:
        return handle_error(e)


@router.put("/{production_day_id}", response_model=ProductionDayResponse)
async def update_production_day(production_day_id: str, data: ProductionDayUpdate):
    """
    Replace the items of a production day.

    Raises:
        404: Production day not found
        409: Production already palletized
    """
    try:
        return get_production_service().update_production_day(production_day_id, data)
    except Exception as e:
        return handle_error(e)


@router.delete("/{production_day_id}", status_code=204, response_class=Response)
async def delete_production_day(production_day_id: str):
    """
    Delete a production day.

    Raises:
        404: Production day not found
        409: Production already palletized
    """
    try:
        get_production_service().delete_production_day(production_day_id)
        return Response(status_code=204)
    except Exception as e:
        return handle_error(e)
