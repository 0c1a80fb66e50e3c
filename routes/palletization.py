"""
Palletization API routes.

Turns cured production into counted stock.
"""

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse, Response
from typing import Optional
from datetime import date
import structlog

from models.palletization import (
    LooseBalanceResponse,
    LoosePalletResponse,
    PalletizationCreate,
    PalletizationResponse,
    PendingPalletizationResponse,
)
from services.palletization_service import get_palletization_service
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

@router.get("/pending", response_model=PendingPalletizationResponse)
async def get_pending(
    as_of: Optional[date] = Query(None, description="Reference date, defaults to today")
):
    """
    Cured production waiting to be counted.

    Production without a usable recipe is listed separately.
    """
    try:
        return get_palletization_service().get_pending(as_of)
    except Exception as e:
        return handle_error(e)


@router.get("", response_model=list[PalletizationResponse])
async def get_history(
    product_id: Optional[str] = Query(None, description="Filter by product"),
    start_date: Optional[date] = Query(None, description="Production date from"),
    end_date: Optional[date] = Query(None, description="Production date to")
):
    """Palletization history, newest production date first."""
    try:
        return get_palletization_service().get_history(product_id, start_date, end_date)
    except Exception as e:
        return handle_error(e)


@router.post("", response_model=PalletizationResponse, status_code=201)
async def reconcile(data: PalletizationCreate):
    """
    Record a pallet count and put the counted pieces into stock.

    Raises:
        404: Product not found
        409: Already palletized
        422: Still curing, no production, missing recipe or negative loss
    """
    try:
        return get_palletization_service().reconcile(
            product_id=data.product_id,
            production_date=data.production_date,
            complete_pallets=data.complete_pallets,
            loose_pieces_after=data.loose_pieces_after,
            notes=data.notes,
        )
    except Exception as e:
        return handle_error(e)


@router.delete("/{palletization_id}", status_code=204, response_class=Response)
async def delete_palletization(palletization_id: str):
    """
    Undo the latest palletization of a product.

    Raises:
        404: Palletization not found
        409: Not the latest, loose balance moved on, or stock already used
    """
    try:
        get_palletization_service().delete_palletization(palletization_id)
        return Response(status_code=204)
    except Exception as e:
        return handle_error(e)


@router.get("/loose", response_model=list[LooseBalanceResponse])
async def get_loose_balances():
    """Products holding loose pieces."""
    try:
        return get_palletization_service().get_loose_balances()
    except Exception as e:
        return handle_error(e)


@router.post("/loose/{product_id}/pallet", response_model=LoosePalletResponse, status_code=201)
async def form_pallet_from_loose(product_id: str):
    """
    Close one pallet from accumulated loose pieces.

    Raises:
        422: Not enough loose pieces or missing recipe
    """
    try:
        return get_palletization_service().form_pallet_from_loose(product_id)
    except Exception as e:
        return handle_error(e)
