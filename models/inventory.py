"""
Stock ledger schemas.
"""

from pydantic import Field
from typing import Optional
from enum import Enum
from datetime import date, datetime
from decimal import Decimal

from models.base import BaseSchema


class MovementType(str, Enum):
    """Direction of a ledger entry."""
    IN = "IN"
    OUT = "OUT"


class MovementSource(str, Enum):
    """Operation that wrote a ledger entry."""
    PALLETIZATION = "PALLETIZATION"
    LOOSE_PALLET = "LOOSE_PALLET"
    LEGACY_PRODUCTION = "LEGACY_PRODUCTION"
    DELIVERY = "DELIVERY"
    DELIVERY_REVERSAL = "DELIVERY_REVERSAL"
    MANUAL = "MANUAL"


# Only these may be removed by hand; the rest belong to their source operation
DELETABLE_SOURCES = {MovementSource.MANUAL}


class ManualOutCreate(BaseSchema):
    """
    Manual stock withdrawal (shrinkage, adjustment, ad-hoc sale).

    Required: product_id, movement_date, quantity_pieces
    """

    product_id: str = Field(..., description="Product UUID")
    movement_date: date = Field(..., description="Date of the withdrawal")
    quantity_pieces: int = Field(..., gt=0, description="Pieces removed")
    notes: Optional[str] = Field(None, max_length=500)


class MovementResponse(BaseSchema):
    id: str
    product_id: str
    product_name: Optional[str] = None
    movement_date: date
    type: MovementType
    source: MovementSource
    quantity_pieces: int
    quantity_pallets: Optional[Decimal] = None
    area_m2: Optional[Decimal] = None
    palletization_id: Optional[str] = None
    production_day_id: Optional[str] = None
    delivery_id: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime


class ProductStock(BaseSchema):
    """
    Current stock position of one product.

    Pallets and m² are derived from pieces and rounded for display.
    """

    product_id: str
    product_name: str
    available_pieces: int = Field(..., description="Σ IN − Σ OUT")
    available_pallets: Optional[Decimal] = None
    available_m2: Optional[Decimal] = None
    curing_pieces: int = Field(default=0, description="Produced but not yet palletized")
    loose_pieces: int = Field(default=0, description="Carried-forward loose pieces")
    total_in: int = 0
    total_out: int = 0
    last_movement_date: Optional[date] = None


class StockTotals(BaseSchema):
    available_pieces: int = 0
    curing_pieces: int = 0
    loose_pieces: int = 0
    products_with_stock: int = 0


class ProductStockResponse(BaseSchema):
    data: list[ProductStock] = Field(default_factory=list)
    totals: StockTotals = Field(default_factory=StockTotals)


class LedgerIntegrityReport(BaseSchema):
    """Comparison of the aggregate balance with a movement-by-movement replay."""

    product_id: str
    aggregate_balance: int
    replayed_balance: int
    movement_count: int
    matches: bool
