"""
Palletization schemas.

A palletization reconciles one product's production for one date into
counted pallets, carried-forward loose pieces and accounted loss.
"""

from pydantic import Field
from typing import Optional
from datetime import date, datetime

from models.base import BaseSchema


class PalletizationCreate(BaseSchema):
    """
    Counted result of palletizing one (product, production date).

    Required: product_id, production_date, complete_pallets, loose_pieces_after
    """

    product_id: str = Field(..., description="Product UUID")
    production_date: date = Field(..., description="Date the pieces were produced")
    complete_pallets: int = Field(..., ge=0, description="Full pallets counted")
    loose_pieces_after: int = Field(..., ge=0, description="Loose pieces left over")
    notes: Optional[str] = Field(None, max_length=500)


class PalletizationResponse(BaseSchema):
    """Stored palletization with its frozen constants."""

    id: str
    product_id: str
    product_name: Optional[str] = None
    production_date: date
    palletized_date: date
    sequence: int
    theoretical_pieces: int
    loose_pieces_before: int
    complete_pallets: int
    loose_pieces_after: int
    pieces_per_pallet: int
    real_pieces: int
    loss_pieces: int
    notes: Optional[str] = None
    created_at: datetime


class PendingPalletization(BaseSchema):
    """A cured (product, date) group waiting to be counted."""

    product_id: str
    product_name: str
    production_date: date
    theoretical_pieces: int
    total_cycles: int
    loose_pieces_before: int
    pieces_per_pallet: int
    approximated: bool = Field(
        default=False,
        description="True when some cycles had neither snapshot nor recipe"
    )


class MissingRecipeProduction(BaseSchema):
    """Cured production that cannot be palletized until a recipe exists."""

    product_id: str
    product_name: str
    production_date: date
    total_cycles: int


class PendingPalletizationResponse(BaseSchema):
    pending: list[PendingPalletization] = Field(default_factory=list)
    missing_recipe: list[MissingRecipeProduction] = Field(default_factory=list)


class LoosePalletResponse(BaseSchema):
    """Result of forming one pallet from accumulated loose pieces."""

    product_id: str
    movement_id: str
    pieces_per_pallet: int
    loose_pieces_before: int
    loose_pieces_after: int


class LooseBalanceResponse(BaseSchema):
    product_id: str
    product_name: Optional[str] = None
    pieces: int
    pieces_per_pallet: Optional[int] = None
    can_form_pallet: bool = False
