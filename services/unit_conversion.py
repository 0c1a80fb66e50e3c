"""Unit conversion helpers for recipe-aware calculations.

Pieces are the unit of record everywhere. Pallets and m² are derived
from pieces through the product's recipe constants; none of these
helpers touch the database.
"""

import math
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

import structlog

from config import settings
from db.tables import ProductionItem, Recipe
from exceptions import UnitConversionError

logger = structlog.get_logger(__name__)

STORAGE_PLACES = Decimal("0.0001")


def round_half_up(value: Decimal) -> int:
    """Round to the nearest integer, halves away from zero."""
    return int(Decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def round_display(value: Optional[Decimal]) -> Optional[Decimal]:
    """Round a derived pallet or m² figure for display."""
    if value is None:
        return None
    places = Decimal(1).scaleb(-settings.display_decimals)
    return Decimal(value).quantize(places, rounding=ROUND_HALF_UP)


def resolve_pieces_per_pallet(recipe: Optional[Recipe]) -> Optional[int]:
    """
    Pieces on one complete pallet.

    Uses the explicit pieces_per_pallet when set, otherwise
    round-half-up(m2_per_pallet × pieces_per_m2). None when the recipe
    cannot size a pallet.
    """
    if recipe is None:
        return None
    if recipe.pieces_per_pallet:
        return recipe.pieces_per_pallet
    if recipe.m2_per_pallet and recipe.pieces_per_m2:
        size = round_half_up(Decimal(recipe.m2_per_pallet) * Decimal(recipe.pieces_per_m2))
        return size if size > 0 else None
    return None


def theoretical_pieces(item: ProductionItem, recipe: Optional[Recipe]) -> tuple[int, bool]:
    """
    Pieces a production item should have yielded.

    Returns:
        (pieces, approximated) where approximated is True when neither the
        saved snapshot nor a recipe was available and raw cycles were used.
    """
    if item.pieces is not None:
        return item.pieces, False
    if recipe is not None:
        return item.cycles * recipe.pieces_per_cycle, False

    logger.warning(
        "theoretical_pieces_approximated",
        product_id=item.product_id,
        production_item_id=item.id,
        cycles=item.cycles
    )
    return item.cycles, True


def pieces_to_pallets(pieces: int, recipe: Optional[Recipe]) -> Optional[Decimal]:
    size = resolve_pieces_per_pallet(recipe)
    if not size:
        return None
    return (Decimal(pieces) / Decimal(size)).quantize(STORAGE_PLACES, rounding=ROUND_HALF_UP)


def pieces_to_m2(pieces: int, recipe: Optional[Recipe]) -> Optional[Decimal]:
    if recipe is None or not recipe.pieces_per_m2:
        return None
    return (Decimal(pieces) / Decimal(recipe.pieces_per_m2)).quantize(
        STORAGE_PLACES, rounding=ROUND_HALF_UP
    )


def to_pieces(quantity: Decimal, unit: str, recipe: Optional[Recipe], product_id: str) -> int:
    """
    Convert an order quantity to whole pieces, rounding up.

    Raises:
        UnitConversionError: If unit is M2 and the recipe has no pieces_per_m2
    """
    quantity = Decimal(quantity)
    if unit == "M2":
        if recipe is None or not recipe.pieces_per_m2:
            raise UnitConversionError(product_id, unit)
        return math.ceil(quantity * Decimal(recipe.pieces_per_m2))
    return math.ceil(quantity)
