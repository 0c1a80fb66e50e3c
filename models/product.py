"""
Catalog schemas: products, machines, recipes.
"""

from pydantic import Field, field_validator, model_validator
from typing import Optional
from enum import Enum
from datetime import datetime
from decimal import Decimal

from models.base import BaseSchema


class Category(str, Enum):
    """Product categories."""
    PAVER = "PAVER"
    BLOCK = "BLOCK"
    CURB = "CURB"
    OTHER = "OTHER"


# ===================
# PRODUCT SCHEMAS
# ===================

class ProductCreate(BaseSchema):
    """
    Create a new product.

    Required: name
    Optional: category (defaults to PAVER)
    """

    name: str = Field(
        ...,
        min_length=1,
        max_length=150,
        description="Product name (unique)",
        examples=["PAVER 16 FACES 6CM", "BLOCK 14X19X39"]
    )
    category: Category = Field(
        default=Category.PAVER,
        description="Product category"
    )

    @field_validator("name")
    @classmethod
    def name_uppercase(cls, v: str) -> str:
        """Names are stored uppercase and trimmed."""
        return v.upper().strip()


class ProductResponse(BaseSchema):
    """Product response with recipe availability flag."""

    id: str = Field(..., description="Product UUID")
    name: str = Field(..., description="Product name")
    category: Category = Field(..., description="Product category")
    active: bool = Field(default=True, description="Whether product is active")
    has_recipe: bool = Field(default=False, description="Whether a recipe is configured")
    created_at: datetime = Field(..., description="Created timestamp")


class MachineCreate(BaseSchema):
    """Create a new machine."""

    name: str = Field(..., min_length=1, max_length=100, description="Machine name")


class MachineResponse(BaseSchema):
    id: str
    name: str
    active: bool = True


# ===================
# RECIPE SCHEMAS
# ===================

class IngredientLine(BaseSchema):
    """One ingredient line of a recipe, quantities per batch."""

    ingredient_name: str = Field(..., min_length=1, max_length=100, description="Ingredient name")
    unit: str = Field(default="kg", max_length=20, description="Unit of measure")
    unit_price: Decimal = Field(..., ge=0, description="Price per unit")
    quantity: Decimal = Field(..., gt=0, description="Quantity per batch")


class RecipeCreate(BaseSchema):
    """
    Create or replace a product's recipe.

    A pallet size needs either pieces_per_pallet, or m2_per_pallet together
    with pieces_per_m2.
    """

    pieces_per_cycle: int = Field(..., gt=0, description="Pieces produced per machine cycle")
    cycles_per_batch: int = Field(default=1, gt=0, description="Cycles per concrete batch")
    pieces_per_m2: Optional[Decimal] = Field(None, gt=0, description="Pieces per square meter")
    pieces_per_pallet: Optional[int] = Field(None, gt=0, description="Pieces on one complete pallet")
    m2_per_pallet: Optional[Decimal] = Field(None, gt=0, description="Square meters on one pallet")
    avg_piece_weight_kg: Optional[Decimal] = Field(None, gt=0, description="Average piece weight")
    density: Optional[Decimal] = Field(None, gt=0, description="Concrete density")
    pallet_cost: Decimal = Field(default=Decimal("0"), ge=0, description="Pallet cost per batch")
    strapping_cost: Decimal = Field(default=Decimal("0"), ge=0, description="Strapping cost per batch")
    plastic_cost: Decimal = Field(default=Decimal("0"), ge=0, description="Plastic wrap cost per batch")
    ingredients: list[IngredientLine] = Field(default_factory=list, description="Ingredient lines")

    @model_validator(mode="after")
    def m2_pallet_needs_density(self):
        """m2_per_pallet is only usable with pieces_per_m2."""
        if self.m2_per_pallet is not None and self.pieces_per_m2 is None and self.pieces_per_pallet is None:
            raise ValueError("m2_per_pallet requires pieces_per_m2")
        return self


class RecipeResponse(BaseSchema):
    id: str
    product_id: str
    pieces_per_cycle: int
    cycles_per_batch: int
    pieces_per_m2: Optional[Decimal] = None
    pieces_per_pallet: Optional[int] = None
    m2_per_pallet: Optional[Decimal] = None
    avg_piece_weight_kg: Optional[Decimal] = None
    density: Optional[Decimal] = None
    pallet_cost: Decimal = Decimal("0")
    strapping_cost: Decimal = Decimal("0")
    plastic_cost: Decimal = Decimal("0")
    resolved_pieces_per_pallet: Optional[int] = Field(
        None, description="Pallet size used by palletization"
    )
    ingredients: list[IngredientLine] = Field(default_factory=list)


class CostBreakdown(BaseSchema):
    """Recipe cost per batch, per piece and per m²."""

    product_id: str
    batch_cost: Decimal = Field(..., description="Ingredient cost of one batch")
    extras_cost: Decimal = Field(..., description="Pallet, strapping and plastic")
    pieces_per_batch: int
    cost_per_piece: Decimal
    cost_per_m2: Optional[Decimal] = None
