"""
Production ledger schemas: cycles per machine per day per product.
"""

from pydantic import Field, field_validator
from typing import Optional
from datetime import date

from models.base import BaseSchema


class ProductionItemInput(BaseSchema):
    """One product run on a machine during a day."""

    product_id: str = Field(..., description="Product UUID")
    cycles: int = Field(..., ge=0, description="Machine cycles completed")
    start_time: Optional[str] = Field(None, pattern=r"^\d{2}:\d{2}$", description="HH:MM")
    end_time: Optional[str] = Field(None, pattern=r"^\d{2}:\d{2}$", description="HH:MM")


class ProductionDayCreate(BaseSchema):
    """
    Record a machine's production for one date.

    Required: machine_id, production_date, items
    """

    machine_id: str = Field(..., description="Machine UUID")
    production_date: date = Field(..., description="Date the cycles were run")
    items: list[ProductionItemInput] = Field(..., min_length=1, description="Products run")
    notes: Optional[str] = Field(None, max_length=500)

    @field_validator("items")
    @classmethod
    def unique_products(cls, v: list[ProductionItemInput]) -> list[ProductionItemInput]:
        """A product appears at most once per day."""
        ids = [item.product_id for item in v]
        if len(ids) != len(set(ids)):
            raise ValueError("Each product may appear only once per production day")
        return v


class ProductionDayUpdate(BaseSchema):
    """Replace a production day's items."""

    items: list[ProductionItemInput] = Field(..., min_length=1)
    notes: Optional[str] = Field(None, max_length=500)

    @field_validator("items")
    @classmethod
    def unique_products(cls, v: list[ProductionItemInput]) -> list[ProductionItemInput]:
        ids = [item.product_id for item in v]
        if len(ids) != len(set(ids)):
            raise ValueError("Each product may appear only once per production day")
        return v


class ProductionItemResponse(BaseSchema):
    id: str
    product_id: str
    product_name: Optional[str] = None
    cycles: int
    pieces: Optional[int] = Field(None, description="Pieces snapshot at save time")
    start_time: Optional[str] = None
    end_time: Optional[str] = None


class ProductionDayResponse(BaseSchema):
    id: str
    machine_id: str
    machine_name: Optional[str] = None
    production_date: date
    notes: Optional[str] = None
    items: list[ProductionItemResponse] = Field(default_factory=list)
