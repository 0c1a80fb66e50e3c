"""
Demand allocation schemas: stock checks, production order generation,
delivery availability and delivery requests.
"""

from pydantic import Field, field_validator
from typing import Optional
from datetime import date
from decimal import Decimal

from models.base import BaseSchema
from models.order import QuantityUnit


# ===================
# STOCK CHECK
# ===================

class ReservationDetail(BaseSchema):
    """One other order's active claim on a product."""

    production_order_id: str
    production_order_code: str
    order_id: str
    order_code: str
    reserved_pieces: int


class StockCheckItem(BaseSchema):
    """
    Stock position for one order line.

    available_for_this_order = max(0, available_stock - reserved_by_others)
    suggested_to_produce = max(0, quantity_pieces - available_for_this_order)
    """

    order_item_id: str
    product_id: str
    product_name: str
    quantity: Decimal = Field(..., description="Quantity as ordered, in its own unit")
    unit: QuantityUnit
    quantity_pieces: int
    available_stock: int
    reserved_by_others: int
    reserved_details: list[ReservationDetail] = Field(default_factory=list)
    available_for_this_order: int
    suggested_to_produce: int
    has_production_order: bool = False


class StockCheckResponse(BaseSchema):
    order_id: str
    order_code: str
    items: list[StockCheckItem] = Field(default_factory=list)


# ===================
# PRODUCTION ORDER GENERATION
# ===================

class GenerateItem(BaseSchema):
    """Quantity to produce for one order line."""

    order_item_id: str = Field(..., description="Order item UUID")
    to_produce_pieces: int = Field(..., ge=0, description="Pieces to produce")
    notes: Optional[str] = Field(None, max_length=500)


class GenerateProductionOrdersRequest(BaseSchema):
    items: list[GenerateItem] = Field(..., min_length=1)

    @field_validator("items")
    @classmethod
    def unique_items(cls, v: list[GenerateItem]) -> list[GenerateItem]:
        """Each order line at most once."""
        ids = [item.order_item_id for item in v]
        if len(ids) != len(set(ids)):
            raise ValueError("Each order item may appear only once")
        return v


# ===================
# DELIVERY
# ===================

class DeliveryAvailabilityItem(BaseSchema):
    """
    Deliverable quantity for one order line.

    deliverable = min(remaining, max(0, available_stock))
    """

    order_item_id: str
    product_id: str
    product_name: str
    quantity_pieces: int
    already_delivered: int
    remaining: int
    available_stock: int
    deliverable: int


class DeliveryAvailabilityResponse(BaseSchema):
    order_id: str
    order_code: str
    items: list[DeliveryAvailabilityItem] = Field(default_factory=list)


class DeliveryItemRequest(BaseSchema):
    order_item_id: str = Field(..., description="Order item UUID")
    quantity_pieces: int = Field(..., gt=0, description="Pieces to load")


class DeliveryRequest(BaseSchema):
    """
    Load goods for an order.

    Required: items
    Optional: loading_date (today), delivery_address, vehicle, driver, notes
    """

    items: list[DeliveryItemRequest] = Field(..., min_length=1)
    loading_date: Optional[date] = Field(None, description="Defaults to today")
    delivery_address: Optional[str] = Field(None, max_length=500)
    vehicle: Optional[str] = Field(None, max_length=100, description="Vehicle reference")
    driver: Optional[str] = Field(None, max_length=100, description="Driver reference")
    notes: Optional[str] = Field(None, max_length=500)
