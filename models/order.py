"""
Customer order schemas and order status rules.
"""

from pydantic import Field, field_validator
from typing import Optional
from enum import Enum
from datetime import date, datetime
from decimal import Decimal

from models.base import BaseSchema


class OrderStatus(str, Enum):
    """Customer order status values."""
    CONFIRMED = "CONFIRMED"
    IN_PRODUCTION = "IN_PRODUCTION"
    READY = "READY"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class QuantityUnit(str, Enum):
    """Unit an order item quantity is expressed in."""
    PIECES = "PIECES"
    M2 = "M2"


# Transitions a user may request directly. The others are driven by
# production orders (CONFIRMED → IN_PRODUCTION → READY) and deliveries
# (→ DELIVERED, DELIVERED → READY).
MANUAL_TRANSITIONS = {
    OrderStatus.CONFIRMED: {OrderStatus.CANCELLED},
    OrderStatus.IN_PRODUCTION: {OrderStatus.CANCELLED},
    OrderStatus.READY: {OrderStatus.CANCELLED},
}

# Orders in these statuses can ship goods
DELIVERABLE_STATUSES = {OrderStatus.IN_PRODUCTION, OrderStatus.READY}

# Orders whose production orders no longer hold stock
CLOSED_STATUSES = {OrderStatus.DELIVERED, OrderStatus.CANCELLED}


def is_valid_status_transition(current: OrderStatus, new: OrderStatus) -> bool:
    """
    Check if a manual status transition is valid.

    Rules:
    - Only cancellation can be requested by hand
    - DELIVERED and CANCELLED are terminal for manual changes
    """
    return new in MANUAL_TRANSITIONS.get(current, set())


def line_subtotal(quantity: Decimal, unit_price: Decimal, discount: Decimal) -> Decimal:
    """quantity × price less a percentage discount, rounded to cents."""
    gross = quantity * unit_price * (Decimal("1") - discount / Decimal("100"))
    return gross.quantize(Decimal("0.01"))


# ===================
# ORDER ITEM SCHEMAS
# ===================

class OrderItemCreate(BaseSchema):
    """Create an order line."""

    product_id: str = Field(..., description="Product UUID")
    quantity: Decimal = Field(..., gt=0, description="Quantity in the chosen unit")
    unit: QuantityUnit = Field(default=QuantityUnit.PIECES, description="PIECES or M2")
    unit_price: Decimal = Field(default=Decimal("0"), ge=0, description="Price per unit")
    discount: Decimal = Field(default=Decimal("0"), ge=0, le=100, description="Discount %")

    @field_validator("quantity")
    @classmethod
    def round_quantity(cls, v: Decimal) -> Decimal:
        """Round to 2 decimal places."""
        return round(v, 2)


class OrderItemResponse(BaseSchema):
    id: str
    product_id: str
    product_name: Optional[str] = None
    quantity: Decimal
    unit: QuantityUnit
    unit_price: Decimal
    discount: Decimal
    subtotal: Decimal


# ===================
# ORDER SCHEMAS
# ===================

class OrderCreate(BaseSchema):
    """
    Create a confirmed order.

    Required: customer_name, items
    Optional: order_date (today), delivery_date, delivery_address, notes
    """

    customer_name: str = Field(..., min_length=1, max_length=200, description="Customer display name")
    order_date: Optional[date] = Field(None, description="Defaults to today")
    delivery_date: Optional[date] = Field(None, description="Requested delivery date")
    delivery_address: Optional[str] = Field(None, max_length=500)
    notes: Optional[str] = Field(None, max_length=500)
    items: list[OrderItemCreate] = Field(..., min_length=1, description="Order lines")


class OrderStatusUpdate(BaseSchema):
    """Update only the status of an order."""

    status: OrderStatus = Field(..., description="New status")


class OrderResponse(BaseSchema):
    id: str
    number: int
    code: str = Field(..., description="Display number, e.g. ORD-0001")
    customer_name: str
    status: OrderStatus
    order_date: date
    delivery_date: Optional[date] = None
    delivery_address: Optional[str] = None
    notes: Optional[str] = None
    total_amount: Decimal
    created_at: datetime
    items: list[OrderItemResponse] = Field(default_factory=list)
