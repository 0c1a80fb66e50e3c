"""
Production order schemas.
"""

from pydantic import Field
from typing import Optional
from enum import Enum
from datetime import datetime

from models.base import BaseSchema


class ProductionOrderStatus(str, Enum):
    """Production order status values."""
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


# Statuses whose to_produce quantity is still a claim on stock
ACTIVE_STATUSES = {ProductionOrderStatus.PENDING, ProductionOrderStatus.IN_PROGRESS}

# Statuses that let the parent order become READY
SETTLED_STATUSES = {ProductionOrderStatus.COMPLETED, ProductionOrderStatus.CANCELLED}


class ProductionOrderResponse(BaseSchema):
    id: str
    number: int
    code: str = Field(..., description="Display number, e.g. PO-0001")
    order_id: str
    order_code: Optional[str] = None
    customer_name: Optional[str] = None
    order_item_id: str
    product_id: str
    product_name: Optional[str] = None
    quantity_pieces: int
    stock_at_creation: int
    to_produce_pieces: int
    status: ProductionOrderStatus
    notes: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


class ProductionOrderKpis(BaseSchema):
    pending: int = 0
    in_progress: int = 0
    completed: int = 0
    cancelled: int = 0
    pieces_to_produce: int = Field(0, description="Σ to_produce of active orders")


class RefreshResult(BaseSchema):
    """What a status refresh changed."""

    production_orders_updated: int = 0
    orders_ready: list[str] = Field(default_factory=list, description="Order ids promoted to READY")
