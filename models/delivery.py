"""
Delivery schemas and delivery status rules.
"""

from pydantic import Field
from typing import Optional
from enum import Enum
from datetime import date, datetime

from models.base import BaseSchema


class DeliveryStatus(str, Enum):
    """Delivery status values."""
    LOADING = "LOADING"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


DELIVERY_TRANSITIONS = {
    DeliveryStatus.LOADING: {DeliveryStatus.IN_TRANSIT, DeliveryStatus.CANCELLED},
    DeliveryStatus.IN_TRANSIT: {DeliveryStatus.DELIVERED, DeliveryStatus.CANCELLED},
}


def is_valid_delivery_transition(current: DeliveryStatus, new: DeliveryStatus) -> bool:
    """DELIVERED and CANCELLED are terminal."""
    return new in DELIVERY_TRANSITIONS.get(current, set())


class DeliveryStatusUpdate(BaseSchema):
    status: DeliveryStatus = Field(..., description="New status")


class DeliveryItemResponse(BaseSchema):
    id: str
    order_item_id: str
    product_id: str
    product_name: Optional[str] = None
    quantity_pieces: int


class DeliveryResponse(BaseSchema):
    id: str
    number: int
    code: str = Field(..., description="Display number, e.g. DEL-0001")
    order_id: str
    order_code: Optional[str] = None
    status: DeliveryStatus
    loading_date: date
    delivery_date: Optional[date] = None
    delivery_address: Optional[str] = None
    vehicle: Optional[str] = None
    driver: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    items: list[DeliveryItemResponse] = Field(default_factory=list)
