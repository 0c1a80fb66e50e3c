"""
Custom exception classes for the application.

Every error carries a machine-readable code, an HTTP status and a details
dict so routes can return it unchanged.
"""

from typing import Optional, Any
from datetime import datetime, timezone


class AppError(Exception):
    """
    Base exception for all application errors.

    All custom exceptions inherit from this.

    Attributes:
        code: Error code (e.g., "PRODUCT_NOT_FOUND")
        message: Human-readable message
        status_code: HTTP status code
        details: Additional context
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to API response format."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
                "timestamp": self.timestamp
            }
        }


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(
        self,
        resource: str,
        identifier: str,
        code: Optional[str] = None
    ):
        super().__init__(
            code=code or f"{resource.upper().replace(' ', '_')}_NOT_FOUND",
            message=f"{resource} not found",
            status_code=404,
            details={"id": identifier}
        )


class ValidationError(AppError):
    """Validation failed (422)."""

    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=422,
            details=details
        )


class ConflictError(AppError):
    """Conflict with existing resource (409)."""

    def __init__(
        self,
        message: str,
        code: str = "CONFLICT",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details
        )


class DuplicateError(ConflictError):
    """Duplicate resource (409)."""

    def __init__(
        self,
        resource: str,
        field: str,
        value: str
    ):
        super().__init__(
            code=f"{resource.upper().replace(' ', '_')}_{field.upper()}_EXISTS",
            message=f"{resource} with this {field} already exists",
            details={field: value}
        )


class IntegrityError(AppError):
    """Operation would break ledger history (409)."""

    def __init__(
        self,
        message: str,
        code: str = "INTEGRITY_ERROR",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details
        )


class DatabaseError(AppError):
    """Database operation failed (500)."""

    def __init__(
        self,
        operation: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code="DATABASE_ERROR",
            message=f"Database {operation} failed: {message}",
            status_code=500,
            details={"operation": operation, **(details or {})}
        )


# ===================
# CATALOG ERRORS
# ===================

class ProductNotFoundError(NotFoundError):
    """Product not found."""

    def __init__(self, product_id: str):
        super().__init__(
            resource="Product",
            identifier=product_id,
            code="PRODUCT_NOT_FOUND"
        )


class ProductNameExistsError(DuplicateError):
    """Product name already exists."""

    def __init__(self, name: str):
        super().__init__(
            resource="Product",
            field="name",
            value=name
        )


class MachineNotFoundError(NotFoundError):
    """Machine not found."""

    def __init__(self, machine_id: str):
        super().__init__(
            resource="Machine",
            identifier=machine_id,
            code="MACHINE_NOT_FOUND"
        )


class RecipeMissingError(ValidationError):
    """Product has no recipe able to convert pieces to pallets."""

    def __init__(self, product_id: str, product_name: Optional[str] = None):
        super().__init__(
            code="RECIPE_MISSING",
            message=f"Product {product_name or product_id} has no recipe with a pallet size",
            details={"product_id": product_id}
        )


class UnitConversionError(ValidationError):
    """Quantity cannot be converted to pieces."""

    def __init__(self, product_id: str, unit: str):
        super().__init__(
            code="UNIT_CONVERSION",
            message=f"Cannot convert {unit} to pieces: recipe has no pieces_per_m2",
            details={"product_id": product_id, "unit": unit}
        )


# ===================
# PRODUCTION ERRORS
# ===================

class ProductionDayNotFoundError(NotFoundError):
    """Production day not found."""

    def __init__(self, production_day_id: str):
        super().__init__(
            resource="Production day",
            identifier=production_day_id,
            code="PRODUCTION_DAY_NOT_FOUND"
        )


class ProductionDayExistsError(ConflictError):
    """Machine already has a production day on that date."""

    def __init__(self, machine_id: str, production_date: str):
        super().__init__(
            code="PRODUCTION_DAY_EXISTS",
            message="Production for this machine and date already exists",
            details={"machine_id": machine_id, "date": production_date}
        )


class ProductionLockedError(IntegrityError):
    """Production already reconciled into stock."""

    def __init__(self, product_id: str, production_date: str):
        super().__init__(
            code="PRODUCTION_ALREADY_PALLETIZED",
            message="Production for this product and date is already palletized",
            details={"product_id": product_id, "date": production_date}
        )


# ===================
# PALLETIZATION ERRORS
# ===================

class PalletizationNotFoundError(NotFoundError):
    """Palletization not found."""

    def __init__(self, palletization_id: str):
        super().__init__(
            resource="Palletization",
            identifier=palletization_id,
            code="PALLETIZATION_NOT_FOUND"
        )


class AlreadyPalletizedError(ConflictError):
    """(product, production date) already reconciled."""

    def __init__(self, product_id: str, production_date: str, reason: str = "palletized"):
        super().__init__(
            code="ALREADY_PALLETIZED",
            message=f"Production for this product and date was already {reason}",
            details={"product_id": product_id, "date": production_date, "reason": reason}
        )


class NegativeLossError(ValidationError):
    """Counted pieces exceed what production plus carry-over could provide."""

    def __init__(self, loss_pieces: int, details: dict):
        super().__init__(
            code="NEGATIVE_LOSS",
            message=f"Counted pieces exceed available pieces by {-loss_pieces}",
            details={"loss_pieces": loss_pieces, **details}
        )


class PalletizationNotLatestError(IntegrityError):
    """Palletization is not the head of the product's loose-piece chain."""

    def __init__(self, palletization_id: str, reason: str):
        super().__init__(
            code="PALLETIZATION_NOT_LATEST",
            message=f"Palletization cannot be deleted: {reason}",
            details={"palletization_id": palletization_id}
        )


# ===================
# INVENTORY ERRORS
# ===================

class MovementNotFoundError(NotFoundError):
    """Inventory movement not found."""

    def __init__(self, movement_id: str):
        super().__init__(
            resource="Inventory movement",
            identifier=movement_id,
            code="MOVEMENT_NOT_FOUND"
        )


class InsufficientStockError(ValidationError):
    """Requested quantity exceeds what is available."""

    def __init__(self, product_id: str, requested: int, available: int, code: str = "INSUFFICIENT_STOCK"):
        super().__init__(
            code=code,
            message=f"Requested {requested} pieces but only {available} available",
            details={"product_id": product_id, "requested": requested, "available": available}
        )


class AutomaticMovementError(IntegrityError):
    """Automatic movements are owned by their source operation."""

    def __init__(self, movement_id: str, source: str):
        super().__init__(
            code="AUTOMATIC_MOVEMENT",
            message=f"Movements created by {source} cannot be deleted directly",
            details={"movement_id": movement_id, "source": source}
        )


# ===================
# ORDER ERRORS
# ===================

class OrderNotFoundError(NotFoundError):
    """Order not found."""

    def __init__(self, order_id: str):
        super().__init__(
            resource="Order",
            identifier=order_id,
            code="ORDER_NOT_FOUND"
        )


class InvalidStatusTransitionError(ValidationError):
    """Invalid status transition."""

    def __init__(self, current_status: str, new_status: str, resource: str = "Order"):
        super().__init__(
            code="INVALID_STATUS_TRANSITION",
            message=f"Cannot transition {resource.lower()} from {current_status} to {new_status}",
            details={
                "resource": resource,
                "current_status": current_status,
                "new_status": new_status,
            }
        )


# ===================
# PRODUCTION ORDER ERRORS
# ===================

class ProductionOrderNotFoundError(NotFoundError):
    """Production order not found."""

    def __init__(self, production_order_id: str):
        super().__init__(
            resource="Production order",
            identifier=production_order_id,
            code="PRODUCTION_ORDER_NOT_FOUND"
        )


class ProductionOrderExistsError(ConflictError):
    """Order item already has a production order."""

    def __init__(self, order_item_id: str, number: str):
        super().__init__(
            code="PRODUCTION_ORDER_EXISTS",
            message=f"Order item already has production order {number}",
            details={"order_item_id": order_item_id, "number": number}
        )


# ===================
# DELIVERY ERRORS
# ===================

class DeliveryNotFoundError(NotFoundError):
    """Delivery not found."""

    def __init__(self, delivery_id: str):
        super().__init__(
            resource="Delivery",
            identifier=delivery_id,
            code="DELIVERY_NOT_FOUND"
        )
