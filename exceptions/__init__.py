"""
Custom exceptions module.
"""

from exceptions.errors import (
    # Base exceptions
    AppError,
    NotFoundError,
    ValidationError,
    ConflictError,
    DuplicateError,
    IntegrityError,
    DatabaseError,

    # Catalog
    ProductNotFoundError,
    ProductNameExistsError,
    MachineNotFoundError,
    RecipeMissingError,
    UnitConversionError,

    # Production
    ProductionDayNotFoundError,
    ProductionDayExistsError,
    ProductionLockedError,

    # Palletization
    PalletizationNotFoundError,
    AlreadyPalletizedError,
    NegativeLossError,
    PalletizationNotLatestError,

    # Inventory
    MovementNotFoundError,
    InsufficientStockError,
    AutomaticMovementError,

    # Orders
    OrderNotFoundError,
    InvalidStatusTransitionError,

    # Production orders
    ProductionOrderNotFoundError,
    ProductionOrderExistsError,

    # Deliveries
    DeliveryNotFoundError,
)

__all__ = [
    # Base
    "AppError",
    "NotFoundError",
    "ValidationError",
    "ConflictError",
    "DuplicateError",
    "IntegrityError",
    "DatabaseError",

    # Catalog
    "ProductNotFoundError",
    "ProductNameExistsError",
    "MachineNotFoundError",
    "RecipeMissingError",
    "UnitConversionError",

    # Production
    "ProductionDayNotFoundError",
    "ProductionDayExistsError",
    "ProductionLockedError",

    # Palletization
    "PalletizationNotFoundError",
    "AlreadyPalletizedError",
    "NegativeLossError",
    "PalletizationNotLatestError",

    # Inventory
    "MovementNotFoundError",
    "InsufficientStockError",
    "AutomaticMovementError",

    # Orders
    "OrderNotFoundError",
    "InvalidStatusTransitionError",

    # Production orders
    "ProductionOrderNotFoundError",
    "ProductionOrderExistsError",

    # Deliveries
    "DeliveryNotFoundError",
]
