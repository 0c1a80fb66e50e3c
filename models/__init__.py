"""
Pydantic models for validation and serialization.
"""

from models.base import (
    BaseSchema,
    PaginatedResponse
)
from models.product import (
    Category,
    ProductCreate,
    ProductResponse,
    MachineCreate,
    MachineResponse,
    IngredientLine,
    RecipeCreate,
    RecipeResponse,
    CostBreakdown
)
from models.production import (
    ProductionItemInput,
    ProductionDayCreate,
    ProductionDayUpdate,
    ProductionItemResponse,
    ProductionDayResponse
)
from models.palletization import (
    PalletizationCreate,
    PalletizationResponse,
    PendingPalletization,
    MissingRecipeProduction,
    PendingPalletizationResponse,
    LoosePalletResponse,
    LooseBalanceResponse
)
from models.inventory import (
    MovementType,
    MovementSource,
    ManualOutCreate,
    MovementResponse,
    ProductStock,
    ProductStockResponse,
    LedgerIntegrityReport
)
from models.order import (
    OrderStatus,
    QuantityUnit,
    OrderItemCreate,
    OrderItemResponse,
    OrderCreate,
    OrderStatusUpdate,
    OrderResponse,
    is_valid_status_transition
)
from models.allocation import (
    StockCheckItem,
    StockCheckResponse,
    GenerateItem,
    GenerateProductionOrdersRequest,
    DeliveryAvailabilityItem,
    DeliveryAvailabilityResponse,
    DeliveryItemRequest,
    DeliveryRequest
)
from models.production_order import (
    ProductionOrderStatus,
    ProductionOrderResponse,
    ProductionOrderKpis,
    RefreshResult
)
from models.delivery import (
    DeliveryStatus,
    DeliveryStatusUpdate,
    DeliveryResponse,
    is_valid_delivery_transition
)

__all__ = [
    # Base
    "BaseSchema",
    "PaginatedResponse",

    # Catalog
    "Category",
    "ProductCreate",
    "ProductResponse",
    "MachineCreate",
    "MachineResponse",
    "IngredientLine",
    "RecipeCreate",
    "RecipeResponse",
    "CostBreakdown",

    # Production
    "ProductionItemInput",
    "ProductionDayCreate",
    "ProductionDayUpdate",
    "ProductionItemResponse",
    "ProductionDayResponse",

    # Palletization
    "PalletizationCreate",
    "PalletizationResponse",
    "PendingPalletization",
    "MissingRecipeProduction",
    "PendingPalletizationResponse",
    "LoosePalletResponse",
    "LooseBalanceResponse",

    # Inventory
    "MovementType",
    "MovementSource",
    "ManualOutCreate",
    "MovementResponse",
    "ProductStock",
    "ProductStockResponse",
    "LedgerIntegrityReport",

    # Orders
    "OrderStatus",
    "QuantityUnit",
    "OrderItemCreate",
    "OrderItemResponse",
    "OrderCreate",
    "OrderStatusUpdate",
    "OrderResponse",
    "is_valid_status_transition",

    # Allocation
    "StockCheckItem",
    "StockCheckResponse",
    "GenerateItem",
    "GenerateProductionOrdersRequest",
    "DeliveryAvailabilityItem",
    "DeliveryAvailabilityResponse",
    "DeliveryItemRequest",
    "DeliveryRequest",

    # Production orders
    "ProductionOrderStatus",
    "ProductionOrderResponse",
    "ProductionOrderKpis",
    "RefreshResult",

    # Deliveries
    "DeliveryStatus",
    "DeliveryStatusUpdate",
    "DeliveryResponse",
    "is_valid_delivery_transition",
]
