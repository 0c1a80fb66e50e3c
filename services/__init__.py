"""
Business logic services.

Each service handles one domain area.
"""

from services.product_service import ProductService, get_product_service
from services.recipe_service import RecipeService, get_recipe_service
from services.production_service import ProductionService, get_production_service
from services.inventory_ledger_service import InventoryLedgerService, get_inventory_ledger_service
from services.palletization_service import PalletizationService, get_palletization_service
from services.order_service import OrderService, get_order_service
from services.allocation_service import AllocationService, get_allocation_service
from services.production_order_service import ProductionOrderService, get_production_order_service
from services.delivery_service import DeliveryService, get_delivery_service

__all__ = [
    "ProductService",
    "get_product_service",
    "RecipeService",
    "get_recipe_service",
    "ProductionService",
    "get_production_service",
    "InventoryLedgerService",
    "get_inventory_ledger_service",
    "PalletizationService",
    "get_palletization_service",
    "OrderService",
    "get_order_service",
    "AllocationService",
    "get_allocation_service",
    "ProductionOrderService",
    "get_production_order_service",
    "DeliveryService",
    "get_delivery_service",
]
