"""
API route modules.

Each module defines routes for one domain area.
"""

from routes.products import router as products_router
from routes.production import router as production_router
from routes.palletization import router as palletization_router
from routes.stock import router as stock_router
from routes.orders import router as orders_router
from routes.production_orders import router as production_orders_router
from routes.deliveries import router as deliveries_router

__all__ = [
    "products_router",
    "production_router",
    "palletization_router",
    "stock_router",
    "orders_router",
    "production_orders_router",
    "deliveries_router",
]
