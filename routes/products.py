"""
Catalog API routes: products, machines and recipes.
"""

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
from typing import Optional
import structlog

from models.product import (
    Category,
    CostBreakdown,
    MachineCreate,
    MachineResponse,
    ProductCreate,
    ProductResponse,
    RecipeCreate,
    RecipeResponse,
)
from services.product_service import get_product_service
from services.recipe_service import get_recipe_service
from exceptions import AppError

logger = structlog.get_logger(__name__)

router = APIRouter()


# ===================
# EXCEPTION HANDLER
# ===================

def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
    # Unexpected error
    logger.error("unexpected_error", error=str(e), type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        }
    )


# ===================
# MACHINES
# ===================

@router.get("/machines", response_model=list[MachineResponse])
async def list_machines():
    """List all machines."""
    try:
        return get_product_service().get_machines()
    except Exception as e:
        return handle_error(e)


@router.post("/machines", response_model=MachineResponse, status_code=201)
async def create_machine(data: MachineCreate):
    """
    Register a machine.

    Raises:
        409: Machine name already exists
    """
    try:
        return get_product_service().create_machine(data)
    except Exception as e:
        return handle_error(e)


# ===================
# PRODUCTS
# ===================

@router.get("", response_model=list[ProductResponse])
async def list_products(
    category: Optional[Category] = Query(None, description="Filter by category"),
    include_inactive: bool = Query(False, description="Include inactive products")
):
    """List products, optionally filtered by category."""
    try:
        return get_product_service().get_all(category=category, active_only=not include_inactive)
    except Exception as e:
        return handle_error(e)


@router.get("/{product_id}", response_model=ProductResponse)
async def get_product(product_id: str):
    """
    Get a single product by ID.

    Raises:
        404: Product not found
    """
    try:
        return get_product_service().get_by_id(product_id)
    except Exception as e:
        return handle_error(e)


@router.post("", response_model=ProductResponse, status_code=201)
async def create_product(data: ProductCreate):
    """
    Create a new product.

    Raises:
        409: Name already exists
        422: Validation error
    """
    try:
        return get_product_service().create(data)
    except Exception as e:
        return handle_error(e)


# ===================
# RECIPES
# ===================

@router.get("/{product_id}/recipe", response_model=RecipeResponse)
async def get_recipe(product_id: str):
    """
    Get a product's recipe.

    Raises:
        404: Product or recipe not found
    """
    try:
        return get_recipe_service().get_recipe(product_id)
    except Exception as e:
        return handle_error(e)


@router.put("/{product_id}/recipe", response_model=RecipeResponse)
async def save_recipe(product_id: str, data: RecipeCreate):
    """
    Create or replace a product's recipe.

    Ingredient lines are replaced as a whole.
    """
    try:
        return get_recipe_service().save_recipe(product_id, data)
    except Exception as e:
        return handle_error(e)


@router.get("/{product_id}/cost", response_model=CostBreakdown)
async def get_cost_breakdown(product_id: str):
    """Cost per batch, per piece and per m²."""
    try:
        return get_recipe_service().get_cost_breakdown(product_id)
    except Exception as e:
        return handle_error(e)
