"""
Recipe service: per-product conversion constants and cost breakdown.

The recipe is what turns cycles into pieces and pieces into pallets
and m². Replacing a recipe never rewrites history: palletizations,
production items and movements keep the constants they were saved with.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from config import DatabaseSession, get_session_factory
from db.tables import Ingredient, Product, Recipe, RecipeItem
from models.product import CostBreakdown, IngredientLine, RecipeCreate, RecipeResponse
from exceptions import (
    DatabaseError,
    NotFoundError,
    ProductNotFoundError,
)
from services.unit_conversion import resolve_pieces_per_pallet

logger = structlog.get_logger(__name__)

MONEY = Decimal("0.0001")


def load_recipe(session: Session, product_id: str) -> Optional[Recipe]:
    """Recipe for a product inside an open session, or None."""
    return session.scalar(select(Recipe).where(Recipe.product_id == product_id))


def load_recipes(session: Session, product_ids) -> dict[str, Recipe]:
    ids = list(set(product_ids))
    if not ids:
        return {}
    rows = session.scalars(select(Recipe).where(Recipe.product_id.in_(ids))).all()
    return {row.product_id: row for row in rows}


def _to_response(recipe: Recipe) -> RecipeResponse:
    return RecipeResponse(
        id=recipe.id,
        product_id=recipe.product_id,
        pieces_per_cycle=recipe.pieces_per_cycle,
        cycles_per_batch=recipe.cycles_per_batch,
        pieces_per_m2=recipe.pieces_per_m2,
        pieces_per_pallet=recipe.pieces_per_pallet,
        m2_per_pallet=recipe.m2_per_pallet,
        avg_piece_weight_kg=recipe.avg_piece_weight_kg,
        density=recipe.density,
        pallet_cost=recipe.pallet_cost,
        strapping_cost=recipe.strapping_cost,
        plastic_cost=recipe.plastic_cost,
        resolved_pieces_per_pallet=resolve_pieces_per_pallet(recipe),
        ingredients=[
            IngredientLine(
                ingredient_name=item.ingredient.name,
                unit=item.ingredient.unit,
                unit_price=item.ingredient.unit_price,
                quantity=item.quantity,
            )
            for item in recipe.items
        ],
    )


class RecipeService:
    """
    Recipe business logic.

    Core methods:
    - save_recipe: Create or replace a product's recipe
    - get_recipe: Read a recipe with its ingredient lines
    - get_cost_breakdown: Batch, piece and m² cost
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self.session_factory = session_factory or get_session_factory()

    def get_recipe(self, product_id: str) -> RecipeResponse:
        """
        Raises:
            NotFoundError: If the product has no recipe
        """
        try:
            with DatabaseSession("get_recipe", self.session_factory) as session:
                recipe = session.scalar(
                    select(Recipe)
                    .where(Recipe.product_id == product_id)
                    .options(selectinload(Recipe.items).selectinload(RecipeItem.ingredient))
                )
                if recipe is None:
                    raise NotFoundError("Recipe", product_id, code="RECIPE_NOT_FOUND")
                return _to_response(recipe)

        except NotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error("get_recipe_failed", product_id=product_id, error=str(e))
            raise DatabaseError("select", str(e))

    def save_recipe(self, product_id: str, data: RecipeCreate) -> RecipeResponse:
        """
        Create or replace a product's recipe.

        Ingredient lines are replaced as a whole; ingredients are matched
        by name and their unit price updated.

        Raises:
            ProductNotFoundError: If product doesn't exist
        """
        logger.info("saving_recipe", product_id=product_id)

        try:
            with DatabaseSession("save_recipe", self.session_factory) as session:
                if session.get(Product, product_id) is None:
                    raise ProductNotFoundError(product_id)

                recipe = load_recipe(session, product_id)
                if recipe is None:
                    recipe = Recipe(product_id=product_id, pieces_per_cycle=data.pieces_per_cycle)
                    session.add(recipe)

                for field in (
                    "pieces_per_cycle", "cycles_per_batch", "pieces_per_m2",
                    "pieces_per_pallet", "m2_per_pallet", "avg_piece_weight_kg",
                    "density", "pallet_cost", "strapping_cost", "plastic_cost",
                ):
                    setattr(recipe, field, getattr(data, field))

                recipe.items.clear()
                session.flush()
                for line in data.ingredients:
                    ingredient = session.scalar(
                        select(Ingredient).where(Ingredient.name == line.ingredient_name)
                    )
                    if ingredient is None:
                        ingredient = Ingredient(name=line.ingredient_name)
                        session.add(ingredient)
                    ingredient.unit = line.unit
                    ingredient.unit_price = line.unit_price
                    recipe.items.append(RecipeItem(ingredient=ingredient, quantity=line.quantity))

                session.flush()
                response = _to_response(recipe)

            logger.info(
                "recipe_saved",
                product_id=product_id,
                pieces_per_pallet=response.resolved_pieces_per_pallet,
                ingredients=len(response.ingredients)
            )
            return response

        except ProductNotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error("save_recipe_failed", product_id=product_id, error=str(e))
            raise DatabaseError("upsert", str(e))

    def get_cost_breakdown(self, product_id: str) -> CostBreakdown:
        """
        Cost of a recipe.

        batch cost = Σ ingredient quantity × unit price
        cost per piece = (batch cost + pallet + strapping + plastic) / pieces per batch
        cost per m² = cost per piece × pieces_per_m2
        """
        recipe = self.get_recipe(product_id)

        batch_cost = sum(
            (line.quantity * line.unit_price for line in recipe.ingredients),
            Decimal("0")
        )
        extras_cost = recipe.pallet_cost + recipe.strapping_cost + recipe.plastic_cost
        pieces_per_batch = recipe.pieces_per_cycle * recipe.cycles_per_batch

        cost_per_piece = ((batch_cost + extras_cost) / pieces_per_batch).quantize(
            MONEY, rounding=ROUND_HALF_UP
        )
        cost_per_m2 = None
        if recipe.pieces_per_m2:
            cost_per_m2 = (cost_per_piece * recipe.pieces_per_m2).quantize(
                MONEY, rounding=ROUND_HALF_UP
            )

        return CostBreakdown(
            product_id=product_id,
            batch_cost=batch_cost,
            extras_cost=extras_cost,
            pieces_per_batch=pieces_per_batch,
            cost_per_piece=cost_per_piece,
            cost_per_m2=cost_per_m2,
        )


# Singleton instance
_recipe_service: Optional[RecipeService] = None


def get_recipe_service() -> RecipeService:
    """Get or create RecipeService instance."""
    global _recipe_service
    if _recipe_service is None:
        _recipe_service = RecipeService()
    return _recipe_service
