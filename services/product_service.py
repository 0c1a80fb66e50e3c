"""
Product service for catalog operations: products and machines.
"""

from typing import Optional
import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from config import DatabaseSession, get_session_factory
from db.tables import Machine, Product, Recipe
from models.product import (
    ProductCreate,
    ProductResponse,
    MachineCreate,
    MachineResponse,
    Category
)
from exceptions import (
    ProductNotFoundError,
    ProductNameExistsError,
    DuplicateError,
    DatabaseError
)

logger = structlog.get_logger(__name__)


def _to_response(product: Product, has_recipe: bool) -> ProductResponse:
    return ProductResponse(
        id=product.id,
        name=product.name,
        category=product.category,
        active=product.active,
        has_recipe=has_recipe,
        created_at=product.created_at,
    )


class ProductService:
    """
    Product business logic.

    Handles create and read operations for products and machines.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self.session_factory = session_factory or get_session_factory()

    # ===================
    # READ OPERATIONS
    # ===================

    def get_all(
        self,
        category: Optional[Category] = None,
        active_only: bool = True
    ) -> list[ProductResponse]:
        """
        Get all products with optional filters, ordered by name.

        Args:
            category: Filter by category
            active_only: Only return active products
        """
        logger.info("getting_products", category=category, active_only=active_only)

        try:
            with DatabaseSession("get_products", self.session_factory) as session:
                query = select(Product, Recipe.id).outerjoin(Recipe, Recipe.product_id == Product.id)
                if active_only:
                    query = query.where(Product.active.is_(True))
                if category:
                    query = query.where(Product.category == category.value)
                rows = session.execute(query.order_by(Product.name)).all()

                products = [_to_response(product, recipe_id is not None) for product, recipe_id in rows]

            logger.info("products_retrieved", count=len(products))
            return products

        except SQLAlchemyError as e:
            logger.error("get_products_failed", error=str(e))
            raise DatabaseError("select", str(e))

    def get_by_id(self, product_id: str) -> ProductResponse:
        """
        Get a single product by ID.

        Raises:
            ProductNotFoundError: If product doesn't exist
        """
        try:
            with DatabaseSession("get_product", self.session_factory) as session:
                product = session.get(Product, product_id)
                if product is None:
                    raise ProductNotFoundError(product_id)
                has_recipe = session.scalar(
                    select(func.count()).select_from(Recipe).where(Recipe.product_id == product_id)
                ) > 0
                return _to_response(product, has_recipe)

        except ProductNotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error("get_product_failed", product_id=product_id, error=str(e))
            raise DatabaseError("select", str(e))

    # ===================
    # WRITE OPERATIONS
    # ===================

    def create(self, data: ProductCreate) -> ProductResponse:
        """
        Create a new product.

        Raises:
            ProductNameExistsError: If name already exists
        """
        logger.info("creating_product", name=data.name)

        try:
            with DatabaseSession("create_product", self.session_factory) as session:
                exists = session.scalar(select(Product.id).where(Product.name == data.name))
                if exists:
                    raise ProductNameExistsError(data.name)

                product = Product(name=data.name, category=data.category.value)
                session.add(product)
                session.flush()
                response = _to_response(product, False)

            logger.info("product_created", product_id=response.id, name=response.name)
            return response

        except ProductNameExistsError:
            raise
        except SQLAlchemyError as e:
            logger.error("create_product_failed", name=data.name, error=str(e))
            raise DatabaseError("insert", str(e))

    # ===================
    # MACHINES
    # ===================

    def get_machines(self) -> list[MachineResponse]:
        try:
            with DatabaseSession("get_machines", self.session_factory) as session:
                machines = session.scalars(select(Machine).order_by(Machine.name)).all()
                return [MachineResponse.model_validate(m) for m in machines]
        except SQLAlchemyError as e:
            logger.error("get_machines_failed", error=str(e))
            raise DatabaseError("select", str(e))

    def create_machine(self, data: MachineCreate) -> MachineResponse:
        """
        Register a machine.

        Raises:
            DuplicateError: If a machine with this name exists
        """
        try:
            with DatabaseSession("create_machine", self.session_factory) as session:
                if session.scalar(select(Machine.id).where(Machine.name == data.name)):
                    raise DuplicateError("Machine", "name", data.name)
                machine = Machine(name=data.name)
                session.add(machine)
                session.flush()
                response = MachineResponse.model_validate(machine)

            logger.info("machine_created", machine_id=response.id, name=response.name)
            return response

        except DuplicateError:
            raise
        except SQLAlchemyError as e:
            logger.error("create_machine_failed", name=data.name, error=str(e))
            raise DatabaseError("insert", str(e))


# Singleton instance
_product_service: Optional[ProductService] = None


def get_product_service() -> ProductService:
    """Get or create ProductService instance."""
    global _product_service
    if _product_service is None:
        _product_service = ProductService()
    return _product_service
