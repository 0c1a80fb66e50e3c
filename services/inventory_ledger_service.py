"""
Inventory Ledger Service - append-only stock movement ledger.

Available stock is never stored: it is always Σ IN − Σ OUT over the
movements of a product. Curing and loose quantities are derived from
production and from the loose-pieces balance respectively.

The module-level helpers work inside a caller's open session so the
palletization, allocation and delivery services can read and write the
ledger in the same transaction as their own rows.
"""

from datetime import date
from typing import Optional

import structlog
from sqlalchemy import case, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from config import DatabaseSession, get_session_factory
from db.locks import lock_product
from db.tables import InventoryMovement, LoosePiecesBalance, Product, Recipe
from models.inventory import (
    DELETABLE_SOURCES,
    LedgerIntegrityReport,
    ManualOutCreate,
    MovementResponse,
    MovementSource,
    MovementType,
    ProductStock,
    ProductStockResponse,
    StockTotals,
)
from exceptions import (
    AppError,
    AutomaticMovementError,
    DatabaseError,
    InsufficientStockError,
    MovementNotFoundError,
    ProductNotFoundError,
)
from services.production_service import unreconciled_production
from services.recipe_service import load_recipe, load_recipes
from services.unit_conversion import pieces_to_m2, pieces_to_pallets, round_display

logger = structlog.get_logger(__name__)


# ===================
# SESSION HELPERS
# ===================

_signed_quantity = case(
    (InventoryMovement.type == MovementType.IN.value, InventoryMovement.quantity_pieces),
    else_=-InventoryMovement.quantity_pieces,
)


def stock_balance(session: Session, product_id: str) -> int:
    """Σ IN − Σ OUT for one product. May be negative only if data was corrupted."""
    total = session.scalar(
        select(func.coalesce(func.sum(_signed_quantity), 0))
        .where(InventoryMovement.product_id == product_id)
    )
    return int(total or 0)


def stock_balances(session: Session, product_ids=None) -> dict[str, int]:
    """Σ IN − Σ OUT per product, for the given products or all of them."""
    query = select(InventoryMovement.product_id, func.sum(_signed_quantity)).group_by(
        InventoryMovement.product_id
    )
    if product_ids is not None:
        query = query.where(InventoryMovement.product_id.in_(list(product_ids)))
    return {product_id: int(total or 0) for product_id, total in session.execute(query)}


def loose_balance(session: Session, product_id: str) -> int:
    balance = session.get(LoosePiecesBalance, product_id)
    return balance.pieces if balance else 0


def set_loose_balance(session: Session, product_id: str, pieces: int) -> LoosePiecesBalance:
    """Upsert the loose-pieces head for a product."""
    balance = session.get(LoosePiecesBalance, product_id)
    if balance is None:
        balance = LoosePiecesBalance(product_id=product_id, pieces=pieces)
        session.add(balance)
    else:
        balance.pieces = pieces
    return balance


def record_movement(
    session: Session,
    product_id: str,
    movement_date: date,
    movement_type: MovementType,
    source: MovementSource,
    quantity_pieces: int,
    recipe: Optional[Recipe] = None,
    palletization_id: Optional[str] = None,
    production_day_id: Optional[str] = None,
    delivery_id: Optional[str] = None,
    notes: Optional[str] = None,
) -> InventoryMovement:
    """
    Append one ledger entry.

    Pallet and m² equivalents are frozen on the movement from the recipe
    in force now, so later recipe edits do not rewrite history.
    """
    movement = InventoryMovement(
        product_id=product_id,
        movement_date=movement_date,
        type=movement_type.value,
        source=source.value,
        quantity_pieces=quantity_pieces,
        quantity_pallets=pieces_to_pallets(quantity_pieces, recipe),
        area_m2=pieces_to_m2(quantity_pieces, recipe),
        palletization_id=palletization_id,
        production_day_id=production_day_id,
        delivery_id=delivery_id,
        notes=notes,
    )
    session.add(movement)
    session.flush()

    logger.info(
        "ledger_movement_recorded",
        movement_id=movement.id,
        product_id=product_id,
        type=movement_type.value,
        source=source.value,
        quantity_pieces=quantity_pieces
    )
    return movement


def _to_response(movement: InventoryMovement, product_name: Optional[str] = None) -> MovementResponse:
    response = MovementResponse.model_validate(movement)
    response.product_name = product_name
    return response


class InventoryLedgerService:
    """
    Stock ledger business logic.

    Core methods:
    - available_stock / curing_pieces / loose_pieces: Per-product quantities
    - get_product_stock: Stock position of every active product
    - create_manual_out / delete_movement: Manual adjustments
    - verify_integrity: Replay vs aggregate check
    - get_movements: Query method for UI
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self.session_factory = session_factory or get_session_factory()

    # ===================
    # QUANTITIES
    # ===================

    def available_stock(self, product_id: str) -> int:
        """
        Physical stock in pieces.

        Raises:
            ProductNotFoundError: If product doesn't exist
        """
        try:
            with DatabaseSession("available_stock", self.session_factory) as session:
                self._require_product(session, product_id)
                return stock_balance(session, product_id)

        except ProductNotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error("available_stock_failed", product_id=product_id, error=str(e))
            raise DatabaseError("select", str(e))

    def curing_pieces(self, product_id: str, as_of: Optional[date] = None) -> int:
        """
        Pieces produced before as_of that are not yet palletized.

        Excludes production already covered by legacy movements.
        """
        as_of = as_of or date.today()
        try:
            with DatabaseSession("curing_pieces", self.session_factory) as session:
                self._require_product(session, product_id)
                groups = unreconciled_production(session, as_of, product_id)
                return sum(group["theoretical_pieces"] for group in groups)

        except ProductNotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error("curing_pieces_failed", product_id=product_id, error=str(e))
            raise DatabaseError("select", str(e))

    def loose_pieces(self, product_id: str) -> int:
        """Current carried-forward loose pieces (0 when none recorded)."""
        try:
            with DatabaseSession("loose_pieces", self.session_factory) as session:
                self._require_product(session, product_id)
                return loose_balance(session, product_id)

        except ProductNotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error("loose_pieces_failed", product_id=product_id, error=str(e))
            raise DatabaseError("select", str(e))

    def get_product_stock(self, as_of: Optional[date] = None) -> ProductStockResponse:
        """
        Stock position of every active product with any activity.

        Products with no movements, no curing and no loose pieces are omitted.
        """
        as_of = as_of or date.today()
        logger.info("getting_product_stock", as_of=as_of.isoformat())

        try:
            with DatabaseSession("get_product_stock", self.session_factory) as session:
                products = session.scalars(
                    select(Product).where(Product.active.is_(True)).order_by(Product.name)
                ).all()

                totals_query = select(
                    InventoryMovement.product_id,
                    func.sum(case((InventoryMovement.type == "IN", InventoryMovement.quantity_pieces), else_=0)),
                    func.sum(case((InventoryMovement.type == "OUT", InventoryMovement.quantity_pieces), else_=0)),
                    func.max(InventoryMovement.movement_date),
                ).group_by(InventoryMovement.product_id)
                movement_totals = {
                    row[0]: (int(row[1] or 0), int(row[2] or 0), row[3])
                    for row in session.execute(totals_query)
                }

                curing: dict[str, int] = {}
                for group in unreconciled_production(session, as_of):
                    curing[group["product_id"]] = curing.get(group["product_id"], 0) + group["theoretical_pieces"]

                loose = {
                    row.product_id: row.pieces
                    for row in session.scalars(select(LoosePiecesBalance)).all()
                }
                recipes = load_recipes(session, [p.id for p in products])

                data = []
                for product in products:
                    total_in, total_out, last_date = movement_totals.get(product.id, (0, 0, None))
                    available = total_in - total_out
                    curing_pieces = curing.get(product.id, 0)
                    loose_pieces = loose.get(product.id, 0)
                    if not (total_in or total_out or curing_pieces or loose_pieces):
                        continue

                    recipe = recipes.get(product.id)
                    data.append(ProductStock(
                        product_id=product.id,
                        product_name=product.name,
                        available_pieces=available,
                        available_pallets=round_display(pieces_to_pallets(available, recipe)),
                        available_m2=round_display(pieces_to_m2(available, recipe)),
                        curing_pieces=curing_pieces,
                        loose_pieces=loose_pieces,
                        total_in=total_in,
                        total_out=total_out,
                        last_movement_date=last_date,
                    ))

            totals = StockTotals(
                available_pieces=sum(item.available_pieces for item in data),
                curing_pieces=sum(item.curing_pieces for item in data),
                loose_pieces=sum(item.loose_pieces for item in data),
                products_with_stock=sum(1 for item in data if item.available_pieces > 0),
            )
            logger.info("product_stock_retrieved", products=len(data))
            return ProductStockResponse(data=data, totals=totals)

        except SQLAlchemyError as e:
            logger.error("get_product_stock_failed", error=str(e))
            raise DatabaseError("select", str(e))

    # ===================
    # MOVEMENTS
    # ===================

    def get_movements(
        self,
        product_id: Optional[str] = None,
        movement_type: Optional[MovementType] = None,
        source: Optional[MovementSource] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        page: int = 1,
        page_size: int = 50
    ) -> tuple[list[MovementResponse], int]:
        """
        Movements newest first, with optional filters.

        Returns:
            Tuple of (movements list, total count)
        """
        try:
            with DatabaseSession("get_movements", self.session_factory) as session:
                query = select(InventoryMovement, Product.name).join(
                    Product, InventoryMovement.product_id == Product.id
                )
                if product_id:
                    query = query.where(InventoryMovement.product_id == product_id)
                if movement_type:
                    query = query.where(InventoryMovement.type == movement_type.value)
                if source:
                    query = query.where(InventoryMovement.source == source.value)
                if start_date:
                    query = query.where(InventoryMovement.movement_date >= start_date)
                if end_date:
                    query = query.where(InventoryMovement.movement_date <= end_date)

                total = session.scalar(select(func.count()).select_from(query.subquery()))
                rows = session.execute(
                    query.order_by(
                        InventoryMovement.movement_date.desc(),
                        InventoryMovement.created_at.desc()
                    )
                    .offset((page - 1) * page_size)
                    .limit(page_size)
                ).all()

                return [_to_response(movement, name) for movement, name in rows], total or 0

        except SQLAlchemyError as e:
            logger.error("get_movements_failed", error=str(e))
            raise DatabaseError("select", str(e))

    def create_manual_out(self, data: ManualOutCreate) -> MovementResponse:
        """
        Withdraw stock by hand (shrinkage, adjustment, ad-hoc sale).

        Raises:
            ProductNotFoundError: If product doesn't exist
            InsufficientStockError: If quantity exceeds available stock
        """
        logger.info(
            "creating_manual_out",
            product_id=data.product_id,
            quantity_pieces=data.quantity_pieces
        )

        try:
            with DatabaseSession("create_manual_out", self.session_factory) as session:
                product = lock_product(session, data.product_id)

                available = stock_balance(session, data.product_id)
                if data.quantity_pieces > available:
                    raise InsufficientStockError(data.product_id, data.quantity_pieces, available)

                movement = record_movement(
                    session,
                    product_id=data.product_id,
                    movement_date=data.movement_date,
                    movement_type=MovementType.OUT,
                    source=MovementSource.MANUAL,
                    quantity_pieces=data.quantity_pieces,
                    recipe=load_recipe(session, data.product_id),
                    notes=data.notes,
                )
                return _to_response(movement, product.name)

        except AppError:
            raise
        except SQLAlchemyError as e:
            logger.error("create_manual_out_failed", product_id=data.product_id, error=str(e))
            raise DatabaseError("insert", str(e))

    def delete_movement(self, movement_id: str) -> bool:
        """
        Delete a manual movement.

        Raises:
            MovementNotFoundError: If movement doesn't exist
            AutomaticMovementError: If the movement belongs to another operation
        """
        logger.info("deleting_movement", movement_id=movement_id)

        try:
            with DatabaseSession("delete_movement", self.session_factory) as session:
                movement = session.get(InventoryMovement, movement_id)
                if movement is None:
                    raise MovementNotFoundError(movement_id)
                if MovementSource(movement.source) not in DELETABLE_SOURCES:
                    raise AutomaticMovementError(movement_id, movement.source)

                lock_product(session, movement.product_id)
                session.delete(movement)

            logger.info("movement_deleted", movement_id=movement_id)
            return True

        except AppError:
            raise
        except SQLAlchemyError as e:
            logger.error("delete_movement_failed", movement_id=movement_id, error=str(e))
            raise DatabaseError("delete", str(e))

    # ===================
    # REPORTS
    # ===================

    def verify_integrity(self, product_id: str) -> LedgerIntegrityReport:
        """
        Recompute a product's balance by replaying its movements in order
        and compare it with the SQL aggregate.
        """
        try:
            with DatabaseSession("verify_integrity", self.session_factory) as session:
                self._require_product(session, product_id)
                aggregate = stock_balance(session, product_id)
                movements = session.scalars(
                    select(InventoryMovement)
                    .where(InventoryMovement.product_id == product_id)
                    .order_by(InventoryMovement.movement_date, InventoryMovement.created_at)
                ).all()

                replayed = 0
                for movement in movements:
                    replayed += movement.signed_pieces

            report = LedgerIntegrityReport(
                product_id=product_id,
                aggregate_balance=aggregate,
                replayed_balance=replayed,
                movement_count=len(movements),
                matches=aggregate == replayed,
            )
            if not report.matches:
                logger.warning(
                    "ledger_integrity_mismatch",
                    product_id=product_id,
                    aggregate=aggregate,
                    replayed=replayed
                )
            return report

        except ProductNotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error("verify_integrity_failed", product_id=product_id, error=str(e))
            raise DatabaseError("select", str(e))

    def _require_product(self, session: Session, product_id: str) -> Product:
        product = session.get(Product, product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        return product


# Singleton instance
_inventory_ledger_service: Optional[InventoryLedgerService] = None


def get_inventory_ledger_service() -> InventoryLedgerService:
    """Get or create InventoryLedgerService instance."""
    global _inventory_ledger_service
    if _inventory_ledger_service is None:
        _inventory_ledger_service = InventoryLedgerService()
    return _inventory_ledger_service
