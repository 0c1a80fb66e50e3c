"""
Production ledger service: cycles per machine per day per product.

Also owns the query that finds production not yet reconciled into stock,
shared by the palletization queue and the curing figure of the stock view.

See services/palletization_service.py for how production becomes stock.
"""

from collections import defaultdict
from datetime import date
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError as SAIntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from config import DatabaseSession, get_session_factory, settings
from db.locks import lock_products
from db.tables import (
    InventoryMovement, Machine, Palletization, ProductionDay, ProductionItem,
)
from models.production import (
    ProductionDayCreate,
    ProductionDayResponse,
    ProductionDayUpdate,
    ProductionItemInput,
    ProductionItemResponse,
)
from exceptions import (
    AppError,
    DatabaseError,
    MachineNotFoundError,
    ProductionDayExistsError,
    ProductionDayNotFoundError,
    ProductionLockedError,
    ValidationError,
)
from services.recipe_service import load_recipes
from services.unit_conversion import theoretical_pieces

logger = structlog.get_logger(__name__)


# ===================
# RECONCILIATION QUERIES
# ===================

def legacy_day_ids(session: Session, day_ids=None) -> set[str]:
    """Production days already put into stock by a legacy IN movement."""
    query = select(InventoryMovement.production_day_id).where(
        InventoryMovement.type == "IN",
        InventoryMovement.production_day_id.is_not(None),
    )
    if day_ids is not None:
        query = query.where(InventoryMovement.production_day_id.in_(list(day_ids)))
    return set(session.scalars(query.distinct()).all())


def palletized_pairs(session: Session, product_id: Optional[str] = None) -> set[tuple[str, date]]:
    query = select(Palletization.product_id, Palletization.production_date)
    if product_id:
        query = query.where(Palletization.product_id == product_id)
    return {(row.product_id, row.production_date) for row in session.execute(query)}


def production_items_for(
    session: Session,
    product_id: str,
    production_date: date
) -> list[ProductionItem]:
    """All production items of one product on one date, across machines."""
    return list(session.scalars(
        select(ProductionItem)
        .join(ProductionDay, ProductionItem.production_day_id == ProductionDay.id)
        .where(
            ProductionItem.product_id == product_id,
            ProductionDay.production_date == production_date,
        )
    ).all())


def unreconciled_production(
    session: Session,
    as_of: date,
    product_id: Optional[str] = None
) -> list[dict]:
    """
    Cured production not yet in stock, grouped by (product, date).

    An item counts when it has cycles, its date is strictly before as_of,
    its (product, date) has no palletization and its production day is not
    covered by a legacy movement.

    Returns:
        [{"product_id", "production_date", "total_cycles",
          "theoretical_pieces", "approximated"}] sorted by date then product
    """
    query = (
        select(ProductionItem, ProductionDay.production_date)
        .join(ProductionDay, ProductionItem.production_day_id == ProductionDay.id)
        .where(ProductionItem.cycles > 0, ProductionDay.production_date < as_of)
    )
    if product_id:
        query = query.where(ProductionItem.product_id == product_id)
    rows = session.execute(query).all()
    if not rows:
        return []

    legacy = legacy_day_ids(session, {item.production_day_id for item, _ in rows})
    palletized = palletized_pairs(session, product_id)
    recipes = load_recipes(session, {item.product_id for item, _ in rows})

    groups: dict[tuple[str, date], dict] = {}
    for item, production_date in rows:
        key = (item.product_id, production_date)
        if key in palletized or item.production_day_id in legacy:
            continue
        pieces, approximated = theoretical_pieces(item, recipes.get(item.product_id))
        group = groups.setdefault(key, {
            "product_id": item.product_id,
            "production_date": production_date,
            "total_cycles": 0,
            "theoretical_pieces": 0,
            "approximated": False,
        })
        group["total_cycles"] += item.cycles
        group["theoretical_pieces"] += pieces
        group["approximated"] = group["approximated"] or approximated

    return sorted(groups.values(), key=lambda g: (g["production_date"], g["product_id"]))


def _to_response(day: ProductionDay) -> ProductionDayResponse:
    return ProductionDayResponse(
        id=day.id,
        machine_id=day.machine_id,
        machine_name=day.machine.name if day.machine else None,
        production_date=day.production_date,
        notes=day.notes,
        items=[
            ProductionItemResponse(
                id=item.id,
                product_id=item.product_id,
                product_name=item.product.name if item.product else None,
                cycles=item.cycles,
                pieces=item.pieces,
                start_time=item.start_time,
                end_time=item.end_time,
            )
            for item in day.items
        ],
    )


class ProductionService:
    """
    Production ledger business logic.

    Production is editable until it has been palletized; after that the
    (product, date) pair is frozen because stock was derived from it.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self.session_factory = session_factory or get_session_factory()

    # ===================
    # READ OPERATIONS
    # ===================

    def get_production_day(self, machine_id: str, production_date: date) -> Optional[ProductionDayResponse]:
        """Production of one machine on one date, or None."""
        try:
            with DatabaseSession("get_production_day", self.session_factory) as session:
                day = session.scalar(
                    select(ProductionDay)
                    .where(
                        ProductionDay.machine_id == machine_id,
                        ProductionDay.production_date == production_date,
                    )
                    .options(selectinload(ProductionDay.items))
                )
                return _to_response(day) if day else None

        except SQLAlchemyError as e:
            logger.error("get_production_day_failed", machine_id=machine_id, error=str(e))
            raise DatabaseError("select", str(e))

    def get_production_days(self, production_date: date) -> list[ProductionDayResponse]:
        """All machines' production on a date."""
        try:
            with DatabaseSession("get_production_days", self.session_factory) as session:
                days = session.scalars(
                    select(ProductionDay)
                    .where(ProductionDay.production_date == production_date)
                    .options(selectinload(ProductionDay.items))
                ).all()
                return [_to_response(day) for day in days]

        except SQLAlchemyError as e:
            logger.error("get_production_days_failed", date=production_date.isoformat(), error=str(e))
            raise DatabaseError("select", str(e))

    # ===================
    # WRITE OPERATIONS
    # ===================

    def create_production_day(self, data: ProductionDayCreate) -> ProductionDayResponse:
        """
        Record a machine's production for one date.

        Raises:
            MachineNotFoundError: If machine doesn't exist
            ProductNotFoundError: If a product doesn't exist
            ProductionDayExistsError: If the machine already has this date
            ProductionLockedError: If a product's production on this date is palletized
            ValidationError: If too many products are run on the machine
        """
        logger.info(
            "creating_production_day",
            machine_id=data.machine_id,
            date=data.production_date.isoformat(),
            items=len(data.items)
        )
        self._check_product_limit(data.items)

        try:
            with DatabaseSession("create_production_day", self.session_factory) as session:
                if session.get(Machine, data.machine_id) is None:
                    raise MachineNotFoundError(data.machine_id)

                product_ids = [item.product_id for item in data.items]
                lock_products(session, product_ids)

                existing = session.scalar(
                    select(ProductionDay.id).where(
                        ProductionDay.machine_id == data.machine_id,
                        ProductionDay.production_date == data.production_date,
                    )
                )
                if existing:
                    raise ProductionDayExistsError(data.machine_id, data.production_date.isoformat())

                self._guard_not_palletized(session, product_ids, data.production_date)

                day = ProductionDay(
                    machine_id=data.machine_id,
                    production_date=data.production_date,
                    notes=data.notes,
                )
                day.items = self._build_items(session, data.items)
                session.add(day)
                session.flush()
                response = _to_response(day)

            logger.info("production_day_created", production_day_id=response.id)
            return response

        except AppError:
            raise
        except SAIntegrityError as e:
            logger.warning("production_day_conflict", machine_id=data.machine_id, error=str(e))
            raise ProductionDayExistsError(data.machine_id, data.production_date.isoformat())
        except SQLAlchemyError as e:
            logger.error("create_production_day_failed", error=str(e))
            raise DatabaseError("insert", str(e))

    def update_production_day(self, production_day_id: str, data: ProductionDayUpdate) -> ProductionDayResponse:
        """
        Replace the items of a production day.

        Raises:
            ProductionDayNotFoundError: If the day doesn't exist
            ProductionLockedError: If an old or new product is palletized on that date
        """
        logger.info("updating_production_day", production_day_id=production_day_id)
        self._check_product_limit(data.items)

        try:
            with DatabaseSession("update_production_day", self.session_factory) as session:
                day = session.get(ProductionDay, production_day_id)
                if day is None:
                    raise ProductionDayNotFoundError(production_day_id)

                affected = {item.product_id for item in day.items} | {i.product_id for i in data.items}
                lock_products(session, affected)
                self._guard_not_palletized(session, affected, day.production_date)
                self._guard_not_legacy(session, day)

                day.items.clear()
                session.flush()
                day.items.extend(self._build_items(session, data.items))
                if data.notes is not None:
                    day.notes = data.notes
                session.flush()
                response = _to_response(day)

            logger.info("production_day_updated", production_day_id=production_day_id)
            return response

        except AppError:
            raise
        except SQLAlchemyError as e:
            logger.error("update_production_day_failed", production_day_id=production_day_id, error=str(e))
            raise DatabaseError("update", str(e))

    def delete_production_day(self, production_day_id: str) -> bool:
        """
        Delete a production day and its items.

        Raises:
            ProductionDayNotFoundError: If the day doesn't exist
            ProductionLockedError: If any of its production is palletized
        """
        logger.info("deleting_production_day", production_day_id=production_day_id)

        try:
            with DatabaseSession("delete_production_day", self.session_factory) as session:
                day = session.get(ProductionDay, production_day_id)
                if day is None:
                    raise ProductionDayNotFoundError(production_day_id)

                product_ids = {item.product_id for item in day.items}
                lock_products(session, product_ids)
                self._guard_not_palletized(session, product_ids, day.production_date)
                self._guard_not_legacy(session, day)

                session.delete(day)

            logger.info("production_day_deleted", production_day_id=production_day_id)
            return True

        except AppError:
            raise
        except SQLAlchemyError as e:
            logger.error("delete_production_day_failed", production_day_id=production_day_id, error=str(e))
            raise DatabaseError("delete", str(e))

    # ===================
    # HELPERS
    # ===================

    def _check_product_limit(self, items: list[ProductionItemInput]) -> None:
        limit = settings.max_products_per_machine_day
        if len(items) > limit:
            raise ValidationError(
                message=f"A machine can run at most {limit} products per day",
                code="TOO_MANY_PRODUCTS",
                details={"limit": limit, "provided": len(items)}
            )

    def _build_items(self, session: Session, items: list[ProductionItemInput]) -> list[ProductionItem]:
        recipes = load_recipes(session, [item.product_id for item in items])
        built = []
        for item in items:
            recipe = recipes.get(item.product_id)
            built.append(ProductionItem(
                product_id=item.product_id,
                cycles=item.cycles,
                pieces=item.cycles * recipe.pieces_per_cycle if recipe else None,
                start_time=item.start_time,
                end_time=item.end_time,
            ))
        return built

    def _guard_not_palletized(self, session: Session, product_ids, production_date: date) -> None:
        ids = list(product_ids)
        if not ids:
            return
        locked = session.scalar(
            select(Palletization.product_id).where(
                Palletization.product_id.in_(ids),
                Palletization.production_date == production_date,
            ).limit(1)
        )
        if locked:
            raise ProductionLockedError(locked, production_date.isoformat())

    def _guard_not_legacy(self, session: Session, day: ProductionDay) -> None:
        if legacy_day_ids(session, [day.id]):
            raise ProductionLockedError(
                day.items[0].product_id if day.items else "",
                day.production_date.isoformat()
            )


# Singleton instance
_production_service: Optional[ProductionService] = None


def get_production_service() -> ProductionService:
    """Get or create ProductionService instance."""
    global _production_service
    if _production_service is None:
        _production_service = ProductionService()
    return _production_service
