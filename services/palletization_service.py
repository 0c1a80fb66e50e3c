"""
Palletization service - turns cured production into counted stock.

For one (product, production date) the yard counts complete pallets and
leftover loose pieces. The difference between what production plus the
carried-over loose pieces should have yielded and what was counted is
the loss:

    real_pieces = complete_pallets × pieces_per_pallet
    loss_pieces = theoretical + loose_before − real_pieces − loose_after

A reconciliation writes the palletization, exactly one IN movement and
the new loose-pieces head in a single transaction under the product lock.
Loose pieces form a chain per product (each palletization starts from
the previous one's leftovers), so only the head of the chain can be undone.
"""

from datetime import date
from typing import Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError as SAIntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from config import DatabaseSession, get_session_factory
from db.locks import lock_product
from db.tables import InventoryMovement, LoosePiecesBalance, Palletization, Product
from models.inventory import MovementSource, MovementType
from models.palletization import (
    LooseBalanceResponse,
    LoosePalletResponse,
    MissingRecipeProduction,
    PalletizationResponse,
    PendingPalletization,
    PendingPalletizationResponse,
)
from exceptions import (
    AlreadyPalletizedError,
    AppError,
    DatabaseError,
    InsufficientStockError,
    IntegrityError,
    NegativeLossError,
    PalletizationNotFoundError,
    PalletizationNotLatestError,
    RecipeMissingError,
    ValidationError,
)
from services.inventory_ledger_service import (
    loose_balance,
    record_movement,
    set_loose_balance,
    stock_balance,
)
from services.production_service import (
    legacy_day_ids,
    production_items_for,
    unreconciled_production,
)
from services.recipe_service import load_recipe, load_recipes
from services.unit_conversion import resolve_pieces_per_pallet, theoretical_pieces

logger = structlog.get_logger(__name__)


def calculate_loss(
    theoretical: int,
    loose_before: int,
    complete_pallets: int,
    pieces_per_pallet: int,
    loose_after: int
) -> tuple[int, int]:
    """
    Returns:
        (real_pieces, loss_pieces). loss may be negative; callers reject it.
    """
    real_pieces = complete_pallets * pieces_per_pallet
    loss_pieces = theoretical + loose_before - real_pieces - loose_after
    return real_pieces, loss_pieces


def _to_response(palletization: Palletization, product_name: Optional[str] = None) -> PalletizationResponse:
    response = PalletizationResponse.model_validate(palletization)
    response.product_name = product_name
    return response


class PalletizationService:
    """
    Palletization business logic.

    Core methods:
    - get_pending: Cured production waiting to be counted
    - reconcile: Record a count and move the pieces into stock
    - delete_palletization: Undo the most recent count of a product
    - form_pallet_from_loose: Close a pallet from accumulated loose pieces
    - get_history / get_loose_balances: Query methods for UI
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self.session_factory = session_factory or get_session_factory()

    # ===================
    # READ OPERATIONS
    # ===================

    def get_pending(self, as_of: Optional[date] = None) -> PendingPalletizationResponse:
        """
        Production ready to be palletized, oldest first.

        Groups whose product has no recipe pallet size are listed apart
        under missing_recipe and left out of the queue.
        """
        as_of = as_of or date.today()

        try:
            with DatabaseSession("get_pending_palletizations", self.session_factory) as session:
                groups = unreconciled_production(session, as_of)
                product_ids = {group["product_id"] for group in groups}
                recipes = load_recipes(session, product_ids)
                names = dict(session.execute(
                    select(Product.id, Product.name).where(Product.id.in_(list(product_ids)))
                ).all()) if product_ids else {}
                balances = dict(session.execute(
                    select(LoosePiecesBalance.product_id, LoosePiecesBalance.pieces)
                ).all())

            pending: list[PendingPalletization] = []
            missing: list[MissingRecipeProduction] = []
            for group in groups:
                product_id = group["product_id"]
                pieces_per_pallet = resolve_pieces_per_pallet(recipes.get(product_id))
                if pieces_per_pallet is None:
                    missing.append(MissingRecipeProduction(
                        product_id=product_id,
                        product_name=names.get(product_id, ""),
                        production_date=group["production_date"],
                        total_cycles=group["total_cycles"],
                    ))
                    continue
                pending.append(PendingPalletization(
                    product_id=product_id,
                    product_name=names.get(product_id, ""),
                    production_date=group["production_date"],
                    theoretical_pieces=group["theoretical_pieces"],
                    total_cycles=group["total_cycles"],
                    loose_pieces_before=balances.get(product_id, 0),
                    pieces_per_pallet=pieces_per_pallet,
                    approximated=group["approximated"],
                ))

            logger.info("pending_palletizations_retrieved", pending=len(pending), missing_recipe=len(missing))
            return PendingPalletizationResponse(pending=pending, missing_recipe=missing)

        except SQLAlchemyError as e:
            logger.error("get_pending_palletizations_failed", error=str(e))
            raise DatabaseError("select", str(e))

    def get_history(
        self,
        product_id: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None
    ) -> list[PalletizationResponse]:
        """Palletizations newest production date first."""
        try:
            with DatabaseSession("get_palletization_history", self.session_factory) as session:
                query = select(Palletization, Product.name).join(
                    Product, Palletization.product_id == Product.id
                )
                if product_id:
                    query = query.where(Palletization.product_id == product_id)
                if start_date:
                    query = query.where(Palletization.production_date >= start_date)
                if end_date:
                    query = query.where(Palletization.production_date <= end_date)
                rows = session.execute(
                    query.order_by(Palletization.production_date.desc(), Palletization.sequence.desc())
                ).all()
                return [_to_response(row, name) for row, name in rows]

        except SQLAlchemyError as e:
            logger.error("get_palletization_history_failed", error=str(e))
            raise DatabaseError("select", str(e))

    def get_loose_balances(self) -> list[LooseBalanceResponse]:
        """Products holding loose pieces, with whether a pallet can be closed."""
        try:
            with DatabaseSession("get_loose_balances", self.session_factory) as session:
                rows = session.execute(
                    select(LoosePiecesBalance, Product.name)
                    .join(Product, LoosePiecesBalance.product_id == Product.id)
                    .where(LoosePiecesBalance.pieces > 0)
                    .order_by(Product.name)
                ).all()
                recipes = load_recipes(session, [balance.product_id for balance, _ in rows])

                balances = []
                for balance, name in rows:
                    size = resolve_pieces_per_pallet(recipes.get(balance.product_id))
                    balances.append(LooseBalanceResponse(
                        product_id=balance.product_id,
                        product_name=name,
                        pieces=balance.pieces,
                        pieces_per_pallet=size,
                        can_form_pallet=bool(size) and balance.pieces >= size,
                    ))
                return balances

        except SQLAlchemyError as e:
            logger.error("get_loose_balances_failed", error=str(e))
            raise DatabaseError("select", str(e))

    # ===================
    # WRITE OPERATIONS
    # ===================

    def reconcile(
        self,
        product_id: str,
        production_date: date,
        complete_pallets: int,
        loose_pieces_after: int,
        notes: Optional[str] = None,
        as_of: Optional[date] = None
    ) -> PalletizationResponse:
        """
        Record the count of one (product, production date) and put the
        counted pieces into stock.

        Args:
            product_id: Product UUID
            production_date: Date the pieces were produced
            complete_pallets: Full pallets counted
            loose_pieces_after: Loose pieces left over after the count
            notes: Optional notes
            as_of: Counting date (defaults to today); production must be older

        Raises:
            ProductNotFoundError: If product doesn't exist
            RecipeMissingError: If no pallet size can be resolved
            AlreadyPalletizedError: If the pair was palletized or is legacy stock
            NegativeLossError: If more pieces were counted than could exist
            ValidationError: Still curing, nothing produced or negative counts
        """
        as_of = as_of or date.today()
        logger.info(
            "reconciling_palletization",
            product_id=product_id,
            production_date=production_date.isoformat(),
            complete_pallets=complete_pallets,
            loose_pieces_after=loose_pieces_after
        )

        if complete_pallets < 0 or loose_pieces_after < 0:
            raise ValidationError(
                message="Pallet and loose piece counts cannot be negative",
                code="NEGATIVE_COUNT",
                details={"complete_pallets": complete_pallets, "loose_pieces_after": loose_pieces_after}
            )
        if production_date >= as_of:
            raise ValidationError(
                message="Production is still curing and cannot be palletized yet",
                code="STILL_CURING",
                details={"production_date": production_date.isoformat(), "as_of": as_of.isoformat()}
            )

        try:
            with DatabaseSession("reconcile_palletization", self.session_factory) as session:
                product = lock_product(session, product_id)

                recipe = load_recipe(session, product_id)
                pieces_per_pallet = resolve_pieces_per_pallet(recipe)
                if pieces_per_pallet is None:
                    raise RecipeMissingError(product_id, product.name)

                already = session.scalar(
                    select(Palletization.id).where(
                        Palletization.product_id == product_id,
                        Palletization.production_date == production_date,
                    )
                )
                if already:
                    raise AlreadyPalletizedError(product_id, production_date.isoformat())

                theoretical = self._theoretical_for(session, product_id, production_date, recipe)
                loose_before = loose_balance(session, product_id)

                real_pieces, loss_pieces = calculate_loss(
                    theoretical, loose_before, complete_pallets, pieces_per_pallet, loose_pieces_after
                )
                if loss_pieces < 0:
                    logger.warning(
                        "palletization_negative_loss",
                        product_id=product_id,
                        production_date=production_date.isoformat(),
                        loss_pieces=loss_pieces
                    )
                    raise NegativeLossError(loss_pieces, {
                        "theoretical_pieces": theoretical,
                        "loose_pieces_before": loose_before,
                        "real_pieces": real_pieces,
                        "loose_pieces_after": loose_pieces_after,
                    })

                last_sequence = session.scalar(
                    select(func.max(Palletization.sequence)).where(Palletization.product_id == product_id)
                )
                palletization = Palletization(
                    product_id=product_id,
                    production_date=production_date,
                    palletized_date=as_of,
                    sequence=(last_sequence or 0) + 1,
                    theoretical_pieces=theoretical,
                    loose_pieces_before=loose_before,
                    complete_pallets=complete_pallets,
                    loose_pieces_after=loose_pieces_after,
                    pieces_per_pallet=pieces_per_pallet,
                    real_pieces=real_pieces,
                    loss_pieces=loss_pieces,
                    notes=notes,
                )
                session.add(palletization)
                session.flush()

                # One IN per palletization, zero pieces included
                record_movement(
                    session,
                    product_id=product_id,
                    movement_date=as_of,
                    movement_type=MovementType.IN,
                    source=MovementSource.PALLETIZATION,
                    quantity_pieces=real_pieces,
                    recipe=recipe,
                    palletization_id=palletization.id,
                    notes=f"Palletization of {production_date.isoformat()}",
                )
                set_loose_balance(session, product_id, loose_pieces_after)
                session.flush()
                response = _to_response(palletization, product.name)

            logger.info(
                "palletization_created",
                palletization_id=response.id,
                product_id=product_id,
                real_pieces=response.real_pieces,
                loss_pieces=response.loss_pieces,
                loose_pieces_after=response.loose_pieces_after
            )
            return response

        except AppError:
            raise
        except SAIntegrityError as e:
            logger.warning("palletization_conflict", product_id=product_id, error=str(e))
            raise AlreadyPalletizedError(product_id, production_date.isoformat())
        except SQLAlchemyError as e:
            logger.error("reconcile_palletization_failed", product_id=product_id, error=str(e))
            raise DatabaseError("insert", str(e))

    def delete_palletization(self, palletization_id: str) -> bool:
        """
        Undo a palletization.

        Only the head of a product's loose-piece chain can be undone: the
        most recent palletization, and only while the loose balance still
        holds its loose_pieces_after. Its IN movement is removed and the
        loose balance goes back to loose_pieces_before.

        Raises:
            PalletizationNotFoundError: If it doesn't exist
            PalletizationNotLatestError: If a later palletization or loose pallet depends on it
            IntegrityError: If its pieces already left stock
        """
        logger.info("deleting_palletization", palletization_id=palletization_id)

        try:
            with DatabaseSession("delete_palletization", self.session_factory) as session:
                palletization = session.get(Palletization, palletization_id)
                if palletization is None:
                    raise PalletizationNotFoundError(palletization_id)

                product_id = palletization.product_id
                lock_product(session, product_id)

                latest = session.scalar(
                    select(func.max(Palletization.sequence)).where(Palletization.product_id == product_id)
                )
                if palletization.sequence != latest:
                    raise PalletizationNotLatestError(
                        palletization_id, "a later palletization of this product exists"
                    )
                if loose_balance(session, product_id) != palletization.loose_pieces_after:
                    raise PalletizationNotLatestError(
                        palletization_id, "its loose pieces were used since"
                    )

                available = stock_balance(session, product_id)
                if available < palletization.real_pieces:
                    raise IntegrityError(
                        message="Pieces from this palletization already left stock",
                        code="STOCK_ALREADY_CONSUMED",
                        details={
                            "palletization_id": palletization_id,
                            "real_pieces": palletization.real_pieces,
                            "available": available,
                        }
                    )

                movements = session.scalars(
                    select(InventoryMovement).where(InventoryMovement.palletization_id == palletization_id)
                ).all()
                for movement in movements:
                    session.delete(movement)
                session.flush()
                set_loose_balance(session, product_id, palletization.loose_pieces_before)
                session.delete(palletization)

            logger.info(
                "palletization_deleted",
                palletization_id=palletization_id,
                product_id=product_id,
                movements_removed=len(movements)
            )
            return True

        except AppError:
            raise
        except SQLAlchemyError as e:
            logger.error("delete_palletization_failed", palletization_id=palletization_id, error=str(e))
            raise DatabaseError("delete", str(e))

    def form_pallet_from_loose(self, product_id: str, as_of: Optional[date] = None) -> LoosePalletResponse:
        """
        Close one pallet from accumulated loose pieces.

        Raises:
            ProductNotFoundError: If product doesn't exist
            RecipeMissingError: If no pallet size can be resolved
            InsufficientStockError: If fewer loose pieces than a pallet
        """
        as_of = as_of or date.today()
        logger.info("forming_pallet_from_loose", product_id=product_id)

        try:
            with DatabaseSession("form_pallet_from_loose", self.session_factory) as session:
                product = lock_product(session, product_id)

                recipe = load_recipe(session, product_id)
                pieces_per_pallet = resolve_pieces_per_pallet(recipe)
                if pieces_per_pallet is None:
                    raise RecipeMissingError(product_id, product.name)

                before = loose_balance(session, product_id)
                if before < pieces_per_pallet:
                    raise InsufficientStockError(
                        product_id, pieces_per_pallet, before, code="INSUFFICIENT_LOOSE_PIECES"
                    )

                movement = record_movement(
                    session,
                    product_id=product_id,
                    movement_date=as_of,
                    movement_type=MovementType.IN,
                    source=MovementSource.LOOSE_PALLET,
                    quantity_pieces=pieces_per_pallet,
                    recipe=recipe,
                    notes="Pallet formed from loose pieces",
                )
                after = before - pieces_per_pallet
                set_loose_balance(session, product_id, after)
                session.flush()

                response = LoosePalletResponse(
                    product_id=product_id,
                    movement_id=movement.id,
                    pieces_per_pallet=pieces_per_pallet,
                    loose_pieces_before=before,
                    loose_pieces_after=after,
                )

            logger.info("loose_pallet_formed", product_id=product_id, loose_pieces_after=after)
            return response

        except AppError:
            raise
        except SQLAlchemyError as e:
            logger.error("form_pallet_from_loose_failed", product_id=product_id, error=str(e))
            raise DatabaseError("insert", str(e))

    # ===================
    # HELPERS
    # ===================

    def _theoretical_for(self, session: Session, product_id: str, production_date: date, recipe) -> int:
        items = [item for item in production_items_for(session, product_id, production_date) if item.cycles > 0]
        if not items:
            raise ValidationError(
                message="No production recorded for this product and date",
                code="NO_PRODUCTION",
                details={"product_id": product_id, "production_date": production_date.isoformat()}
            )

        legacy = legacy_day_ids(session, {item.production_day_id for item in items})
        open_items = [item for item in items if item.production_day_id not in legacy]
        if not open_items:
            raise AlreadyPalletizedError(product_id, production_date.isoformat(), reason="stocked by a legacy movement")

        return sum(theoretical_pieces(item, recipe)[0] for item in open_items)


# Singleton instance
_palletization_service: Optional[PalletizationService] = None


def get_palletization_service() -> PalletizationService:
    """Get or create PalletizationService instance."""
    global _palletization_service
    if _palletization_service is None:
        _palletization_service = PalletizationService()
    return _palletization_service
