"""
Delivery service: delivery lifecycle after loading.

Deliveries are created by AllocationService.record_delivery. This service
moves them through LOADING → IN_TRANSIT → DELIVERED, or cancels them.
Cancelling never deletes ledger entries; it appends a compensating IN
movement per item.
"""

from datetime import date
from typing import Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload, sessionmaker

from config import DatabaseSession, get_session_factory
from db.locks import lock_products
from db.tables import Delivery
from models.delivery import (
    DeliveryResponse,
    DeliveryStatus,
    DeliveryStatusUpdate,
    is_valid_delivery_transition,
)
from models.inventory import MovementSource, MovementType
from models.order import OrderStatus
from exceptions import (
    AppError,
    DatabaseError,
    DeliveryNotFoundError,
    InvalidStatusTransitionError,
)
from services.allocation_service import delivery_to_response, is_fully_delivered
from services.inventory_ledger_service import record_movement
from services.order_service import load_order
from services.recipe_service import load_recipes

logger = structlog.get_logger(__name__)


class DeliveryService:
    """
    Delivery business logic.

    Handles reads and status changes for deliveries.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self.session_factory = session_factory or get_session_factory()

    # ===================
    # READ OPERATIONS
    # ===================

    def get_all(
        self,
        order_id: Optional[str] = None,
        status: Optional[DeliveryStatus] = None,
        page: int = 1,
        page_size: int = 20
    ) -> tuple[list[DeliveryResponse], int]:
        """
        Get deliveries newest first.

        Returns:
            Tuple of (deliveries list, total count)
        """
        try:
            with DatabaseSession("get_deliveries", self.session_factory) as session:
                query = select(Delivery).options(selectinload(Delivery.items))
                count_query = select(func.count()).select_from(Delivery)
                if order_id:
                    query = query.where(Delivery.order_id == order_id)
                    count_query = count_query.where(Delivery.order_id == order_id)
                if status:
                    query = query.where(Delivery.status == status.value)
                    count_query = count_query.where(Delivery.status == status.value)

                total = session.scalar(count_query) or 0
                deliveries = session.scalars(
                    query.order_by(Delivery.number.desc())
                    .offset((page - 1) * page_size)
                    .limit(page_size)
                ).all()
                return [delivery_to_response(session, delivery) for delivery in deliveries], total

        except SQLAlchemyError as e:
            logger.error("get_deliveries_failed", error=str(e))
            raise DatabaseError("select", str(e))

    def get_by_id(self, delivery_id: str) -> DeliveryResponse:
        """
        Raises:
            DeliveryNotFoundError: If delivery doesn't exist
        """
        try:
            with DatabaseSession("get_delivery", self.session_factory) as session:
                delivery = session.get(Delivery, delivery_id)
                if delivery is None:
                    raise DeliveryNotFoundError(delivery_id)
                return delivery_to_response(session, delivery)

        except AppError:
            raise
        except SQLAlchemyError as e:
            logger.error("get_delivery_failed", delivery_id=delivery_id, error=str(e))
            raise DatabaseError("select", str(e))

    # ===================
    # STATUS
    # ===================

    def update_status(self, delivery_id: str, data: DeliveryStatusUpdate) -> DeliveryResponse:
        """
        Move a delivery to its next status.

        DELIVERED stamps the delivery date. CANCELLED puts the loaded
        pieces back into stock and, when the order had been fully
        delivered, returns it to READY.

        Raises:
            DeliveryNotFoundError: If delivery doesn't exist
            InvalidStatusTransitionError: If transition is not allowed
        """
        logger.info("updating_delivery_status", delivery_id=delivery_id, new_status=data.status.value)

        try:
            with DatabaseSession("update_delivery_status", self.session_factory) as session:
                order_id = session.scalar(select(Delivery.order_id).where(Delivery.id == delivery_id))
                if order_id is None:
                    raise DeliveryNotFoundError(delivery_id)

                # Order, then delivery, then products
                order = load_order(session, order_id, for_update=True)
                delivery = session.scalar(
                    select(Delivery)
                    .where(Delivery.id == delivery_id)
                    .options(selectinload(Delivery.items))
                    .with_for_update()
                )

                current = DeliveryStatus(delivery.status)
                if not is_valid_delivery_transition(current, data.status):
                    raise InvalidStatusTransitionError(current.value, data.status.value, resource="Delivery")

                if data.status == DeliveryStatus.DELIVERED:
                    delivery.delivery_date = date.today()
                elif data.status == DeliveryStatus.CANCELLED:
                    self._reverse_stock(session, delivery)

                delivery.status = data.status.value
                session.flush()

                order_status = None
                if data.status == DeliveryStatus.CANCELLED:
                    if order.status == OrderStatus.DELIVERED.value and not is_fully_delivered(session, order):
                        order.status = OrderStatus.READY.value
                        session.flush()
                    order_status = order.status

                response = delivery_to_response(session, delivery, order)

            logger.info(
                "delivery_status_updated",
                delivery_id=delivery_id,
                old_status=current.value,
                new_status=data.status.value,
                order_status=order_status
            )
            return response

        except AppError:
            raise
        except SQLAlchemyError as e:
            logger.error("update_delivery_status_failed", delivery_id=delivery_id, error=str(e))
            raise DatabaseError("update", str(e))

    # ===================
    # HELPERS
    # ===================

    def _reverse_stock(self, session, delivery: Delivery) -> None:
        product_ids = {item.product_id for item in delivery.items}
        lock_products(session, product_ids)
        recipes = load_recipes(session, product_ids)
        for item in delivery.items:
            record_movement(
                session,
                product_id=item.product_id,
                movement_date=date.today(),
                movement_type=MovementType.IN,
                source=MovementSource.DELIVERY_REVERSAL,
                quantity_pieces=item.quantity_pieces,
                recipe=recipes.get(item.product_id),
                delivery_id=delivery.id,
                notes=f"Reversal of cancelled delivery {delivery.code}",
            )
        logger.info(
            "delivery_stock_reversed",
            delivery_id=delivery.id,
            pieces=sum(item.quantity_pieces for item in delivery.items)
        )


# Singleton instance
_delivery_service: Optional[DeliveryService] = None


def get_delivery_service() -> DeliveryService:
    """Get or create DeliveryService instance."""
    global _delivery_service
    if _delivery_service is None:
        _delivery_service = DeliveryService()
    return _delivery_service
