"""
Order service for customer order operations.

Orders are created CONFIRMED. Only cancellation is requested by hand;
IN_PRODUCTION and READY are driven by production orders and DELIVERED
by deliveries.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError as SAIntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from config import DatabaseSession, get_session_factory
from db.tables import Order, OrderItem, Product, ProductionOrder
from models.order import (
    OrderCreate,
    OrderItemResponse,
    OrderResponse,
    OrderStatus,
    OrderStatusUpdate,
    is_valid_status_transition,
    line_subtotal,
)
from models.production_order import ACTIVE_STATUSES, ProductionOrderStatus
from exceptions import (
    AppError,
    ConflictError,
    DatabaseError,
    InvalidStatusTransitionError,
    OrderNotFoundError,
    ProductNotFoundError,
)

logger = structlog.get_logger(__name__)


# ===================
# SESSION HELPERS
# ===================

def next_number(session: Session, model) -> int:
    """Next sequential document number for an Order, ProductionOrder or Delivery."""
    last = session.scalar(select(func.max(model.number)))
    return (last or 0) + 1


def load_order(session: Session, order_id: str, for_update: bool = False) -> Order:
    """
    Raises:
        OrderNotFoundError: If order doesn't exist
    """
    query = select(Order).where(Order.id == order_id).options(selectinload(Order.items))
    if for_update:
        query = query.with_for_update()
    order = session.scalar(query)
    if order is None:
        raise OrderNotFoundError(order_id)
    return order


def order_to_response(session: Session, order: Order) -> OrderResponse:
    names = dict(session.execute(
        select(Product.id, Product.name).where(Product.id.in_([i.product_id for i in order.items]))
    ).all()) if order.items else {}
    return OrderResponse(
        id=order.id,
        number=order.number,
        code=order.code,
        customer_name=order.customer_name,
        status=order.status,
        order_date=order.order_date,
        delivery_date=order.delivery_date,
        delivery_address=order.delivery_address,
        notes=order.notes,
        total_amount=order.total_amount,
        created_at=order.created_at,
        items=[
            OrderItemResponse(
                id=item.id,
                product_id=item.product_id,
                product_name=names.get(item.product_id),
                quantity=item.quantity,
                unit=item.unit,
                unit_price=item.unit_price,
                discount=item.discount,
                subtotal=item.subtotal,
            )
            for item in order.items
        ],
    )


class OrderService:
    """
    Order business logic.

    Handles CRUD operations and manual status changes for orders.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self.session_factory = session_factory or get_session_factory()

    # ===================
    # READ OPERATIONS
    # ===================

    def get_all(
        self,
        page: int = 1,
        page_size: int = 20,
        status: Optional[OrderStatus] = None
    ) -> tuple[list[OrderResponse], int]:
        """
        Get orders newest first.

        Returns:
            Tuple of (orders list, total count)
        """
        logger.info("getting_orders", page=page, page_size=page_size, status=status)

        try:
            with DatabaseSession("get_orders", self.session_factory) as session:
                query = select(Order).options(selectinload(Order.items))
                count_query = select(func.count()).select_from(Order)
                if status:
                    query = query.where(Order.status == status.value)
                    count_query = count_query.where(Order.status == status.value)

                total = session.scalar(count_query) or 0
                orders = session.scalars(
                    query.order_by(Order.number.desc())
                    .offset((page - 1) * page_size)
                    .limit(page_size)
                ).all()
                return [order_to_response(session, order) for order in orders], total

        except SQLAlchemyError as e:
            logger.error("get_orders_failed", error=str(e))
            raise DatabaseError("select", str(e))

    def get_by_id(self, order_id: str) -> OrderResponse:
        """
        Raises:
            OrderNotFoundError: If order doesn't exist
        """
        try:
            with DatabaseSession("get_order", self.session_factory) as session:
                return order_to_response(session, load_order(session, order_id))

        except OrderNotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error("get_order_failed", order_id=order_id, error=str(e))
            raise DatabaseError("select", str(e))

    # ===================
    # WRITE OPERATIONS
    # ===================

    def create(self, data: OrderCreate) -> OrderResponse:
        """
        Create a confirmed order with the next sequential number.

        Raises:
            ProductNotFoundError: If an item's product doesn't exist
        """
        logger.info("creating_order", customer_name=data.customer_name, items=len(data.items))

        try:
            with DatabaseSession("create_order", self.session_factory) as session:
                order = Order(
                    number=next_number(session, Order),
                    customer_name=data.customer_name,
                    status=OrderStatus.CONFIRMED.value,
                    order_date=data.order_date or date.today(),
                    delivery_date=data.delivery_date,
                    delivery_address=data.delivery_address,
                    notes=data.notes,
                )
                self._set_items(session, order, data)
                session.add(order)
                session.flush()
                response = order_to_response(session, order)

            logger.info("order_created", order_id=response.id, code=response.code, total=str(response.total_amount))
            return response

        except AppError:
            raise
        except SAIntegrityError as e:
            logger.warning("order_number_conflict", error=str(e))
            raise ConflictError("Order number was taken concurrently, retry", code="ORDER_NUMBER_CONFLICT")
        except SQLAlchemyError as e:
            logger.error("create_order_failed", error=str(e))
            raise DatabaseError("insert", str(e))

    def update(self, order_id: str, data: OrderCreate) -> OrderResponse:
        """
        Replace an order's header and items.

        Raises:
            OrderNotFoundError: If order doesn't exist
            ConflictError: If the order is no longer CONFIRMED or has production orders
        """
        logger.info("updating_order", order_id=order_id)

        try:
            with DatabaseSession("update_order", self.session_factory) as session:
                order = load_order(session, order_id, for_update=True)
                if order.status != OrderStatus.CONFIRMED.value:
                    raise ConflictError(
                        "Only confirmed orders can be edited",
                        code="ORDER_NOT_EDITABLE",
                        details={"status": order.status}
                    )
                self._guard_no_production_orders(session, order_id)

                order.customer_name = data.customer_name
                order.order_date = data.order_date or order.order_date
                order.delivery_date = data.delivery_date
                order.delivery_address = data.delivery_address
                order.notes = data.notes
                order.items.clear()
                session.flush()
                self._set_items(session, order, data)
                session.flush()
                response = order_to_response(session, order)

            logger.info("order_updated", order_id=order_id)
            return response

        except AppError:
            raise
        except SQLAlchemyError as e:
            logger.error("update_order_failed", order_id=order_id, error=str(e))
            raise DatabaseError("update", str(e))

    def update_status(self, order_id: str, data: OrderStatusUpdate) -> OrderResponse:
        """
        Apply a manual status change.

        Cancelling an order cancels its active production orders so their
        claims on stock are released.

        Raises:
            OrderNotFoundError: If order doesn't exist
            InvalidStatusTransitionError: If transition is not allowed
        """
        logger.info("updating_order_status", order_id=order_id, new_status=data.status.value)

        try:
            with DatabaseSession("update_order_status", self.session_factory) as session:
                order = load_order(session, order_id, for_update=True)
                current = OrderStatus(order.status)
                if not is_valid_status_transition(current, data.status):
                    raise InvalidStatusTransitionError(current.value, data.status.value)

                released = 0
                if data.status == OrderStatus.CANCELLED:
                    active = session.scalars(
                        select(ProductionOrder).where(
                            ProductionOrder.order_id == order_id,
                            ProductionOrder.status.in_([s.value for s in ACTIVE_STATUSES]),
                        )
                    ).all()
                    for production_order in active:
                        production_order.status = ProductionOrderStatus.CANCELLED.value
                    released = len(active)

                order.status = data.status.value
                session.flush()
                response = order_to_response(session, order)

            logger.info(
                "order_status_updated",
                order_id=order_id,
                old_status=current.value,
                new_status=data.status.value,
                production_orders_cancelled=released
            )
            return response

        except AppError:
            raise
        except SQLAlchemyError as e:
            logger.error("update_order_status_failed", order_id=order_id, error=str(e))
            raise DatabaseError("update", str(e))

    def delete(self, order_id: str) -> bool:
        """
        Delete a confirmed order that has no production orders.

        Raises:
            OrderNotFoundError: If order doesn't exist
            ConflictError: If the order moved past CONFIRMED or has production orders
        """
        logger.info("deleting_order", order_id=order_id)

        try:
            with DatabaseSession("delete_order", self.session_factory) as session:
                order = load_order(session, order_id, for_update=True)
                if order.status != OrderStatus.CONFIRMED.value:
                    raise ConflictError(
                        "Only confirmed orders can be deleted",
                        code="ORDER_NOT_DELETABLE",
                        details={"status": order.status}
                    )
                self._guard_no_production_orders(session, order_id)
                session.delete(order)

            logger.info("order_deleted", order_id=order_id)
            return True

        except AppError:
            raise
        except SQLAlchemyError as e:
            logger.error("delete_order_failed", order_id=order_id, error=str(e))
            raise DatabaseError("delete", str(e))

    # ===================
    # HELPERS
    # ===================

    def _set_items(self, session: Session, order: Order, data: OrderCreate) -> None:
        product_ids = {item.product_id for item in data.items}
        found = set(session.scalars(select(Product.id).where(Product.id.in_(list(product_ids)))).all())
        missing = sorted(product_ids - found)
        if missing:
            raise ProductNotFoundError(missing[0])

        total = Decimal("0")
        for position, item in enumerate(data.items):
            subtotal = line_subtotal(item.quantity, item.unit_price, item.discount)
            order.items.append(OrderItem(
                product_id=item.product_id,
                position=position,
                quantity=item.quantity,
                unit=item.unit.value,
                unit_price=item.unit_price,
                discount=item.discount,
                subtotal=subtotal,
            ))
            total += subtotal
        order.total_amount = total

    def _guard_no_production_orders(self, session: Session, order_id: str) -> None:
        count = session.scalar(
            select(func.count()).select_from(ProductionOrder).where(ProductionOrder.order_id == order_id)
        )
        if count:
            raise ConflictError(
                "Order has production orders; cancel them first",
                code="ORDER_HAS_PRODUCTION_ORDERS",
                details={"production_orders": count}
            )


# Singleton instance
_order_service: Optional[OrderService] = None


def get_order_service() -> OrderService:
    """Get or create OrderService instance."""
    global _order_service
    if _order_service is None:
        _order_service = OrderService()
    return _order_service
