"""
Production order service.

Production orders are claims on future stock. They are not advanced by
hand: every read first re-evaluates active production orders against
what is physically in stock, oldest number first per product.
"""

from collections import defaultdict
from typing import Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from config import DatabaseSession, get_session_factory
from db.base import utcnow
from db.locks import lock_products
from db.tables import Delivery, DeliveryItem, Order, ProductionOrder
from models.delivery import DeliveryStatus
from models.order import CLOSED_STATUSES, OrderStatus
from models.production_order import (
    ACTIVE_STATUSES,
    SETTLED_STATUSES,
    ProductionOrderKpis,
    ProductionOrderResponse,
    ProductionOrderStatus,
    RefreshResult,
)
from exceptions import (
    AppError,
    DatabaseError,
    InvalidStatusTransitionError,
    ProductionOrderNotFoundError,
)
from services.inventory_ledger_service import stock_balances
from services.order_service import load_order

logger = structlog.get_logger(__name__)

ACTIVE_VALUES = [s.value for s in ACTIVE_STATUSES]
SETTLED_VALUES = {s.value for s in SETTLED_STATUSES}
CLOSED_VALUES = [s.value for s in CLOSED_STATUSES]


def evaluate_fifo(production_orders: list[ProductionOrder], stock: dict[str, int]) -> dict[str, ProductionOrderStatus]:
    """
    Status each active production order should have.

    Production orders are walked in number order. An order whose full
    quantity fits in what is left of its product's stock is COMPLETED and
    consumes that quantity; a partial fit is IN_PROGRESS and consumes the
    rest; nothing left means PENDING.
    """
    remaining = dict(stock)
    result = {}
    for production_order in sorted(production_orders, key=lambda po: po.number):
        available = remaining.get(production_order.product_id, 0)
        if available >= production_order.quantity_pieces:
            result[production_order.id] = ProductionOrderStatus.COMPLETED
            remaining[production_order.product_id] = available - production_order.quantity_pieces
        elif available > 0:
            result[production_order.id] = ProductionOrderStatus.IN_PROGRESS
            remaining[production_order.product_id] = 0
        else:
            result[production_order.id] = ProductionOrderStatus.PENDING
    return result


def held_by_completed(session: Session, product_ids) -> dict[str, int]:
    """
    Stock already earmarked by COMPLETED production orders whose orders
    have not shipped yet, net of what was delivered on their lines.
    """
    completed = session.scalars(
        select(ProductionOrder)
        .join(Order, ProductionOrder.order_id == Order.id)
        .where(
            ProductionOrder.product_id.in_(list(product_ids)),
            ProductionOrder.status == ProductionOrderStatus.COMPLETED.value,
            Order.status.in_([OrderStatus.IN_PRODUCTION.value, OrderStatus.READY.value]),
        )
    ).all()
    if not completed:
        return {}

    delivered = dict(session.execute(
        select(DeliveryItem.order_item_id, func.sum(DeliveryItem.quantity_pieces))
        .join(Delivery, DeliveryItem.delivery_id == Delivery.id)
        .where(
            DeliveryItem.order_item_id.in_([po.order_item_id for po in completed]),
            Delivery.status != DeliveryStatus.CANCELLED.value,
        )
        .group_by(DeliveryItem.order_item_id)
    ).all())

    held: dict[str, int] = defaultdict(int)
    for production_order in completed:
        shipped = int(delivered.get(production_order.order_item_id) or 0)
        held[production_order.product_id] += max(0, production_order.quantity_pieces - shipped)
    return dict(held)


def _to_response(production_order: ProductionOrder) -> ProductionOrderResponse:
    response = ProductionOrderResponse.model_validate(production_order)
    response.order_code = production_order.order.code
    response.customer_name = production_order.order.customer_name
    response.product_name = production_order.product.name
    return response


class ProductionOrderService:
    """
    Production order business logic.

    Core methods:
    - refresh_statuses: FIFO re-evaluation against stock, READY promotion
    - cancel / cancel_all_for_order: release claims
    - get_all / get_by_id / get_kpis: lazily refreshed reads
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self.session_factory = session_factory or get_session_factory()

    # ===================
    # STATUS REFRESH
    # ===================

    def refresh_statuses(self) -> RefreshResult:
        """
        Re-evaluate active production orders and promote finished orders.

        An IN_PRODUCTION order becomes READY once every one of its
        production orders is COMPLETED or CANCELLED.
        """
        try:
            with DatabaseSession("refresh_production_orders", self.session_factory) as session:
                result = self._refresh(session)

            if result.production_orders_updated or result.orders_ready:
                logger.info(
                    "production_orders_refreshed",
                    updated=result.production_orders_updated,
                    orders_ready=len(result.orders_ready)
                )
            return result

        except AppError:
            raise
        except SQLAlchemyError as e:
            logger.error("refresh_production_orders_failed", error=str(e))
            raise DatabaseError("update", str(e))

    # ===================
    # READ OPERATIONS
    # ===================

    def get_all(
        self,
        status: Optional[ProductionOrderStatus] = None,
        order_id: Optional[str] = None,
        page: int = 1,
        page_size: int = 20
    ) -> tuple[list[ProductionOrderResponse], int]:
        """
        Get production orders newest first, after a status refresh.

        Returns:
            Tuple of (production orders list, total count)
        """
        self.refresh_statuses()

        try:
            with DatabaseSession("get_production_orders", self.session_factory) as session:
                query = select(ProductionOrder)
                count_query = select(func.count()).select_from(ProductionOrder)
                if status:
                    query = query.where(ProductionOrder.status == status.value)
                    count_query = count_query.where(ProductionOrder.status == status.value)
                if order_id:
                    query = query.where(ProductionOrder.order_id == order_id)
                    count_query = count_query.where(ProductionOrder.order_id == order_id)

                total = session.scalar(count_query) or 0
                production_orders = session.scalars(
                    query.order_by(ProductionOrder.number.desc())
                    .offset((page - 1) * page_size)
                    .limit(page_size)
                ).all()
                return [_to_response(po) for po in production_orders], total

        except SQLAlchemyError as e:
            logger.error("get_production_orders_failed", error=str(e))
            raise DatabaseError("select", str(e))

    def get_by_id(self, production_order_id: str) -> ProductionOrderResponse:
        """
        Raises:
            ProductionOrderNotFoundError: If production order doesn't exist
        """
        self.refresh_statuses()

        try:
            with DatabaseSession("get_production_order", self.session_factory) as session:
                production_order = session.get(ProductionOrder, production_order_id)
                if production_order is None:
                    raise ProductionOrderNotFoundError(production_order_id)
                return _to_response(production_order)

        except AppError:
            raise
        except SQLAlchemyError as e:
            logger.error("get_production_order_failed", production_order_id=production_order_id, error=str(e))
            raise DatabaseError("select", str(e))

    def get_kpis(self) -> ProductionOrderKpis:
        """Counts per status and pieces still to produce."""
        self.refresh_statuses()

        try:
            with DatabaseSession("get_production_order_kpis", self.session_factory) as session:
                counts = dict(session.execute(
                    select(ProductionOrder.status, func.count()).group_by(ProductionOrder.status)
                ).all())
                pieces = session.scalar(
                    select(func.coalesce(func.sum(ProductionOrder.to_produce_pieces), 0))
                    .where(ProductionOrder.status.in_(ACTIVE_VALUES))
                )
            return ProductionOrderKpis(
                pending=counts.get(ProductionOrderStatus.PENDING.value, 0),
                in_progress=counts.get(ProductionOrderStatus.IN_PROGRESS.value, 0),
                completed=counts.get(ProductionOrderStatus.COMPLETED.value, 0),
                cancelled=counts.get(ProductionOrderStatus.CANCELLED.value, 0),
                pieces_to_produce=int(pieces or 0),
            )

        except SQLAlchemyError as e:
            logger.error("get_production_order_kpis_failed", error=str(e))
            raise DatabaseError("select", str(e))

    # ===================
    # CANCELLATION
    # ===================

    def cancel(self, production_order_id: str) -> ProductionOrderResponse:
        """
        Cancel one production order, releasing its claim.

        Raises:
            ProductionOrderNotFoundError: If production order doesn't exist
            InvalidStatusTransitionError: If it is already COMPLETED or CANCELLED
        """
        logger.info("cancelling_production_order", production_order_id=production_order_id)

        try:
            with DatabaseSession("cancel_production_order", self.session_factory) as session:
                production_order = session.scalar(
                    select(ProductionOrder)
                    .where(ProductionOrder.id == production_order_id)
                    .with_for_update()
                )
                if production_order is None:
                    raise ProductionOrderNotFoundError(production_order_id)
                if production_order.status not in ACTIVE_VALUES:
                    raise InvalidStatusTransitionError(
                        production_order.status,
                        ProductionOrderStatus.CANCELLED.value,
                        resource="Production order"
                    )

                production_order.status = ProductionOrderStatus.CANCELLED.value
                session.flush()
                response = _to_response(production_order)

            logger.info("production_order_cancelled", production_order_id=production_order_id)
            return response

        except AppError:
            raise
        except SQLAlchemyError as e:
            logger.error("cancel_production_order_failed", production_order_id=production_order_id, error=str(e))
            raise DatabaseError("update", str(e))

    def cancel_all_for_order(self, order_id: str) -> int:
        """
        Cancel every active production order of an order.

        An IN_PRODUCTION order goes back to CONFIRMED so it can be edited
        or planned again.

        Returns:
            Number of production orders cancelled

        Raises:
            OrderNotFoundError: If order doesn't exist
        """
        logger.info("cancelling_order_production_orders", order_id=order_id)

        try:
            with DatabaseSession("cancel_all_production_orders", self.session_factory) as session:
                order = load_order(session, order_id, for_update=True)
                active = session.scalars(
                    select(ProductionOrder).where(
                        ProductionOrder.order_id == order_id,
                        ProductionOrder.status.in_(ACTIVE_VALUES),
                    )
                ).all()
                for production_order in active:
                    production_order.status = ProductionOrderStatus.CANCELLED.value

                if order.status == OrderStatus.IN_PRODUCTION.value:
                    order.status = OrderStatus.CONFIRMED.value
                session.flush()
                cancelled = len(active)
                order_status = order.status

            logger.info(
                "order_production_orders_cancelled",
                order_id=order_id,
                cancelled=cancelled,
                order_status=order_status
            )
            return cancelled

        except AppError:
            raise
        except SQLAlchemyError as e:
            logger.error("cancel_all_production_orders_failed", order_id=order_id, error=str(e))
            raise DatabaseError("update", str(e))

    # ===================
    # HELPERS
    # ===================

    def _refresh(self, session: Session) -> RefreshResult:
        # Orders before products, like every other writer
        in_production = session.scalars(
            select(Order)
            .where(Order.status == OrderStatus.IN_PRODUCTION.value)
            .order_by(Order.id)
            .with_for_update()
        ).all()

        active = session.scalars(
            select(ProductionOrder)
            .join(Order, ProductionOrder.order_id == Order.id)
            .where(
                ProductionOrder.status.in_(ACTIVE_VALUES),
                Order.status.notin_(CLOSED_VALUES),
            )
        ).all()

        updated = 0
        if active:
            product_ids = {po.product_id for po in active}
            lock_products(session, product_ids)
            stock = stock_balances(session, product_ids)
            for product_id, pieces in held_by_completed(session, product_ids).items():
                stock[product_id] = stock.get(product_id, 0) - pieces

            statuses = evaluate_fifo(active, stock)
            for production_order in active:
                new_status = statuses[production_order.id]
                if new_status.value == production_order.status:
                    continue
                production_order.status = new_status.value
                if new_status == ProductionOrderStatus.COMPLETED:
                    production_order.completed_at = utcnow()
                updated += 1
            session.flush()

        orders_ready = []
        if in_production:
            statuses_by_order: dict[str, list[str]] = defaultdict(list)
            for order_id, status in session.execute(
                select(ProductionOrder.order_id, ProductionOrder.status)
                .where(ProductionOrder.order_id.in_([o.id for o in in_production]))
            ).all():
                statuses_by_order[order_id].append(status)

            for order in in_production:
                po_statuses = statuses_by_order.get(order.id, [])
                if po_statuses and all(status in SETTLED_VALUES for status in po_statuses):
                    order.status = OrderStatus.READY.value
                    orders_ready.append(order.id)
            session.flush()

        return RefreshResult(production_orders_updated=updated, orders_ready=orders_ready)


# Singleton instance
_production_order_service: Optional[ProductionOrderService] = None


def get_production_order_service() -> ProductionOrderService:
    """Get or create ProductionOrderService instance."""
    global _production_order_service
    if _production_order_service is None:
        _production_order_service = ProductionOrderService()
    return _production_order_service
