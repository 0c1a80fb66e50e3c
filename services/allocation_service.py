"""
Allocation service - matches order demand against available stock.

Stock is shared by every order. An order may only count on what is left
after other orders' active production orders have taken their claims:

    available_for_this_order = max(0, available_stock − reserved_by_others)
    suggested_to_produce     = max(0, quantity_pieces − available_for_this_order)

Writes (production order generation, deliveries) lock the order row, then
its product rows, and recompute stock and claims inside the same
transaction, so two orders cannot be promised or shipped the same
physical pieces.
"""

from collections import defaultdict
from datetime import date
from typing import Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError as SAIntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from config import DatabaseSession, get_session_factory, settings
from db.base import utcnow
from db.locks import lock_products
from db.tables import Delivery, DeliveryItem, Order, OrderItem, Product, ProductionOrder, format_number
from models.allocation import (
    DeliveryAvailabilityItem,
    DeliveryAvailabilityResponse,
    DeliveryRequest,
    GenerateItem,
    ReservationDetail,
    StockCheckItem,
    StockCheckResponse,
)
from models.delivery import DeliveryResponse, DeliveryStatus
from models.inventory import MovementSource, MovementType
from models.order import CLOSED_STATUSES, DELIVERABLE_STATUSES, OrderStatus
from models.production_order import ACTIVE_STATUSES, ProductionOrderResponse, ProductionOrderStatus
from exceptions import (
    AppError,
    ConflictError,
    DatabaseError,
    InsufficientStockError,
    ProductionOrderExistsError,
    ValidationError,
)
from services.inventory_ledger_service import record_movement, stock_balances
from services.order_service import load_order, next_number
from services.recipe_service import load_recipes
from services.unit_conversion import to_pieces

logger = structlog.get_logger(__name__)


# ===================
# SESSION HELPERS
# ===================

def claim_size(production_order: ProductionOrder) -> int:
    """Pieces an active production order holds against stock."""
    if settings.reserve_full_quantity:
        return production_order.quantity_pieces
    return production_order.to_produce_pieces


def reservations_by_product(
    session: Session,
    product_ids,
    exclude_order_id: Optional[str] = None
) -> dict[str, tuple[int, list[ReservationDetail]]]:
    """
    Active claims of other orders, per product.

    Returns:
        {product_id: (total_reserved, details)}
    """
    ids = list(set(product_ids))
    if not ids:
        return {}

    query = (
        select(ProductionOrder, Order.number)
        .join(Order, ProductionOrder.order_id == Order.id)
        .where(
            ProductionOrder.product_id.in_(ids),
            ProductionOrder.status.in_([s.value for s in ACTIVE_STATUSES]),
            Order.status.notin_([s.value for s in CLOSED_STATUSES]),
        )
        .order_by(ProductionOrder.number)
    )
    if exclude_order_id:
        query = query.where(ProductionOrder.order_id != exclude_order_id)

    totals: dict[str, int] = defaultdict(int)
    details: dict[str, list[ReservationDetail]] = defaultdict(list)
    for production_order, order_number in session.execute(query).all():
        pieces = claim_size(production_order)
        totals[production_order.product_id] += pieces
        details[production_order.product_id].append(ReservationDetail(
            production_order_id=production_order.id,
            production_order_code=production_order.code,
            order_id=production_order.order_id,
            order_code=format_number("ORD", order_number),
            reserved_pieces=pieces,
        ))
    return {product_id: (totals[product_id], details[product_id]) for product_id in totals}


def delivered_by_item(session: Session, order_id: str) -> dict[str, int]:
    """Pieces already loaded per order item, ignoring cancelled deliveries."""
    rows = session.execute(
        select(DeliveryItem.order_item_id, func.sum(DeliveryItem.quantity_pieces))
        .join(Delivery, DeliveryItem.delivery_id == Delivery.id)
        .where(
            Delivery.order_id == order_id,
            Delivery.status != DeliveryStatus.CANCELLED.value,
        )
        .group_by(DeliveryItem.order_item_id)
    ).all()
    return {order_item_id: int(total or 0) for order_item_id, total in rows}


def item_pieces(session: Session, items: list[OrderItem]) -> dict[str, int]:
    """Ordered quantity of each item in whole pieces."""
    recipes = load_recipes(session, [item.product_id for item in items])
    return {
        item.id: to_pieces(item.quantity, item.unit, recipes.get(item.product_id), item.product_id)
        for item in items
    }


def is_fully_delivered(session: Session, order: Order) -> bool:
    pieces = item_pieces(session, order.items)
    delivered = delivered_by_item(session, order.id)
    return all(delivered.get(item.id, 0) >= pieces[item.id] for item in order.items)


def settle_production_orders(session: Session, order_id: str) -> int:
    """
    Complete the active production orders of a fully delivered order.

    The pieces left the yard, so the claims are closed as COMPLETED.

    Returns:
        Number of production orders settled
    """
    active = session.scalars(
        select(ProductionOrder)
        .where(
            ProductionOrder.order_id == order_id,
            ProductionOrder.status.in_([s.value for s in ACTIVE_STATUSES]),
        )
        .with_for_update()
    ).all()
    for production_order in active:
        production_order.status = ProductionOrderStatus.COMPLETED.value
        production_order.completed_at = utcnow()
    return len(active)


def production_order_to_response(
    production_order: ProductionOrder,
    order: Optional[Order] = None,
    product_name: Optional[str] = None
) -> ProductionOrderResponse:
    response = ProductionOrderResponse.model_validate(production_order)
    if order is not None:
        response.order_code = order.code
        response.customer_name = order.customer_name
    response.product_name = product_name
    return response


def delivery_to_response(session: Session, delivery: Delivery, order: Optional[Order] = None) -> DeliveryResponse:
    names = dict(session.execute(
        select(Product.id, Product.name).where(Product.id.in_([i.product_id for i in delivery.items]))
    ).all()) if delivery.items else {}
    response = DeliveryResponse.model_validate(delivery)
    response.order_code = (order or delivery.order).code
    for item in response.items:
        item.product_name = names.get(item.product_id)
    return response


class AllocationService:
    """
    Demand allocation business logic.

    Core methods:
    - check_stock: What an order can take from stock and what to produce
    - generate_production_orders: Turn the production plan into claims
    - check_delivery_availability: What can be loaded right now
    - record_delivery: Load goods and take them out of stock
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self.session_factory = session_factory or get_session_factory()

    # ===================
    # STOCK CHECK
    # ===================

    def check_stock(self, order_id: str) -> StockCheckResponse:
        """
        Stock position of every line of an order.

        Raises:
            OrderNotFoundError: If order doesn't exist
            UnitConversionError: If an M2 line has no pieces_per_m2
        """
        logger.info("checking_stock", order_id=order_id)

        try:
            with DatabaseSession("check_stock", self.session_factory) as session:
                order = load_order(session, order_id)
                items = self._build_stock_check(session, order)

            logger.info(
                "stock_check_completed",
                order_id=order_id,
                items=len(items),
                to_produce=sum(item.suggested_to_produce for item in items)
            )
            return StockCheckResponse(order_id=order_id, order_code=order.code, items=items)

        except AppError:
            raise
        except SQLAlchemyError as e:
            logger.error("check_stock_failed", order_id=order_id, error=str(e))
            raise DatabaseError("select", str(e))

    # ===================
    # PRODUCTION ORDERS
    # ===================

    def generate_production_orders(self, order_id: str, items: list[GenerateItem]) -> list[ProductionOrderResponse]:
        """
        Create one production order per requested order line.

        The order moves to IN_PRODUCTION once every line either has a
        production order or is fully covered by stock.

        Raises:
            OrderNotFoundError: If order doesn't exist
            ValidationError: Order not CONFIRMED, foreign or repeated item, quantity out of range
            ProductionOrderExistsError: If a line already has a production order
        """
        logger.info("generating_production_orders", order_id=order_id, items=len(items))

        try:
            with DatabaseSession("generate_production_orders", self.session_factory) as session:
                order = load_order(session, order_id, for_update=True)
                if order.status != OrderStatus.CONFIRMED.value:
                    raise ValidationError(
                        message="Only confirmed orders can generate production orders",
                        code="ORDER_NOT_CONFIRMED",
                        details={"status": order.status}
                    )

                order_items = {item.id: item for item in order.items}
                seen: set[str] = set()
                for request in items:
                    if request.order_item_id not in order_items:
                        raise ValidationError(
                            message="Order item does not belong to this order",
                            code="ORDER_ITEM_MISMATCH",
                            details={"order_item_id": request.order_item_id}
                        )
                    if request.order_item_id in seen:
                        raise ValidationError(
                            message="Each order item may appear only once",
                            code="DUPLICATE_ORDER_ITEM",
                            details={"order_item_id": request.order_item_id}
                        )
                    seen.add(request.order_item_id)

                existing = {
                    po.order_item_id: po
                    for po in session.scalars(
                        select(ProductionOrder).where(
                            ProductionOrder.order_id == order_id,
                            ProductionOrder.status != ProductionOrderStatus.CANCELLED.value,
                        )
                    ).all()
                }
                for request in items:
                    if request.order_item_id in existing:
                        raise ProductionOrderExistsError(
                            request.order_item_id, existing[request.order_item_id].code
                        )

                products = lock_products(session, [item.product_id for item in order.items])
                stock_items = {item.order_item_id: item for item in self._build_stock_check(session, order)}

                number = next_number(session, ProductionOrder)
                created = []
                for request in items:
                    check = stock_items[request.order_item_id]
                    if request.to_produce_pieces > check.quantity_pieces:
                        raise ValidationError(
                            message="Cannot produce more than the ordered quantity",
                            code="TO_PRODUCE_EXCEEDS_ORDERED",
                            details={
                                "order_item_id": request.order_item_id,
                                "to_produce_pieces": request.to_produce_pieces,
                                "quantity_pieces": check.quantity_pieces,
                            }
                        )
                    production_order = ProductionOrder(
                        number=number,
                        order_id=order_id,
                        order_item_id=request.order_item_id,
                        product_id=check.product_id,
                        quantity_pieces=check.quantity_pieces,
                        stock_at_creation=max(0, check.available_stock),
                        to_produce_pieces=request.to_produce_pieces,
                        status=ProductionOrderStatus.PENDING.value,
                        notes=request.notes,
                    )
                    session.add(production_order)
                    created.append(production_order)
                    number += 1
                session.flush()

                with_po = set(existing) | {po.order_item_id for po in created}
                if all(
                    item_id in with_po or check.available_for_this_order >= check.quantity_pieces
                    for item_id, check in stock_items.items()
                ):
                    order.status = OrderStatus.IN_PRODUCTION.value
                session.flush()

                responses = [
                    production_order_to_response(po, order, products[po.product_id].name)
                    for po in created
                ]
                new_status = order.status

            logger.info(
                "production_orders_generated",
                order_id=order_id,
                count=len(responses),
                order_status=new_status
            )
            return responses

        except AppError:
            raise
        except SAIntegrityError as e:
            logger.warning("production_order_conflict", order_id=order_id, error=str(e))
            raise ConflictError(
                "Production orders were generated concurrently for this order",
                code="PRODUCTION_ORDER_CONFLICT"
            )
        except SQLAlchemyError as e:
            logger.error("generate_production_orders_failed", order_id=order_id, error=str(e))
            raise DatabaseError("insert", str(e))

    # ===================
    # DELIVERIES
    # ===================

    def check_delivery_availability(self, order_id: str) -> DeliveryAvailabilityResponse:
        """
        What can be loaded for each order line right now.

        Raises:
            OrderNotFoundError: If order doesn't exist
        """
        try:
            with DatabaseSession("check_delivery_availability", self.session_factory) as session:
                order = load_order(session, order_id)
                items = self._build_availability(session, order)
            return DeliveryAvailabilityResponse(order_id=order_id, order_code=order.code, items=items)

        except AppError:
            raise
        except SQLAlchemyError as e:
            logger.error("check_delivery_availability_failed", order_id=order_id, error=str(e))
            raise DatabaseError("select", str(e))

    def record_delivery(self, order_id: str, data: DeliveryRequest) -> DeliveryResponse:
        """
        Load goods for an order and take them out of stock.

        Requests above what remains to deliver or above available stock
        are refused, never truncated.

        Raises:
            OrderNotFoundError: If order doesn't exist
            ValidationError: Order not deliverable, foreign item or quantity above remaining
            InsufficientStockError: If stock cannot cover the requested pieces
        """
        logger.info("recording_delivery", order_id=order_id, items=len(data.items))

        try:
            with DatabaseSession("record_delivery", self.session_factory) as session:
                order = load_order(session, order_id, for_update=True)
                if OrderStatus(order.status) not in DELIVERABLE_STATUSES:
                    raise ValidationError(
                        message="Only orders in production or ready can be delivered",
                        code="ORDER_NOT_DELIVERABLE",
                        details={"status": order.status}
                    )

                order_items = {item.id: item for item in order.items}
                requested: dict[str, int] = defaultdict(int)
                for request in data.items:
                    if request.order_item_id not in order_items:
                        raise ValidationError(
                            message="Order item does not belong to this order",
                            code="ORDER_ITEM_MISMATCH",
                            details={"order_item_id": request.order_item_id}
                        )
                    requested[request.order_item_id] += request.quantity_pieces

                lock_products(session, [order_items[item_id].product_id for item_id in requested])
                availability = {item.order_item_id: item for item in self._build_availability(session, order)}

                per_product: dict[str, int] = defaultdict(int)
                for order_item_id, pieces in requested.items():
                    line = availability[order_item_id]
                    if pieces > line.remaining:
                        logger.warning(
                            "delivery_refused",
                            order_id=order_id,
                            order_item_id=order_item_id,
                            requested=pieces,
                            remaining=line.remaining
                        )
                        raise ValidationError(
                            message=f"Requested {pieces} pieces but only {line.remaining} remain to deliver",
                            code="EXCEEDS_REMAINING",
                            details={
                                "order_item_id": order_item_id,
                                "requested": pieces,
                                "remaining": line.remaining,
                            }
                        )
                    per_product[line.product_id] += pieces

                stock = {line.product_id: line.available_stock for line in availability.values()}
                for product_id, pieces in per_product.items():
                    if pieces > max(0, stock.get(product_id, 0)):
                        logger.warning(
                            "delivery_refused",
                            order_id=order_id,
                            product_id=product_id,
                            requested=pieces,
                            available=stock.get(product_id, 0)
                        )
                        raise InsufficientStockError(product_id, pieces, max(0, stock.get(product_id, 0)))

                loading_date = data.loading_date or date.today()
                delivery = Delivery(
                    number=next_number(session, Delivery),
                    order_id=order_id,
                    status=DeliveryStatus.LOADING.value,
                    loading_date=loading_date,
                    delivery_address=data.delivery_address or order.delivery_address,
                    vehicle=data.vehicle,
                    driver=data.driver,
                    notes=data.notes,
                )
                session.add(delivery)
                session.flush()

                recipes = load_recipes(session, per_product.keys())
                for order_item_id, pieces in requested.items():
                    product_id = order_items[order_item_id].product_id
                    delivery.items.append(DeliveryItem(
                        order_item_id=order_item_id,
                        product_id=product_id,
                        quantity_pieces=pieces,
                    ))
                    record_movement(
                        session,
                        product_id=product_id,
                        movement_date=loading_date,
                        movement_type=MovementType.OUT,
                        source=MovementSource.DELIVERY,
                        quantity_pieces=pieces,
                        recipe=recipes.get(product_id),
                        delivery_id=delivery.id,
                        notes=f"Delivery {delivery.code} for {order.code}",
                    )
                session.flush()

                settled = 0
                if is_fully_delivered(session, order):
                    order.status = OrderStatus.DELIVERED.value
                    settled = settle_production_orders(session, order_id)
                session.flush()

                response = delivery_to_response(session, delivery, order)
                order_status = order.status

            logger.info(
                "delivery_recorded",
                delivery_id=response.id,
                order_id=order_id,
                pieces=sum(requested.values()),
                order_status=order_status,
                production_orders_settled=settled
            )
            return response

        except AppError:
            raise
        except SAIntegrityError as e:
            logger.warning("delivery_number_conflict", order_id=order_id, error=str(e))
            raise ConflictError("Delivery number was taken concurrently, retry", code="DELIVERY_NUMBER_CONFLICT")
        except SQLAlchemyError as e:
            logger.error("record_delivery_failed", order_id=order_id, error=str(e))
            raise DatabaseError("insert", str(e))

    # ===================
    # HELPERS
    # ===================

    def _build_stock_check(self, session: Session, order: Order) -> list[StockCheckItem]:
        product_ids = {item.product_id for item in order.items}
        pieces = item_pieces(session, order.items)
        balances = stock_balances(session, product_ids)
        reserved = reservations_by_product(session, product_ids, exclude_order_id=order.id)
        names = dict(session.execute(
            select(Product.id, Product.name).where(Product.id.in_(list(product_ids)))
        ).all())
        with_po = set(session.scalars(
            select(ProductionOrder.order_item_id).where(
                ProductionOrder.order_id == order.id,
                ProductionOrder.status != ProductionOrderStatus.CANCELLED.value,
            )
        ).all())

        result = []
        for item in order.items:
            available = balances.get(item.product_id, 0)
            reserved_total, details = reserved.get(item.product_id, (0, []))
            available_for_order = max(0, available - reserved_total)
            quantity_pieces = pieces[item.id]
            result.append(StockCheckItem(
                order_item_id=item.id,
                product_id=item.product_id,
                product_name=names.get(item.product_id, ""),
                quantity=item.quantity,
                unit=item.unit,
                quantity_pieces=quantity_pieces,
                available_stock=available,
                reserved_by_others=reserved_total,
                reserved_details=details,
                available_for_this_order=available_for_order,
                suggested_to_produce=max(0, quantity_pieces - available_for_order),
                has_production_order=item.id in with_po,
            ))
        return result

    def _build_availability(self, session: Session, order: Order) -> list[DeliveryAvailabilityItem]:
        product_ids = {item.product_id for item in order.items}
        pieces = item_pieces(session, order.items)
        delivered = delivered_by_item(session, order.id)
        balances = stock_balances(session, product_ids)
        names = dict(session.execute(
            select(Product.id, Product.name).where(Product.id.in_(list(product_ids)))
        ).all())

        result = []
        for item in order.items:
            already = delivered.get(item.id, 0)
            remaining = max(0, pieces[item.id] - already)
            available = balances.get(item.product_id, 0)
            result.append(DeliveryAvailabilityItem(
                order_item_id=item.id,
                product_id=item.product_id,
                product_name=names.get(item.product_id, ""),
                quantity_pieces=pieces[item.id],
                already_delivered=already,
                remaining=remaining,
                available_stock=available,
                deliverable=min(remaining, max(0, available)),
            ))
        return result


# Singleton instance
_allocation_service: Optional[AllocationService] = None


def get_allocation_service() -> AllocationService:
    """Get or create AllocationService instance."""
    global _allocation_service
    if _allocation_service is None:
        _allocation_service = AllocationService()
    return _allocation_service
