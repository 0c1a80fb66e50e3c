"""
Unit tests for OrderService.

Run: pytest tests/unit/test_order_service.py -v
"""

import pytest
from datetime import date
from decimal import Decimal

from models.allocation import GenerateItem
from models.order import (
    OrderCreate,
    OrderItemCreate,
    OrderStatus,
    OrderStatusUpdate,
    QuantityUnit,
    is_valid_status_transition,
    line_subtotal,
)
from models.production_order import ProductionOrderStatus
from exceptions import (
    ConflictError,
    InvalidStatusTransitionError,
    OrderNotFoundError,
    ProductNotFoundError,
)
from tests.factories import OrderFactory, ProductFactory, RecipeFactory


@pytest.fixture
def product(db_session):
    product = ProductFactory.create(db_session)
    RecipeFactory.create(db_session, product)
    return product


def order_data(product, quantity="400", **overrides) -> OrderCreate:
    values = {
        "customer_name": "Construtora Horizonte",
        "order_date": date(2026, 3, 1),
        "items": [OrderItemCreate(product_id=product.id, quantity=Decimal(quantity), unit_price=Decimal("2.50"))],
    }
    values.update(overrides)
    return OrderCreate(**values)


class TestStatusRules:
    """Tests for is_valid_status_transition() and line_subtotal()"""

    @pytest.mark.parametrize("current", [OrderStatus.CONFIRMED, OrderStatus.IN_PRODUCTION, OrderStatus.READY])
    def test_cancellable(self, current):
        assert is_valid_status_transition(current, OrderStatus.CANCELLED) is True

    @pytest.mark.parametrize("current,new", [
        (OrderStatus.CONFIRMED, OrderStatus.READY),
        (OrderStatus.CONFIRMED, OrderStatus.IN_PRODUCTION),
        (OrderStatus.DELIVERED, OrderStatus.CANCELLED),
        (OrderStatus.CANCELLED, OrderStatus.CONFIRMED),
    ])
    def test_not_manual(self, current, new):
        assert is_valid_status_transition(current, new) is False

    def test_line_subtotal_with_discount(self):
        """Should give 400 × 2.50 less 10% = 900.00."""
        assert line_subtotal(Decimal("400"), Decimal("2.50"), Decimal("10")) == Decimal("900.00")


class TestCreateOrder:
    """Tests for OrderService.create()"""

    def test_numbers_are_sequential(self, order_service, product):
        first = order_service.create(order_data(product))
        second = order_service.create(order_data(product))

        assert (first.number, second.number) == (1, 2)
        assert second.code == "ORD-0002"
        assert first.status == OrderStatus.CONFIRMED

    def test_totals(self, order_service, product):
        result = order_service.create(order_data(product, items=[
            OrderItemCreate(product_id=product.id, quantity=Decimal("400"), unit_price=Decimal("2.50")),
            OrderItemCreate(
                product_id=product.id, quantity=Decimal("10"), unit=QuantityUnit.M2,
                unit_price=Decimal("50"), discount=Decimal("10")
            ),
        ]))

        assert [item.subtotal for item in result.items] == [Decimal("1000.00"), Decimal("450.00")]
        assert result.total_amount == Decimal("1450.00")
        assert result.items[0].product_name == product.name

    def test_unknown_product(self, order_service, product):
        with pytest.raises(ProductNotFoundError):
            order_service.create(order_data(product, items=[OrderItemCreate(product_id="missing", quantity=1)]))


class TestUpdateOrder:
    """Tests for OrderService.update()"""

    def test_replaces_items(self, order_service, product):
        order = order_service.create(order_data(product))

        result = order_service.update(order.id, order_data(product, quantity="250", customer_name="Other"))

        assert result.customer_name == "Other"
        assert len(result.items) == 1
        assert result.items[0].quantity == Decimal("250")
        assert result.number == order.number

    def test_refused_with_production_orders(self, order_service, allocation_service, db_session, product):
        order = OrderFactory.create(db_session, [(product, 400)])
        allocation_service.generate_production_orders(
            order.id, [GenerateItem(order_item_id=order.items[0].id, to_produce_pieces=400)]
        )

        with pytest.raises(ConflictError):
            order_service.update(order.id, order_data(product))

    def test_refused_after_confirmation_stage(self, order_service, db_session, product):
        order = OrderFactory.create(db_session, [(product, 400)], status="READY")

        with pytest.raises(ConflictError) as exc_info:
            order_service.update(order.id, order_data(product))
        assert exc_info.value.code == "ORDER_NOT_EDITABLE"


class TestUpdateStatus:
    """Tests for OrderService.update_status()"""

    def test_cancel_releases_production_orders(
        self, order_service, allocation_service, production_order_service, db_session, product
    ):
        order = OrderFactory.create(db_session, [(product, 400)])
        created = allocation_service.generate_production_orders(
            order.id, [GenerateItem(order_item_id=order.items[0].id, to_produce_pieces=400)]
        )

        result = order_service.update_status(order.id, OrderStatusUpdate(status=OrderStatus.CANCELLED))

        assert result.status == OrderStatus.CANCELLED
        assert production_order_service.get_by_id(created[0].id).status == ProductionOrderStatus.CANCELLED

    def test_invalid_transition(self, order_service, db_session, product):
        order = OrderFactory.create(db_session, [(product, 400)])

        with pytest.raises(InvalidStatusTransitionError):
            order_service.update_status(order.id, OrderStatusUpdate(status=OrderStatus.DELIVERED))

    def test_cancelled_is_terminal(self, order_service, db_session, product):
        order = OrderFactory.create(db_session, [(product, 400)], status="CANCELLED")

        with pytest.raises(InvalidStatusTransitionError):
            order_service.update_status(order.id, OrderStatusUpdate(status=OrderStatus.CANCELLED))


class TestDeleteAndRead:
    """Tests for delete(), get_by_id() and get_all()"""

    def test_delete_confirmed(self, order_service, product):
        order = order_service.create(order_data(product))

        assert order_service.delete(order.id) is True
        with pytest.raises(OrderNotFoundError):
            order_service.get_by_id(order.id)

    def test_delete_refused_after_production(self, order_service, db_session, product):
        order = OrderFactory.create(db_session, [(product, 400)], status="IN_PRODUCTION")

        with pytest.raises(ConflictError) as exc_info:
            order_service.delete(order.id)
        assert exc_info.value.code == "ORDER_NOT_DELETABLE"

    def test_get_all_newest_first_with_filter(self, order_service, db_session, product):
        OrderFactory.create(db_session, [(product, 100)])
        OrderFactory.create(db_session, [(product, 200)], status="READY")

        orders, total = order_service.get_all()
        ready, ready_total = order_service.get_all(status=OrderStatus.READY)

        assert total == 2
        assert [o.number for o in orders] == [2, 1]
        assert ready_total == 1
        assert ready[0].items[0].quantity == Decimal("200")
