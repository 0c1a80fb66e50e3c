"""
Unit tests for DeliveryService.

Run: pytest tests/unit/test_delivery_service.py -v
"""

import pytest
from datetime import date

from models.allocation import DeliveryItemRequest, DeliveryRequest, GenerateItem
from models.delivery import DeliveryStatus, DeliveryStatusUpdate, is_valid_delivery_transition
from models.inventory import MovementSource
from models.order import OrderStatus
from models.production_order import ProductionOrderStatus
from exceptions import DeliveryNotFoundError, InvalidStatusTransitionError
from tests.conftest import TODAY
from tests.factories import MovementFactory, OrderFactory, ProductFactory, RecipeFactory


@pytest.fixture
def product(db_session):
    product = ProductFactory.create(db_session)
    RecipeFactory.create(db_session, product)
    MovementFactory.create(db_session, product, 500)
    return product


@pytest.fixture
def order(db_session, product):
    return OrderFactory.create(db_session, [(product, 100)], status="READY")


@pytest.fixture
def delivery(allocation_service, order):
    """The whole order loaded, which marks it DELIVERED."""
    return allocation_service.record_delivery(order.id, DeliveryRequest(
        items=[DeliveryItemRequest(order_item_id=order.items[0].id, quantity_pieces=100)],
        loading_date=TODAY,
        vehicle="ABC-1234",
    ))


def move(delivery_service, delivery_id, status):
    return delivery_service.update_status(delivery_id, DeliveryStatusUpdate(status=status))


class TestTransitions:
    """Tests for the delivery status rules"""

    @pytest.mark.parametrize("current,new,valid", [
        (DeliveryStatus.LOADING, DeliveryStatus.IN_TRANSIT, True),
        (DeliveryStatus.LOADING, DeliveryStatus.CANCELLED, True),
        (DeliveryStatus.IN_TRANSIT, DeliveryStatus.DELIVERED, True),
        (DeliveryStatus.LOADING, DeliveryStatus.DELIVERED, False),
        (DeliveryStatus.DELIVERED, DeliveryStatus.CANCELLED, False),
        (DeliveryStatus.CANCELLED, DeliveryStatus.LOADING, False),
    ])
    def test_rules(self, current, new, valid):
        assert is_valid_delivery_transition(current, new) is valid

    def test_delivered_stamps_date(self, delivery_service, delivery):
        move(delivery_service, delivery.id, DeliveryStatus.IN_TRANSIT)

        result = move(delivery_service, delivery.id, DeliveryStatus.DELIVERED)

        assert result.status == DeliveryStatus.DELIVERED
        assert result.delivery_date == date.today()

    def test_skip_is_refused(self, delivery_service, delivery):
        with pytest.raises(InvalidStatusTransitionError):
            move(delivery_service, delivery.id, DeliveryStatus.DELIVERED)

    def test_unknown_delivery(self, delivery_service):
        with pytest.raises(DeliveryNotFoundError):
            move(delivery_service, "missing", DeliveryStatus.IN_TRANSIT)


class TestCancel:
    """Tests for cancelling a delivery"""

    def test_cancel_puts_stock_back(self, delivery_service, ledger_service, product, delivery):
        assert ledger_service.available_stock(product.id) == 400

        move(delivery_service, delivery.id, DeliveryStatus.CANCELLED)

        assert ledger_service.available_stock(product.id) == 500
        movements, total = ledger_service.get_movements(source=MovementSource.DELIVERY_REVERSAL)
        assert total == 1
        assert movements[0].delivery_id == delivery.id
        assert ledger_service.verify_integrity(product.id).matches is True

    def test_cancel_returns_order_to_ready(
        self, delivery_service, order_service, allocation_service, order, delivery
    ):
        assert order_service.get_by_id(order.id).status == OrderStatus.DELIVERED

        move(delivery_service, delivery.id, DeliveryStatus.CANCELLED)

        assert order_service.get_by_id(order.id).status == OrderStatus.READY
        assert allocation_service.check_delivery_availability(order.id).items[0].remaining == 100

    def test_cancel_in_transit(self, delivery_service, ledger_service, product, delivery):
        move(delivery_service, delivery.id, DeliveryStatus.IN_TRANSIT)
        move(delivery_service, delivery.id, DeliveryStatus.CANCELLED)

        assert ledger_service.available_stock(product.id) == 500

    def test_cancel_after_settled_production(
        self, delivery_service, allocation_service, production_order_service, order_service,
        ledger_service, db_session, product
    ):
        """Should reopen the order while its production order stays completed."""
        order = OrderFactory.create(db_session, [(product, 600)])
        allocation_service.generate_production_orders(
            order.id, [GenerateItem(order_item_id=order.items[0].id, to_produce_pieces=100)]
        )
        MovementFactory.create(db_session, product, 100)
        delivery = allocation_service.record_delivery(order.id, DeliveryRequest(
            items=[DeliveryItemRequest(order_item_id=order.items[0].id, quantity_pieces=600)],
            loading_date=TODAY,
        ))
        assert order_service.get_by_id(order.id).status == OrderStatus.DELIVERED

        move(delivery_service, delivery.id, DeliveryStatus.CANCELLED)

        assert order_service.get_by_id(order.id).status == OrderStatus.READY
        assert ledger_service.available_stock(product.id) == 600
        production_orders, _ = production_order_service.get_all(order_id=order.id)
        assert production_orders[0].status == ProductionOrderStatus.COMPLETED

    def test_cancelled_is_terminal(self, delivery_service, delivery):
        move(delivery_service, delivery.id, DeliveryStatus.CANCELLED)

        with pytest.raises(InvalidStatusTransitionError):
            move(delivery_service, delivery.id, DeliveryStatus.CANCELLED)


class TestReads:
    """Tests for get_all() and get_by_id()"""

    def test_get_by_id(self, delivery_service, order, delivery):
        result = delivery_service.get_by_id(delivery.id)

        assert result.order_code == order.code
        assert result.vehicle == "ABC-1234"
        assert result.items[0].product_name is not None

    def test_get_all_filters(self, delivery_service, order, delivery):
        deliveries, total = delivery_service.get_all(order_id=order.id)
        cancelled, cancelled_total = delivery_service.get_all(status=DeliveryStatus.CANCELLED)

        assert total == 1
        assert deliveries[0].id == delivery.id
        assert cancelled_total == 0
