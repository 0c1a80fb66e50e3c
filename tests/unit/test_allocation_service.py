"""
Unit tests for AllocationService.

Covers the stock check, production order generation and delivery
recording, including claims made by other orders on the same stock.

Run: pytest tests/unit/test_allocation_service.py -v
"""

import pytest
from decimal import Decimal

from config import settings
from models.allocation import DeliveryItemRequest, DeliveryRequest, GenerateItem
from models.delivery import DeliveryStatus
from models.inventory import MovementSource
from models.order import OrderStatus
from models.production_order import ProductionOrderStatus
from exceptions import (
    InsufficientStockError,
    OrderNotFoundError,
    ProductionOrderExistsError,
    UnitConversionError,
    ValidationError,
)
from tests.conftest import TODAY
from tests.factories import MovementFactory, OrderFactory, ProductFactory, RecipeFactory


# ===================
# FIXTURES
# ===================

@pytest.fixture
def product(db_session):
    """Paver with 500 pieces in stock."""
    product = ProductFactory.create(db_session)
    RecipeFactory.create(db_session, product)
    MovementFactory.create(db_session, product, 500)
    return product


@pytest.fixture
def other_order(db_session, allocation_service, product):
    """Another customer's order of 300 that claims 200 to produce."""
    order = OrderFactory.create(db_session, [(product, 300)], customer_name="Other Customer")
    allocation_service.generate_production_orders(
        order.id, [GenerateItem(order_item_id=order.items[0].id, to_produce_pieces=200)]
    )
    return order


def generate(allocation_service, order, to_produce, index=0):
    return allocation_service.generate_production_orders(
        order.id, [GenerateItem(order_item_id=order.items[index].id, to_produce_pieces=to_produce)]
    )


def deliver(allocation_service, order, pieces, index=0):
    return allocation_service.record_delivery(order.id, DeliveryRequest(
        items=[DeliveryItemRequest(order_item_id=order.items[index].id, quantity_pieces=pieces)],
        loading_date=TODAY,
    ))


class TestCheckStock:
    """Tests for AllocationService.check_stock()"""

    def test_no_claims(self, allocation_service, db_session, product):
        order = OrderFactory.create(db_session, [(product, 400)])

        item = allocation_service.check_stock(order.id).items[0]

        assert item.available_stock == 500
        assert item.reserved_by_others == 0
        assert item.available_for_this_order == 500
        assert item.suggested_to_produce == 0

    def test_other_orders_claims_are_subtracted(self, allocation_service, db_session, product, other_order):
        """500 in stock, 200 claimed elsewhere, 400 ordered → produce 100."""
        order = OrderFactory.create(db_session, [(product, 400)])

        item = allocation_service.check_stock(order.id).items[0]

        assert item.reserved_by_others == 200
        assert item.available_for_this_order == 300
        assert item.suggested_to_produce == 100
        assert item.reserved_details[0].order_id == other_order.id
        assert item.reserved_details[0].production_order_code == "PO-0001"

    def test_own_claims_are_not_subtracted(self, allocation_service, other_order):
        item = allocation_service.check_stock(other_order.id).items[0]

        assert item.reserved_by_others == 0
        assert item.has_production_order is True

    def test_full_quantity_claims(self, monkeypatch, allocation_service, db_session, product, other_order):
        """With the ordered basis the other order holds all 300 pieces."""
        monkeypatch.setattr(settings, "reservation_basis", "ordered")
        order = OrderFactory.create(db_session, [(product, 400)])

        item = allocation_service.check_stock(order.id).items[0]

        assert item.reserved_by_others == 300
        assert item.suggested_to_produce == 200

    def test_cancelled_claims_are_released(
        self, allocation_service, production_order_service, db_session, product, other_order
    ):
        production_order_service.cancel_all_for_order(other_order.id)
        order = OrderFactory.create(db_session, [(product, 400)])

        assert allocation_service.check_stock(order.id).items[0].reserved_by_others == 0

    def test_claims_never_make_availability_negative(self, allocation_service, db_session, product, other_order):
        third = OrderFactory.create(db_session, [(product, 1000)])
        generate(allocation_service, third, 700)
        order = OrderFactory.create(db_session, [(product, 50)])

        item = allocation_service.check_stock(order.id).items[0]

        assert item.reserved_by_others == 900
        assert item.available_for_this_order == 0
        assert item.suggested_to_produce == 50

    def test_m2_lines_are_converted(self, allocation_service, db_session, product):
        """10.01 m² at 40 pieces per m² rounds up to 401 pieces."""
        order = OrderFactory.create(db_session, [(product, Decimal("10.01"), "M2")])

        item = allocation_service.check_stock(order.id).items[0]

        assert item.quantity_pieces == 401
        assert item.unit.value == "M2"

    def test_m2_without_pieces_per_m2(self, allocation_service, db_session):
        bare = ProductFactory.create(db_session)
        RecipeFactory.create(db_session, bare, pieces_per_m2=None)
        order = OrderFactory.create(db_session, [(bare, 10, "M2")])

        with pytest.raises(UnitConversionError):
            allocation_service.check_stock(order.id)

    def test_unknown_order(self, allocation_service):
        with pytest.raises(OrderNotFoundError):
            allocation_service.check_stock("missing")


class TestGenerateProductionOrders:
    """Tests for AllocationService.generate_production_orders()"""

    def test_creates_claim_and_moves_to_in_production(self, allocation_service, order_service, db_session, product):
        order = OrderFactory.create(db_session, [(product, 800)])

        created = generate(allocation_service, order, 300)

        assert len(created) == 1
        po = created[0]
        assert po.code == "PO-0001"
        assert po.quantity_pieces == 800
        assert po.stock_at_creation == 500
        assert po.to_produce_pieces == 300
        assert po.status == ProductionOrderStatus.PENDING
        assert po.order_code == order.code
        assert order_service.get_by_id(order.id).status == OrderStatus.IN_PRODUCTION

    def test_uncovered_line_keeps_order_confirmed(self, allocation_service, order_service, db_session, product):
        other = ProductFactory.create(db_session)
        RecipeFactory.create(db_session, other)
        order = OrderFactory.create(db_session, [(product, 400), (other, 100)])

        generate(allocation_service, order, 0)

        assert order_service.get_by_id(order.id).status == OrderStatus.CONFIRMED

    def test_covered_line_does_not_need_a_production_order(
        self, allocation_service, order_service, db_session, product
    ):
        other = ProductFactory.create(db_session)
        RecipeFactory.create(db_session, other)
        order = OrderFactory.create(db_session, [(product, 400), (other, 100)])

        generate(allocation_service, order, 100, index=1)

        assert order_service.get_by_id(order.id).status == OrderStatus.IN_PRODUCTION

    def test_numbers_are_sequential(self, allocation_service, db_session, product, other_order):
        order = OrderFactory.create(db_session, [(product, 400)])

        assert generate(allocation_service, order, 100)[0].number == 2

    def test_one_live_production_order_per_line(self, allocation_service, other_order):
        with pytest.raises(ProductionOrderExistsError) as exc_info:
            generate(allocation_service, other_order, 100)
        assert exc_info.value.status_code == 409

    def test_regenerate_after_cancel_all(self, allocation_service, production_order_service, other_order):
        production_order_service.cancel_all_for_order(other_order.id)

        created = generate(allocation_service, other_order, 150)

        assert created[0].to_produce_pieces == 150

    def test_order_must_be_confirmed(self, allocation_service, db_session, product):
        order = OrderFactory.create(db_session, [(product, 400)], status="READY")

        with pytest.raises(ValidationError) as exc_info:
            generate(allocation_service, order, 100)
        assert exc_info.value.code == "ORDER_NOT_CONFIRMED"

    def test_foreign_item(self, allocation_service, db_session, product, other_order):
        order = OrderFactory.create(db_session, [(product, 400)])

        with pytest.raises(ValidationError) as exc_info:
            allocation_service.generate_production_orders(
                order.id, [GenerateItem(order_item_id=other_order.items[0].id, to_produce_pieces=10)]
            )
        assert exc_info.value.code == "ORDER_ITEM_MISMATCH"

    def test_repeated_line_is_rejected(self, allocation_service, production_order_service, db_session, product):
        """Should refuse a second claim on the same line within one request."""
        order = OrderFactory.create(db_session, [(product, 800)])
        item_id = order.items[0].id

        with pytest.raises(ValidationError) as exc_info:
            allocation_service.generate_production_orders(order.id, [
                GenerateItem(order_item_id=item_id, to_produce_pieces=300),
                GenerateItem(order_item_id=item_id, to_produce_pieces=300),
            ])
        assert exc_info.value.code == "DUPLICATE_ORDER_ITEM"
        assert production_order_service.get_all()[1] == 0

    def test_cannot_exceed_ordered(self, allocation_service, production_order_service, db_session, product):
        order = OrderFactory.create(db_session, [(product, 400)])

        with pytest.raises(ValidationError) as exc_info:
            generate(allocation_service, order, 401)
        assert exc_info.value.code == "TO_PRODUCE_EXCEEDS_ORDERED"
        assert production_order_service.get_all()[1] == 0


class TestRecordDelivery:
    """Tests for check_delivery_availability() and record_delivery()"""

    @pytest.fixture
    def order(self, db_session, product):
        """700 pieces ordered against 500 in stock."""
        return OrderFactory.create(db_session, [(product, 700)], status="IN_PRODUCTION")

    def test_availability(self, allocation_service, order):
        item = allocation_service.check_delivery_availability(order.id).items[0]

        assert item.remaining == 700
        assert item.available_stock == 500
        assert item.deliverable == 500

    def test_refuses_more_than_stock(self, allocation_service, ledger_service, db_session, product, order):
        """Should refuse 600 with 450 on hand instead of loading 450."""
        MovementFactory.create(db_session, product, 50, movement_type="OUT", source="MANUAL")

        with pytest.raises(InsufficientStockError) as exc_info:
            deliver(allocation_service, order, 600)
        assert exc_info.value.status_code == 422
        assert exc_info.value.details["available"] == 450
        assert ledger_service.available_stock(product.id) == 450

    def test_refuses_more_than_remaining(self, allocation_service, order):
        with pytest.raises(ValidationError) as exc_info:
            deliver(allocation_service, order, 701)
        assert exc_info.value.code == "EXCEEDS_REMAINING"

    def test_partial_delivery(self, allocation_service, ledger_service, order_service, product, order):
        delivery = deliver(allocation_service, order, 450)

        assert delivery.code == "DEL-0001"
        assert delivery.status == DeliveryStatus.LOADING
        assert delivery.items[0].quantity_pieces == 450
        assert ledger_service.available_stock(product.id) == 50
        assert order_service.get_by_id(order.id).status == OrderStatus.IN_PRODUCTION
        assert allocation_service.check_delivery_availability(order.id).items[0].remaining == 250

    def test_full_delivery_marks_order_delivered(
        self, allocation_service, order_service, db_session, product, order
    ):
        deliver(allocation_service, order, 400)
        MovementFactory.create(db_session, product, 200)
        deliver(allocation_service, order, 300)

        assert order_service.get_by_id(order.id).status == OrderStatus.DELIVERED

    def test_full_delivery_settles_production_orders(
        self, allocation_service, production_order_service, db_session, product
    ):
        """Should release the claim of a delivered order so the next order can use new stock."""
        order = OrderFactory.create(db_session, [(product, 700)])
        generate(allocation_service, order, 200)
        deliver(allocation_service, order, 500)
        MovementFactory.create(db_session, product, 200)
        deliver(allocation_service, order, 200)
        MovementFactory.create(db_session, product, 300)

        production_orders, _ = production_order_service.get_all(order_id=order.id)
        assert production_orders[0].status == ProductionOrderStatus.COMPLETED
        assert production_orders[0].completed_at is not None

        next_order = OrderFactory.create(db_session, [(product, 300)], customer_name="Next Customer")
        item = allocation_service.check_stock(next_order.id).items[0]
        assert item.reserved_by_others == 0
        assert item.reserved_details == []
        assert item.available_for_this_order == 300
        assert item.suggested_to_produce == 0

    def test_delivery_movement_is_linked(self, allocation_service, ledger_service, order):
        delivery = deliver(allocation_service, order, 100)

        movements, total = ledger_service.get_movements(source=MovementSource.DELIVERY)

        assert total == 1
        assert movements[0].delivery_id == delivery.id
        assert movements[0].movement_date == TODAY

    def test_confirmed_order_is_not_deliverable(self, allocation_service, db_session, product):
        order = OrderFactory.create(db_session, [(product, 100)])

        with pytest.raises(ValidationError) as exc_info:
            deliver(allocation_service, order, 100)
        assert exc_info.value.code == "ORDER_NOT_DELIVERABLE"
