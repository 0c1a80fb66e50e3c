"""
Unit tests for InventoryLedgerService.

Run: pytest tests/unit/test_inventory_ledger_service.py -v
"""

import pytest
from decimal import Decimal

from models.inventory import ManualOutCreate, MovementSource, MovementType
from exceptions import (
    AutomaticMovementError,
    InsufficientStockError,
    MovementNotFoundError,
    ProductNotFoundError,
)
from tests.conftest import TODAY, YESTERDAY
from tests.factories import (
    LooseBalanceFactory,
    MachineFactory,
    MovementFactory,
    ProductFactory,
    ProductionFactory,
    RecipeFactory,
)


# ===================
# FIXTURES
# ===================

@pytest.fixture
def product(db_session):
    product = ProductFactory.create(db_session)
    RecipeFactory.create(db_session, product)
    return product


@pytest.fixture
def stocked(db_session, product):
    """1000 in, 250 out."""
    MovementFactory.create(db_session, product, 1000)
    MovementFactory.create(db_session, product, 250, movement_type="OUT", source="DELIVERY")
    return product


class TestQuantities:
    """Tests for available_stock(), curing_pieces() and loose_pieces()"""

    def test_available_is_in_minus_out(self, ledger_service, stocked):
        assert ledger_service.available_stock(stocked.id) == 750

    def test_available_zero_without_movements(self, ledger_service, product):
        assert ledger_service.available_stock(product.id) == 0

    def test_unknown_product(self, ledger_service):
        with pytest.raises(ProductNotFoundError):
            ledger_service.available_stock("missing")

    def test_curing_counts_unpalletized_production(self, ledger_service, palletization_service, db_session, product):
        machine = MachineFactory.create(db_session)
        ProductionFactory.create(db_session, machine, [(product, 95)], YESTERDAY)
        ProductionFactory.create(db_session, MachineFactory.create(db_session), [(product, 20)], TODAY)

        assert ledger_service.curing_pieces(product.id, as_of=TODAY) == 950

        palletization_service.reconcile(product.id, YESTERDAY, 9, 50, as_of=TODAY)
        assert ledger_service.curing_pieces(product.id, as_of=TODAY) == 0

    def test_curing_ignores_legacy_production(self, ledger_service, db_session, product):
        day = ProductionFactory.create(db_session, MachineFactory.create(db_session), [(product, 95)], YESTERDAY)
        MovementFactory.create(db_session, product, 950, production_day_id=day.id)

        assert ledger_service.curing_pieces(product.id, as_of=TODAY) == 0

    def test_loose_defaults_to_zero(self, ledger_service, db_session, product):
        assert ledger_service.loose_pieces(product.id) == 0
        LooseBalanceFactory.create(db_session, product, 42)
        assert ledger_service.loose_pieces(product.id) == 42


class TestManualOut:
    """Tests for create_manual_out() and delete_movement()"""

    def test_withdraws_stock(self, ledger_service, stocked):
        movement = ledger_service.create_manual_out(ManualOutCreate(
            product_id=stocked.id, movement_date=TODAY, quantity_pieces=150, notes="Broken"
        ))

        assert movement.type == MovementType.OUT
        assert movement.source == MovementSource.MANUAL
        assert movement.quantity_pallets == Decimal("1.5")
        assert ledger_service.available_stock(stocked.id) == 600

    def test_refuses_more_than_available(self, ledger_service, stocked):
        with pytest.raises(InsufficientStockError) as exc_info:
            ledger_service.create_manual_out(ManualOutCreate(
                product_id=stocked.id, movement_date=TODAY, quantity_pieces=751
            ))
        assert exc_info.value.details["available"] == 750
        assert ledger_service.available_stock(stocked.id) == 750

    def test_manual_movement_can_be_deleted(self, ledger_service, stocked):
        movement = ledger_service.create_manual_out(ManualOutCreate(
            product_id=stocked.id, movement_date=TODAY, quantity_pieces=50
        ))

        assert ledger_service.delete_movement(movement.id) is True
        assert ledger_service.available_stock(stocked.id) == 750

    def test_automatic_movement_cannot_be_deleted(self, ledger_service, db_session, product):
        movement = MovementFactory.create(db_session, product, 100, source="PALLETIZATION")

        with pytest.raises(AutomaticMovementError):
            ledger_service.delete_movement(movement.id)

    def test_unknown_movement(self, ledger_service):
        with pytest.raises(MovementNotFoundError):
            ledger_service.delete_movement("missing")


class TestReports:
    """Tests for get_product_stock(), get_movements() and verify_integrity()"""

    def test_product_stock_omits_idle_products(self, ledger_service, db_session, stocked):
        ProductFactory.create(db_session)

        result = ledger_service.get_product_stock(TODAY)

        assert [item.product_id for item in result.data] == [stocked.id]
        item = result.data[0]
        assert item.available_pieces == 750
        assert item.available_pallets == Decimal("7.5")
        assert item.total_in == 1000
        assert item.total_out == 250
        assert result.totals.available_pieces == 750
        assert result.totals.products_with_stock == 1

    def test_movements_filtered_by_source(self, ledger_service, stocked):
        movements, total = ledger_service.get_movements(source=MovementSource.DELIVERY)

        assert total == 1
        assert movements[0].quantity_pieces == 250
        assert movements[0].product_name == stocked.name

    def test_integrity_replay_matches_aggregate(self, ledger_service, stocked):
        report = ledger_service.verify_integrity(stocked.id)

        assert report.matches is True
        assert report.aggregate_balance == report.replayed_balance == 750
        assert report.movement_count == 2
