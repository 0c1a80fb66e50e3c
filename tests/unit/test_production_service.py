"""
Unit tests for ProductionService.

Run: pytest tests/unit/test_production_service.py -v
"""

import pytest

from models.production import ProductionDayCreate, ProductionDayUpdate, ProductionItemInput
from exceptions import (
    MachineNotFoundError,
    ProductNotFoundError,
    ProductionDayExistsError,
    ProductionDayNotFoundError,
    ProductionLockedError,
    ValidationError,
)
from tests.conftest import TODAY, YESTERDAY
from tests.factories import (
    MachineFactory,
    MovementFactory,
    ProductFactory,
    ProductionFactory,
    RecipeFactory,
)


@pytest.fixture
def machine(db_session):
    return MachineFactory.create(db_session)


@pytest.fixture
def product(db_session):
    product = ProductFactory.create(db_session)
    RecipeFactory.create(db_session, product, pieces_per_cycle=12)
    return product


def day_data(machine, items, production_date=YESTERDAY) -> ProductionDayCreate:
    return ProductionDayCreate(
        machine_id=machine.id,
        production_date=production_date,
        items=[ProductionItemInput(product_id=p.id, cycles=c) for p, c in items],
    )


class TestCreateProductionDay:
    """Tests for ProductionService.create_production_day()"""

    def test_snapshots_pieces_from_recipe(self, production_service, machine, product):
        result = production_service.create_production_day(day_data(machine, [(product, 80)]))

        assert result.machine_name == machine.name
        assert result.items[0].cycles == 80
        assert result.items[0].pieces == 960

    def test_no_snapshot_without_recipe(self, production_service, db_session, machine):
        bare = ProductFactory.create(db_session)

        result = production_service.create_production_day(day_data(machine, [(bare, 80)]))

        assert result.items[0].pieces is None

    def test_one_day_per_machine_and_date(self, production_service, machine, product):
        production_service.create_production_day(day_data(machine, [(product, 80)]))

        with pytest.raises(ProductionDayExistsError) as exc_info:
            production_service.create_production_day(day_data(machine, [(product, 10)]))
        assert exc_info.value.status_code == 409

    def test_product_limit(self, production_service, db_session, machine):
        products = [ProductFactory.create(db_session) for _ in range(3)]

        with pytest.raises(ValidationError) as exc_info:
            production_service.create_production_day(day_data(machine, [(p, 10) for p in products]))
        assert exc_info.value.code == "TOO_MANY_PRODUCTS"

    def test_duplicate_product_rejected_by_schema(self, machine, product):
        with pytest.raises(ValueError):
            day_data(machine, [(product, 10), (product, 20)])

    def test_unknown_machine(self, production_service, db_session, product):
        ghost = MachineFactory.create(db_session)
        db_session.delete(ghost)
        db_session.commit()

        with pytest.raises(MachineNotFoundError):
            production_service.create_production_day(day_data(ghost, [(product, 10)]))

    def test_unknown_product(self, production_service, db_session, machine):
        ghost = ProductFactory.create(db_session)
        db_session.delete(ghost)
        db_session.commit()

        with pytest.raises(ProductNotFoundError):
            production_service.create_production_day(day_data(machine, [(ghost, 10)]))

    def test_refused_once_date_palletized(
        self, production_service, palletization_service, db_session, machine, product
    ):
        """A second machine cannot add production to a palletized (product, date)."""
        ProductionFactory.create(db_session, machine, [(product, 80)], YESTERDAY)
        palletization_service.reconcile(product.id, YESTERDAY, 9, 60, as_of=TODAY)

        with pytest.raises(ProductionLockedError):
            production_service.create_production_day(
                day_data(MachineFactory.create(db_session), [(product, 10)])
            )


class TestUpdateProductionDay:
    """Tests for ProductionService.update_production_day()"""

    def test_replaces_items(self, production_service, db_session, machine, product):
        other = ProductFactory.create(db_session)
        RecipeFactory.create(db_session, other, pieces_per_cycle=5)
        day = production_service.create_production_day(day_data(machine, [(product, 80)]))

        result = production_service.update_production_day(day.id, ProductionDayUpdate(
            items=[ProductionItemInput(product_id=other.id, cycles=40)], notes="Mold change"
        ))

        assert [(i.product_id, i.pieces) for i in result.items] == [(other.id, 200)]
        assert result.notes == "Mold change"

    def test_locked_after_palletization(
        self, production_service, palletization_service, db_session, machine, product
    ):
        day = ProductionFactory.create(db_session, machine, [(product, 80)], YESTERDAY)
        palletization_service.reconcile(product.id, YESTERDAY, 9, 60, as_of=TODAY)

        with pytest.raises(ProductionLockedError):
            production_service.update_production_day(day.id, ProductionDayUpdate(
                items=[ProductionItemInput(product_id=product.id, cycles=81)]
            ))

    def test_locked_when_covered_by_legacy_stock(self, production_service, db_session, machine, product):
        day = ProductionFactory.create(db_session, machine, [(product, 80)], YESTERDAY)
        MovementFactory.create(db_session, product, 960, production_day_id=day.id)

        with pytest.raises(ProductionLockedError):
            production_service.update_production_day(day.id, ProductionDayUpdate(
                items=[ProductionItemInput(product_id=product.id, cycles=81)]
            ))

    def test_not_found(self, production_service, product):
        with pytest.raises(ProductionDayNotFoundError):
            production_service.update_production_day("missing", ProductionDayUpdate(
                items=[ProductionItemInput(product_id=product.id, cycles=1)]
            ))


class TestDeleteAndRead:
    """Tests for delete_production_day() and the read methods"""

    def test_delete(self, production_service, machine, product):
        day = production_service.create_production_day(day_data(machine, [(product, 80)]))

        assert production_service.delete_production_day(day.id) is True
        assert production_service.get_production_day(machine.id, YESTERDAY) is None

    def test_delete_locked_after_palletization(
        self, production_service, palletization_service, db_session, machine, product
    ):
        day = ProductionFactory.create(db_session, machine, [(product, 80)], YESTERDAY)
        palletization_service.reconcile(product.id, YESTERDAY, 9, 60, as_of=TODAY)

        with pytest.raises(ProductionLockedError):
            production_service.delete_production_day(day.id)

    def test_get_production_days_for_date(self, production_service, db_session, machine, product):
        ProductionFactory.create(db_session, machine, [(product, 80)], YESTERDAY)
        ProductionFactory.create(db_session, MachineFactory.create(db_session), [(product, 20)], YESTERDAY)
        ProductionFactory.create(db_session, machine, [(product, 50)], TODAY)

        days = production_service.get_production_days(YESTERDAY)

        assert sorted(sum(i.cycles for i in d.items) for d in days) == [20, 80]
