"""
Shared test fixtures.

Every test gets a fresh in-memory SQLite database. Services are built
against its session factory, so tests exercise the real SQL.
"""

import sys
from pathlib import Path

# Add project root to Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

import pytest
from datetime import date, timedelta
from typing import Generator

from sqlalchemy.orm import Session, sessionmaker

from config import build_engine
from db.base import Base
import db.tables  # noqa: F401  registers the mappers

# Fixed reference date for curing and counting
TODAY = date(2026, 3, 10)
YESTERDAY = TODAY - timedelta(days=1)


# ===================
# DATABASE
# ===================

@pytest.fixture
def engine():
    """In-memory SQLite engine with all tables created."""
    engine = build_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory) -> Generator[Session, None, None]:
    """
    Session for arranging test data.

    Factories commit what they create, so services see it.
    """
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


# ===================
# SERVICES
# ===================

@pytest.fixture
def product_service(session_factory):
    from services.product_service import ProductService
    return ProductService(session_factory)


@pytest.fixture
def recipe_service(session_factory):
    from services.recipe_service import RecipeService
    return RecipeService(session_factory)


@pytest.fixture
def production_service(session_factory):
    from services.production_service import ProductionService
    return ProductionService(session_factory)


@pytest.fixture
def ledger_service(session_factory):
    from services.inventory_ledger_service import InventoryLedgerService
    return InventoryLedgerService(session_factory)


@pytest.fixture
def palletization_service(session_factory):
    from services.palletization_service import PalletizationService
    return PalletizationService(session_factory)


@pytest.fixture
def order_service(session_factory):
    from services.order_service import OrderService
    return OrderService(session_factory)


@pytest.fixture
def allocation_service(session_factory):
    from services.allocation_service import AllocationService
    return AllocationService(session_factory)


@pytest.fixture
def production_order_service(session_factory):
    from services.production_order_service import ProductionOrderService
    return ProductionOrderService(session_factory)


@pytest.fixture
def delivery_service(session_factory):
    from services.delivery_service import DeliveryService
    return DeliveryService(session_factory)


# ===================
# API TEST CLIENT
# ===================

@pytest.fixture
def test_client(monkeypatch, session_factory):
    """
    FastAPI test client whose services use the test database.

    Usage:
        def test_endpoint(test_client):
            response = test_client.get("/api/products")
            assert response.status_code == 200
    """
    from fastapi.testclient import TestClient
    import services.product_service as product_module
    import services.recipe_service as recipe_module
    import services.production_service as production_module
    import services.inventory_ledger_service as ledger_module
    import services.palletization_service as palletization_module
    import services.order_service as order_module
    import services.allocation_service as allocation_module
    import services.production_order_service as production_order_module
    import services.delivery_service as delivery_module
    from main import app

    monkeypatch.setattr(product_module, "_product_service", product_module.ProductService(session_factory))
    monkeypatch.setattr(recipe_module, "_recipe_service", recipe_module.RecipeService(session_factory))
    monkeypatch.setattr(
        production_module, "_production_service", production_module.ProductionService(session_factory)
    )
    monkeypatch.setattr(
        ledger_module, "_inventory_ledger_service", ledger_module.InventoryLedgerService(session_factory)
    )
    monkeypatch.setattr(
        palletization_module, "_palletization_service", palletization_module.PalletizationService(session_factory)
    )
    monkeypatch.setattr(order_module, "_order_service", order_module.OrderService(session_factory))
    monkeypatch.setattr(
        allocation_module, "_allocation_service", allocation_module.AllocationService(session_factory)
    )
    monkeypatch.setattr(
        production_order_module,
        "_production_order_service",
        production_order_module.ProductionOrderService(session_factory)
    )
    monkeypatch.setattr(delivery_module, "_delivery_service", delivery_module.DeliveryService(session_factory))

    # No context manager: the lifespan would touch the configured database
    return TestClient(app)
