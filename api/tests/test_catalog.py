from decimal import Decimal

import pytest
from pydantic import ValidationError

from manha_pos.core.errors import LockedError, NotFoundError, PosValidationError
from manha_pos.schemas.inventory import ProductIn, ProductUpdate, Unit
from manha_pos.services.catalog import CatalogService, search_products


@pytest.fixture
def catalog(store, lock):
    return CatalogService(store, lock)


def test_add_product_stamps_and_syncs(store, terminal, catalog):
    product = catalog.add_product(
        terminal,
        ProductIn(name="  Rice ", price=Decimal("2.50"), stock=40, unit="kg", category="Grocery"),
    )

    assert product.name == "Rice"
    assert product.unit is Unit.KG
    assert product.created_at is not None
    assert terminal.sync.product(product.id).stock == 40

    stored = store.get(terminal.products_path, product.id).data
    assert stored["price"] == "2.50"
    assert stored["updated_at"] == stored["created_at"]


def test_stock_defaults_to_zero(terminal, catalog):
    product = catalog.add_product(terminal, ProductIn(name="Tea", price=Decimal("1")))
    assert product.stock == 0
    assert product.unit is Unit.PIECES


@pytest.mark.parametrize(
    "payload",
    [
        {"name": "", "price": "1"},
        {"name": "   ", "price": "1"},
        {"name": "Tea"},
        {"name": "Tea", "price": "-1"},
        {"name": "Tea", "price": "1", "stock": -2},
        {"name": "Tea", "price": "1", "unit": "bucket"},
    ],
)
def test_invalid_products_are_rejected_before_writing(payload):
    with pytest.raises(ValidationError):
        ProductIn(**payload)


def test_update_merges_fields(store, terminal, catalog, seed_product):
    soap = seed_product("Soap", "10", 5, description="Lavender")

    updated = catalog.update_product(terminal, soap.id, ProductUpdate(price=Decimal("12"), stock=9))

    assert updated.price == Decimal("12")
    assert updated.stock == 9
    assert updated.description == "Lavender"


def test_update_rejects_empty_and_cleared_fields(terminal, catalog, seed_product):
    soap = seed_product("Soap", "10", 5)

    with pytest.raises(PosValidationError):
        catalog.update_product(terminal, soap.id, ProductUpdate())
    with pytest.raises(PosValidationError):
        catalog.update_product(terminal, soap.id, ProductUpdate(price=None))


def test_update_missing_product(terminal, catalog):
    with pytest.raises(NotFoundError):
        catalog.update_product(terminal, "ghost", ProductUpdate(stock=1))


def test_delete_blocked_while_locked(store, terminal, catalog, lock, seed_product):
    soap = seed_product("Soap", "10", 5)
    lock.lock()

    with pytest.raises(LockedError):
        catalog.delete_product(terminal, soap.id)
    assert store.get(terminal.products_path, soap.id) is not None


def test_delete_drops_product_and_cart_line(store, terminal, catalog, seed_product):
    soap = seed_product("Soap", "10", 5)
    terminal.cart.add(soap)

    catalog.delete_product(terminal, soap.id)

    assert terminal.sync.products == []
    assert terminal.cart.line(soap.id) is None


def test_search_products_is_case_insensitive(terminal, seed_product):
    seed_product("Green Tea", "1", 1)
    seed_product("Soap", "1", 1)

    assert [p.name for p in search_products(terminal.sync.products, "TEA")] == ["Green Tea"]
    assert len(search_products(terminal.sync.products, "")) == 2
