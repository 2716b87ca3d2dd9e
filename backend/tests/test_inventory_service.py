"""
Inventory ledger tests: reserve / release / fulfill / adjust invariants.
"""

import pytest

from balancey.errors import InvariantViolation, NotFoundError, ValidationError
from balancey.models import InventoryAdjustment
from balancey.services import inventory_service


def _inv(product):
    return inventory_service.get_inventory(product.id)


def test_create_product_starts_with_zero_inventory(db_session):
    product = inventory_service.create_product(name="Loose Leaf", price_per_gram_cents=250)

    inv = _inv(product)
    assert inv.on_hand_grams == 0
    assert inv.reserved_grams == 0
    assert inv.available_grams == 0


def test_create_product_rejects_bad_quality(db_session):
    with pytest.raises(ValidationError):
        inventory_service.create_product(name="X", quality="GOLD")


def test_reserve_release_fulfill_keep_counters_non_negative(make_product):
    product = make_product(stock_grams=100)

    inventory_service.reserve_inventory(product.id, grams=30)
    inventory_service.reserve_inventory(product.id, grams=20)
    inv = _inv(product)
    assert inv.reserved_grams == 50
    assert inv.available_grams == 50

    inventory_service.fulfill_inventory(product.id, grams=20)
    inv = _inv(product)
    assert inv.on_hand_grams == 80
    assert inv.reserved_grams == 30

    # Release more than reserved clamps at zero
    inventory_service.release_inventory(product.id, grams=999)
    inv = _inv(product)
    assert inv.reserved_grams == 0
    assert inv.on_hand_grams == 80
    assert inv.available_grams == inv.on_hand_grams - inv.reserved_grams

    # Fulfill more than on hand clamps at zero
    inventory_service.fulfill_inventory(product.id, grams=500)
    inv = _inv(product)
    assert inv.on_hand_grams == 0
    assert inv.reserved_grams == 0


def test_reserve_beyond_on_hand_raises(make_product):
    product = make_product(stock_grams=10)

    with pytest.raises(InvariantViolation):
        inventory_service.reserve_inventory(product.id, grams=11)

    assert _inv(product).reserved_grams == 0


def test_reserve_beyond_on_hand_allowed_as_backorder(make_product):
    product = make_product(stock_grams=10)

    inventory_service.reserve_inventory(product.id, grams=15, allow_backorder=True)

    inv = _inv(product)
    assert inv.reserved_grams == 15
    assert inv.available_grams == -5


def test_fractional_reservations_fill_stock_exactly(make_product):
    product = make_product(stock_grams=0.3)

    inventory_service.reserve_inventory(product.id, grams=0.1)
    inventory_service.reserve_inventory(product.id, grams=0.2)

    assert _inv(product).reserved_grams == pytest.approx(0.3)
    with pytest.raises(InvariantViolation):
        inventory_service.reserve_inventory(product.id, grams=0.01)


def test_gram_backorder_does_not_block_unit_reservation(make_product):
    product = make_product(sell_mode="BOTH", price_per_unit_cents=500, stock_grams=0, stock_units=10)
    inventory_service.reserve_inventory(product.id, grams=5, allow_backorder=True)

    inventory_service.reserve_inventory(product.id, units=1)

    inv = _inv(product)
    assert inv.reserved_units == 1
    assert inv.reserved_grams == 5


def test_unit_restock_allowed_during_gram_backorder(make_product):
    product = make_product(sell_mode="BOTH", price_per_unit_cents=500, stock_grams=0, stock_units=1)
    inventory_service.reserve_inventory(product.id, grams=5, allow_backorder=True)

    inventory_service.adjust_inventory(product.id, "RESTOCK", units_delta=3)

    assert _inv(product).on_hand_units == 4


def test_reserve_unknown_product_raises_not_found(db_session):
    with pytest.raises(NotFoundError):
        inventory_service.reserve_inventory("missing", grams=1)


def test_negative_quantity_rejected(make_product):
    product = make_product()
    with pytest.raises(ValidationError):
        inventory_service.release_inventory(product.id, grams=-1)


def test_adjust_writes_audit_row_and_changes_on_hand_only(make_product, db_session):
    product = make_product(stock_grams=50)
    inventory_service.reserve_inventory(product.id, grams=10)

    inventory_service.adjust_inventory(product.id, "CORRECTION", grams_delta=-5, note="recount")

    inv = _inv(product)
    assert inv.on_hand_grams == 45
    assert inv.reserved_grams == 10

    rows = inventory_service.list_inventory_adjustments(product.id)
    assert sorted(r.type for r in rows) == ["CORRECTION", "RESTOCK"]
    correction = next(r for r in rows if r.type == "CORRECTION")
    assert correction.grams_adjustment == -5
    assert correction.note == "recount"


@pytest.mark.parametrize(
    "adjustment_type,grams",
    [
        ("RESTOCK", -5),
        ("WASTE", 5),
        ("CORRECTION", 0),
        ("BOGUS", 5),
    ],
)
def test_adjust_validation(make_product, adjustment_type, grams):
    product = make_product()
    with pytest.raises(ValidationError):
        inventory_service.adjust_inventory(product.id, adjustment_type, grams_delta=grams)


def test_adjust_cannot_make_on_hand_negative(make_product, db_session):
    product = make_product(stock_grams=5)

    with pytest.raises(InvariantViolation):
        inventory_service.adjust_inventory(product.id, "WASTE", grams_delta=-6)

    assert _inv(product).on_hand_grams == 5
    # The failed adjustment left no audit row behind
    assert db_session.query(InventoryAdjustment).filter_by(product_id=product.id).count() == 1


def test_adjust_cannot_make_available_negative(make_product):
    product = make_product(stock_grams=20)
    inventory_service.reserve_inventory(product.id, grams=15)

    with pytest.raises(InvariantViolation):
        inventory_service.adjust_inventory(product.id, "WASTE", grams_delta=-10)


def test_get_available_and_product_listing(make_product):
    product = make_product(stock_grams=40)
    inventory_service.reserve_inventory(product.id, grams=15)

    assert inventory_service.get_available(product.id)["available_grams"] == 25

    listed = inventory_service.list_products_with_inventory()
    assert listed[0]["id"] == product.id
    assert listed[0]["available_grams"] == 25


def test_inactive_products_hidden_by_default(make_product):
    product = make_product()
    inventory_service.update_product(product.id, {"is_active": False})

    assert inventory_service.list_products() == []
    assert len(inventory_service.list_products(include_inactive=True)) == 1
