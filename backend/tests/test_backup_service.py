"""
Backup export/import: format, round-trip, modes and rejection paths.
"""

import pytest

from balancey.errors import SchemaVersionError, ValidationError
from balancey.models import Customer, Order, Settings
from balancey.services import backup_service, customer_service, order_service, settings_service


def _records(data):
    """Everything except the export timestamp."""
    return {k: v for k, v in data.items() if k != "exportedAt"}


@pytest.fixture
def populated(make_customer, make_product, make_order, history):
    customer = make_customer("Robin", notes="prefers mornings")
    product = make_product(sell_mode="BOTH", price_per_unit_cents=900, stock_units=4)
    history(customer, product, [7, 10.5, 14])
    order = make_order(customer, product, 3, payment_cents=1000, delivery_fee_cents=250)
    order_service.add_fulfillment(order.id, "READY")
    customer_service.add_customer_tag(customer.id, "VIP", reason="regular")
    settings_service.update_settings({"holdback_pct_normal": 0.15, "monthly_goal_cents": 500_000})
    return customer, product, order


def test_export_format(populated):
    customer, product, order = populated

    data = backup_service.export_backup()

    assert data["schemaVersion"] == backup_service.SCHEMA_VERSION
    assert isinstance(data["exportedAt"], int)
    exported_customer = data["customers"][0]
    assert exported_customer["id"] == customer.id
    assert exported_customer["notes"] == "prefers mornings"
    assert isinstance(exported_customer["createdAt"], int)
    # NULL columns are omitted
    assert "defaultAddress" not in exported_customer
    # Internal version counters are not exported
    assert "versionId" not in exported_customer
    assert len(data["orders"]) == 4
    assert len(data["orderPolicies"]) == 4
    assert data["settings"]["holdbackPctNormal"] == 0.15
    assert data["settings"]["presetWeights"] == [1, 2, 3.5, 7, 14, 28]


def test_round_trip_replace_is_identical(populated):
    first = backup_service.export_backup()

    backup_service.import_backup(first, "replace")
    second = backup_service.export_backup()

    assert _records(second) == _records(first)


def test_replace_removes_rows_not_in_backup(populated, make_customer, db_session):
    data = backup_service.export_backup()
    make_customer("Extra")

    backup_service.import_backup(data, "replace")

    assert db_session.query(Customer).filter_by(name="Extra").count() == 0
    assert db_session.query(Customer).count() == 1


def test_replace_without_settings_restores_defaults(populated, db_session):
    data = backup_service.export_backup()
    del data["settings"]

    backup_service.import_backup(data, "replace")

    assert settings_service.get_settings().holdback_pct_normal == 0.10


def test_merge_upserts_and_keeps_existing(populated, make_customer, db_session):
    customer, _product, _order = populated
    data = backup_service.export_backup()
    extra = make_customer("Extra")
    customer_service.update_customer(customer.id, {"notes": "changed locally"})
    settings_service.update_settings({"holdback_pct_normal": 0.25})

    counts = backup_service.import_backup(data, "merge")

    assert counts["customers"] == 1
    db_session.expire_all()
    assert db_session.get(Customer, extra.id) is not None
    assert db_session.get(Customer, customer.id).notes == "prefers mornings"
    # Settings are left alone by merge
    assert db_session.get(Settings, "default").holdback_pct_normal == 0.25


def test_import_into_empty_database(populated):
    data = backup_service.export_backup()
    backup_service.clear_all_data()
    assert backup_service.export_backup()["orders"] == []

    backup_service.import_backup(data, "merge")

    assert _records(backup_service.export_backup())["orders"] == data["orders"]


def test_newer_schema_rejected(populated, db_session):
    data = backup_service.export_backup()
    data["schemaVersion"] = backup_service.SCHEMA_VERSION + 1

    with pytest.raises(SchemaVersionError):
        backup_service.import_backup(data, "replace")

    # Nothing was cleared
    assert db_session.query(Order).count() == 4


@pytest.mark.parametrize(
    "payload",
    [
        None,
        [],
        {"exportedAt": 1},
        {"schemaVersion": 1},
        {"schemaVersion": 1, "exportedAt": 1, "customers": {}},
        {"schemaVersion": 1, "exportedAt": 1, "customers": [{"name": "no id"}]},
        {"schemaVersion": 1, "exportedAt": 1, "customers": [{"id": "c1", "name": "x", "createdAt": "yesterday"}]},
    ],
)
def test_malformed_payload_rejected(db_session, payload):
    with pytest.raises(ValidationError):
        backup_service.import_backup(payload, "replace")


def test_epoch_zero_export_time_is_accepted(db_session):
    counts = backup_service.import_backup({"schemaVersion": 1, "exportedAt": 0}, "merge")
    assert counts["customers"] == 0


def test_newer_schema_reported_even_with_epoch_zero(db_session):
    with pytest.raises(SchemaVersionError):
        backup_service.import_backup({"schemaVersion": 99, "exportedAt": 0}, "replace")


def test_unknown_mode_rejected(db_session):
    with pytest.raises(ValidationError):
        backup_service.import_backup({"schemaVersion": 1, "exportedAt": 1}, "append")


def test_failed_import_rolls_back(populated, db_session):
    data = backup_service.export_backup()
    # Second copy of the same customer id collides on insert
    data["customers"].append(dict(data["customers"][0]))

    with pytest.raises(ValidationError):
        backup_service.import_backup(data, "replace")

    db_session.expire_all()
    assert db_session.query(Order).count() == 4
    assert db_session.query(Customer).count() == 1


def test_clear_all_data(populated, db_session):
    backup_service.clear_all_data()

    assert db_session.query(Customer).count() == 0
    assert db_session.query(Order).count() == 0
    assert settings_service.get_settings().holdback_pct_normal == 0.10
