# Overview: Whole-database export/import (JSON backup) and the bulk data-clear.

"""
Backup format (schemaVersion 1):

    {
      "schemaVersion": 1,
      "exportedAt": <epoch ms>,
      "customers": [...], "customerTags": [...], "products": [...],
      "inventory": [...], "inventoryAdjustments": [...], "orders": [...],
      "orderItems": [...], "payments": [...], "fulfillments": [...],
      "orderPolicies": [...], "settings": {...}
    }

Record keys are camelCase column names; datetimes are epoch milliseconds;
NULL columns are omitted. version_id columns are internal and not exported.

Import modes:
- replace: clear every table, then insert everything (settings fall back to
  defaults when the file has none)
- merge: upsert by primary key; settings are left alone

Either mode runs as a single transaction.
"""

from __future__ import annotations

from typing import Any

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import SchemaVersionError, ValidationError
from ..models import (
    Customer,
    CustomerTag,
    Fulfillment,
    Inventory,
    InventoryAdjustment,
    Order,
    OrderItem,
    OrderPolicy,
    Payment,
    Product,
    Settings,
)
from balancey.time_utils import from_epoch_ms, to_epoch_ms, utcnow
from .concurrency import run_with_retry
from .settings_service import SETTINGS_ID, default_settings


SCHEMA_VERSION = 1

IMPORT_REPLACE = "replace"
IMPORT_MERGE = "merge"
VALID_IMPORT_MODES = {IMPORT_REPLACE, IMPORT_MERGE}

# Parents before children; deletes run in reverse
BACKUP_TABLES: list[tuple[str, type]] = [
    ("customers", Customer),
    ("customerTags", CustomerTag),
    ("products", Product),
    ("inventory", Inventory),
    ("inventoryAdjustments", InventoryAdjustment),
    ("orders", Order),
    ("orderItems", OrderItem),
    ("payments", Payment),
    ("fulfillments", Fulfillment),
    ("orderPolicies", OrderPolicy),
]

INTERNAL_COLUMNS = {"version_id"}


# =============================================================================
# RECORD MAPPING
# =============================================================================

def camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _columns(model) -> list:
    return [c for c in model.__table__.columns if c.name not in INTERNAL_COLUMNS]


def _is_datetime(column) -> bool:
    return isinstance(column.type, db.DateTime)


def record_to_backup(instance) -> dict:
    out: dict[str, Any] = {}
    for column in _columns(type(instance)):
        value = getattr(instance, column.name)
        if value is None:
            continue
        out[camel_case(column.name)] = to_epoch_ms(value) if _is_datetime(column) else value
    return out


def record_from_backup(model, record: dict, table: str) -> dict:
    """Backup record -> model constructor kwargs. Unknown keys are ignored."""
    if not isinstance(record, dict):
        raise ValidationError(f"{table}: every record must be an object")

    values: dict[str, Any] = {}
    for column in _columns(model):
        key = camel_case(column.name)
        if key not in record:
            continue
        value = record[key]
        if value is not None and _is_datetime(column):
            try:
                value = from_epoch_ms(value)
            except (ValueError, OverflowError) as exc:
                raise ValidationError(f"{table}.{key}: {exc}") from exc
        values[column.name] = value

    for pk in model.__table__.primary_key.columns:
        if values.get(pk.name) is None:
            raise ValidationError(f"{table}: record is missing {camel_case(pk.name)}")
    return values


# =============================================================================
# EXPORT
# =============================================================================

def export_backup() -> dict:
    """Snapshot every table as a JSON-ready dict."""
    data: dict[str, Any] = {
        "schemaVersion": SCHEMA_VERSION,
        "exportedAt": to_epoch_ms(utcnow()),
    }
    for key, model in BACKUP_TABLES:
        pk = list(model.__table__.primary_key.columns)
        rows = db.session.query(model).order_by(*pk).all()
        data[key] = [record_to_backup(row) for row in rows]

    settings = db.session.get(Settings, SETTINGS_ID) or default_settings()
    data["settings"] = record_to_backup(settings)
    return data


# =============================================================================
# IMPORT
# =============================================================================

def _validate_backup(data) -> None:
    if not isinstance(data, dict):
        raise ValidationError("Invalid backup file format")
    if data.get("schemaVersion") is None or data.get("exportedAt") is None:
        raise ValidationError("Invalid backup file format: schemaVersion and exportedAt are required")

    version = data["schemaVersion"]
    if isinstance(version, bool) or not isinstance(version, int):
        raise ValidationError("schemaVersion must be an integer")
    if version > SCHEMA_VERSION:
        raise SchemaVersionError(
            f"Backup was created with a newer version ({version}). Please update the app."
        )

    for key, _model in BACKUP_TABLES:
        records = data.get(key)
        if records is not None and not isinstance(records, list):
            raise ValidationError(f"{key} must be a list")
    settings = data.get("settings")
    if settings is not None and not isinstance(settings, dict):
        raise ValidationError("settings must be an object")


def _delete_all_rows() -> None:
    for _key, model in reversed(BACKUP_TABLES):
        db.session.query(model).delete(synchronize_session=False)
    db.session.query(Settings).delete(synchronize_session=False)
    db.session.expunge_all()


def _settings_from_backup(record: dict | None) -> Settings:
    settings = default_settings()
    if record:
        values = record_from_backup(Settings, {**record, "id": SETTINGS_ID}, "settings")
        for name, value in values.items():
            setattr(settings, name, value)
    return settings


def import_backup(data: dict, mode: str = IMPORT_REPLACE) -> dict:
    """
    Restore a backup produced by export_backup.

    Returns per-table record counts.

    Raises:
        ValidationError: Malformed payload, unknown mode, or records the
                         database rejects
        SchemaVersionError: Backup written by a newer schema
    """
    if mode not in VALID_IMPORT_MODES:
        raise ValidationError(f"Invalid import mode: {mode}. Must be one of {sorted(VALID_IMPORT_MODES)}")
    _validate_backup(data)

    def _op():
        if mode == IMPORT_REPLACE:
            _delete_all_rows()

        counts: dict[str, int] = {}
        for key, model in BACKUP_TABLES:
            records = data.get(key) or []
            for record in records:
                row = model(**record_from_backup(model, record, key))
                if mode == IMPORT_REPLACE:
                    db.session.add(row)
                else:
                    db.session.merge(row)
            counts[key] = len(records)
            try:
                db.session.flush()
            except IntegrityError as exc:
                raise ValidationError(f"{key}: backup records rejected by the database") from exc

        if mode == IMPORT_REPLACE:
            db.session.add(_settings_from_backup(data.get("settings")))

        db.session.commit()
        return counts

    counts = run_with_retry(_op)
    current_app.logger.info(
        "backup import (%s): %s",
        mode,
        ", ".join(f"{k}={v}" for k, v in counts.items()),
    )
    return counts


# =============================================================================
# DATA CLEAR
# =============================================================================

def clear_all_data() -> None:
    """Delete every row and restore default settings."""
    def _op():
        _delete_all_rows()
        db.session.add(default_settings())
        db.session.commit()

    run_with_retry(_op)
    current_app.logger.info("all data cleared; settings reset to defaults")
