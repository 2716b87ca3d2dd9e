# Overview: Service-layer operations for the policy/display settings singleton.

from __future__ import annotations

from typing import Any

from ..extensions import db
from ..errors import ValidationError
from ..models import Settings
from ..units import VALID_WEIGHT_UNITS
from .concurrency import lock_for_update, run_with_retry


SETTINGS_ID = "default"

DEFAULT_SETTINGS: dict[str, Any] = {
    "deposit_min_pct_normal": 0.40,
    "holdback_pct_normal": 0.10,
    "deposit_min_pct_over_typical": 0.60,
    "holdback_pct_over_typical": 0.20,
    "deposit_min_pct_late": 0.80,
    "holdback_pct_late": 0.30,
    "do_not_advance_blocks_order": True,
    "default_due_days": 7,
    "typical_order_history_count": 10,
    "typical_order_include_partial": True,
    "preset_weights": [1, 2, 3.5, 7, 14, 28],
    "default_weight_unit": "g",
    "grams_decimal_places": 1,
    "timezone": None,
    "monthly_goal_cents": None,
}

PCT_KEYS = {
    "deposit_min_pct_normal",
    "holdback_pct_normal",
    "deposit_min_pct_over_typical",
    "holdback_pct_over_typical",
    "deposit_min_pct_late",
    "holdback_pct_late",
}
BOOL_KEYS = {"do_not_advance_blocks_order", "typical_order_include_partial"}
POSITIVE_INT_KEYS = {"typical_order_history_count"}
NON_NEGATIVE_INT_KEYS = {"default_due_days", "grams_decimal_places"}
OPTIONAL_KEYS = {"timezone", "monthly_goal_cents"}


def default_settings() -> Settings:
    """Unsaved Settings row populated with DEFAULT_SETTINGS."""
    values = dict(DEFAULT_SETTINGS)
    values["preset_weights"] = list(values["preset_weights"])
    return Settings(id=SETTINGS_ID, **values)


def get_settings() -> Settings:
    """
    Return the singleton settings row, creating it with defaults on first read.
    """
    settings = db.session.get(Settings, SETTINGS_ID)
    if settings is None:
        settings = default_settings()
        db.session.add(settings)
        db.session.commit()
    return settings


def validate_settings_patch(patch: dict) -> dict:
    if not isinstance(patch, dict):
        raise ValidationError("Invalid settings payload")

    cleaned: dict[str, Any] = {}
    for key, value in patch.items():
        if key not in DEFAULT_SETTINGS:
            raise ValidationError(f"Unknown setting: {key}")

        if value is None:
            if key not in OPTIONAL_KEYS:
                raise ValidationError(f"{key} cannot be null")
            cleaned[key] = None
            continue

        if key in PCT_KEYS:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValidationError(f"{key} must be a number")
            if not 0 <= value <= 1:
                raise ValidationError(f"{key} must be between 0 and 1")
            cleaned[key] = float(value)
        elif key in BOOL_KEYS:
            if not isinstance(value, bool):
                raise ValidationError(f"{key} must be a boolean")
            cleaned[key] = value
        elif key in POSITIVE_INT_KEYS or key in NON_NEGATIVE_INT_KEYS or key == "monthly_goal_cents":
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValidationError(f"{key} must be an integer")
            if key in POSITIVE_INT_KEYS and value <= 0:
                raise ValidationError(f"{key} must be > 0")
            if value < 0:
                raise ValidationError(f"{key} must be >= 0")
            cleaned[key] = value
        elif key == "preset_weights":
            if not isinstance(value, list) or any(
                isinstance(w, bool) or not isinstance(w, (int, float)) or w <= 0 for w in value
            ):
                raise ValidationError("preset_weights must be a list of positive numbers")
            cleaned[key] = list(value)
        elif key == "default_weight_unit":
            if value not in VALID_WEIGHT_UNITS:
                raise ValidationError(
                    f"default_weight_unit must be one of: {', '.join(sorted(VALID_WEIGHT_UNITS))}"
                )
            cleaned[key] = value
        elif key == "timezone":
            cleaned[key] = str(value).strip() or None

    return cleaned


def update_settings(patch: dict) -> Settings:
    """Validate and apply a partial update to the singleton."""
    cleaned = validate_settings_patch(patch)

    def _op():
        settings = lock_for_update(
            db.session.query(Settings).filter_by(id=SETTINGS_ID)
        ).first()
        if settings is None:
            settings = default_settings()
            db.session.add(settings)

        for key, value in cleaned.items():
            setattr(settings, key, value)

        db.session.commit()
        return settings

    return run_with_retry(_op)
