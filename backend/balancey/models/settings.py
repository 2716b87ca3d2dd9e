from __future__ import annotations

from ..extensions import db


class Settings(db.Model):
    """
    Singleton configuration row (id='default').

    Holds the policy tunables read by the statistics engine and the policy
    resolver, plus display defaults consumed by the UI. Percentages are
    fractions in [0, 1].
    """
    __tablename__ = "settings"

    id = db.Column(db.String(36), primary_key=True, default="default")

    # Policy tiers
    deposit_min_pct_normal = db.Column(db.Float, nullable=False, default=0.40)
    holdback_pct_normal = db.Column(db.Float, nullable=False, default=0.10)
    deposit_min_pct_over_typical = db.Column(db.Float, nullable=False, default=0.60)
    holdback_pct_over_typical = db.Column(db.Float, nullable=False, default=0.20)
    deposit_min_pct_late = db.Column(db.Float, nullable=False, default=0.80)
    holdback_pct_late = db.Column(db.Float, nullable=False, default=0.30)

    # Behavior
    do_not_advance_blocks_order = db.Column(db.Boolean, nullable=False, default=True)
    default_due_days = db.Column(db.Integer, nullable=False, default=7)

    # Typical order statistics
    typical_order_history_count = db.Column(db.Integer, nullable=False, default=10)
    typical_order_include_partial = db.Column(db.Boolean, nullable=False, default=True)

    # Display
    preset_weights = db.Column(db.JSON, nullable=False, default=lambda: [1, 2, 3.5, 7, 14, 28])
    default_weight_unit = db.Column(db.String(4), nullable=False, default="g")
    grams_decimal_places = db.Column(db.Integer, nullable=False, default=1)
    timezone = db.Column(db.String(64), nullable=True)
    monthly_goal_cents = db.Column(db.Integer, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "deposit_min_pct_normal": self.deposit_min_pct_normal,
            "holdback_pct_normal": self.holdback_pct_normal,
            "deposit_min_pct_over_typical": self.deposit_min_pct_over_typical,
            "holdback_pct_over_typical": self.holdback_pct_over_typical,
            "deposit_min_pct_late": self.deposit_min_pct_late,
            "holdback_pct_late": self.holdback_pct_late,
            "do_not_advance_blocks_order": self.do_not_advance_blocks_order,
            "default_due_days": self.default_due_days,
            "typical_order_history_count": self.typical_order_history_count,
            "typical_order_include_partial": self.typical_order_include_partial,
            "preset_weights": list(self.preset_weights or []),
            "default_weight_unit": self.default_weight_unit,
            "grams_decimal_places": self.grams_decimal_places,
            "timezone": self.timezone,
            "monthly_goal_cents": self.monthly_goal_cents,
        }
