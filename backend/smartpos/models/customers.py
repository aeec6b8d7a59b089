from __future__ import annotations

from ..extensions import db
from smartpos.time_utils import to_utc_z


class Customer(db.Model):
    """
    Store customer identified by phone number.

    WHY: Loyalty points are earned on paid orders and redeemed as an order discount.
    Denormalized aggregates are updated when an order reaches PAID.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("store_id", "phone", name="uq_customers_store_phone"),
        db.CheckConstraint("loyalty_points >= 0", name="ck_customers_points_nonnegative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=False)

    loyalty_points = db.Column(db.Integer, nullable=False, default=0)

    # Denormalized aggregates (updated when orders are paid)
    total_spent = db.Column(db.BigInteger, nullable=False, default=0)
    total_orders = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    store = db.relationship("Store", backref=db.backref("customers", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "name": self.name,
            "phone": self.phone,
            "loyalty_points": self.loyalty_points,
            "total_spent": self.total_spent,
            "total_orders": self.total_orders,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class LoyaltySetting(db.Model):
    """
    Per-store loyalty program configuration.

    - vnd_per_point: discount value of one redeemed point (default 100)
    - vnd_per_earned_point: spend needed to earn one point (default 20,000)
    - min_order_value: orders below this total earn nothing
    - min_redeem_points: smallest redemption accepted
    """
    __tablename__ = "loyalty_settings"
    __table_args__ = (
        db.UniqueConstraint("store_id", name="uq_loyalty_settings_store"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=False)
    vnd_per_point = db.Column(db.Integer, nullable=False, default=100)
    vnd_per_earned_point = db.Column(db.Integer, nullable=False, default=20000)
    min_order_value = db.Column(db.BigInteger, nullable=False, default=0)
    min_redeem_points = db.Column(db.Integer, nullable=False, default=0)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "store_id": self.store_id,
            "is_active": self.is_active,
            "vnd_per_point": self.vnd_per_point,
            "vnd_per_earned_point": self.vnd_per_earned_point,
            "min_order_value": self.min_order_value,
            "min_redeem_points": self.min_redeem_points,
        }
