from __future__ import annotations

from ..extensions import db
from smartpos.time_utils import to_utc_z


class Refund(db.Model):
    """
    Refund document against a PAID (or PARTIALLY_REFUNDED) order.

    DESIGN PRINCIPLES:
    - References the original Order for traceability
    - Refund amount uses the prices frozen on the order items, never current catalog prices
    - Processed by a reviewing employee who is not the original seller
    - Immutable once written; a second refund on the same order is a new document
    """
    __tablename__ = "refunds"
    __table_args__ = (
        db.UniqueConstraint("store_id", "refund_number", name="uq_refunds_store_number"),
        db.Index("ix_refunds_store_refunded_at", "store_id", "refunded_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    # Human-readable document number (e.g., "TH-000012")
    refund_number = db.Column(db.String(64), nullable=False)

    refunded_by_employee_id = db.Column(db.Integer, db.ForeignKey("employees.id"), nullable=False, index=True)
    reason = db.Column(db.Text, nullable=False)
    refund_amount = db.Column(db.BigInteger, nullable=False, default=0)

    refunded_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", foreign_keys=[order_id], backref=db.backref("refunds", lazy=True, order_by="Refund.id"))
    refunded_by = db.relationship("Employee", foreign_keys=[refunded_by_employee_id])
    items = db.relationship("RefundItem", back_populates="refund", lazy=True, cascade="all, delete-orphan")
    evidence = db.relationship("RefundEvidence", back_populates="refund", lazy=True, cascade="all, delete-orphan")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "order_id": self.order_id,
            "refund_number": self.refund_number,
            "refunded_by_employee_id": self.refunded_by_employee_id,
            "reason": self.reason,
            "refund_amount": self.refund_amount,
            "refunded_at": to_utc_z(self.refunded_at),
            "items": [item.to_dict() for item in self.items],
            "evidence": [media.to_dict() for media in self.evidence],
        }


class RefundItem(db.Model):
    """Refunded quantity of one order line, priced at the line's frozen unit price."""
    __tablename__ = "refund_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_refund_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    refund_id = db.Column(db.Integer, db.ForeignKey("refunds.id"), nullable=False, index=True)
    order_item_id = db.Column(db.Integer, db.ForeignKey("order_items.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.BigInteger, nullable=False)
    subtotal = db.Column(db.BigInteger, nullable=False)

    refund = db.relationship("Refund", back_populates="items")
    order_item = db.relationship("OrderItem")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "refund_id": self.refund_id,
            "order_item_id": self.order_item_id,
            "product_id": self.product_id,
            "batch_id": self.batch_id,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "subtotal": self.subtotal,
        }


class RefundEvidence(db.Model):
    """Reference to an uploaded photo/video backing a refund (storage is external)."""
    __tablename__ = "refund_evidence"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    refund_id = db.Column(db.Integer, db.ForeignKey("refunds.id"), nullable=False, index=True)
    url = db.Column(db.String(512), nullable=False)
    media_type = db.Column(db.String(16), nullable=False, default="image")
    public_id = db.Column(db.String(255), nullable=True)

    refund = db.relationship("Refund", back_populates="evidence")

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "type": self.media_type,
            "public_id": self.public_id,
        }
