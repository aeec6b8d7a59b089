from __future__ import annotations

from ..extensions import db
from smartpos.time_utils import to_utc_z, to_iso_date


class Product(db.Model):
    """
    Product master data (per-store catalog).

    Catalog and pricing management are owned elsewhere; the order engine only reads
    price, cost_price and tax_rate and freezes them onto order items at sale time.

    TAX RATE: integer percent. -1 is the "exempt" sentinel and is priced as 0%.
    """
    __tablename__ = "products"
    __table_args__ = (
        # SKUs are unique within a store
        db.UniqueConstraint("store_id", "sku", name="uq_products_store_sku"),
        db.Index("ix_products_store_active", "store_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    unit = db.Column(db.String(32), nullable=True)

    # Money in the store currency's smallest unit
    price = db.Column(db.BigInteger, nullable=False, default=0)
    cost_price = db.Column(db.BigInteger, nullable=True)

    tax_rate = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    store = db.relationship("Store", backref=db.backref("products", lazy=True))
    batches = db.relationship(
        "Batch",
        back_populates="product",
        lazy=True,
        order_by="Batch.id",
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r} store_id={self.store_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "sku": self.sku,
            "name": self.name,
            "unit": self.unit,
            "price": self.price,
            "cost_price": self.cost_price,
            "tax_rate": self.tax_rate,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Batch(db.Model):
    """
    A dated lot of a product.

    INVARIANTS:
    - quantity >= 0 and reserved <= quantity (enforced by conditional UPDATEs in the stock ledger)
    - a batch whose expiry_date is before today is never allocated, even with quantity > 0
    """
    __tablename__ = "batches"
    __table_args__ = (
        db.UniqueConstraint("product_id", "batch_no", name="uq_batches_product_batch_no"),
        db.Index("ix_batches_product_expiry", "product_id", "expiry_date"),
        db.CheckConstraint("quantity >= 0", name="ck_batches_quantity_nonnegative"),
        db.CheckConstraint("reserved >= 0", name="ck_batches_reserved_nonnegative"),
        db.CheckConstraint("reserved <= quantity", name="ck_batches_reserved_within_quantity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    batch_no = db.Column(db.String(64), nullable=False)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    reserved = db.Column(db.Integer, nullable=False, default=0)

    expiry_date = db.Column(db.Date, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", back_populates="batches")

    @property
    def free_quantity(self) -> int:
        return self.quantity - self.reserved

    def is_expired(self, today) -> bool:
        return self.expiry_date is not None and self.expiry_date < today

    def __repr__(self) -> str:
        return f"<Batch id={self.id} product_id={self.product_id} qty={self.quantity} expiry={self.expiry_date}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "batch_no": self.batch_no,
            "quantity": self.quantity,
            "reserved": self.reserved,
            "expiry_date": to_iso_date(self.expiry_date),
        }
