from __future__ import annotations

from ..extensions import db
from smartpos.time_utils import to_utc_z


class Stock(db.Model):
    """
    Aggregate availability for a (store, product) pair.

    quantity: physical units on hand (all batches, expired included)
    reserved: units held by not-yet-paid QR orders

    Sellable quantity is derived by the stock ledger: the sum of non-expired
    batch quantities when the product has batches, else `quantity`.
    available = sellable - reserved.

    WRITE RULE: only StockLedger mutates these columns, always through
    conditional UPDATE statements so concurrent writers cannot push a row negative.
    """
    __tablename__ = "stocks"
    __table_args__ = (
        db.UniqueConstraint("store_id", "product_id", name="uq_stocks_store_product"),
        db.CheckConstraint("quantity >= 0", name="ck_stocks_quantity_nonnegative"),
        db.CheckConstraint("reserved >= 0", name="ck_stocks_reserved_nonnegative"),
        db.CheckConstraint("reserved <= quantity", name="ck_stocks_reserved_within_quantity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    reserved = db.Column(db.Integer, nullable=False, default=0)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", backref=db.backref("stocks", lazy=True))

    def __repr__(self) -> str:
        return f"<Stock store_id={self.store_id} product_id={self.product_id} qty={self.quantity} reserved={self.reserved}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "reserved": self.reserved,
            "updated_at": to_utc_z(self.updated_at),
        }
