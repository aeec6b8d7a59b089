from __future__ import annotations

from ..extensions import db
from smartpos.time_utils import to_utc_z


class Order(db.Model):
    """
    Sales order aggregate.

    LIFECYCLE:
    DRAFT -> PENDING -> PAID -> PARTIALLY_REFUNDED / REFUNDED
    DRAFT / PENDING -> CANCELLED

    STOCK STATE (what the order currently holds against the stock ledger):
    - NONE: drafts, nothing touched yet
    - RESERVED: QR order waiting for payment; units held, not deducted
    - COMMITTED: units deducted (cash at creation, QR once paid)
    - RELEASED: reservation given back on cancel
    - RESTOCKED: committed units put back on cancel

    Totals are frozen at creation:
    total_amount == max(subtotal - discount_amount, 0) + vat_amount
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("store_id", "order_number", name="uq_orders_store_number"),
        db.Index("ix_orders_store_status_created", "store_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    # Human-readable number (e.g., "HD-000123")
    order_number = db.Column(db.String(64), nullable=False)

    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id"), nullable=True, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    status = db.Column(db.String(24), nullable=False, default="PENDING", index=True)
    payment_method = db.Column(db.String(16), nullable=False)
    stock_state = db.Column(db.String(16), nullable=False, default="NONE")

    # Money (smallest currency unit)
    subtotal = db.Column(db.BigInteger, nullable=False, default=0)
    discount_amount = db.Column(db.BigInteger, nullable=False, default=0)
    vat_amount = db.Column(db.BigInteger, nullable=False, default=0)
    total_amount = db.Column(db.BigInteger, nullable=False, default=0)

    # Loyalty
    used_points = db.Column(db.Integer, nullable=False, default=0)
    earned_points = db.Column(db.Integer, nullable=False, default=0)

    # VAT invoice request
    vat_invoice = db.Column(db.Boolean, nullable=False, default=False)
    vat_company_name = db.Column(db.String(255), nullable=True)
    vat_tax_code = db.Column(db.String(32), nullable=True)
    vat_company_address = db.Column(db.String(255), nullable=True)

    # QR payment window (current payment request)
    qr_expires_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Latest refund, if any
    refund_id = db.Column(db.Integer, db.ForeignKey("refunds.id", use_alter=True), nullable=True)

    # Print/audit counters
    print_count = db.Column(db.Integer, nullable=False, default=0)
    printed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    store = db.relationship("Store", backref=db.backref("orders", lazy=True))
    employee = db.relationship("Employee", foreign_keys=[employee_id])
    customer = db.relationship("Customer", backref=db.backref("orders", lazy=True))
    items = db.relationship(
        "OrderItem",
        back_populates="order",
        lazy=True,
        order_by="OrderItem.position",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def qr_expired(self, now) -> bool:
        return self.qr_expires_at is not None and self.qr_expires_at <= now

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "order_number": self.order_number,
            "employee_id": self.employee_id,
            "customer_id": self.customer_id,
            "status": self.status,
            "payment_method": self.payment_method,
            "stock_state": self.stock_state,
            "subtotal": self.subtotal,
            "discount_amount": self.discount_amount,
            "vat_amount": self.vat_amount,
            "total_amount": self.total_amount,
            "used_points": self.used_points,
            "earned_points": self.earned_points,
            "vat_invoice": self.vat_invoice,
            "vat_company_name": self.vat_company_name,
            "vat_tax_code": self.vat_tax_code,
            "vat_company_address": self.vat_company_address,
            "qr_expires_at": to_utc_z(self.qr_expires_at) if self.qr_expires_at else None,
            "refund_id": self.refund_id,
            "print_count": self.print_count,
            "printed_at": to_utc_z(self.printed_at) if self.printed_at else None,
            "created_at": to_utc_z(self.created_at),
            "submitted_at": to_utc_z(self.submitted_at) if self.submitted_at else None,
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancel_reason": self.cancel_reason,
            "version_id": self.version_id,
        }


class OrderItem(db.Model):
    """
    Line item with prices frozen at sale time.

    unit_price is the effective price after the sale-type rule; refunds always
    pay back unit_price, never the current catalog price.
    """
    __tablename__ = "order_items"
    __table_args__ = (
        db.UniqueConstraint("order_id", "position", name="uq_order_items_order_position"),
        db.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        db.CheckConstraint("refunded_quantity <= quantity", name="ck_order_items_refund_within_quantity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    sale_type = db.Column(db.String(16), nullable=False, default="NORMAL")
    custom_price = db.Column(db.BigInteger, nullable=True)

    list_price = db.Column(db.BigInteger, nullable=False)
    unit_price = db.Column(db.BigInteger, nullable=False)
    tax_rate = db.Column(db.Integer, nullable=False, default=0)
    vat_amount = db.Column(db.BigInteger, nullable=False, default=0)
    line_total = db.Column(db.BigInteger, nullable=False)

    refunded_quantity = db.Column(db.Integer, nullable=False, default=0)

    order = db.relationship("Order", back_populates="items")
    product = db.relationship("Product")
    batch = db.relationship("Batch")

    @property
    def refundable_quantity(self) -> int:
        return self.quantity - (self.refunded_quantity or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "position": self.position,
            "product_id": self.product_id,
            "batch_id": self.batch_id,
            "quantity": self.quantity,
            "sale_type": self.sale_type,
            "custom_price": self.custom_price,
            "list_price": self.list_price,
            "unit_price": self.unit_price,
            "tax_rate": self.tax_rate,
            "vat_amount": self.vat_amount,
            "line_total": self.line_total,
            "refunded_quantity": self.refunded_quantity,
            "refundable_quantity": self.refundable_quantity,
        }


class PaymentRequest(db.Model):
    """
    QR payment request handed to the payment provider.

    Each request carries its own correlation code. Requesting a new QR for the same
    order supersedes the previous request but the old code still resolves to the
    order, so a late payment against it is not lost.

    STATUS: ACTIVE, SUPERSEDED, PAID, CANCELLED
    """
    __tablename__ = "payment_requests"
    __table_args__ = (
        db.Index("ix_payment_requests_order_status", "order_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    code = db.Column(db.BigInteger, nullable=False, unique=True, index=True)
    amount = db.Column(db.BigInteger, nullable=False)
    description = db.Column(db.String(64), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="ACTIVE", index=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)

    # Provider transaction reference from the confirming webhook
    reference = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    order = db.relationship("Order", backref=db.backref("payment_requests", lazy=True, order_by="PaymentRequest.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "code": self.code,
            "amount": self.amount,
            "description": self.description,
            "status": self.status,
            "expires_at": to_utc_z(self.expires_at),
            "reference": self.reference,
            "created_at": to_utc_z(self.created_at),
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
        }
