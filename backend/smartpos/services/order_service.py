# Overview: Order lifecycle (create, submit, pay, cancel, print) and its orchestration of stock and loyalty.

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from ..errors import (
    InsufficientStockError,
    InvalidStateTransitionError,
    UnknownOrderError,
    UnknownProductError,
    ValidationError,
)
from ..models import Batch, Customer, Employee, Order, OrderItem, Product, Store
from smartpos.time_utils import utcnow
from smartpos.validation import (
    MAX_AMOUNT,
    coerce_bool,
    coerce_int,
    coerce_optional_int,
    ensure_list,
    ensure_payload,
    one_of,
    optional_text,
)
from .audit_service import append_audit_event
from .batch_allocator import BatchAllocator
from .concurrency import atomic_scope, lock_for_update, run_with_retry
from .document_service import ORDER_PREFIX, next_document_number
from .loyalty_service import (
    deduct_points,
    find_customer_by_phone,
    get_setting,
    points_earned,
    record_paid_order,
    redeemable_points,
    redemption_discount,
    resolve_customer,
    restore_points,
)
from .pricing import SaleType, compute_totals, price_line
from .stock_ledger import StockLedger, StockLine

logger = logging.getLogger(__name__)


# Order statuses
STATUS_DRAFT = "DRAFT"
STATUS_PENDING = "PENDING"
STATUS_PAID = "PAID"
STATUS_PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"
STATUS_REFUNDED = "REFUNDED"
STATUS_CANCELLED = "CANCELLED"

# Statuses that mean the money was received
SETTLED_STATUSES = {STATUS_PAID, STATUS_PARTIALLY_REFUNDED, STATUS_REFUNDED}

ALLOWED_TRANSITIONS = {
    STATUS_DRAFT: {STATUS_PENDING, STATUS_CANCELLED},
    STATUS_PENDING: {STATUS_PAID, STATUS_CANCELLED},
    STATUS_PAID: {STATUS_PARTIALLY_REFUNDED, STATUS_REFUNDED},
    STATUS_PARTIALLY_REFUNDED: {STATUS_PARTIALLY_REFUNDED, STATUS_REFUNDED},
    STATUS_REFUNDED: set(),
    STATUS_CANCELLED: set(),
}

PAYMENT_CASH = "cash"
PAYMENT_QR = "qr"
PAYMENT_METHODS = (PAYMENT_CASH, PAYMENT_QR)

# What the order currently holds against the stock ledger
STOCK_NONE = "NONE"
STOCK_RESERVED = "RESERVED"
STOCK_COMMITTED = "COMMITTED"
STOCK_RELEASED = "RELEASED"
STOCK_RESTOCKED = "RESTOCKED"


def ensure_transition(current: str, target: str) -> None:
    if target not in ALLOWED_TRANSITIONS.get(current, set()):
        raise InvalidStateTransitionError(current, target)


@dataclass
class CartLine:
    product_id: int
    quantity: int
    sale_type: SaleType = SaleType.NORMAL
    custom_price: int | None = None


@dataclass
class Cart:
    store_id: int
    lines: list[CartLine]
    payment_method: str = PAYMENT_CASH
    employee_id: int | None = None
    customer_id: int | None = None
    customer_phone: str | None = None
    customer_name: str | None = None
    used_points: int = 0
    vat_invoice: bool = False
    vat_company_name: str | None = None
    vat_tax_code: str | None = None
    vat_company_address: str | None = None
    draft: bool = False

    @classmethod
    def from_payload(cls, payload) -> "Cart":
        """Parse the POST /api/orders body."""
        payload = ensure_payload(payload)

        lines = []
        for idx, raw in enumerate(ensure_list(payload.get("items"), "items")):
            if not isinstance(raw, dict):
                raise ValidationError(f"items[{idx}] must be an object")
            lines.append(CartLine(
                product_id=coerce_int(raw.get("product_id"), f"items[{idx}].product_id", minimum=1),
                quantity=coerce_int(raw.get("quantity"), f"items[{idx}].quantity", minimum=1),
                sale_type=SaleType.parse(raw.get("sale_type")),
                custom_price=coerce_optional_int(
                    raw.get("custom_price"), f"items[{idx}].custom_price", minimum=0, maximum=MAX_AMOUNT
                ),
            ))

        customer = payload.get("customer") or {}
        if not isinstance(customer, dict):
            raise ValidationError("customer must be an object")
        vat_details = payload.get("vat_details") or {}
        if not isinstance(vat_details, dict):
            raise ValidationError("vat_details must be an object")

        return cls(
            store_id=coerce_int(payload.get("store_id"), "store_id", minimum=1),
            lines=lines,
            payment_method=one_of(payload.get("payment_method") or PAYMENT_CASH, "payment_method", PAYMENT_METHODS),
            employee_id=coerce_optional_int(payload.get("employee_id"), "employee_id", minimum=1),
            customer_id=coerce_optional_int(payload.get("customer_id"), "customer_id", minimum=1),
            customer_phone=optional_text(customer.get("phone"), max_length=32),
            customer_name=optional_text(customer.get("name"), max_length=255),
            used_points=coerce_optional_int(payload.get("used_points"), "used_points", minimum=0) or 0,
            vat_invoice=coerce_bool(payload.get("vat_invoice", False)),
            vat_company_name=optional_text(vat_details.get("company_name"), max_length=255),
            vat_tax_code=optional_text(vat_details.get("tax_code"), max_length=32),
            vat_company_address=optional_text(vat_details.get("company_address"), max_length=255),
            draft=coerce_bool(payload.get("draft", False)),
        )

    def validate(self) -> None:
        if not self.lines:
            raise ValidationError("Cart is empty")
        for idx, line in enumerate(self.lines):
            if isinstance(line.quantity, bool) or not isinstance(line.quantity, int) or line.quantity <= 0:
                raise ValidationError(
                    f"items[{idx}].quantity must be a positive integer",
                    details={"product_id": line.product_id, "quantity": line.quantity},
                )
            if line.custom_price is not None and line.custom_price < 0:
                raise ValidationError(f"items[{idx}].custom_price must be >= 0")
        if self.payment_method not in PAYMENT_METHODS:
            raise ValidationError(f"Invalid payment_method: {self.payment_method!r}. Must be one of {list(PAYMENT_METHODS)}")
        if self.used_points < 0:
            raise ValidationError("used_points must be >= 0")


class OrderLifecycleManager:
    """
    Owns the Order aggregate and its state machine.

    Every mutating call validates first, then runs one atomic scope in which the
    stock ledger, loyalty balance, order rows and audit events change together.
    `payments` is the PaymentReconciler that issues QR payment requests; it is
    attached by OrderEngine because the reconciler also calls back into mark_paid().
    """

    def __init__(
        self,
        session,
        ledger: StockLedger,
        allocator: BatchAllocator,
        *,
        payments=None,
        clock: Callable = utcnow,
    ):
        self.session = session
        self.ledger = ledger
        self.allocator = allocator
        self.payments = payments
        self.clock = clock

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, order_id: int) -> Order:
        order = self.session.get(Order, order_id)
        if order is None:
            raise UnknownOrderError(f"Order {order_id} not found", details={"order_id": order_id})
        return order

    def list_paid_not_printed(self, store_id: int) -> list[Order]:
        return (
            self.session.query(Order)
            .filter(
                Order.store_id == store_id,
                Order.status == STATUS_PAID,
                Order.print_count == 0,
            )
            .order_by(Order.paid_at.asc(), Order.id.asc())
            .all()
        )

    def _locked(self, order_id: int) -> Order:
        order = (
            lock_for_update(self.session.query(Order).filter_by(id=order_id))
            .populate_existing()
            .first()
        )
        if order is None:
            raise UnknownOrderError(f"Order {order_id} not found", details={"order_id": order_id})
        return order

    # ------------------------------------------------------------------
    # Validation (runs before any atomic scope)
    # ------------------------------------------------------------------

    def _check_store(self, store_id: int) -> None:
        if self.session.get(Store, store_id) is None:
            raise ValidationError(f"Store {store_id} not found", details={"store_id": store_id})

    def _check_employee(self, store_id: int, employee_id: int | None) -> None:
        # None means the store owner is selling
        if employee_id is None:
            return
        employee = self.session.get(Employee, employee_id)
        if employee is None or employee.store_id != store_id:
            raise ValidationError(f"Employee {employee_id} not found in store {store_id}")
        if not employee.is_active:
            raise ValidationError(f"Employee {employee_id} is not active")

    def _load_products(self, cart: Cart) -> dict[int, Product]:
        ids = {line.product_id for line in cart.lines}
        products = {
            p.id: p
            for p in self.session.query(Product).filter(
                Product.store_id == cart.store_id,
                Product.id.in_(ids),
            )
        }
        for line in cart.lines:
            product = products.get(line.product_id)
            if product is None:
                raise UnknownProductError(line.product_id, cart.store_id)
            if not product.is_active:
                raise ValidationError(
                    f"Product {line.product_id} is not active",
                    details={"product_id": line.product_id},
                )
        return products

    # ------------------------------------------------------------------
    # Stock step (inside the atomic scope)
    # ------------------------------------------------------------------

    def _stock_lines(self, order: Order) -> list[StockLine]:
        return [
            StockLine(product_id=item.product_id, quantity=item.quantity, batch_id=item.batch_id)
            for item in order.items
        ]

    def _bind_batches(self, order: Order) -> None:
        product_ids = {item.product_id for item in order.items}
        batches_by_product: dict[int, list[Batch]] = {}
        for batch in (
            self.session.query(Batch)
            .filter(Batch.product_id.in_(product_ids))
            .populate_existing()
        ):
            batches_by_product.setdefault(batch.product_id, []).append(batch)

        allocations = self.allocator.allocate_lines(
            [(item.product_id, item.quantity) for item in order.items],
            batches_by_product,
        )
        for item, allocation in zip(order.items, allocations):
            if not allocation.is_complete:
                raise InsufficientStockError(
                    item.product_id,
                    item.quantity,
                    allocation.quantity,
                    message=(
                        f"Insufficient stock for product {item.product_id}: requested {item.quantity}, "
                        f"batch {allocation.batch_id} can supply {allocation.quantity}"
                    ),
                )
            item.batch_id = allocation.batch_id

    def _place(self, order: Order) -> None:
        """Bind batches, move stock and redeem points; order becomes PENDING."""
        self._bind_batches(order)
        lines = self._stock_lines(order)

        if order.payment_method == PAYMENT_CASH:
            self.ledger.commit_decrement(order.store_id, lines, order_id=order.id)
            order.stock_state = STOCK_COMMITTED
        else:
            self.ledger.reserve(order.store_id, lines, order_id=order.id)
            order.stock_state = STOCK_RESERVED

        if order.used_points and order.customer_id:
            deduct_points(self.session, order.customer_id, order.used_points)

        order.status = STATUS_PENDING
        order.submitted_at = self.clock()
        self.session.flush()

        if order.payment_method == PAYMENT_QR and self.payments is not None:
            self.payments.issue_request(order)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create(self, cart: Cart) -> Order:
        """
        Turn a cart into an Order.

        cash: stock is committed immediately. qr: stock is reserved and a payment
        request is issued. draft: persisted with no stock effect.
        Any stock failure aborts the whole scope; no Order row survives.
        """
        cart.validate()
        self._check_store(cart.store_id)
        self._check_employee(cart.store_id, cart.employee_id)
        products = self._load_products(cart)

        priced = [
            price_line(products[line.product_id], line.quantity, line.sale_type, line.custom_price)
            for line in cart.lines
        ]

        setting = get_setting(self.session, cart.store_id)
        if cart.customer_id is not None:
            customer = resolve_customer(self.session, cart.store_id, customer_id=cart.customer_id)
        elif cart.customer_phone:
            customer = find_customer_by_phone(self.session, cart.store_id, cart.customer_phone)
        else:
            customer = None
        used_points = redeemable_points(setting, customer, cart.used_points)
        discount = redemption_discount(setting, used_points)
        totals = compute_totals(priced, discount)

        def _op():
            with atomic_scope(self.session):
                customer_id = cart.customer_id
                if customer_id is None and cart.customer_phone:
                    customer_id = resolve_customer(
                        self.session,
                        cart.store_id,
                        phone=cart.customer_phone,
                        name=cart.customer_name,
                    ).id

                order = Order(
                    store_id=cart.store_id,
                    order_number=next_document_number(
                        self.session,
                        store_id=cart.store_id,
                        document_type="ORDER",
                        prefix=ORDER_PREFIX,
                    ),
                    employee_id=cart.employee_id,
                    customer_id=customer_id,
                    status=STATUS_DRAFT,
                    payment_method=cart.payment_method,
                    stock_state=STOCK_NONE,
                    subtotal=totals.subtotal,
                    discount_amount=totals.discount_amount,
                    vat_amount=totals.vat_amount,
                    total_amount=totals.total_amount,
                    used_points=used_points,
                    earned_points=0,
                    vat_invoice=cart.vat_invoice,
                    vat_company_name=cart.vat_company_name,
                    vat_tax_code=cart.vat_tax_code,
                    vat_company_address=cart.vat_company_address,
                    created_at=self.clock(),
                )
                for position, line in enumerate(priced, start=1):
                    order.items.append(OrderItem(
                        position=position,
                        product_id=line.product_id,
                        quantity=line.quantity,
                        sale_type=line.sale_type.value,
                        custom_price=line.custom_price,
                        list_price=line.list_price,
                        unit_price=line.unit_price,
                        tax_rate=line.tax_rate,
                        vat_amount=line.vat_amount,
                        line_total=line.line_total,
                        refunded_quantity=0,
                    ))
                self.session.add(order)
                self.session.flush()

                if not cart.draft:
                    self._place(order)

                append_audit_event(
                    self.session,
                    store_id=order.store_id,
                    event_type="order.created",
                    event_category="sales",
                    entity_type="order",
                    entity_id=order.id,
                    actor_employee_id=order.employee_id,
                    order_id=order.id,
                    occurred_at=order.created_at,
                    note=f"Order {order.order_number} created ({order.status})",
                    payload={"payment_method": order.payment_method, **totals.to_dict()},
                )
                return order

        return run_with_retry(_op, session=self.session)

    def submit_draft(self, order_id: int) -> Order:
        """DRAFT -> PENDING, performing the stock step the draft skipped."""
        def _op():
            with atomic_scope(self.session):
                order = self._locked(order_id)
                ensure_transition(order.status, STATUS_PENDING)

                if order.used_points and order.customer_id:
                    # Balance may have moved since the draft was saved
                    customer = self.session.get(Customer, order.customer_id, populate_existing=True)
                    available = (customer.loyalty_points or 0) if customer is not None else 0
                    if available < order.used_points:
                        raise ValidationError(
                            f"Customer has only {available} points; the draft redeems {order.used_points}",
                            details={"available_points": available, "used_points": order.used_points},
                        )

                self._place(order)
                append_audit_event(
                    self.session,
                    store_id=order.store_id,
                    event_type="order.submitted",
                    event_category="sales",
                    entity_type="order",
                    entity_id=order.id,
                    actor_employee_id=order.employee_id,
                    order_id=order.id,
                    occurred_at=order.submitted_at,
                    note=f"Draft {order.order_number} submitted",
                )
                return order

        return run_with_retry(_op, session=self.session)

    def _mark_paid_locked(self, order: Order, *, reference: str | None = None, payment_code: int | None = None) -> None:
        ensure_transition(order.status, STATUS_PAID)

        if order.stock_state == STOCK_RESERVED:
            self.ledger.commit_decrement(order.store_id, self._stock_lines(order), reserved=True, order_id=order.id)
            order.stock_state = STOCK_COMMITTED

        now = self.clock()
        order.status = STATUS_PAID
        order.paid_at = now

        setting = get_setting(self.session, order.store_id)
        order.earned_points = points_earned(setting, order.total_amount) if order.customer_id else 0
        if order.customer_id:
            record_paid_order(
                self.session,
                order.customer_id,
                total_amount=order.total_amount,
                earned_points=order.earned_points,
            )

        for request in order.payment_requests:
            if payment_code is not None and request.code == payment_code:
                request.status = "PAID"
                request.paid_at = now
                request.reference = reference
            elif request.status == "ACTIVE":
                request.status = "SUPERSEDED"

        append_audit_event(
            self.session,
            store_id=order.store_id,
            event_type="order.paid",
            event_category="payment",
            entity_type="order",
            entity_id=order.id,
            actor_employee_id=order.employee_id,
            order_id=order.id,
            occurred_at=now,
            note=f"Order {order.order_number} paid ({order.payment_method})",
            payload={"reference": reference, "code": payment_code, "total_amount": order.total_amount},
        )
        logger.info("Order %s marked PAID via %s", order.id, order.payment_method)

    def mark_paid(self, order_id: int, *, reference: str | None = None, payment_code: int | None = None) -> tuple[Order, bool]:
        """
        Guarded PENDING -> PAID. Returns (order, changed).

        Re-reads the order under lock; if it is already settled the call is a
        no-op, so webhook, polling and cashier paths can race safely and the
        QR reservation is committed exactly once.
        """
        def _op():
            with atomic_scope(self.session):
                order = self._locked(order_id)
                if order.status in SETTLED_STATUSES:
                    return order, False
                self._mark_paid_locked(order, reference=reference, payment_code=payment_code)
                return order, True

        return run_with_retry(_op, session=self.session)

    def confirm_cash_paid(self, order_id: int) -> Order:
        order = self.get(order_id)
        if order.payment_method != PAYMENT_CASH:
            raise ValidationError(
                f"Order {order_id} is paid by {order.payment_method}; it is settled by payment reconciliation",
                details={"order_id": order_id, "payment_method": order.payment_method},
            )
        order, _ = self.mark_paid(order_id)
        return order

    def cancel(self, order_id: int, reason: str | None = None) -> Order:
        """
        DRAFT/PENDING -> CANCELLED.

        Gives back whatever the order holds: a QR reservation is released,
        committed cash stock is restocked, redeemed points are restored.
        """
        def _op():
            with atomic_scope(self.session):
                order = self._locked(order_id)
                if order.status == STATUS_CANCELLED:
                    return order
                ensure_transition(order.status, STATUS_CANCELLED)

                lines = self._stock_lines(order)
                if order.stock_state == STOCK_RESERVED:
                    self.ledger.release(order.store_id, lines, order_id=order.id)
                    order.stock_state = STOCK_RELEASED
                elif order.stock_state == STOCK_COMMITTED:
                    self.ledger.commit_increment(order.store_id, lines, order_id=order.id)
                    order.stock_state = STOCK_RESTOCKED

                # Points are only deducted once the order left DRAFT
                if order.status == STATUS_PENDING and order.used_points and order.customer_id:
                    restore_points(self.session, order.customer_id, order.used_points)

                for request in order.payment_requests:
                    if request.status in ("ACTIVE", "SUPERSEDED"):
                        request.status = "CANCELLED"

                order.status = STATUS_CANCELLED
                order.cancelled_at = self.clock()
                order.cancel_reason = optional_text(reason, max_length=255)

                append_audit_event(
                    self.session,
                    store_id=order.store_id,
                    event_type="order.cancelled",
                    event_category="sales",
                    entity_type="order",
                    entity_id=order.id,
                    actor_employee_id=order.employee_id,
                    order_id=order.id,
                    occurred_at=order.cancelled_at,
                    note=order.cancel_reason,
                    payload={"stock_state": order.stock_state},
                )
                return order

        return run_with_retry(_op, session=self.session)

    def record_print(self, order_id: int) -> Order:
        def _op():
            with atomic_scope(self.session):
                order = self._locked(order_id)
                if order.status not in SETTLED_STATUSES:
                    raise InvalidStateTransitionError(
                        order.status,
                        "PRINTED",
                        message=f"Only paid orders can be printed (order {order_id} is {order.status})",
                    )
                order.print_count = (order.print_count or 0) + 1
                order.printed_at = self.clock()
                append_audit_event(
                    self.session,
                    store_id=order.store_id,
                    event_type="order.printed",
                    event_category="sales",
                    entity_type="order",
                    entity_id=order.id,
                    order_id=order.id,
                    occurred_at=order.printed_at,
                    payload={"print_count": order.print_count},
                )
                return order

        return run_with_retry(_op, session=self.session)
