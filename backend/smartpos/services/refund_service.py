# Overview: Partial and full refunds against paid orders; restocks through the stock ledger.

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from ..errors import (
    InvalidStateTransitionError,
    RefundQuantityExceededError,
    UnknownOrderError,
    ValidationError,
)
from ..models import Employee, Order, Refund, RefundEvidence, RefundItem
from smartpos.time_utils import utcnow
from smartpos.validation import coerce_int, ensure_list, ensure_payload, one_of, optional_text, require_text
from .audit_service import append_audit_event
from .concurrency import atomic_scope, lock_for_update, run_with_retry
from .document_service import REFUND_PREFIX, next_document_number
from .order_service import (
    STATUS_PAID,
    STATUS_PARTIALLY_REFUNDED,
    STATUS_REFUNDED,
    ensure_transition,
)
from .stock_ledger import StockLedger, StockLine

logger = logging.getLogger(__name__)

REFUNDABLE_STATUSES = {STATUS_PAID, STATUS_PARTIALLY_REFUNDED}
EVIDENCE_MEDIA_TYPES = ("image", "video")


@dataclass
class RefundRequestItem:
    product_id: int
    quantity: int


@dataclass
class RefundEvidenceRef:
    url: str
    media_type: str = "image"
    public_id: str | None = None


@dataclass
class RefundRequest:
    employee_id: int
    reason: str
    items: list[RefundRequestItem]
    evidence: list[RefundEvidenceRef] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload) -> "RefundRequest":
        """Parse the POST /api/orders/<id>/refund body."""
        payload = ensure_payload(payload)

        items = []
        for idx, raw in enumerate(ensure_list(payload.get("items"), "items")):
            if not isinstance(raw, dict):
                raise ValidationError(f"items[{idx}] must be an object")
            items.append(RefundRequestItem(
                product_id=coerce_int(raw.get("product_id"), f"items[{idx}].product_id", minimum=1),
                quantity=coerce_int(raw.get("quantity"), f"items[{idx}].quantity", minimum=1),
            ))

        evidence = []
        for idx, raw in enumerate(ensure_list(payload.get("evidence"), "evidence")):
            if not isinstance(raw, dict):
                raise ValidationError(f"evidence[{idx}] must be an object")
            evidence.append(RefundEvidenceRef(
                url=require_text(raw.get("url"), f"evidence[{idx}].url", max_length=512),
                media_type=one_of(raw.get("type") or "image", f"evidence[{idx}].type", EVIDENCE_MEDIA_TYPES),
                public_id=optional_text(raw.get("public_id"), max_length=255),
            ))

        return cls(
            employee_id=coerce_int(payload.get("employee_id"), "employee_id", minimum=1),
            reason=str(payload.get("reason") or ""),
            items=items,
            evidence=evidence,
        )


class RefundProcessor:
    """
    Refunds against a previously paid order.

    Amounts always come from the unit price frozen on the order item; refunded
    units go back to stock (into the original batch when it still exists).
    """

    def __init__(self, session, ledger: StockLedger, *, clock: Callable = utcnow):
        self.session = session
        self.ledger = ledger
        self.clock = clock

    def _validate(self, order: Order, request: RefundRequest) -> None:
        if not (request.reason or "").strip():
            raise ValidationError("Refund reason is required")
        if not request.items:
            raise ValidationError("Select at least one item to refund")
        for idx, item in enumerate(request.items):
            if isinstance(item.quantity, bool) or not isinstance(item.quantity, int) or item.quantity <= 0:
                raise ValidationError(
                    f"items[{idx}].quantity must be a positive integer",
                    details={"product_id": item.product_id, "quantity": item.quantity},
                )

        employee = self.session.get(Employee, request.employee_id)
        if employee is None or employee.store_id != order.store_id:
            raise ValidationError(f"Employee {request.employee_id} not found in store {order.store_id}")
        if not employee.is_active:
            raise ValidationError(f"Employee {request.employee_id} is not active")
        if order.employee_id is not None and order.employee_id == request.employee_id:
            raise ValidationError(
                "Refund must be processed by a different employee than the original seller",
                details={"employee_id": request.employee_id, "order_id": order.id},
            )

    def create_refund(self, order_id: int, request: RefundRequest) -> Refund:
        order = self.session.get(Order, order_id)
        if order is None:
            raise UnknownOrderError(f"Order {order_id} not found", details={"order_id": order_id})
        self._validate(order, request)

        # Merge duplicate product rows in the request
        requested: dict[int, int] = {}
        for item in request.items:
            requested[item.product_id] = requested.get(item.product_id, 0) + item.quantity

        def _op():
            with atomic_scope(self.session):
                order = (
                    lock_for_update(self.session.query(Order).filter_by(id=order_id))
                    .populate_existing()
                    .first()
                )
                if order.status not in REFUNDABLE_STATUSES:
                    raise InvalidStateTransitionError(
                        order.status,
                        STATUS_REFUNDED,
                        message=f"Only PAID or PARTIALLY_REFUNDED orders can be refunded (order {order_id} is {order.status})",
                    )

                for item in order.items:
                    self.session.refresh(item)

                lines_by_product: dict[int, list] = {}
                for item in order.items:
                    lines_by_product.setdefault(item.product_id, []).append(item)

                for product_id, quantity in requested.items():
                    lines = lines_by_product.get(product_id)
                    if not lines:
                        raise ValidationError(
                            f"Product {product_id} is not part of order {order.order_number}",
                            details={"product_id": product_id, "order_id": order.id},
                        )
                    purchased = sum(line.quantity for line in lines)
                    already = sum(line.refunded_quantity or 0 for line in lines)
                    if already + quantity > purchased:
                        raise RefundQuantityExceededError(product_id, purchased, already, quantity)

                now = self.clock()
                refund = Refund(
                    store_id=order.store_id,
                    order_id=order.id,
                    refund_number=next_document_number(
                        self.session,
                        store_id=order.store_id,
                        document_type="REFUND",
                        prefix=REFUND_PREFIX,
                    ),
                    refunded_by_employee_id=request.employee_id,
                    reason=request.reason.strip(),
                    refunded_at=now,
                )
                self.session.add(refund)

                stock_lines = []
                refund_amount = 0
                for product_id, quantity in requested.items():
                    remaining = quantity
                    # Consume the product's lines in position order
                    for line in lines_by_product[product_id]:
                        if remaining == 0:
                            break
                        take = min(line.refundable_quantity, remaining)
                        if take <= 0:
                            continue
                        subtotal = take * line.unit_price
                        refund.items.append(RefundItem(
                            order_item_id=line.id,
                            product_id=product_id,
                            batch_id=line.batch_id,
                            quantity=take,
                            unit_price=line.unit_price,
                            subtotal=subtotal,
                        ))
                        line.refunded_quantity = (line.refunded_quantity or 0) + take
                        stock_lines.append(StockLine(product_id=product_id, quantity=take, batch_id=line.batch_id))
                        refund_amount += subtotal
                        remaining -= take

                for ref in request.evidence:
                    refund.evidence.append(RefundEvidence(
                        url=ref.url,
                        media_type=ref.media_type,
                        public_id=ref.public_id,
                    ))

                refund.refund_amount = refund_amount
                self.session.flush()

                self.ledger.commit_increment(order.store_id, stock_lines, order_id=order.id, refund_id=refund.id)

                fully_refunded = all(item.refunded_quantity >= item.quantity for item in order.items)
                target = STATUS_REFUNDED if fully_refunded else STATUS_PARTIALLY_REFUNDED
                ensure_transition(order.status, target)
                order.status = target
                order.refund_id = refund.id

                append_audit_event(
                    self.session,
                    store_id=order.store_id,
                    event_type="refund.created",
                    event_category="refund",
                    entity_type="refund",
                    entity_id=refund.id,
                    actor_employee_id=request.employee_id,
                    order_id=order.id,
                    refund_id=refund.id,
                    occurred_at=now,
                    note=refund.reason[:255],
                    payload={"refund_amount": refund_amount, "order_status": target},
                )
                logger.info("Refund %s on order %s: %s (%s)", refund.refund_number, order.id, refund_amount, target)
                return refund

        return run_with_retry(_op, session=self.session)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_refunds(self, store_id: int, *, order_id: int | None = None) -> list[Refund]:
        query = self.session.query(Refund).filter(Refund.store_id == store_id)
        if order_id is not None:
            query = query.filter(Refund.order_id == order_id)
        return query.order_by(Refund.refunded_at.desc(), Refund.id.desc()).all()

    def refund_summary(self, order_id: int) -> dict:
        order = self.session.get(Order, order_id)
        if order is None:
            raise UnknownOrderError(f"Order {order_id} not found", details={"order_id": order_id})

        refunds = self.session.query(Refund).filter_by(order_id=order_id).order_by(Refund.id.asc()).all()
        purchased = sum(item.quantity for item in order.items)
        refunded = sum(item.refunded_quantity or 0 for item in order.items)

        return {
            "order_id": order.id,
            "order_status": order.status,
            "refund_count": len(refunds),
            "total_refunded_amount": sum(r.refund_amount for r in refunds),
            "total_refunded_quantity": refunded,
            "remaining_refundable_quantity": purchased - refunded,
            "items": [
                {
                    "order_item_id": item.id,
                    "product_id": item.product_id,
                    "quantity": item.quantity,
                    "refunded_quantity": item.refunded_quantity or 0,
                    "refundable_quantity": item.refundable_quantity,
                    "unit_price": item.unit_price,
                }
                for item in order.items
            ],
        }
