# Overview: QR payment requests, signed webhook reconciliation and payment-status polling.

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import secrets
from datetime import timedelta
from typing import Callable
from urllib.parse import quote

from ..errors import (
    InvalidStateTransitionError,
    SignatureMismatchError,
    UnknownOrderError,
    ValidationError,
)
from ..models import Order, PaymentRequest
from smartpos.time_utils import to_utc_z, utcnow
from smartpos.validation import coerce_int, ensure_payload
from .audit_service import append_audit_event
from .concurrency import atomic_scope, lock_for_update, run_with_retry
from .order_service import (
    PAYMENT_QR,
    SETTLED_STATUSES,
    STATUS_CANCELLED,
    STATUS_PENDING,
    OrderLifecycleManager,
)

logger = logging.getLogger(__name__)

# Provider status code meaning "money received"
PROVIDER_SUCCESS_CODE = "00"

# Provider caps the transfer description
DESCRIPTION_MAX_LENGTH = 25

PAYMENT_STATUS_ACTIVE = "ACTIVE"
PAYMENT_STATUS_SUPERSEDED = "SUPERSEDED"
PAYMENT_STATUS_PAID = "PAID"
PAYMENT_STATUS_CANCELLED = "CANCELLED"


# =============================================================================
# Signatures
# =============================================================================

def _canonical_value(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return str(value)


def canonical_data_string(data: dict) -> str:
    """key=value pairs joined by '&', keys in lexicographic order."""
    return "&".join(f"{key}={_canonical_value(data[key])}" for key in sorted(data))


def sign_data(secret: str, data: dict) -> str:
    return hmac.new(
        secret.encode("utf-8"),
        canonical_data_string(data).encode("utf-8"),
        hashlib.sha256,
    ).hexdigest().upper()


def verify_signature(secret: str, data: dict, signature) -> bool:
    if not isinstance(signature, str) or not signature:
        return False
    expected = sign_data(secret, data)
    return hmac.compare_digest(expected, signature.strip().upper())


def _new_code() -> int:
    # 10 digits, fits the provider's integer orderCode
    return 1_000_000_000 + secrets.randbelow(9_000_000_000)


class PaymentReconciler:
    """
    Second source of truth for QR orders.

    The webhook and client polling both end in OrderLifecycleManager.mark_paid(),
    whose guarded PENDING -> PAID write makes them idempotent and commutative.
    """

    def __init__(
        self,
        session,
        lifecycle: OrderLifecycleManager,
        *,
        checksum_key: str,
        qr_expiry_minutes: int = 15,
        poll_interval_seconds: float = 3.0,
        account_number: str = "",
        account_name: str = "",
        bank_bin: str = "",
        clock: Callable = utcnow,
    ):
        self.session = session
        self.lifecycle = lifecycle
        self.checksum_key = checksum_key
        self.qr_expiry_minutes = qr_expiry_minutes
        self.poll_interval_seconds = poll_interval_seconds
        self.account_number = account_number
        self.account_name = account_name
        self.bank_bin = bank_bin
        self.clock = clock

    # ------------------------------------------------------------------
    # Payment requests
    # ------------------------------------------------------------------

    def _unused_code(self) -> int:
        while True:
            code = _new_code()
            if not self.session.query(PaymentRequest.id).filter_by(code=code).first():
                return code

    def issue_request(self, order: Order) -> PaymentRequest:
        """
        Create a fresh payment request inside the caller's atomic scope.

        Older active requests of the order become SUPERSEDED; their codes still
        resolve to the order.
        """
        for request in order.payment_requests:
            if request.status == PAYMENT_STATUS_ACTIVE:
                request.status = PAYMENT_STATUS_SUPERSEDED

        now = self.clock()
        request = PaymentRequest(
            order=order,
            code=self._unused_code(),
            amount=order.total_amount,
            description=f"{order.order_number}".replace("-", "")[:DESCRIPTION_MAX_LENGTH],
            status=PAYMENT_STATUS_ACTIVE,
            expires_at=now + timedelta(minutes=self.qr_expiry_minutes),
            created_at=now,
        )
        self.session.add(request)
        order.qr_expires_at = request.expires_at
        self.session.flush()

        append_audit_event(
            self.session,
            store_id=order.store_id,
            event_type="payment.requested",
            event_category="payment",
            entity_type="payment_request",
            entity_id=request.id,
            order_id=order.id,
            occurred_at=now,
            payload={"code": request.code, "amount": request.amount},
        )
        return request

    def request_payload(self, request: PaymentRequest) -> dict:
        """What the external QR renderer needs; signed like a provider request."""
        signed = {
            "amount": request.amount,
            "description": request.description,
            "orderCode": request.code,
        }
        payload = {
            "order_id": request.order_id,
            "code": request.code,
            "amount": request.amount,
            "description": request.description,
            "account_number": self.account_number,
            "account_name": self.account_name,
            "bank_bin": self.bank_bin,
            "expires_at": to_utc_z(request.expires_at),
            "signature": sign_data(self.checksum_key, signed),
            "qr_image_url": None,
        }
        if self.bank_bin and self.account_number:
            payload["qr_image_url"] = (
                f"https://img.vietqr.io/image/{self.bank_bin}-{self.account_number}-compact2.png"
                f"?amount={request.amount}&addInfo={quote(request.description or '')}"
                f"&accountName={quote(self.account_name or '')}"
            )
        return payload

    def active_request(self, order: Order) -> PaymentRequest | None:
        for request in reversed(order.payment_requests):
            if request.status == PAYMENT_STATUS_ACTIVE:
                return request
        return None

    def request_new_qr(self, order_id: int) -> PaymentRequest:
        """Fresh correlation code against the same PENDING QR order (e.g., after expiry)."""
        def _op():
            with atomic_scope(self.session):
                order = (
                    lock_for_update(self.session.query(Order).filter_by(id=order_id))
                    .populate_existing()
                    .first()
                )
                if order is None:
                    raise UnknownOrderError(f"Order {order_id} not found", details={"order_id": order_id})
                if order.payment_method != PAYMENT_QR:
                    raise ValidationError(
                        f"Order {order_id} is not a QR payment order",
                        details={"order_id": order_id, "payment_method": order.payment_method},
                    )
                if order.status != STATUS_PENDING:
                    raise InvalidStateTransitionError(
                        order.status,
                        STATUS_PENDING,
                        message=f"A new QR can only be issued for PENDING orders (order {order_id} is {order.status})",
                    )
                return self.issue_request(order)

        return run_with_retry(_op, session=self.session)

    # ------------------------------------------------------------------
    # Webhook path
    # ------------------------------------------------------------------

    def _request_by_code(self, code: int) -> PaymentRequest:
        request = self.session.query(PaymentRequest).filter_by(code=code).first()
        if request is None:
            raise UnknownOrderError(f"No order for payment code {code}", details={"code": code})
        return request

    def handle_webhook(self, payload) -> dict:
        """
        Reconcile a provider callback {code, desc, data, signature}.

        The signature is checked before anything else is read. Replaying a code
        whose order is already settled is a no-op success.
        """
        payload = ensure_payload(payload)
        data = payload.get("data")
        if not isinstance(data, dict):
            raise ValidationError("Webhook data must be an object")

        if not verify_signature(self.checksum_key, data, payload.get("signature")):
            logger.warning("Rejected payment webhook with invalid signature (orderCode=%r)", data.get("orderCode"))
            raise SignatureMismatchError("Invalid webhook signature", details={"code": data.get("orderCode")})

        code = coerce_int(data.get("orderCode"), "data.orderCode", minimum=1)
        request = self._request_by_code(code)
        order = request.order

        provider_code = str(payload.get("code") or "")
        if provider_code != PROVIDER_SUCCESS_CODE:
            logger.info("Payment webhook for code %s reported %s (%s); no change", code, provider_code, payload.get("desc"))
            return {"acknowledged": True, "changed": False, "order_id": order.id, "status": order.status}

        if data.get("amount") is not None:
            amount = coerce_int(data.get("amount"), "data.amount", minimum=0)
            if amount != request.amount:
                logger.warning(
                    "Payment webhook amount mismatch for code %s: expected %s, got %s",
                    code,
                    request.amount,
                    amount,
                )
                raise ValidationError(
                    f"Paid amount {amount} does not match requested amount {request.amount}",
                    details={"code": code, "expected": request.amount, "received": amount},
                )

        if order.status in SETTLED_STATUSES:
            return {"acknowledged": True, "changed": False, "order_id": order.id, "status": order.status}
        if order.status == STATUS_CANCELLED:
            raise InvalidStateTransitionError(
                order.status,
                "PAID",
                message=f"Payment received for cancelled order {order.id} (code {code})",
            )

        order, changed = self.lifecycle.mark_paid(
            order.id,
            reference=data.get("reference"),
            payment_code=code,
        )
        return {"acknowledged": True, "changed": changed, "order_id": order.id, "status": order.status}

    # ------------------------------------------------------------------
    # Polling path
    # ------------------------------------------------------------------

    def payment_status(self, code: int) -> dict:
        request = self._request_by_code(code)
        order = request.order
        if order.status in SETTLED_STATUSES:
            status = "PAID"
        elif order.status == STATUS_CANCELLED:
            status = "CANCELLED"
        else:
            status = "PENDING"
        expires_at = order.qr_expires_at or request.expires_at
        return {
            "order_id": order.id,
            "code": request.code,
            "status": status,
            "expired": status == "PENDING" and expires_at is not None and expires_at <= self.clock(),
            "expires_at": to_utc_z(expires_at),
            "poll_interval_seconds": self.poll_interval_seconds,
        }

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    def list_expired(self, store_id: int | None = None, *, older_than: timedelta | None = None) -> list[Order]:
        """PENDING QR orders whose current QR has lapsed. Never cancelled automatically."""
        cutoff = self.clock() - (older_than or timedelta(0))
        query = self.session.query(Order).filter(
            Order.payment_method == PAYMENT_QR,
            Order.status == STATUS_PENDING,
            Order.qr_expires_at.isnot(None),
            Order.qr_expires_at <= cutoff,
        )
        if store_id is not None:
            query = query.filter(Order.store_id == store_id)
        return query.order_by(Order.qr_expires_at.asc(), Order.id.asc()).all()

    def release_stale(self, grace_minutes: int, *, store_id: int | None = None) -> list[int]:
        """
        Operator/cron sweep: cancel QR orders expired for longer than the grace
        period, giving back their reservations. Returns cancelled order ids.
        """
        stale_ids = [o.id for o in self.list_expired(store_id, older_than=timedelta(minutes=grace_minutes))]
        released = []
        for order_id in stale_ids:
            try:
                order = self.lifecycle.cancel(order_id, reason=f"QR expired more than {grace_minutes} minutes ago")
            except InvalidStateTransitionError:
                # Paid between the listing and the cancel
                logger.info("Order %s settled before stale release; skipped", order_id)
                continue
            if order.status == STATUS_CANCELLED:
                released.append(order_id)
        logger.info("Released %d stale QR orders (grace %s min)", len(released), grace_minutes)
        return released
