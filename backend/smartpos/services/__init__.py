# Overview: Assembles the order engine services around one SQLAlchemy session.

from __future__ import annotations

from dataclasses import dataclass

from .batch_allocator import BatchAllocator
from .order_service import Cart, CartLine, OrderLifecycleManager
from .payment_service import PaymentReconciler
from .refund_service import RefundProcessor, RefundRequest
from .stock_ledger import StockLedger, StockLevel, StockLine


def _setting(config, key: str, default=None):
    if hasattr(config, "get"):
        return config.get(key, default)
    return getattr(config, key, default)


@dataclass
class OrderEngine:
    ledger: StockLedger
    allocator: BatchAllocator
    orders: OrderLifecycleManager
    payments: PaymentReconciler
    refunds: RefundProcessor

    @classmethod
    def from_config(cls, session, config) -> "OrderEngine":
        """
        Build the service graph for a session.

        `config` is a Flask config mapping or a Config-like object.
        """
        ledger = StockLedger(session)
        allocator = BatchAllocator()
        orders = OrderLifecycleManager(session, ledger, allocator)
        payments = PaymentReconciler(
            session,
            orders,
            checksum_key=_setting(config, "PAYMENT_CHECKSUM_KEY", ""),
            qr_expiry_minutes=int(_setting(config, "QR_EXPIRY_MINUTES", 15)),
            poll_interval_seconds=float(_setting(config, "PAYMENT_POLL_INTERVAL_SECONDS", 3.0)),
            account_number=_setting(config, "PAYMENT_ACCOUNT_NUMBER", ""),
            account_name=_setting(config, "PAYMENT_ACCOUNT_NAME", ""),
            bank_bin=_setting(config, "PAYMENT_BANK_BIN", ""),
        )
        orders.payments = payments
        refunds = RefundProcessor(session, ledger)
        return cls(ledger=ledger, allocator=allocator, orders=orders, payments=payments, refunds=refunds)


__all__ = [
    "OrderEngine",
    "StockLedger",
    "StockLevel",
    "StockLine",
    "BatchAllocator",
    "OrderLifecycleManager",
    "Cart",
    "CartLine",
    "PaymentReconciler",
    "RefundProcessor",
    "RefundRequest",
]
