# Overview: Typed error kinds raised by the order engine and mapped to HTTP responses by routes.

from __future__ import annotations


class OrderEngineError(Exception):
    """Base class for every failure the engine reports to its caller."""

    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": str(self), "kind": type(self).__name__, "details": self.details}


class ValidationError(OrderEngineError, ValueError):
    """400-level input problem (empty cart, missing reason, non-positive quantity)."""


class InsufficientStockError(OrderEngineError):
    """Requested quantity exceeds what the product can supply."""

    status_code = 409

    def __init__(self, product_id: int, requested: int, available: int, message: str | None = None):
        super().__init__(
            message or f"Insufficient stock for product {product_id}: requested {requested}, available {available}",
            details={"product_id": product_id, "requested": requested, "available": available},
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class UnknownProductError(OrderEngineError):
    status_code = 404

    def __init__(self, product_id: int, store_id: int | None = None):
        super().__init__(
            f"Product {product_id} not found in store {store_id}",
            details={"product_id": product_id, "store_id": store_id},
        )
        self.product_id = product_id


class UnknownOrderError(OrderEngineError):
    status_code = 404


class InvalidStateTransitionError(OrderEngineError):
    """
    Order cannot move from its current status to the requested one
    (e.g., refunding a PENDING order, paying a CANCELLED one).
    """

    status_code = 409

    def __init__(self, current: str, target: str, message: str | None = None):
        super().__init__(
            message or f"Cannot move order from {current} to {target}",
            details={"current_status": current, "target_status": target},
        )
        self.current = current
        self.target = target


class RefundQuantityExceededError(OrderEngineError):
    status_code = 409

    def __init__(self, product_id: int, purchased: int, already_refunded: int, requested: int):
        super().__init__(
            f"Cannot refund {requested} units of product {product_id}. "
            f"Purchased: {purchased}, already refunded: {already_refunded}, "
            f"refundable: {purchased - already_refunded}",
            details={
                "product_id": product_id,
                "purchased": purchased,
                "already_refunded": already_refunded,
                "requested": requested,
            },
        )


class SignatureMismatchError(OrderEngineError):
    status_code = 401
