# Overview: Flask API routes for orders, QR payments and refunds; parses input and returns JSON responses.

# backend/smartpos/routes/orders.py
"""Order engine API routes"""

from flask import Blueprint, current_app, jsonify, request

from ..errors import OrderEngineError
from ..services import Cart, RefundRequest
from smartpos.validation import ensure_payload, optional_text
from . import error_response, get_engine, require_store_id


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _order_body(order, payment_request=None) -> dict:
    engine = get_engine()
    body = {
        "order": order.to_dict(),
        "items": [item.to_dict() for item in order.items],
    }
    if payment_request is None and order.payment_method == "qr" and order.status == "PENDING":
        payment_request = engine.payments.active_request(order)
    if payment_request is not None:
        body["payment_request"] = engine.payments.request_payload(payment_request)
    return body


@orders_bp.post("/")
def create_order_route():
    """
    Create an order from a cart.

    cash: stock committed, order PENDING until the cashier confirms.
    qr: stock reserved, payment request returned for the QR renderer.
    draft=true: saved without touching stock.
    """
    try:
        cart = Cart.from_payload(request.get_json(silent=True))
        order = get_engine().orders.create(cart)
        return jsonify(_order_body(order)), 201

    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
def get_order_route(order_id: int):
    try:
        order = get_engine().orders.get(order_id)
        return jsonify(_order_body(order)), 200

    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/submit")
def submit_draft_route(order_id: int):
    try:
        order = get_engine().orders.submit_draft(order_id)
        return jsonify(_order_body(order)), 200

    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to submit draft order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/set-paid-cash")
def set_paid_cash_route(order_id: int):
    try:
        order = get_engine().orders.confirm_cash_paid(order_id)
        return jsonify({"order": order.to_dict()}), 200

    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to confirm cash payment")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/cancel")
def cancel_order_route(order_id: int):
    try:
        data = ensure_payload(request.get_json(silent=True))
        order = get_engine().orders.cancel(order_id, reason=optional_text(data.get("reason"), max_length=255))
        return jsonify({"order": order.to_dict()}), 200

    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/qr")
def new_qr_route(order_id: int):
    """Issue a fresh correlation code for a PENDING QR order (e.g., after expiry)."""
    try:
        engine = get_engine()
        payment_request = engine.payments.request_new_qr(order_id)
        order = engine.orders.get(order_id)
        return jsonify(_order_body(order, payment_request)), 201

    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to issue new QR")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/print-bill")
def print_bill_route(order_id: int):
    try:
        order = get_engine().orders.record_print(order_id)
        return jsonify({"order": order.to_dict()}), 200

    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record bill print")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/pos/payment-status/<int:code>")
def payment_status_route(code: int):
    """Polling endpoint: {status: PENDING|PAID|CANCELLED, expired, expires_at}."""
    try:
        return jsonify(get_engine().payments.payment_status(code)), 200

    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to read payment status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/payments/webhook")
def payment_webhook_route():
    try:
        result = get_engine().payments.handle_webhook(request.get_json(silent=True))
        return jsonify(result), 200

    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to process payment webhook")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/expired-qr")
def expired_qr_route():
    """PENDING QR orders whose QR lapsed; surfaced to the operator, never auto-cancelled."""
    try:
        store_id = require_store_id(request.args)
        orders = get_engine().payments.list_expired(store_id)
        return jsonify({"orders": [o.to_dict() for o in orders], "count": len(orders)}), 200

    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list expired QR orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/reconciliation/paid-not-printed")
def paid_not_printed_route():
    try:
        store_id = require_store_id(request.args)
        orders = get_engine().orders.list_paid_not_printed(store_id)
        return jsonify({"orders": [o.to_dict() for o in orders], "count": len(orders)}), 200

    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list paid-not-printed orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/refund")
def refund_order_route(order_id: int):
    try:
        engine = get_engine()
        refund_request = RefundRequest.from_payload(request.get_json(silent=True))
        refund = engine.refunds.create_refund(order_id, refund_request)
        order = engine.orders.get(order_id)
        return jsonify({"refund": refund.to_dict(), "order": order.to_dict()}), 201

    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create refund")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>/refunds")
def order_refunds_route(order_id: int):
    try:
        engine = get_engine()
        summary = engine.refunds.refund_summary(order_id)
        order = engine.orders.get(order_id)
        refunds = engine.refunds.list_refunds(order.store_id, order_id=order_id)
        return jsonify({"refunds": [r.to_dict() for r in refunds], "summary": summary}), 200

    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list order refunds")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/list-refund")
def list_refunds_route():
    try:
        store_id = require_store_id(request.args)
        refunds = get_engine().refunds.list_refunds(store_id)
        return jsonify({"refunds": [r.to_dict() for r in refunds], "count": len(refunds)}), 200

    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list refunds")
        return jsonify({"error": "Internal server error"}), 500
