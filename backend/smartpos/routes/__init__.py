# Overview: Shared helpers for the JSON blueprints.

from flask import current_app, g, jsonify

from ..errors import OrderEngineError, ValidationError
from ..extensions import db
from ..services import OrderEngine


def get_engine() -> OrderEngine:
    """One service graph per request, bound to the request's session."""
    if "order_engine" not in g:
        g.order_engine = OrderEngine.from_config(db.session, current_app.config)
    return g.order_engine


def error_response(exc: OrderEngineError):
    body = exc.to_dict()
    return jsonify(body), exc.status_code


def require_store_id(args) -> int:
    raw = args.get("store_id")
    if raw is None or raw == "":
        raise ValidationError("store_id query parameter is required")
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationError("store_id must be an integer")
