# Overview: Read-only stock level endpoint (quantity, reserved, sellable, available, batches).

from flask import Blueprint, current_app, jsonify

from ..errors import OrderEngineError
from ..models import Batch
from ..extensions import db
from . import error_response, get_engine


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


@stock_bp.get("/stores/<int:store_id>/products/<int:product_id>")
def stock_level_route(store_id: int, product_id: int):
    try:
        engine = get_engine()
        level = engine.ledger.get_level(store_id, product_id)
        batches = (
            db.session.query(Batch)
            .filter(Batch.product_id == product_id)
            .all()
        )
        eligible_ids = [b.id for b in engine.allocator.eligible(batches)]
        return jsonify({
            "stock": level.to_dict(),
            "batches": [b.to_dict() for b in batches],
            "fefo_order": eligible_ids,
        }), 200

    except OrderEngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to read stock level")
        return jsonify({"error": "Internal server error"}), 500
