# Overview: Flask API routes for stock ledger reads and manual adjustments.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..models.reference import ROLE_MANAGER
from ..services import ledger_service
from ..time_utils import today, to_iso_date
from ..validation import DomainError, optional_text, parse_date_field, require_id, require_int, require_payload


stock_movements_bp = Blueprint("stock_movements", __name__, url_prefix="/api/stock-movements")


@stock_movements_bp.get("/daily")
@require_auth
def daily_summary_route():
    """?date=YYYY-MM-DD (defaults to today)"""
    try:
        movement_date = parse_date_field(request.args.get("date"), "date", required=False) or today()
        return jsonify({
            "date": to_iso_date(movement_date),
            "summary": ledger_service.daily_summary(movement_date),
        }), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@stock_movements_bp.get("/products/<int:product_id>")
@require_auth
def product_movements_route(product_id: int):
    try:
        movements = ledger_service.product_movements(
            product_id,
            start_date=parse_date_field(request.args.get("start_date"), "start_date", required=False),
            end_date=parse_date_field(request.args.get("end_date"), "end_date", required=False),
            movement_type=request.args.get("movement_type") or None,
        )
        return jsonify({"movements": [m.to_dict() for m in movements]}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@stock_movements_bp.post("/adjust")
@require_auth
@require_role(ROLE_MANAGER)
def adjust_route():
    """
    Manual correction.

    Body: {batch_id, product_id?, quantity, movement_type: adjustment | expired_out, notes}
    """
    try:
        data = require_payload(request.get_json(silent=True))
        product_id = data.get("product_id")
        movement = ledger_service.adjust_stock(
            batch_id=require_id(data.get("batch_id"), "batch_id"),
            product_id=None if product_id is None else require_id(product_id, "product_id"),
            movement_type=data.get("movement_type"),
            quantity=require_int(data.get("quantity"), "quantity"),
            notes=optional_text(data.get("notes"), "notes", max_length=255),
            actor_user_id=g.current_user.id,
        )
        return jsonify({"movement": movement.to_dict()}), 201

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500
