# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

"""Sales API routes"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..models.reference import ROLE_DRIVER, ROLE_MANAGER
from ..services import sales_service
from ..validation import DomainError, parse_date_field, require_id, require_payload


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
@require_auth
@require_role(ROLE_MANAGER, ROLE_DRIVER)
def create_sale_route():
    """
    Record a sale from a truck load.

    Body: {shop_id, truck_load_id, items: [{product_id, quantity, unit_price?}], amount_paid}
    Available to: manager, driver (own truck only)
    """
    try:
        data = require_payload(request.get_json(silent=True))
        sale = sales_service.create_sale(
            shop_id=require_id(data.get("shop_id"), "shop_id"),
            truck_load_id=require_id(data.get("truck_load_id"), "truck_load_id"),
            items=data.get("items"),
            amount_paid=data.get("amount_paid"),
            notes=data.get("notes"),
            actor=g.current_user,
        )
        return jsonify({"sale": sale.to_dict()}), 201

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.patch("/<int:sale_id>/payment")
@require_auth
@require_role(ROLE_MANAGER, ROLE_DRIVER)
def record_payment_route(sale_id: int):
    """
    Body: {additional_payment}
    Available to: manager, driver (own truck only)
    """
    try:
        data = require_payload(request.get_json(silent=True))
        sale = sales_service.record_payment(
            sale_id,
            data.get("additional_payment"),
            actor=g.current_user,
        )
        return jsonify({"sale": sale.to_dict()}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record payment")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("")
@require_auth
def list_sales_route():
    try:
        sales = sales_service.list_sales(
            truck_load_id=request.args.get("truck_load_id", type=int),
            shop_id=request.args.get("shop_id", type=int),
            payment_status=request.args.get("payment_status") or None,
            sale_date=parse_date_field(request.args.get("sale_date"), "sale_date", required=False),
        )
        return jsonify({"sales": [s.to_dict(include_items=False) for s in sales]}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
        return jsonify({"sale": sale.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
