# Overview: Flask API routes for truck loads; parses input and returns JSON responses.

"""Truck load API routes"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..models.reference import ROLE_MANAGER
from ..services import truck_load_service
from ..validation import DomainError, parse_date_field, require_id, require_payload


truck_loads_bp = Blueprint("truck_loads", __name__, url_prefix="/api/truck-loads")


@truck_loads_bp.post("")
@require_auth
@require_role(ROLE_MANAGER)
def create_load_route():
    """
    Create a truck's daily load.

    Body: {truck_id, load_date, items: [{batch_id | product_id, quantity_loaded}], notes}
    Available to: manager
    """
    try:
        data = require_payload(request.get_json(silent=True))
        load = truck_load_service.create_load(
            truck_id=require_id(data.get("truck_id"), "truck_id"),
            load_date=parse_date_field(data.get("load_date"), "load_date"),
            items=data.get("items"),
            notes=data.get("notes"),
            actor_user_id=g.current_user.id,
        )
        return jsonify({"truck_load": load.to_dict()}), 201

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create truck load")
        return jsonify({"error": "Internal server error"}), 500


@truck_loads_bp.get("")
@require_auth
def list_loads_route():
    try:
        loads = truck_load_service.list_loads(
            truck_id=request.args.get("truck_id", type=int),
            load_date=parse_date_field(request.args.get("load_date"), "load_date", required=False),
            status=request.args.get("status") or None,
        )
        return jsonify({"truck_loads": [load.to_dict(include_items=False) for load in loads]}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@truck_loads_bp.get("/<int:load_id>")
@require_auth
def get_load_route(load_id: int):
    try:
        load = truck_load_service.get_load(load_id)
        return jsonify({"truck_load": load.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@truck_loads_bp.put("/<int:load_id>/reconcile")
@require_auth
@require_role(ROLE_MANAGER)
def reconcile_load_route(load_id: int):
    """
    Post returns and close the load.

    Body: {returns: [{batch_id, quantity_returned}]}
    Available to: manager
    """
    try:
        data = require_payload(request.get_json(silent=True))
        load = truck_load_service.reconcile_load(
            load_id,
            returns=data.get("returns"),
            actor_user_id=g.current_user.id,
        )
        return jsonify({"truck_load": load.to_dict()}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to reconcile truck load")
        return jsonify({"error": "Internal server error"}), 500


@truck_loads_bp.delete("/<int:load_id>")
@require_auth
@require_role(ROLE_MANAGER)
def delete_load_route(load_id: int):
    """Delete a load with no sales; stock still on it goes back to its batches."""
    try:
        truck_load_service.delete_load(load_id, actor_user_id=g.current_user.id)
        return jsonify({"deleted": True, "truck_load_id": load_id}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete truck load")
        return jsonify({"error": "Internal server error"}), 500
