# Overview: Flask API routes for transport allowances; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..models.reference import ROLE_MANAGER
from ..services import allowance_service
from ..validation import DomainError, parse_date_field, require_payload


allowances_bp = Blueprint("allowances", __name__, url_prefix="/api/allowances")


@allowances_bp.post("")
@require_auth
@require_role(ROLE_MANAGER)
def create_pool_route():
    """Body: {allowance_date, total_allowance, notes}"""
    try:
        data = require_payload(request.get_json(silent=True))
        pool = allowance_service.create_pool(
            allowance_date=parse_date_field(data.get("allowance_date"), "allowance_date"),
            total_allowance=data.get("total_allowance"),
            notes=data.get("notes"),
            actor_user_id=g.current_user.id,
        )
        return jsonify({"allowance": pool.to_dict()}), 201

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create allowance")
        return jsonify({"error": "Internal server error"}), 500


@allowances_bp.get("")
@require_auth
def list_pools_route():
    try:
        pools = allowance_service.list_pools(
            status=request.args.get("status") or None,
            start_date=parse_date_field(request.args.get("start_date"), "start_date", required=False),
            end_date=parse_date_field(request.args.get("end_date"), "end_date", required=False),
        )
        return jsonify({"allowances": [p.to_dict(include_entries=False) for p in pools]}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@allowances_bp.get("/<int:allowance_id>")
@require_auth
def get_pool_route(allowance_id: int):
    try:
        return jsonify({"allowance": allowance_service.get_pool(allowance_id).to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@allowances_bp.post("/<int:allowance_id>/allocate")
@require_auth
@require_role(ROLE_MANAGER)
def allocate_route(allowance_id: int):
    """Body: {allocations: [{truck_id, amount, distance_covered?, notes?}]}"""
    try:
        data = require_payload(request.get_json(silent=True))
        pool = allowance_service.allocate(allowance_id, data.get("allocations"))
        return jsonify({"allowance": pool.to_dict()}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to allocate allowance")
        return jsonify({"error": "Internal server error"}), 500


@allowances_bp.patch("/<int:allowance_id>/trucks/<int:truck_id>")
@require_auth
@require_role(ROLE_MANAGER)
def update_entry_route(allowance_id: int, truck_id: int):
    """Body: {amount, distance_covered?, notes?}"""
    try:
        data = require_payload(request.get_json(silent=True))
        pool = allowance_service.update_entry(
            allowance_id,
            truck_id,
            amount=data.get("amount"),
            distance_covered=data.get("distance_covered"),
            notes=data.get("notes"),
        )
        return jsonify({"allowance": pool.to_dict()}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update truck allowance")
        return jsonify({"error": "Internal server error"}), 500


@allowances_bp.delete("/<int:allowance_id>/trucks/<int:truck_id>")
@require_auth
@require_role(ROLE_MANAGER)
def remove_entry_route(allowance_id: int, truck_id: int):
    try:
        pool = allowance_service.remove_entry(allowance_id, truck_id)
        return jsonify({"allowance": pool.to_dict()}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to remove truck allowance")
        return jsonify({"error": "Internal server error"}), 500


@allowances_bp.post("/<int:allowance_id>/finalize")
@require_auth
@require_role(ROLE_MANAGER)
def finalize_route(allowance_id: int):
    try:
        pool = allowance_service.finalize(allowance_id, actor_user_id=g.current_user.id)
        return jsonify({"allowance": pool.to_dict()}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to finalize allowance")
        return jsonify({"error": "Internal server error"}), 500


@allowances_bp.delete("/<int:allowance_id>")
@require_auth
@require_role(ROLE_MANAGER)
def delete_pool_route(allowance_id: int):
    try:
        allowance_service.delete_pool(allowance_id)
        return jsonify({"deleted": True, "allowance_id": allowance_id}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete allowance")
        return jsonify({"error": "Internal server error"}), 500
