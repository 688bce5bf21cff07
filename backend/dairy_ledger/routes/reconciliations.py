# Overview: Flask API routes for daily reconciliation; parses input and returns JSON responses.

"""Daily reconciliation API routes (keyed by business date)"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..models.reference import ROLE_MANAGER
from ..services import reconciliation_service
from ..validation import DomainError, parse_date_field, require_payload


reconciliations_bp = Blueprint("reconciliations", __name__, url_prefix="/api/reconciliations")


@reconciliations_bp.post("/start")
@require_auth
@require_role(ROLE_MANAGER)
def start_route():
    """Body: {reconciliation_date, notes}"""
    try:
        data = require_payload(request.get_json(silent=True))
        recon = reconciliation_service.start(
            parse_date_field(data.get("reconciliation_date"), "reconciliation_date"),
            notes=data.get("notes"),
            actor_user_id=g.current_user.id,
        )
        return jsonify({"reconciliation": recon.to_dict()}), 201

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to start reconciliation")
        return jsonify({"error": "Internal server error"}), 500


@reconciliations_bp.get("")
@require_auth
def list_route():
    try:
        recons = reconciliation_service.list_reconciliations(status=request.args.get("status") or None)
        return jsonify({"reconciliations": [r.to_dict(include_items=False) for r in recons]}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@reconciliations_bp.get("/<recon_date>")
@require_auth
def get_route(recon_date: str):
    try:
        recon = reconciliation_service.get_reconciliation(parse_date_field(recon_date, "date"))
        return jsonify({"reconciliation": recon.to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@reconciliations_bp.post("/<recon_date>/trucks/<int:truck_id>/verify")
@require_auth
@require_role(ROLE_MANAGER)
def verify_truck_route(recon_date: str, truck_id: int):
    """
    Body: {items_returned: [{product_id, quantity}],
           items_discarded: [{product_id, quantity, reason}],
           discrepancy_notes}
    """
    try:
        data = require_payload(request.get_json(silent=True))
        recon = reconciliation_service.verify_truck(
            parse_date_field(recon_date, "date"),
            truck_id,
            items_returned=data.get("items_returned"),
            items_discarded=data.get("items_discarded"),
            discrepancy_notes=data.get("discrepancy_notes"),
            actor_user_id=g.current_user.id,
        )
        return jsonify({"reconciliation": recon.to_dict()}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to verify truck")
        return jsonify({"error": "Internal server error"}), 500


@reconciliations_bp.post("/<recon_date>/finalize")
@require_auth
@require_role(ROLE_MANAGER)
def finalize_route(recon_date: str):
    try:
        recon = reconciliation_service.finalize(
            parse_date_field(recon_date, "date"),
            actor_user_id=g.current_user.id,
        )
        return jsonify({"reconciliation": recon.to_dict()}), 200

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to finalize reconciliation")
        return jsonify({"error": "Internal server error"}), 500
