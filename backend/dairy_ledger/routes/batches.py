# Overview: Flask API routes for the batch store; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..models.reference import ROLE_MANAGER
from ..services import batch_service, ledger_service
from ..validation import DomainError, parse_date_field, require_payload


batches_bp = Blueprint("batches", __name__, url_prefix="/api/batches")


@batches_bp.post("")
@require_auth
@require_role(ROLE_MANAGER)
def receive_delivery_route():
    """
    Receive a delivery note into the batch store.

    Body: {delivery_date, delivery_note_number,
           items: [{product_id, batch_number, quantity, expiry_date}]}
    """
    try:
        data = require_payload(request.get_json(silent=True))
        delivery, batches = batch_service.receive_delivery(
            delivery_date=parse_date_field(data.get("delivery_date"), "delivery_date"),
            delivery_note_number=data.get("delivery_note_number"),
            items=data.get("items"),
            actor_user_id=g.current_user.id,
        )
        return jsonify({
            "delivery": delivery.to_dict(),
            "batches": [b.to_dict() for b in batches],
        }), 201

    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to receive delivery")
        return jsonify({"error": "Internal server error"}), 500


@batches_bp.get("")
@require_auth
def list_batches_route():
    try:
        batches = batch_service.list_batches(
            product_id=request.args.get("product_id", type=int),
            status=request.args.get("status") or None,
        )
        return jsonify({"batches": [b.to_dict() for b in batches]}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@batches_bp.get("/<int:batch_id>")
@require_auth
def get_batch_route(batch_id: int):
    try:
        return jsonify({"batch": batch_service.get_batch(batch_id).to_dict()}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@batches_bp.get("/<int:batch_id>/movements")
@require_auth
def batch_movements_route(batch_id: int):
    """Movement history with running balance."""
    try:
        return jsonify(ledger_service.batch_history(batch_id)), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code


@batches_bp.get("/<int:batch_id>/balance")
@require_auth
def batch_balance_route(batch_id: int):
    """Replay check: stored balances vs. the sum of movements."""
    try:
        batch = batch_service.get_batch(batch_id)
        return jsonify({"balance": ledger_service.replay_batch(batch)}), 200
    except DomainError as e:
        return jsonify(e.to_dict()), e.status_code
