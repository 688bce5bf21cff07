# Overview: Service-layer operations for the batch store; receipt intake and FIFO selection.

from __future__ import annotations

from datetime import date

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Batch, Delivery, Product
from ..models.inventory import (
    BATCH_STATUS_AVAILABLE,
    BATCH_STATUS_EMPTY,
    BATCH_STATUS_EXPIRED,
    MOVEMENT_DELIVERY_IN,
    REF_DELIVERY,
)
from ..time_utils import today
from ..validation import (
    CapacityError,
    ConflictError,
    NotFoundError,
    ValidationError,
    optional_text,
    parse_date_field,
    require_id,
    require_list,
    require_quantity,
)
from .concurrency import begin_write, lock_for_update, run_with_retry
from .ledger_service import record_movement
"""
Batch Store Invariants (authoritative)

- A batch is identified by (product, batch_number); its expiry never changes.
- Receiving an existing (product, batch_number, expiry) tops up that batch.
- Receiving an existing (product, batch_number) with another expiry is a conflict.
- FIFO order is (expiry_date ASC, created_at ASC, id ASC).
- FIFO selection is all-or-nothing: a shortfall raises before anything is drawn.
"""


def create_batch(
    *,
    product_id: int,
    batch_number: str,
    quantity: int,
    expiry_date: date,
    delivery: Delivery | None = None,
    actor_user_id: int | None = None,
) -> Batch:
    """
    Create (or top up) a batch and post its delivery_in movement.

    Caller owns the transaction (no commit here).
    """
    product = db.session.query(Product).filter_by(id=product_id).first()
    if not product:
        raise NotFoundError(f"Product {product_id} not found")
    if not product.is_active:
        raise ValidationError(f"Product {product.name} is inactive")

    batch = lock_for_update(
        db.session.query(Batch).filter_by(product_id=product_id, batch_number=batch_number)
    ).first()

    if batch is not None and batch.expiry_date != expiry_date:
        raise ConflictError(
            f"Batch number {batch_number} already exists for {product.name} "
            f"with expiry {batch.expiry_date.isoformat()}",
            details={
                "batch_id": batch.id,
                "existing_expiry_date": batch.expiry_date.isoformat(),
                "requested_expiry_date": expiry_date.isoformat(),
            },
        )

    if batch is None:
        # Opens at zero; the delivery_in movement below sets both balances
        batch = Batch(
            product_id=product_id,
            delivery_id=delivery.id if delivery else None,
            batch_number=batch_number,
            quantity=0,
            remaining_quantity=0,
            expiry_date=expiry_date,
        )
        db.session.add(batch)
        db.session.flush()

    record_movement(
        batch=batch,
        movement_type=MOVEMENT_DELIVERY_IN,
        quantity=quantity,
        reference_type=REF_DELIVERY,
        reference_id=delivery.id if delivery else None,
        movement_date=delivery.delivery_date if delivery else None,
        notes=f"Delivery {delivery.delivery_note_number}" if delivery else None,
        created_by=actor_user_id,
    )
    return batch


def receive_delivery(
    *,
    delivery_date: date,
    delivery_note_number: str,
    items: list[dict],
    actor_user_id: int | None = None,
) -> tuple[Delivery, list[Batch]]:
    """
    Record a delivery note and create a batch per line, all-or-nothing.

    Each item: {product_id, batch_number, quantity, expiry_date}.
    """
    note_number = optional_text(delivery_note_number, "delivery_note_number", max_length=64)
    if not note_number:
        raise ValidationError("delivery_note_number is required")

    lines = []
    for raw in require_list(items, "items"):
        batch_number = optional_text(raw.get("batch_number"), "batch_number", max_length=64)
        if not batch_number:
            raise ValidationError("batch_number is required")
        lines.append({
            "product_id": require_id(raw.get("product_id"), "product_id"),
            "batch_number": batch_number,
            "quantity": require_quantity(raw.get("quantity")),
            "expiry_date": parse_date_field(raw.get("expiry_date"), "expiry_date"),
        })

    def _op():
        begin_write()
        if db.session.query(Delivery).filter_by(delivery_note_number=note_number).first():
            raise ConflictError(f"Delivery note {note_number} already recorded")

        delivery = Delivery(
            delivery_date=delivery_date,
            delivery_note_number=note_number,
            received_by=actor_user_id,
        )
        db.session.add(delivery)
        db.session.flush()

        batches = [create_batch(delivery=delivery, actor_user_id=actor_user_id, **line) for line in lines]

        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError(f"Delivery note {note_number} already recorded")

        current_app.logger.info(
            "Received delivery %s: %d line(s), %d unit(s)",
            note_number, len(lines), sum(line["quantity"] for line in lines),
        )
        return delivery, batches

    return run_with_retry(_op)


def select_fifo(product_id: int, quantity: int, *, as_of: date | None = None) -> list[tuple[Batch, int]]:
    """
    Lock and choose batches for `quantity` units of a product, earliest expiry first.

    Returns [(batch, take), ...]; does not mutate. Expired batches are skipped.
    Raises CapacityError naming the shortfall when the total is insufficient.
    """
    if quantity <= 0:
        raise ValidationError("quantity must be > 0")
    cutoff = as_of or today()

    candidates = lock_for_update(
        db.session.query(Batch)
        .filter(
            Batch.product_id == product_id,
            Batch.remaining_quantity > 0,
            Batch.expiry_date >= cutoff,
        )
        .order_by(Batch.expiry_date.asc(), Batch.created_at.asc(), Batch.id.asc())
    ).all()

    available = sum(b.remaining_quantity for b in candidates)
    if available < quantity:
        product = db.session.query(Product).filter_by(id=product_id).first()
        name = product.name if product else str(product_id)
        raise CapacityError(
            f"Insufficient stock for product {name}. Available: {available}, Requested: {quantity}",
            details={
                "product_id": product_id,
                "needed": quantity,
                "available": available,
                "shortfall": quantity - available,
            },
        )

    plan: list[tuple[Batch, int]] = []
    outstanding = quantity
    for batch in candidates:
        if outstanding == 0:
            break
        take = min(batch.remaining_quantity, outstanding)
        plan.append((batch, take))
        outstanding -= take
    return plan


def get_batch(batch_id: int) -> Batch:
    batch = db.session.query(Batch).filter_by(id=batch_id).first()
    if not batch:
        raise NotFoundError("Batch not found")
    return batch


def list_batches(*, product_id: int | None = None, status: str | None = None) -> list[Batch]:
    """List batches in FIFO order, optionally filtered by product and derived status."""
    q = db.session.query(Batch)
    if product_id is not None:
        q = q.filter(Batch.product_id == product_id)

    if status is not None:
        cutoff = today()
        if status == BATCH_STATUS_EXPIRED:
            q = q.filter(Batch.expiry_date < cutoff)
        elif status == BATCH_STATUS_EMPTY:
            q = q.filter(Batch.expiry_date >= cutoff, Batch.remaining_quantity <= 0)
        elif status == BATCH_STATUS_AVAILABLE:
            q = q.filter(Batch.expiry_date >= cutoff, Batch.remaining_quantity > 0)
        else:
            raise ValidationError("status must be one of: available, empty, expired")

    return q.order_by(Batch.expiry_date.asc(), Batch.created_at.asc(), Batch.id.asc()).all()
