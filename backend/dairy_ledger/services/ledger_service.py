# Overview: Service-layer operations for the stock ledger; the only writer of batch balances.

from __future__ import annotations

from datetime import date

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Batch, Product, StockMovement
from ..models.inventory import (
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_DELIVERY_IN,
    MOVEMENT_EXPIRED_OUT,
    MOVEMENT_SALE_OUT,
    MOVEMENT_TRUCK_LOAD_OUT,
    MOVEMENT_TRUCK_RETURN_IN,
    REF_MANUAL,
    VALID_MOVEMENT_TYPES,
    VALID_REFERENCE_TYPES,
)
from ..validation import CapacityError, NotFoundError, ValidationError
from ..time_utils import today
from .concurrency import begin_write, lock_for_update, run_with_retry
"""
Stock Ledger Invariants (authoritative)

- Append-only: movements are never updated or deleted.
- record_movement() is the sole writer of Batch.remaining_quantity and Batch.quantity.
- Every balance change is paired with exactly one StockMovement in the same transaction.
- quantity is always > 0; direction (+1/-1) carries the sign.
- sale_out is an audit record: the units already left the batch at truck_load_out,
  so it does not touch the batch balance and is skipped on replay.
- Replay: remaining_quantity == sum(signed) over balance-affecting movements,
          quantity == sum(signed) over delivery_in + adjustment.
"""


FIXED_DIRECTIONS = {
    MOVEMENT_DELIVERY_IN: 1,
    MOVEMENT_TRUCK_LOAD_OUT: -1,
    MOVEMENT_SALE_OUT: -1,
    MOVEMENT_TRUCK_RETURN_IN: 1,
    MOVEMENT_EXPIRED_OUT: -1,
}

AFFECTS_REMAINING = {
    MOVEMENT_DELIVERY_IN,
    MOVEMENT_TRUCK_LOAD_OUT,
    MOVEMENT_TRUCK_RETURN_IN,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_EXPIRED_OUT,
}

AFFECTS_QUANTITY = {MOVEMENT_DELIVERY_IN, MOVEMENT_ADJUSTMENT}


def _resolve_direction(movement_type: str, direction: int | None) -> int:
    if movement_type not in VALID_MOVEMENT_TYPES:
        raise ValidationError(
            f"Invalid movement_type '{movement_type}'. Must be one of: {', '.join(sorted(VALID_MOVEMENT_TYPES))}"
        )
    fixed = FIXED_DIRECTIONS.get(movement_type)
    if fixed is None:
        if direction not in (1, -1):
            raise ValidationError(f"{movement_type} requires an explicit direction of +1 or -1")
        return direction
    if direction is not None and direction != fixed:
        raise ValidationError(f"{movement_type} always moves stock {'in' if fixed > 0 else 'out'}")
    return fixed


def record_movement(
    *,
    batch: Batch,
    movement_type: str,
    quantity: int,
    reference_type: str,
    reference_id: int | None = None,
    direction: int | None = None,
    movement_date: date | None = None,
    notes: str | None = None,
    created_by: int | None = None,
) -> StockMovement:
    """
    Append one movement and apply it to the batch.

    Caller owns the transaction and must already hold the batch row lock.
    Raises CapacityError when an outflow would take remaining_quantity below zero.
    """
    if quantity is None or quantity <= 0:
        raise ValidationError("Movement quantity must be > 0")
    if reference_type not in VALID_REFERENCE_TYPES:
        raise ValidationError(f"Invalid reference_type '{reference_type}'")

    sign = _resolve_direction(movement_type, direction)
    signed = sign * quantity

    if movement_type in AFFECTS_REMAINING:
        new_remaining = batch.remaining_quantity + signed
        new_quantity = batch.quantity + signed if movement_type in AFFECTS_QUANTITY else batch.quantity

        if new_remaining < 0:
            raise CapacityError(
                f"Insufficient stock in batch {batch.batch_number}. "
                f"Available: {batch.remaining_quantity}, Requested: {quantity}",
                details={
                    "batch_id": batch.id,
                    "needed": quantity,
                    "available": batch.remaining_quantity,
                },
            )
        if new_remaining > new_quantity:
            raise ValidationError(
                f"Movement would leave batch {batch.batch_number} with more remaining "
                f"({new_remaining}) than received ({new_quantity})"
            )

        batch.remaining_quantity = new_remaining
        batch.quantity = new_quantity

    movement = StockMovement(
        batch_id=batch.id,
        product_id=batch.product_id,
        movement_type=movement_type,
        direction=sign,
        quantity=quantity,
        reference_type=reference_type,
        reference_id=reference_id,
        movement_date=movement_date or today(),
        notes=notes,
        created_by=created_by,
    )
    db.session.add(movement)
    db.session.flush()  # ensures movement.id is assigned without committing
    return movement


def decrement(batch: Batch, quantity: int, movement_type: str, *, reference_type: str,
              reference_id: int | None = None, **kwargs) -> StockMovement:
    return record_movement(
        batch=batch,
        movement_type=movement_type,
        quantity=quantity,
        reference_type=reference_type,
        reference_id=reference_id,
        direction=-1,
        **kwargs,
    )


def increment(batch: Batch, quantity: int, movement_type: str, *, reference_type: str,
              reference_id: int | None = None, **kwargs) -> StockMovement:
    return record_movement(
        batch=batch,
        movement_type=movement_type,
        quantity=quantity,
        reference_type=reference_type,
        reference_id=reference_id,
        direction=1,
        **kwargs,
    )


def replay_batch(batch: Batch) -> dict:
    """Recompute a batch's balances from its movements and compare with the stored row."""
    movements = (
        db.session.query(StockMovement)
        .filter(StockMovement.batch_id == batch.id)
        .order_by(StockMovement.id.asc())
        .all()
    )
    expected_remaining = sum(m.signed_quantity for m in movements if m.movement_type in AFFECTS_REMAINING)
    expected_quantity = sum(m.signed_quantity for m in movements if m.movement_type in AFFECTS_QUANTITY)

    return {
        "batch_id": batch.id,
        "batch_number": batch.batch_number,
        "quantity": batch.quantity,
        "remaining_quantity": batch.remaining_quantity,
        "expected_quantity": expected_quantity,
        "expected_remaining_quantity": expected_remaining,
        "movement_count": len(movements),
        "balanced": expected_remaining == batch.remaining_quantity and expected_quantity == batch.quantity,
    }


def batch_history(batch_id: int) -> dict:
    """Movements for one batch, oldest first, each with the running balance after it."""
    batch = db.session.query(Batch).filter_by(id=batch_id).first()
    if not batch:
        raise NotFoundError("Batch not found")

    movements = (
        db.session.query(StockMovement)
        .filter(StockMovement.batch_id == batch_id)
        .order_by(StockMovement.id.asc())
        .all()
    )

    balance = 0
    rows = []
    for m in movements:
        affects = m.movement_type in AFFECTS_REMAINING
        if affects:
            balance += m.signed_quantity
        row = m.to_dict()
        row["affects_balance"] = affects
        row["running_balance"] = balance
        rows.append(row)

    return {"batch": batch.to_dict(), "movements": rows}


def daily_summary(movement_date: date) -> list[dict]:
    """Totals per (product, movement type) for one business date."""
    rows = (
        db.session.query(
            StockMovement.product_id,
            Product.name,
            StockMovement.movement_type,
            func.count(StockMovement.id),
            func.sum(StockMovement.quantity),
        )
        .join(Product, Product.id == StockMovement.product_id)
        .filter(StockMovement.movement_date == movement_date)
        .group_by(StockMovement.product_id, Product.name, StockMovement.movement_type)
        .order_by(Product.name.asc(), StockMovement.movement_type.asc())
        .all()
    )
    return [
        {
            "product_id": product_id,
            "product_name": name,
            "movement_type": movement_type,
            "movement_count": count,
            "total_quantity": int(total or 0),
        }
        for product_id, name, movement_type, count, total in rows
    ]


def product_movements(
    product_id: int,
    *,
    start_date: date | None = None,
    end_date: date | None = None,
    movement_type: str | None = None,
) -> list[StockMovement]:
    if movement_type is not None and movement_type not in VALID_MOVEMENT_TYPES:
        raise ValidationError(f"Invalid movement_type '{movement_type}'")
    if start_date and end_date and start_date > end_date:
        raise ValidationError("start_date must be on or before end_date")

    q = db.session.query(StockMovement).filter(StockMovement.product_id == product_id)
    if start_date:
        q = q.filter(StockMovement.movement_date >= start_date)
    if end_date:
        q = q.filter(StockMovement.movement_date <= end_date)
    if movement_type:
        q = q.filter(StockMovement.movement_type == movement_type)
    return q.order_by(StockMovement.movement_date.desc(), StockMovement.id.desc()).all()


def adjust_stock(
    *,
    batch_id: int,
    movement_type: str,
    quantity: int,
    product_id: int | None = None,
    notes: str | None = None,
    actor_user_id: int | None = None,
) -> StockMovement:
    """
    Manual correction against one batch.

    - adjustment: signed, non-zero; moves both quantity and remaining_quantity
    - expired_out: positive; writes off remaining_quantity only
    """
    if movement_type not in (MOVEMENT_ADJUSTMENT, MOVEMENT_EXPIRED_OUT):
        raise ValidationError("movement_type must be 'adjustment' or 'expired_out'")
    if quantity == 0:
        raise ValidationError("quantity must be non-zero")
    if movement_type == MOVEMENT_EXPIRED_OUT and quantity < 0:
        raise ValidationError("quantity must be > 0 for expired_out")

    def _op():
        begin_write()
        batch = lock_for_update(db.session.query(Batch).filter_by(id=batch_id)).first()
        if not batch:
            raise NotFoundError("Batch not found")
        if product_id is not None and batch.product_id != product_id:
            raise ValidationError("Batch does not belong to the given product")

        # expired_out carries a fixed direction; only adjustments are signed
        direction = (1 if quantity > 0 else -1) if movement_type == MOVEMENT_ADJUSTMENT else None
        movement = record_movement(
            batch=batch,
            movement_type=movement_type,
            quantity=abs(quantity),
            direction=direction,
            reference_type=REF_MANUAL,
            notes=notes,
            created_by=actor_user_id,
        )
        db.session.commit()
        current_app.logger.info(
            "Stock %s on batch %s: %+d (remaining %d)",
            movement_type, batch.id, movement.signed_quantity, batch.remaining_quantity,
        )
        return movement

    return run_with_retry(_op)
