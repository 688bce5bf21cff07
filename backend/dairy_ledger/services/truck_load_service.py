# Overview: Service-layer operations for truck loads; draws stock onto trucks and posts returns.

"""
Truck Load Manager

STATE MACHINE:
    loaded -> reconciled (terminal)

INVARIANTS:
- One load per (truck, load_date).
- One item per (load, batch); repeated draws on the same batch merge.
- quantity_sold + quantity_returned <= quantity_loaded on every item.
- Every unit drawn is a truck_load_out movement referencing the load;
  every unit returned is a truck_return_in movement.
- quantity_lost_damaged = loaded - sold - returned, derived once reconciled.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Batch, DailyReconciliation, Product, Sale, Truck, TruckLoad, TruckLoadItem
from ..models.inventory import MOVEMENT_TRUCK_LOAD_OUT, MOVEMENT_TRUCK_RETURN_IN, REF_TRUCK_LOAD
from ..time_utils import utcnow
from ..validation import (
    CapacityError,
    ConflictError,
    NotFoundError,
    ValidationError,
    optional_text,
    require_id,
    require_list,
    require_non_negative_quantity,
    require_quantity,
)
from . import lifecycle_service as lifecycle
from .batch_service import select_fifo
from .concurrency import begin_write, lock_for_update, run_with_retry
from .ledger_service import decrement, increment


@dataclass(frozen=True)
class BatchDraw:
    """Manual item: load this many units from a named batch."""
    batch_id: int
    quantity: int


@dataclass(frozen=True)
class ProductDraw:
    """Auto item: load this many units of a product, FIFO across its batches."""
    product_id: int
    quantity: int


LoadItemRequest = BatchDraw | ProductDraw


def parse_load_item(raw: dict) -> LoadItemRequest:
    """Exactly one of batch_id / product_id must be present."""
    has_batch = raw.get("batch_id") is not None
    has_product = raw.get("product_id") is not None
    if has_batch == has_product:
        raise ValidationError(
            "Each item must specify exactly one of batch_id or product_id",
            details={"item": raw},
        )
    quantity = require_quantity(raw.get("quantity_loaded"), "quantity_loaded")
    if has_batch:
        return BatchDraw(batch_id=require_id(raw["batch_id"], "batch_id"), quantity=quantity)
    return ProductDraw(product_id=require_id(raw["product_id"], "product_id"), quantity=quantity)


def _get_load_locked(load_id: int) -> TruckLoad:
    load = lock_for_update(db.session.query(TruckLoad).filter_by(id=load_id)).first()
    if not load:
        raise NotFoundError("Truck load not found")
    return load


def _draw(load: TruckLoad, items_by_batch: dict[int, TruckLoadItem], batch: Batch, quantity: int,
          actor_user_id: int | None) -> None:
    decrement(
        batch,
        quantity,
        MOVEMENT_TRUCK_LOAD_OUT,
        reference_type=REF_TRUCK_LOAD,
        reference_id=load.id,
        movement_date=load.load_date,
        created_by=actor_user_id,
    )
    item = items_by_batch.get(batch.id)
    if item is None:
        item = TruckLoadItem(
            truck_load_id=load.id,
            batch_id=batch.id,
            product_id=batch.product_id,
            quantity_loaded=quantity,
            quantity_sold=0,
            quantity_returned=0,
        )
        db.session.add(item)
        items_by_batch[batch.id] = item
    else:
        item.quantity_loaded += quantity


def create_load(
    *,
    truck_id: int,
    load_date: date,
    items: list[dict],
    notes: str | None = None,
    actor_user_id: int | None = None,
) -> TruckLoad:
    """
    Create a truck's daily load from manual, auto-FIFO, or mixed items.

    All-or-nothing: any shortfall or invalid item rolls the whole load back.
    """
    requests = [parse_load_item(raw) for raw in require_list(items, "items")]
    notes = optional_text(notes, "notes")

    def _op():
        begin_write()
        truck = db.session.query(Truck).filter_by(id=truck_id).first()
        if not truck:
            raise NotFoundError("Truck not found")
        if not truck.is_active:
            raise ValidationError(f"Truck {truck.truck_number} is inactive")

        if db.session.query(DailyReconciliation.id).filter_by(reconciliation_date=load_date).first():
            raise ConflictError(f"Reconciliation for {load_date.isoformat()} has already started")

        existing = db.session.query(TruckLoad).filter_by(truck_id=truck_id, load_date=load_date).first()
        if existing:
            raise ConflictError(
                f"Truck {truck.truck_number} already has a load for {load_date.isoformat()}",
                details={"truck_load_id": existing.id},
            )

        load = TruckLoad(
            truck_id=truck_id,
            load_date=load_date,
            status=lifecycle.LOAD_LOADED,
            loaded_by=actor_user_id,
            notes=notes,
        )
        db.session.add(load)
        try:
            db.session.flush()
        except IntegrityError:
            raise ConflictError(f"Truck {truck.truck_number} already has a load for {load_date.isoformat()}")

        items_by_batch: dict[int, TruckLoadItem] = {}
        for req in requests:
            if isinstance(req, BatchDraw):
                batch = lock_for_update(db.session.query(Batch).filter_by(id=req.batch_id)).first()
                if not batch:
                    raise NotFoundError(f"Batch {req.batch_id} not found")
                if batch.expiry_date < load_date:
                    raise ValidationError(
                        f"Batch {batch.batch_number} expired on {batch.expiry_date.isoformat()}",
                        details={"batch_id": batch.id},
                    )
                if batch.remaining_quantity < req.quantity:
                    raise CapacityError(
                        f"Insufficient stock in batch {batch.batch_number}. "
                        f"Available: {batch.remaining_quantity}, Requested: {req.quantity}",
                        details={
                            "batch_id": batch.id,
                            "needed": req.quantity,
                            "available": batch.remaining_quantity,
                            "shortfall": req.quantity - batch.remaining_quantity,
                        },
                    )
                _draw(load, items_by_batch, batch, req.quantity, actor_user_id)
            else:
                product = db.session.query(Product).filter_by(id=req.product_id).first()
                if not product:
                    raise NotFoundError(f"Product {req.product_id} not found")
                for batch, take in select_fifo(req.product_id, req.quantity, as_of=load_date):
                    _draw(load, items_by_batch, batch, take, actor_user_id)

        db.session.commit()
        current_app.logger.info(
            "Truck load %s created for truck %s on %s (%d item(s), %d unit(s))",
            load.id, truck.truck_number, load_date.isoformat(),
            len(items_by_batch), sum(i.quantity_loaded for i in items_by_batch.values()),
        )
        return load

    return run_with_retry(_op)


def parse_returns(returns: list[dict]) -> dict[int, int]:
    """{batch_id: quantity_returned}; duplicate batch lines are rejected."""
    parsed: dict[int, int] = {}
    for raw in require_list(returns, "returns", allow_empty=True):
        batch_id = require_id(raw.get("batch_id"), "batch_id")
        if batch_id in parsed:
            raise ValidationError(f"Batch {batch_id} listed more than once in returns")
        parsed[batch_id] = require_non_negative_quantity(raw.get("quantity_returned"), "quantity_returned")
    return parsed


def reconcile_load_locked(load: TruckLoad, returns: dict[int, int], actor_user_id: int | None = None,
                          reference_type: str = REF_TRUCK_LOAD, reference_id: int | None = None) -> TruckLoad:
    """
    Post returns for a locked load and mark it reconciled.

    Caller owns the transaction. Items not named in `returns` keep their
    current quantity_returned (zero unless set earlier).
    """
    if load.is_reconciled:
        raise ConflictError(
            "Truck load is already reconciled and cannot be modified",
            details={"truck_load_id": load.id},
        )
    lifecycle.TRUCK_LOAD.require_transition(load.status, lifecycle.LOAD_RECONCILED)

    items_by_batch = {item.batch_id: item for item in load.items}
    unknown = [batch_id for batch_id in returns if batch_id not in items_by_batch]
    if unknown:
        raise ValidationError(
            "Returns reference batches that are not on this load",
            details={"batch_ids": unknown},
        )

    # Validate every line before posting any movement
    for batch_id, qty in returns.items():
        item = items_by_batch[batch_id]
        if item.quantity_sold + qty > item.quantity_loaded:
            raise CapacityError(
                f"Returned quantity for batch {item.batch.batch_number} exceeds what is left on the truck. "
                f"Loaded: {item.quantity_loaded}, Sold: {item.quantity_sold}, Returned: {qty}",
                details={
                    "batch_id": batch_id,
                    "needed": qty,
                    "available": item.quantity_loaded - item.quantity_sold,
                    "limit": item.quantity_loaded,
                },
            )

    for batch_id, qty in returns.items():
        item = items_by_batch[batch_id]
        delta = qty - item.quantity_returned
        if delta > 0:
            batch = lock_for_update(db.session.query(Batch).filter_by(id=batch_id)).first()
            increment(
                batch,
                delta,
                MOVEMENT_TRUCK_RETURN_IN,
                reference_type=reference_type,
                reference_id=reference_id if reference_id is not None else load.id,
                movement_date=load.load_date,
                created_by=actor_user_id,
            )
        item.quantity_returned = qty

    load.status = lifecycle.LOAD_RECONCILED
    load.reconciled_by = actor_user_id
    load.reconciled_at = utcnow()
    db.session.flush()
    return load


def reconcile_load(load_id: int, *, returns: list[dict], actor_user_id: int | None = None) -> TruckLoad:
    parsed = parse_returns(returns)

    def _op():
        begin_write()
        load = _get_load_locked(load_id)
        reconcile_load_locked(load, parsed, actor_user_id=actor_user_id)
        db.session.commit()
        summary = load.summary()
        current_app.logger.info(
            "Truck load %s reconciled: %d returned, %d lost/damaged",
            load.id, summary["total_returned"], summary["total_lost_damaged"],
        )
        return load

    return run_with_retry(_op)


def delete_load(load_id: int, *, actor_user_id: int | None = None) -> None:
    """Remove an unreconciled load with no sales, crediting every unit still on it back to its batch."""
    def _op():
        begin_write()
        load = _get_load_locked(load_id)
        if load.is_reconciled:
            raise ConflictError(
                "Cannot delete a reconciled truck load",
                details={"truck_load_id": load.id, "status": load.status},
            )
        if db.session.query(DailyReconciliation.id).filter_by(reconciliation_date=load.load_date).first():
            raise ConflictError(
                f"Cannot delete a truck load: reconciliation for {load.load_date.isoformat()} has started",
                details={"truck_load_id": load.id, "reconciliation_date": load.load_date.isoformat()},
            )
        sale_count = db.session.query(Sale).filter_by(truck_load_id=load.id).count()
        if sale_count:
            raise ConflictError(
                "Cannot delete a truck load that has sales",
                details={"truck_load_id": load.id, "sale_count": sale_count},
            )

        for item in load.items:
            outstanding = item.quantity_loaded - item.quantity_returned
            if outstanding > 0:
                batch = lock_for_update(db.session.query(Batch).filter_by(id=item.batch_id)).first()
                increment(
                    batch,
                    outstanding,
                    MOVEMENT_TRUCK_RETURN_IN,
                    reference_type=REF_TRUCK_LOAD,
                    reference_id=load.id,
                    notes=f"Truck load {load.id} deleted",
                    created_by=actor_user_id,
                )

        db.session.delete(load)
        db.session.commit()
        current_app.logger.info("Truck load %s deleted", load_id)

    return run_with_retry(_op)


def get_load(load_id: int) -> TruckLoad:
    load = db.session.query(TruckLoad).filter_by(id=load_id).first()
    if not load:
        raise NotFoundError("Truck load not found")
    return load


def list_loads(*, truck_id: int | None = None, load_date: date | None = None,
               status: str | None = None) -> list[TruckLoad]:
    q = db.session.query(TruckLoad)
    if truck_id is not None:
        q = q.filter(TruckLoad.truck_id == truck_id)
    if load_date is not None:
        q = q.filter(TruckLoad.load_date == load_date)
    if status is not None:
        lifecycle.TRUCK_LOAD.validate_status(status)
        q = q.filter(TruckLoad.status == status)
    return q.order_by(TruckLoad.load_date.desc(), TruckLoad.id.desc()).all()
