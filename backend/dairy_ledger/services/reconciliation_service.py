# Overview: Service-layer operations for daily reconciliation; verifies trucks and locks the day.

"""
Daily Reconciliation Orchestrator

STATE MACHINE:
    in_progress -> completed -> finalized (terminal)

    completed is reached implicitly when trucks_verified == trucks_out
    (immediately at start when no truck went out that day).

FLOW:
1. start(date): snapshot one ReconciliationItem per truck load of the date
2. verify_truck(date, truck): compare the driver's declared returns/discards with
   what the load says is unsold, post the physical return through the truck load
   manager, record (never correct) any discrepancy
3. finalize(date): aggregate items, net_profit = commission - allowance allocated

RULES:
- Items hold posted figures: items_loaded = sold + returned + discarded.
- Declared figures are kept verbatim in reported_* for manager review.
- After finalize the reconciliation and its items are immutable.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import (
    DailyReconciliation,
    ReconciliationItem,
    Sale,
    SaleItem,
    TransportAllowance,
    TruckAllowance,
    TruckLoad,
)
from ..models.inventory import REF_RECONCILIATION
from ..time_utils import utcnow
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    format_cents,
    optional_text,
    require_id,
    require_list,
    require_non_negative_quantity,
)
from . import lifecycle_service as lifecycle
from .concurrency import begin_write, lock_for_update, run_with_retry
from .truck_load_service import reconcile_load_locked


@dataclass
class DeclaredCounts:
    returned: dict[int, int]
    discarded: dict[int, int]
    lines: dict


def parse_declaration(items_returned: list[dict], items_discarded: list[dict]) -> DeclaredCounts:
    returned: dict[int, int] = {}
    returned_lines = []
    for raw in require_list(items_returned, "items_returned", allow_empty=True):
        product_id = require_id(raw.get("product_id"), "product_id")
        if product_id in returned:
            raise ValidationError(f"Product {product_id} listed more than once in items_returned")
        qty = require_non_negative_quantity(raw.get("quantity"), "quantity")
        returned[product_id] = qty
        returned_lines.append({"product_id": product_id, "quantity": qty})

    # Several discard lines per product are allowed (one per reason)
    discarded: dict[int, int] = {}
    discarded_lines = []
    for raw in require_list(items_discarded, "items_discarded", allow_empty=True):
        product_id = require_id(raw.get("product_id"), "product_id")
        qty = require_non_negative_quantity(raw.get("quantity"), "quantity")
        reason = optional_text(raw.get("reason"), "reason", max_length=64)
        if not reason:
            raise ValidationError("reason is required for each discarded item")
        discarded[product_id] = discarded.get(product_id, 0) + qty
        discarded_lines.append({"product_id": product_id, "quantity": qty, "reason": reason})

    return DeclaredCounts(
        returned=returned,
        discarded=discarded,
        lines={"items_returned": returned_lines, "items_discarded": discarded_lines},
    )


def _get_locked(reconciliation_date: date) -> DailyReconciliation:
    recon = lock_for_update(
        db.session.query(DailyReconciliation).filter_by(reconciliation_date=reconciliation_date)
    ).first()
    if not recon:
        raise NotFoundError(f"No reconciliation for {reconciliation_date.isoformat()}")
    return recon


def _require_not_finalized(recon: DailyReconciliation) -> None:
    if recon.status == lifecycle.RECON_FINALIZED:
        raise ConflictError(
            f"Reconciliation for {recon.reconciliation_date.isoformat()} is finalized and cannot be modified",
            details={"reconciliation_id": recon.id},
        )


def _refresh_item_figures(item: ReconciliationItem, load: TruckLoad, pool: TransportAllowance | None) -> None:
    """Recompute quantities and money for one truck from its load, sales and allowance entry."""
    loaded = sum(i.quantity_loaded for i in load.items)
    sold = sum(i.quantity_sold for i in load.items)
    returned = sum(i.quantity_returned for i in load.items)
    item.items_loaded = loaded
    item.items_sold = sold
    item.items_returned = returned
    item.items_discarded = loaded - sold - returned if load.is_reconciled else 0

    total, paid = db.session.query(
        func.coalesce(func.sum(Sale.total_amount_cents), 0),
        func.coalesce(func.sum(Sale.amount_paid_cents), 0),
    ).filter(Sale.truck_load_id == load.id).one()
    commission = db.session.query(func.coalesce(func.sum(SaleItem.commission_earned_cents), 0)).join(
        Sale, Sale.id == SaleItem.sale_id
    ).filter(Sale.truck_load_id == load.id).scalar()

    item.sales_amount_cents = int(total or 0)
    item.payments_collected_cents = int(paid or 0)
    item.pending_payments_cents = int(total or 0) - int(paid or 0)
    item.commission_earned_cents = int(commission or 0)

    allowance = 0
    if pool is not None:
        entry = db.session.query(TruckAllowance).filter_by(allowance_id=pool.id, truck_id=load.truck_id).first()
        allowance = entry.amount_cents if entry else 0
    item.allowance_received_cents = allowance


def _pool_for(reconciliation_date: date) -> TransportAllowance | None:
    return db.session.query(TransportAllowance).filter_by(allowance_date=reconciliation_date).first()


def start(reconciliation_date: date, *, notes: str | None = None, actor_user_id: int | None = None) -> DailyReconciliation:
    notes = optional_text(notes, "notes")

    def _op():
        begin_write()
        if db.session.query(DailyReconciliation).filter_by(reconciliation_date=reconciliation_date).first():
            raise ConflictError(f"Reconciliation for {reconciliation_date.isoformat()} already exists")

        loads = (
            db.session.query(TruckLoad)
            .filter(TruckLoad.load_date == reconciliation_date)
            .order_by(TruckLoad.truck_id.asc())
            .all()
        )
        trucks_out = len({load.truck_id for load in loads})

        recon = DailyReconciliation(
            reconciliation_date=reconciliation_date,
            status=lifecycle.RECON_IN_PROGRESS,
            trucks_out=trucks_out,
            trucks_verified=0,
            notes=notes,
            started_by=actor_user_id,
        )
        db.session.add(recon)
        try:
            db.session.flush()
        except IntegrityError:
            raise ConflictError(f"Reconciliation for {reconciliation_date.isoformat()} already exists")

        pool = _pool_for(reconciliation_date)
        for load in loads:
            item = ReconciliationItem(
                reconciliation_id=recon.id,
                truck_id=load.truck_id,
                truck_load_id=load.id,
                is_verified=False,
                has_discrepancy=False,
            )
            _refresh_item_figures(item, load, pool)
            db.session.add(item)

        if trucks_out == 0:
            lifecycle.RECONCILIATION.require_transition(recon.status, lifecycle.RECON_COMPLETED)
            recon.status = lifecycle.RECON_COMPLETED
            recon.completed_at = utcnow()

        db.session.commit()
        current_app.logger.info(
            "Reconciliation %s started for %s with %d truck(s) out",
            recon.id, reconciliation_date.isoformat(), trucks_out,
        )
        return recon

    return run_with_retry(_op)


def _distribute_returns(load: TruckLoad, returned: dict[int, int]) -> dict[int, int]:
    """
    Spread declared per-product returns over the load's items, earliest expiry first.

    Each item takes at most what is still on the truck for it; anything beyond the
    unsold total is not posted (it is flagged as a discrepancy by the caller).
    """
    by_product: dict[int, list] = {}
    for item in load.items:
        by_product.setdefault(item.product_id, []).append(item)

    plan: dict[int, int] = {}
    for product_id, qty in returned.items():
        items = sorted(
            by_product.get(product_id, []),
            key=lambda i: (i.batch.expiry_date, i.batch.created_at, i.id),
        )
        outstanding = qty
        for item in items:
            if outstanding <= 0:
                break
            take = min(item.available_quantity, outstanding)
            if take > 0:
                plan[item.batch_id] = take
                outstanding -= take
    return plan


def verify_truck(
    reconciliation_date: date,
    truck_id: int,
    *,
    items_returned: list[dict],
    items_discarded: list[dict],
    discrepancy_notes: str | None = None,
    actor_user_id: int | None = None,
) -> DailyReconciliation:
    declared = parse_declaration(items_returned, items_discarded)
    discrepancy_notes = optional_text(discrepancy_notes, "discrepancy_notes")

    def _op():
        begin_write()
        recon = _get_locked(reconciliation_date)
        _require_not_finalized(recon)

        item = db.session.query(ReconciliationItem).filter_by(reconciliation_id=recon.id, truck_id=truck_id).first()
        if not item:
            raise NotFoundError(f"Truck {truck_id} has no load in this reconciliation")
        if item.is_verified:
            raise ConflictError(
                f"Truck {truck_id} is already verified for {reconciliation_date.isoformat()}",
                details={"reconciliation_item_id": item.id},
            )

        load = lock_for_update(db.session.query(TruckLoad).filter_by(id=item.truck_load_id)).first()
        if not load:
            raise NotFoundError("Truck load not found")

        on_load = {i.product_id for i in load.items}
        unknown = sorted((set(declared.returned) | set(declared.discarded)) - on_load)
        if unknown:
            raise ValidationError(
                "Declared products were not loaded on this truck",
                details={"product_ids": unknown},
            )

        if not load.is_reconciled:
            reconcile_load_locked(
                load,
                _distribute_returns(load, declared.returned),
                actor_user_id=actor_user_id,
                reference_type=REF_RECONCILIATION,
                reference_id=recon.id,
            )

        has_discrepancy = False
        for product_id in on_load:
            rows = [i for i in load.items if i.product_id == product_id]
            unsold = sum(i.quantity_loaded - i.quantity_sold for i in rows)
            posted_returned = sum(i.quantity_returned for i in rows)
            declared_returned = declared.returned.get(product_id, 0)
            declared_discarded = declared.discarded.get(product_id, 0)
            if declared_returned != posted_returned or declared_returned + declared_discarded != unsold:
                has_discrepancy = True

        _refresh_item_figures(item, load, _pool_for(reconciliation_date))
        item.reported_returned = sum(declared.returned.values())
        item.reported_discarded = sum(declared.discarded.values())
        item.reported_lines = json.dumps(declared.lines)
        item.has_discrepancy = has_discrepancy
        item.discrepancy_notes = discrepancy_notes
        item.is_verified = True
        item.verified_by = actor_user_id
        item.verified_at = utcnow()
        db.session.flush()

        recon.trucks_verified = (
            db.session.query(ReconciliationItem)
            .filter_by(reconciliation_id=recon.id, is_verified=True)
            .count()
        )
        if recon.trucks_verified == recon.trucks_out and recon.status == lifecycle.RECON_IN_PROGRESS:
            lifecycle.RECONCILIATION.require_transition(recon.status, lifecycle.RECON_COMPLETED)
            recon.status = lifecycle.RECON_COMPLETED
            recon.completed_at = utcnow()

        db.session.commit()
        if has_discrepancy:
            current_app.logger.warning(
                "Reconciliation %s: truck %s verified with discrepancy (declared returned %d, posted %d)",
                recon.id, truck_id, item.reported_returned, item.items_returned,
            )
        else:
            current_app.logger.info("Reconciliation %s: truck %s verified", recon.id, truck_id)
        return recon

    return run_with_retry(_op)


def finalize(reconciliation_date: date, *, actor_user_id: int | None = None) -> DailyReconciliation:
    def _op():
        begin_write()
        recon = _get_locked(reconciliation_date)
        if recon.status == lifecycle.RECON_FINALIZED:
            raise ConflictError(
                f"Reconciliation for {reconciliation_date.isoformat()} is already finalized",
                details={"reconciliation_id": recon.id},
            )
        if recon.status != lifecycle.RECON_COMPLETED:
            raise ConflictError(
                f"All trucks must be verified before finalizing. "
                f"Verified: {recon.trucks_verified}, Out: {recon.trucks_out}",
                details={"trucks_verified": recon.trucks_verified, "trucks_out": recon.trucks_out},
            )
        lifecycle.RECONCILIATION.require_transition(recon.status, lifecycle.RECON_FINALIZED)

        pool = _pool_for(reconciliation_date)
        for item in recon.items:
            load = db.session.query(TruckLoad).filter_by(id=item.truck_load_id).first()
            _refresh_item_figures(item, load, pool)

        items = recon.items
        recon.total_items_loaded = sum(i.items_loaded for i in items)
        recon.total_items_sold = sum(i.items_sold for i in items)
        recon.total_items_returned = sum(i.items_returned for i in items)
        recon.total_items_discarded = sum(i.items_discarded for i in items)
        recon.total_sales_amount_cents = sum(i.sales_amount_cents for i in items)
        recon.total_commission_earned_cents = sum(i.commission_earned_cents for i in items)
        recon.total_payments_collected_cents = sum(i.payments_collected_cents for i in items)
        recon.total_pending_payments_cents = sum(i.pending_payments_cents for i in items)
        recon.total_allowance_allocated_cents = pool.allocated_amount_cents if pool else 0
        recon.net_profit_cents = recon.total_commission_earned_cents - recon.total_allowance_allocated_cents

        recon.status = lifecycle.RECON_FINALIZED
        recon.finalized_by = actor_user_id
        recon.finalized_at = utcnow()
        db.session.commit()
        current_app.logger.info(
            "Reconciliation %s finalized: commission %s, allowance %s, net %s",
            recon.id,
            format_cents(recon.total_commission_earned_cents),
            format_cents(recon.total_allowance_allocated_cents),
            format_cents(recon.net_profit_cents),
        )
        return recon

    return run_with_retry(_op)


def get_reconciliation(reconciliation_date: date) -> DailyReconciliation:
    recon = db.session.query(DailyReconciliation).filter_by(reconciliation_date=reconciliation_date).first()
    if not recon:
        raise NotFoundError(f"No reconciliation for {reconciliation_date.isoformat()}")
    return recon


def list_reconciliations(*, status: str | None = None) -> list[DailyReconciliation]:
    q = db.session.query(DailyReconciliation)
    if status is not None:
        lifecycle.RECONCILIATION.validate_status(status)
        q = q.filter(DailyReconciliation.status == status)
    return q.order_by(DailyReconciliation.reconciliation_date.desc()).all()
