# Overview: Service-layer operations for transport allowances; caps a daily pool across trucks.

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import TransportAllowance, Truck, TruckAllowance
from ..time_utils import utcnow
from ..validation import (
    CapacityError,
    ConflictError,
    NotFoundError,
    ValidationError,
    format_cents,
    optional_text,
    parse_distance,
    parse_money_cents,
    require_id,
    require_list,
)
from . import lifecycle_service as lifecycle
from .concurrency import begin_write, lock_for_update, run_with_retry
"""
Allowance Pool Invariants (authoritative)

- One pool per calendar day.
- One entry per (pool, truck); entry amount <= truck.max_allowance_limit.
- allocated_amount = sum(entry amounts) <= total_allowance, recomputed in the
  same transaction as every entry insert/update/delete.
- Cap checks run with the pool row locked so the "already allocated" figure
  quoted in an error is the one the check used.
- A finalized pool and its entries are read-only; only pending pools can be deleted.
"""


@dataclass(frozen=True)
class AllocationRequest:
    truck_id: int
    amount_cents: int
    distance_covered: float | None
    notes: str | None


def parse_allocations(allocations: list[dict]) -> list[AllocationRequest]:
    parsed = []
    seen: set[int] = set()
    for raw in require_list(allocations, "allocations"):
        truck_id = require_id(raw.get("truck_id"), "truck_id")
        if truck_id in seen:
            raise ConflictError(f"Truck {truck_id} appears more than once in this allocation")
        seen.add(truck_id)
        parsed.append(AllocationRequest(
            truck_id=truck_id,
            amount_cents=parse_money_cents(raw.get("amount"), "amount", allow_zero=False),
            distance_covered=parse_distance(raw.get("distance_covered")),
            notes=optional_text(raw.get("notes"), "notes"),
        ))
    return parsed


def _get_pool_locked(allowance_id: int) -> TransportAllowance:
    pool = lock_for_update(db.session.query(TransportAllowance).filter_by(id=allowance_id)).first()
    if not pool:
        raise NotFoundError("Allowance not found")
    return pool


def _require_open(pool: TransportAllowance) -> None:
    if pool.status == lifecycle.ALLOWANCE_FINALIZED:
        raise ConflictError(
            "Allowance is finalized and can no longer be changed",
            details={"allowance_id": pool.id},
        )


def _allocated_sum(pool_id: int, *, exclude_truck_id: int | None = None) -> int:
    q = db.session.query(func.coalesce(func.sum(TruckAllowance.amount_cents), 0)).filter(
        TruckAllowance.allowance_id == pool_id
    )
    if exclude_truck_id is not None:
        q = q.filter(TruckAllowance.truck_id != exclude_truck_id)
    return int(q.scalar() or 0)


def _check_truck(truck_id: int, amount_cents: int) -> Truck:
    truck = db.session.query(Truck).filter_by(id=truck_id).first()
    if not truck:
        raise NotFoundError(f"Truck {truck_id} not found")
    if not truck.is_active:
        raise ValidationError(f"Truck {truck.truck_number} is inactive")
    if amount_cents > truck.max_allowance_limit_cents:
        raise CapacityError(
            f"Allowance for truck {truck.truck_number} ({format_cents(amount_cents)}) exceeds its "
            f"maximum limit ({format_cents(truck.max_allowance_limit_cents)})",
            details={
                "truck_id": truck.id,
                "needed": format_cents(amount_cents),
                "limit": format_cents(truck.max_allowance_limit_cents),
            },
        )
    return truck


def _check_pool_cap(pool: TransportAllowance, already_allocated: int, adding: int) -> None:
    if already_allocated + adding > pool.total_allowance_cents:
        remaining = pool.total_allowance_cents - already_allocated
        raise CapacityError(
            f"Total allocation ({format_cents(already_allocated + adding)}) would exceed allowance total "
            f"({format_cents(pool.total_allowance_cents)}). Already allocated: "
            f"{format_cents(already_allocated)}, remaining: {format_cents(remaining)}",
            details={
                "needed": format_cents(adding),
                "available": format_cents(remaining),
                "already_allocated": format_cents(already_allocated),
                "limit": format_cents(pool.total_allowance_cents),
            },
        )


def recompute_allocated(pool: TransportAllowance) -> None:
    """Derive allocated_amount from the entry rows and move status to match."""
    db.session.flush()
    pool.allocated_amount_cents = _allocated_sum(pool.id)

    target = lifecycle.ALLOWANCE_ALLOCATED if pool.allocated_amount_cents > 0 else lifecycle.ALLOWANCE_PENDING
    if target != pool.status:
        lifecycle.ALLOWANCE.require_transition(pool.status, target)
        pool.status = target


def create_pool(*, allowance_date: date, total_allowance, notes: str | None = None,
                actor_user_id: int | None = None) -> TransportAllowance:
    total_cents = parse_money_cents(total_allowance, "total_allowance", allow_zero=False)
    notes = optional_text(notes, "notes")

    def _op():
        begin_write()
        if db.session.query(TransportAllowance).filter_by(allowance_date=allowance_date).first():
            raise ConflictError(f"An allowance already exists for {allowance_date.isoformat()}")

        pool = TransportAllowance(
            allowance_date=allowance_date,
            total_allowance_cents=total_cents,
            allocated_amount_cents=0,
            status=lifecycle.ALLOWANCE_PENDING,
            notes=notes,
            created_by=actor_user_id,
        )
        db.session.add(pool)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError(f"An allowance already exists for {allowance_date.isoformat()}")

        current_app.logger.info(
            "Allowance pool %s created for %s: %s", pool.id, allowance_date.isoformat(), format_cents(total_cents)
        )
        return pool

    return run_with_retry(_op)


def allocate(allowance_id: int, allocations: list[dict]) -> TransportAllowance:
    """Add one entry per truck; the whole call is rejected if any entry fails a cap."""
    requests = parse_allocations(allocations)

    def _op():
        begin_write()
        pool = _get_pool_locked(allowance_id)
        _require_open(pool)

        existing = {
            e.truck_id for e in db.session.query(TruckAllowance).filter_by(allowance_id=pool.id).all()
        }
        for req in requests:
            if req.truck_id in existing:
                raise ConflictError(
                    f"Truck {req.truck_id} already has an allocation for this allowance",
                    details={"truck_id": req.truck_id},
                )
            _check_truck(req.truck_id, req.amount_cents)

        already = _allocated_sum(pool.id)
        _check_pool_cap(pool, already, sum(r.amount_cents for r in requests))

        for req in requests:
            db.session.add(TruckAllowance(
                allowance_id=pool.id,
                truck_id=req.truck_id,
                amount_cents=req.amount_cents,
                distance_covered=req.distance_covered,
                notes=req.notes,
            ))
        recompute_allocated(pool)
        db.session.commit()
        current_app.logger.info(
            "Allowance %s: allocated %d truck(s), %s of %s used",
            pool.id, len(requests), format_cents(pool.allocated_amount_cents), format_cents(pool.total_allowance_cents),
        )
        return pool

    return run_with_retry(_op)


def update_entry(allowance_id: int, truck_id: int, *, amount, distance_covered=None,
                 notes: str | None = None) -> TransportAllowance:
    """Change one truck's amount; the pool cap is checked against the other trucks' totals."""
    amount_cents = parse_money_cents(amount, "amount", allow_zero=False)
    distance = parse_distance(distance_covered)
    notes = optional_text(notes, "notes")

    def _op():
        begin_write()
        pool = _get_pool_locked(allowance_id)
        _require_open(pool)

        entry = db.session.query(TruckAllowance).filter_by(allowance_id=pool.id, truck_id=truck_id).first()
        if not entry:
            raise NotFoundError(f"Truck {truck_id} has no allocation for this allowance")

        _check_truck(truck_id, amount_cents)
        _check_pool_cap(pool, _allocated_sum(pool.id, exclude_truck_id=truck_id), amount_cents)

        entry.amount_cents = amount_cents
        if distance is not None:
            entry.distance_covered = distance
        if notes is not None:
            entry.notes = notes
        recompute_allocated(pool)
        db.session.commit()
        current_app.logger.info(
            "Allowance %s: truck %s set to %s", pool.id, truck_id, format_cents(amount_cents)
        )
        return pool

    return run_with_retry(_op)


def remove_entry(allowance_id: int, truck_id: int) -> TransportAllowance:
    def _op():
        begin_write()
        pool = _get_pool_locked(allowance_id)
        _require_open(pool)

        entry = db.session.query(TruckAllowance).filter_by(allowance_id=pool.id, truck_id=truck_id).first()
        if not entry:
            raise NotFoundError(f"Truck {truck_id} has no allocation for this allowance")

        pool.entries.remove(entry)
        recompute_allocated(pool)
        db.session.commit()
        current_app.logger.info("Allowance %s: truck %s allocation removed", pool.id, truck_id)
        return pool

    return run_with_retry(_op)


def finalize(allowance_id: int, *, actor_user_id: int | None = None) -> TransportAllowance:
    def _op():
        begin_write()
        pool = _get_pool_locked(allowance_id)
        if pool.status == lifecycle.ALLOWANCE_FINALIZED:
            raise ConflictError("Allowance is already finalized", details={"allowance_id": pool.id})
        lifecycle.ALLOWANCE.require_transition(pool.status, lifecycle.ALLOWANCE_FINALIZED)

        pool.status = lifecycle.ALLOWANCE_FINALIZED
        pool.finalized_by = actor_user_id
        pool.finalized_at = utcnow()
        db.session.commit()
        current_app.logger.info(
            "Allowance %s finalized at %s allocated", pool.id, format_cents(pool.allocated_amount_cents)
        )
        return pool

    return run_with_retry(_op)


def delete_pool(allowance_id: int) -> None:
    def _op():
        begin_write()
        pool = _get_pool_locked(allowance_id)
        if pool.status != lifecycle.ALLOWANCE_PENDING:
            raise ConflictError(
                f"Only pending allowances can be deleted (status is '{pool.status}')",
                details={"allowance_id": pool.id, "status": pool.status},
            )
        db.session.delete(pool)
        db.session.commit()
        current_app.logger.info("Allowance %s deleted", allowance_id)

    return run_with_retry(_op)


def get_pool(allowance_id: int) -> TransportAllowance:
    pool = db.session.query(TransportAllowance).filter_by(id=allowance_id).first()
    if not pool:
        raise NotFoundError("Allowance not found")
    return pool


def get_pool_for_date(allowance_date: date) -> TransportAllowance | None:
    return db.session.query(TransportAllowance).filter_by(allowance_date=allowance_date).first()


def list_pools(*, status: str | None = None, start_date: date | None = None,
               end_date: date | None = None) -> list[TransportAllowance]:
    q = db.session.query(TransportAllowance)
    if status is not None:
        lifecycle.ALLOWANCE.validate_status(status)
        q = q.filter(TransportAllowance.status == status)
    if start_date is not None:
        q = q.filter(TransportAllowance.allowance_date >= start_date)
    if end_date is not None:
        q = q.filter(TransportAllowance.allowance_date <= end_date)
    return q.order_by(TransportAllowance.allowance_date.desc()).all()
