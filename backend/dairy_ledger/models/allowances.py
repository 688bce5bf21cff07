from __future__ import annotations

from ..extensions import db
from dairy_ledger.time_utils import to_utc_z, to_iso_date
from dairy_ledger.validation import format_cents


class TransportAllowance(db.Model):
    """
    Daily cash pool distributed across trucks.

    allocated_amount_cents is recomputed from TruckAllowance rows inside the
    transaction that changes them (allowance_service.recompute_allocated);
    it is never written from request input.
    """
    __tablename__ = "transport_allowances"
    __table_args__ = (
        db.CheckConstraint("total_allowance_cents > 0", name="ck_transport_allowances_total_pos"),
        db.CheckConstraint("allocated_amount_cents >= 0", name="ck_transport_allowances_allocated_nonneg"),
        db.CheckConstraint(
            "allocated_amount_cents <= total_allowance_cents",
            name="ck_transport_allowances_allocated_le_total",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    allowance_date = db.Column(db.Date, nullable=False, unique=True)
    total_allowance_cents = db.Column(db.Integer, nullable=False)
    allocated_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default="pending")
    notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    finalized_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    finalized_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    entries = db.relationship(
        "TruckAllowance",
        back_populates="allowance",
        order_by="TruckAllowance.id",
        cascade="all, delete-orphan",
        lazy=True,
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def remaining_amount_cents(self) -> int:
        return self.total_allowance_cents - (self.allocated_amount_cents or 0)

    def __repr__(self) -> str:
        return (
            f"<TransportAllowance id={self.id} date={self.allowance_date} "
            f"{self.allocated_amount_cents}/{self.total_allowance_cents} status={self.status}>"
        )

    def to_dict(self, include_entries: bool = True) -> dict:
        data = {
            "id": self.id,
            "allowance_date": to_iso_date(self.allowance_date),
            "total_allowance": format_cents(self.total_allowance_cents),
            "allocated_amount": format_cents(self.allocated_amount_cents),
            "remaining_amount": format_cents(self.remaining_amount_cents),
            "status": self.status,
            "notes": self.notes,
            "truck_count": len(self.entries),
            "created_by": self.created_by,
            "finalized_by": self.finalized_by,
            "finalized_at": to_utc_z(self.finalized_at),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_entries:
            data["truck_allocations"] = [e.to_dict() for e in self.entries]
        return data


class TruckAllowance(db.Model):
    __tablename__ = "truck_allowances"
    __table_args__ = (
        db.UniqueConstraint("allowance_id", "truck_id", name="uq_truck_allowances_pool_truck"),
        db.CheckConstraint("amount_cents > 0", name="ck_truck_allowances_amount_pos"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    allowance_id = db.Column(db.Integer, db.ForeignKey("transport_allowances.id"), nullable=False, index=True)
    truck_id = db.Column(db.Integer, db.ForeignKey("trucks.id"), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    distance_covered = db.Column(db.Float, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    allowance = db.relationship("TransportAllowance", back_populates="entries")
    truck = db.relationship("Truck")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "allowance_id": self.allowance_id,
            "truck_id": self.truck_id,
            "truck_number": self.truck.truck_number if self.truck else None,
            "max_limit": format_cents(self.truck.max_allowance_limit_cents) if self.truck else None,
            "amount": format_cents(self.amount_cents),
            "distance_covered": self.distance_covered,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
