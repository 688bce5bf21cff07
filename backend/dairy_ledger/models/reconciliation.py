from __future__ import annotations

import json

from ..extensions import db
from dairy_ledger.time_utils import to_utc_z, to_iso_date
from dairy_ledger.validation import format_cents


class DailyReconciliation(db.Model):
    """
    One day's close-out.

    Status: in_progress -> completed -> finalized. Once finalized the row and
    its items are immutable; reconciliation_service refuses further writes.
    """
    __tablename__ = "daily_reconciliations"
    __table_args__ = (
        db.CheckConstraint("trucks_verified <= trucks_out", name="ck_daily_reconciliations_verified_le_out"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    reconciliation_date = db.Column(db.Date, nullable=False, unique=True)
    status = db.Column(db.String(16), nullable=False, default="in_progress")

    trucks_out = db.Column(db.Integer, nullable=False, default=0)
    trucks_verified = db.Column(db.Integer, nullable=False, default=0)

    total_items_loaded = db.Column(db.Integer, nullable=False, default=0)
    total_items_sold = db.Column(db.Integer, nullable=False, default=0)
    total_items_returned = db.Column(db.Integer, nullable=False, default=0)
    total_items_discarded = db.Column(db.Integer, nullable=False, default=0)

    total_sales_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_commission_earned_cents = db.Column(db.Integer, nullable=False, default=0)
    total_allowance_allocated_cents = db.Column(db.Integer, nullable=False, default=0)
    total_payments_collected_cents = db.Column(db.Integer, nullable=False, default=0)
    total_pending_payments_cents = db.Column(db.Integer, nullable=False, default=0)
    net_profit_cents = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)
    started_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    started_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    finalized_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    finalized_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "ReconciliationItem",
        back_populates="reconciliation",
        order_by="ReconciliationItem.id",
        cascade="all, delete-orphan",
        lazy=True,
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def profit_status(self) -> str:
        return "profit" if (self.net_profit_cents or 0) >= 0 else "loss"

    def __repr__(self) -> str:
        return (
            f"<DailyReconciliation id={self.id} date={self.reconciliation_date} "
            f"status={self.status} verified={self.trucks_verified}/{self.trucks_out}>"
        )

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "reconciliation_date": to_iso_date(self.reconciliation_date),
            "status": self.status,
            "trucks_out": self.trucks_out,
            "trucks_verified": self.trucks_verified,
            "total_items_loaded": self.total_items_loaded,
            "total_items_sold": self.total_items_sold,
            "total_items_returned": self.total_items_returned,
            "total_items_discarded": self.total_items_discarded,
            "total_sales_amount": format_cents(self.total_sales_amount_cents),
            "total_commission_earned": format_cents(self.total_commission_earned_cents),
            "total_allowance_allocated": format_cents(self.total_allowance_allocated_cents),
            "total_payments_collected": format_cents(self.total_payments_collected_cents),
            "pending_payments": format_cents(self.total_pending_payments_cents),
            "net_profit": format_cents(self.net_profit_cents),
            "profit_status": self.profit_status,
            "notes": self.notes,
            "started_by": self.started_by,
            "started_at": to_utc_z(self.started_at),
            "completed_at": to_utc_z(self.completed_at),
            "finalized_by": self.finalized_by,
            "finalized_at": to_utc_z(self.finalized_at),
        }
        if include_items:
            data["truck_items"] = [i.to_dict() for i in self.items]
        return data


class ReconciliationItem(db.Model):
    """
    Per-truck verification row.

    items_* hold the figures actually posted to the ledger (loaded = sold +
    returned + discarded); reported_lines keeps what the driver declared so a
    discrepancy can be reviewed later.
    """
    __tablename__ = "reconciliation_items"
    __table_args__ = (
        db.UniqueConstraint("reconciliation_id", "truck_id", name="uq_reconciliation_items_recon_truck"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    reconciliation_id = db.Column(
        db.Integer, db.ForeignKey("daily_reconciliations.id"), nullable=False, index=True
    )
    truck_id = db.Column(db.Integer, db.ForeignKey("trucks.id"), nullable=False, index=True)
    truck_load_id = db.Column(db.Integer, db.ForeignKey("truck_loads.id"), nullable=False, index=True)

    items_loaded = db.Column(db.Integer, nullable=False, default=0)
    items_sold = db.Column(db.Integer, nullable=False, default=0)
    items_returned = db.Column(db.Integer, nullable=False, default=0)
    items_discarded = db.Column(db.Integer, nullable=False, default=0)

    reported_returned = db.Column(db.Integer, nullable=True)
    reported_discarded = db.Column(db.Integer, nullable=True)
    reported_lines = db.Column(db.Text, nullable=True)

    sales_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    commission_earned_cents = db.Column(db.Integer, nullable=False, default=0)
    allowance_received_cents = db.Column(db.Integer, nullable=False, default=0)
    payments_collected_cents = db.Column(db.Integer, nullable=False, default=0)
    pending_payments_cents = db.Column(db.Integer, nullable=False, default=0)

    is_verified = db.Column(db.Boolean, nullable=False, default=False)
    has_discrepancy = db.Column(db.Boolean, nullable=False, default=False)
    discrepancy_notes = db.Column(db.Text, nullable=True)
    verified_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    verified_at = db.Column(db.DateTime(timezone=True), nullable=True)

    reconciliation = db.relationship("DailyReconciliation", back_populates="items")
    truck = db.relationship("Truck")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "reconciliation_id": self.reconciliation_id,
            "truck_id": self.truck_id,
            "truck_number": self.truck.truck_number if self.truck else None,
            "driver_id": self.truck.driver_id if self.truck else None,
            "truck_load_id": self.truck_load_id,
            "items_loaded": self.items_loaded,
            "items_sold": self.items_sold,
            "items_returned": self.items_returned,
            "items_discarded": self.items_discarded,
            "reported_returned": self.reported_returned,
            "reported_discarded": self.reported_discarded,
            "reported_lines": json.loads(self.reported_lines) if self.reported_lines else None,
            "sales_amount": format_cents(self.sales_amount_cents),
            "commission_earned": format_cents(self.commission_earned_cents),
            "allowance_received": format_cents(self.allowance_received_cents),
            "payments_collected": format_cents(self.payments_collected_cents),
            "pending_payments": format_cents(self.pending_payments_cents),
            "is_verified": self.is_verified,
            "has_discrepancy": self.has_discrepancy,
            "discrepancy_notes": self.discrepancy_notes,
            "verified_by": self.verified_by,
            "verified_at": to_utc_z(self.verified_at),
        }
