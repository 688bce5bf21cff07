from __future__ import annotations

from ..extensions import db
from dairy_ledger.time_utils import to_utc_z, to_iso_date


class TruckLoad(db.Model):
    """
    One truck's load for one day.

    Status: loaded -> reconciled (terminal). See lifecycle_service.
    """
    __tablename__ = "truck_loads"
    __table_args__ = (
        db.UniqueConstraint("truck_id", "load_date", name="uq_truck_loads_truck_date"),
        db.Index("ix_truck_loads_date_status", "load_date", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    truck_id = db.Column(db.Integer, db.ForeignKey("trucks.id"), nullable=False, index=True)
    load_date = db.Column(db.Date, nullable=False)
    status = db.Column(db.String(16), nullable=False, default="loaded")
    loaded_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    reconciled_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    reconciled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    truck = db.relationship("Truck", backref=db.backref("loads", lazy=True))
    items = db.relationship(
        "TruckLoadItem",
        back_populates="truck_load",
        order_by="TruckLoadItem.id",
        cascade="all, delete-orphan",
        lazy=True,
    )

    @property
    def is_reconciled(self) -> bool:
        return self.status == "reconciled"

    def summary(self) -> dict:
        loaded = sum(i.quantity_loaded for i in self.items)
        sold = sum(i.quantity_sold for i in self.items)
        returned = sum(i.quantity_returned for i in self.items)
        summary = {
            "item_count": len(self.items),
            "total_loaded": loaded,
            "total_sold": sold,
            "total_returned": returned,
            "total_available": loaded - sold - returned,
            "total_lost_damaged": None,
        }
        if self.is_reconciled:
            summary["total_lost_damaged"] = loaded - sold - returned
            summary["total_available"] = 0
        return summary

    def __repr__(self) -> str:
        return f"<TruckLoad id={self.id} truck_id={self.truck_id} date={self.load_date} status={self.status}>"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "truck_id": self.truck_id,
            "truck_number": self.truck.truck_number if self.truck else None,
            "load_date": to_iso_date(self.load_date),
            "status": self.status,
            "loaded_by": self.loaded_by,
            "notes": self.notes,
            "reconciled_by": self.reconciled_by,
            "reconciled_at": to_utc_z(self.reconciled_at),
            "created_at": to_utc_z(self.created_at),
            "summary": self.summary(),
        }
        if include_items:
            data["items"] = [i.to_dict() for i in self.items]
        return data


class TruckLoadItem(db.Model):
    """
    One batch's quantity on a load.

    quantity_sold is only mutated by the sale processor; quantity_returned only
    by reconciliation. quantity_lost_damaged is derived, never stored.
    """
    __tablename__ = "truck_load_items"
    __table_args__ = (
        db.UniqueConstraint("truck_load_id", "batch_id", name="uq_truck_load_items_load_batch"),
        db.CheckConstraint("quantity_loaded > 0", name="ck_truck_load_items_loaded_pos"),
        db.CheckConstraint("quantity_sold >= 0", name="ck_truck_load_items_sold_nonneg"),
        db.CheckConstraint("quantity_returned >= 0", name="ck_truck_load_items_returned_nonneg"),
        db.CheckConstraint(
            "quantity_sold + quantity_returned <= quantity_loaded",
            name="ck_truck_load_items_conservation",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    truck_load_id = db.Column(db.Integer, db.ForeignKey("truck_loads.id"), nullable=False, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity_loaded = db.Column(db.Integer, nullable=False)
    quantity_sold = db.Column(db.Integer, nullable=False, default=0)
    quantity_returned = db.Column(db.Integer, nullable=False, default=0)

    truck_load = db.relationship("TruckLoad", back_populates="items")
    batch = db.relationship("Batch")
    product = db.relationship("Product")

    @property
    def available_quantity(self) -> int:
        return self.quantity_loaded - (self.quantity_sold or 0) - (self.quantity_returned or 0)

    @property
    def quantity_lost_damaged(self) -> int | None:
        if self.truck_load is None or not self.truck_load.is_reconciled:
            return None
        return self.quantity_loaded - self.quantity_sold - self.quantity_returned

    def __repr__(self) -> str:
        return (
            f"<TruckLoadItem id={self.id} load={self.truck_load_id} batch={self.batch_id} "
            f"loaded={self.quantity_loaded} sold={self.quantity_sold} returned={self.quantity_returned}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "truck_load_id": self.truck_load_id,
            "batch_id": self.batch_id,
            "batch_number": self.batch.batch_number if self.batch else None,
            "expiry_date": to_iso_date(self.batch.expiry_date) if self.batch else None,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity_loaded": self.quantity_loaded,
            "quantity_sold": self.quantity_sold,
            "quantity_returned": self.quantity_returned,
            "quantity_available": 0 if self.quantity_lost_damaged is not None else self.available_quantity,
            "quantity_lost_damaged": self.quantity_lost_damaged,
        }
