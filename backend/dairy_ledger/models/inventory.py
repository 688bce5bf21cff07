from __future__ import annotations

from ..extensions import db
from dairy_ledger.time_utils import to_utc_z, to_iso_date, today


# Stock movement types
MOVEMENT_DELIVERY_IN = "delivery_in"
MOVEMENT_TRUCK_LOAD_OUT = "truck_load_out"
MOVEMENT_SALE_OUT = "sale_out"
MOVEMENT_TRUCK_RETURN_IN = "truck_return_in"
MOVEMENT_ADJUSTMENT = "adjustment"
MOVEMENT_EXPIRED_OUT = "expired_out"

VALID_MOVEMENT_TYPES = {
    MOVEMENT_DELIVERY_IN,
    MOVEMENT_TRUCK_LOAD_OUT,
    MOVEMENT_SALE_OUT,
    MOVEMENT_TRUCK_RETURN_IN,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_EXPIRED_OUT,
}

# Reference types (what caused the movement)
REF_DELIVERY = "delivery"
REF_TRUCK_LOAD = "truck_load"
REF_SALE = "sale"
REF_RECONCILIATION = "reconciliation"
REF_MANUAL = "manual"

VALID_REFERENCE_TYPES = {REF_DELIVERY, REF_TRUCK_LOAD, REF_SALE, REF_RECONCILIATION, REF_MANUAL}

# Derived batch status (never stored)
BATCH_STATUS_AVAILABLE = "available"
BATCH_STATUS_EMPTY = "empty"
BATCH_STATUS_EXPIRED = "expired"


class Delivery(db.Model):
    """A supplier delivery note; the source reference for newly received batches."""
    __tablename__ = "deliveries"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    delivery_date = db.Column(db.Date, nullable=False, index=True)
    delivery_note_number = db.Column(db.String(64), nullable=False, unique=True)
    received_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "delivery_date": to_iso_date(self.delivery_date),
            "delivery_note_number": self.delivery_note_number,
            "received_by": self.received_by,
            "created_at": to_utc_z(self.created_at),
        }


class Batch(db.Model):
    """
    A dated lot of one product.

    INVARIANTS:
    - 0 <= remaining_quantity <= quantity
    - remaining_quantity only changes through ledger_service (paired StockMovement row)
    - batch_number is unique per product; re-receiving the same (number, expiry)
      tops up this row instead of creating another
    """
    __tablename__ = "batches"
    __table_args__ = (
        db.UniqueConstraint("product_id", "batch_number", name="uq_batches_product_number"),
        db.CheckConstraint("remaining_quantity >= 0", name="ck_batches_remaining_nonneg"),
        db.CheckConstraint("remaining_quantity <= quantity", name="ck_batches_remaining_le_quantity"),
        db.Index("ix_batches_fifo", "product_id", "expiry_date", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    delivery_id = db.Column(db.Integer, db.ForeignKey("deliveries.id"), nullable=True, index=True)
    batch_number = db.Column(db.String(64), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    remaining_quantity = db.Column(db.Integer, nullable=False)
    expiry_date = db.Column(db.Date, nullable=False)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("batches", lazy=True))
    delivery = db.relationship("Delivery", backref=db.backref("batches", lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def status(self) -> str:
        if self.expiry_date < today():
            return BATCH_STATUS_EXPIRED
        if self.remaining_quantity <= 0:
            return BATCH_STATUS_EMPTY
        return BATCH_STATUS_AVAILABLE

    def __repr__(self) -> str:
        return (
            f"<Batch id={self.id} product_id={self.product_id} number={self.batch_number!r} "
            f"remaining={self.remaining_quantity}/{self.quantity} expiry={self.expiry_date}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "delivery_id": self.delivery_id,
            "batch_number": self.batch_number,
            "quantity": self.quantity,
            "remaining_quantity": self.remaining_quantity,
            "expiry_date": to_iso_date(self.expiry_date),
            "status": self.status,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }


class StockMovement(db.Model):
    """
    Append-only record of one quantity change against a batch.

    quantity is always > 0; direction (+1 inflow / -1 outflow) carries the sign.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_stock_movements_quantity_pos"),
        db.CheckConstraint("direction IN (-1, 1)", name="ck_stock_movements_direction"),
        db.Index("ix_stock_movements_batch_created", "batch_id", "id"),
        db.Index("ix_stock_movements_reference", "reference_type", "reference_id"),
        db.Index("ix_stock_movements_product_date", "product_id", "movement_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    movement_type = db.Column(db.String(32), nullable=False, index=True)
    direction = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    reference_type = db.Column(db.String(32), nullable=False)
    reference_id = db.Column(db.Integer, nullable=True)

    movement_date = db.Column(db.Date, nullable=False)
    notes = db.Column(db.String(255), nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def signed_quantity(self) -> int:
        return self.direction * self.quantity

    def __repr__(self) -> str:
        return f"<StockMovement id={self.id} batch_id={self.batch_id} {self.movement_type} {self.signed_quantity:+d}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "batch_id": self.batch_id,
            "product_id": self.product_id,
            "movement_type": self.movement_type,
            "quantity": self.quantity,
            "signed_quantity": self.signed_quantity,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "movement_date": to_iso_date(self.movement_date),
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }
