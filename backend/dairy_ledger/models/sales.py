from __future__ import annotations

from ..extensions import db
from dairy_ledger.time_utils import to_utc_z, to_iso_date
from dairy_ledger.validation import format_cents


PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_PAID = "paid"


class Sale(db.Model):
    """
    One shop transaction drawn from a truck load.

    payment_status is derived: paid exactly when amount_paid_cents == total_amount_cents.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.CheckConstraint("total_amount_cents >= 0", name="ck_sales_total_nonneg"),
        db.CheckConstraint("amount_paid_cents >= 0", name="ck_sales_paid_nonneg"),
        db.CheckConstraint("amount_paid_cents <= total_amount_cents", name="ck_sales_paid_le_total"),
        db.Index("ix_sales_load_date", "truck_load_id", "sale_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)
    truck_load_id = db.Column(db.Integer, db.ForeignKey("truck_loads.id"), nullable=False, index=True)
    sold_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    sale_date = db.Column(db.Date, nullable=False)

    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_PENDING)

    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    shop = db.relationship("Shop")
    truck_load = db.relationship("TruckLoad", backref=db.backref("sales", lazy=True))
    items = db.relationship(
        "SaleItem",
        back_populates="sale",
        order_by="SaleItem.id",
        cascade="all, delete-orphan",
        lazy=True,
    )

    @property
    def outstanding_cents(self) -> int:
        return self.total_amount_cents - self.amount_paid_cents

    @property
    def commission_cents(self) -> int:
        return sum(i.commission_earned_cents for i in self.items)

    def summary(self) -> dict:
        return {
            "item_count": len(self.items),
            "total_quantity": sum(i.quantity for i in self.items),
            "total_amount": format_cents(self.total_amount_cents),
            "amount_paid": format_cents(self.amount_paid_cents),
            "outstanding": format_cents(self.outstanding_cents),
            "total_commission": format_cents(self.commission_cents),
        }

    def __repr__(self) -> str:
        return f"<Sale id={self.id} load={self.truck_load_id} total={self.total_amount_cents} status={self.payment_status}>"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "shop_id": self.shop_id,
            "shop_name": self.shop.name if self.shop else None,
            "truck_load_id": self.truck_load_id,
            "sold_by": self.sold_by,
            "sale_date": to_iso_date(self.sale_date),
            "total_amount": format_cents(self.total_amount_cents),
            "amount_paid": format_cents(self.amount_paid_cents),
            "payment_status": self.payment_status,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "summary": self.summary(),
        }
        if include_items:
            data["items"] = [i.to_dict() for i in self.items]
        return data


class SaleItem(db.Model):
    """One line of a sale, tied to the truck load item it drew from."""
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_pos"),
        db.CheckConstraint("unit_price_cents >= 0", name="ck_sale_items_price_nonneg"),
        db.CheckConstraint("commission_earned_cents >= 0", name="ck_sale_items_commission_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    truck_load_item_id = db.Column(db.Integer, db.ForeignKey("truck_load_items.id"), nullable=False, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)
    commission_earned_cents = db.Column(db.Integer, nullable=False, default=0)

    sale = db.relationship("Sale", back_populates="items")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "truck_load_item_id": self.truck_load_item_id,
            "batch_id": self.batch_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "unit_price": format_cents(self.unit_price_cents),
            "line_total": format_cents(self.line_total_cents),
            "commission_earned": format_cents(self.commission_earned_cents),
        }
