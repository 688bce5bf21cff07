"""
Sale Processor - shop sales drawn from a truck load

WHY: A sale consumes what is on the truck, not the warehouse batch. The batch
already gave up the units at loading time, so a sale only moves
TruckLoadItem.quantity_sold (plus an audit-only sale_out movement).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from flask import current_app

from ..extensions import db
from ..models import Batch, Product, Sale, SaleItem, Shop, TruckLoad, TruckLoadItem, User
from ..models.inventory import MOVEMENT_SALE_OUT, REF_SALE
from ..models.sales import PAYMENT_STATUS_PAID, PAYMENT_STATUS_PENDING
from ..validation import (
    AuthorizationError,
    CapacityError,
    ConflictError,
    NotFoundError,
    ValidationError,
    format_cents,
    optional_text,
    parse_money_cents,
    require_id,
    require_list,
    require_quantity,
)
from .concurrency import begin_write, lock_for_update, run_with_retry
from .ledger_service import decrement


@dataclass(frozen=True)
class SaleLineRequest:
    product_id: int
    quantity: int
    unit_price_cents: int | None


def parse_sale_items(items: list[dict]) -> list[SaleLineRequest]:
    lines = []
    for raw in require_list(items, "items"):
        unit_price = raw.get("unit_price")
        lines.append(SaleLineRequest(
            product_id=require_id(raw.get("product_id"), "product_id"),
            quantity=require_quantity(raw.get("quantity")),
            unit_price_cents=None if unit_price is None else parse_money_cents(unit_price, "unit_price"),
        ))
    return lines


def _refresh_payment_status(sale: Sale) -> None:
    sale.payment_status = (
        PAYMENT_STATUS_PAID if sale.amount_paid_cents == sale.total_amount_cents else PAYMENT_STATUS_PENDING
    )


def _require_truck_access(actor: User | None, load: TruckLoad) -> None:
    """Managers may act for any truck; a driver only for the truck assigned to them."""
    if actor is None or actor.is_manager:
        return
    if load.truck is None or load.truck.driver_id != actor.id:
        raise AuthorizationError(
            "You can only sell from the truck assigned to you",
            details={"truck_id": load.truck_id, "user_id": actor.id},
        )


def _load_items_fifo(load_id: int, product_id: int) -> list[TruckLoadItem]:
    """The load's items for one product, earliest batch expiry first."""
    return lock_for_update(
        db.session.query(TruckLoadItem)
        .join(Batch, Batch.id == TruckLoadItem.batch_id)
        .filter(TruckLoadItem.truck_load_id == load_id, TruckLoadItem.product_id == product_id)
        .order_by(Batch.expiry_date.asc(), Batch.created_at.asc(), TruckLoadItem.id.asc())
    ).all()


def create_sale(
    *,
    shop_id: int,
    truck_load_id: int,
    items: list[dict],
    amount_paid=None,
    notes: str | None = None,
    actor: User | None = None,
) -> Sale:
    """
    Record a sale against a truck load.

    - load-local FIFO: each product is drawn from the load's items by batch expiry,
      possibly spanning items; all-or-nothing
    - unit price defaults to the product's current wholesale price
    - commission = quantity x product.commission_per_unit, whatever the price
    """
    lines = parse_sale_items(items)
    paid_cents = 0 if amount_paid is None else parse_money_cents(amount_paid, "amount_paid")
    notes = optional_text(notes, "notes")

    def _op():
        begin_write()
        load = lock_for_update(db.session.query(TruckLoad).filter_by(id=truck_load_id)).first()
        if not load:
            raise NotFoundError("Truck load not found")
        _require_truck_access(actor, load)
        if load.is_reconciled:
            raise ConflictError(
                "Cannot sell from a reconciled truck load",
                details={"truck_load_id": load.id},
            )

        shop = db.session.query(Shop).filter_by(id=shop_id).first()
        if not shop:
            raise NotFoundError("Shop not found")
        if not shop.is_active:
            raise ValidationError(f"Shop {shop.name} is inactive")

        # Check availability per product before touching any row
        requested: dict[int, int] = {}
        for line in lines:
            requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity

        products: dict[int, Product] = {}
        load_items: dict[int, list[TruckLoadItem]] = {}
        for product_id, qty in requested.items():
            product = db.session.query(Product).filter_by(id=product_id).first()
            if not product:
                raise NotFoundError(f"Product {product_id} not found")
            products[product_id] = product
            load_items[product_id] = _load_items_fifo(load.id, product_id)

            available = sum(i.available_quantity for i in load_items[product_id])
            if available < qty:
                raise CapacityError(
                    f"Insufficient quantity of {product.name} on truck load {load.id}: "
                    f"needed {qty}, available {available}",
                    details={
                        "product_id": product_id,
                        "needed": qty,
                        "available": available,
                        "shortfall": qty - available,
                    },
                )

        sale = Sale(
            shop_id=shop_id,
            truck_load_id=load.id,
            sold_by=actor.id if actor else None,
            sale_date=load.load_date,
            total_amount_cents=0,
            amount_paid_cents=0,
            payment_status=PAYMENT_STATUS_PENDING,
            notes=notes,
        )
        db.session.add(sale)
        db.session.flush()

        total = 0
        for line in lines:
            product = products[line.product_id]
            unit_price = (
                product.current_wholesale_price_cents if line.unit_price_cents is None else line.unit_price_cents
            )
            outstanding = line.quantity
            for item in load_items[line.product_id]:
                if outstanding == 0:
                    break
                take = min(item.available_quantity, outstanding)
                if take <= 0:
                    continue

                item.quantity_sold += take
                outstanding -= take

                line_total = take * unit_price
                db.session.add(SaleItem(
                    sale_id=sale.id,
                    truck_load_item_id=item.id,
                    batch_id=item.batch_id,
                    product_id=product.id,
                    quantity=take,
                    unit_price_cents=unit_price,
                    line_total_cents=line_total,
                    commission_earned_cents=take * product.commission_per_unit_cents,
                ))
                total += line_total

                decrement(
                    item.batch,
                    take,
                    MOVEMENT_SALE_OUT,
                    reference_type=REF_SALE,
                    reference_id=sale.id,
                    movement_date=sale.sale_date,
                    created_by=sale.sold_by,
                )

        if paid_cents > total:
            raise ValidationError(
                f"Amount paid ({format_cents(paid_cents)}) cannot exceed sale total ({format_cents(total)})",
                details={"amount_paid": format_cents(paid_cents), "total_amount": format_cents(total)},
            )

        sale.total_amount_cents = total
        sale.amount_paid_cents = paid_cents
        _refresh_payment_status(sale)

        db.session.commit()
        current_app.logger.info(
            "Sale %s on truck load %s: total %s, paid %s",
            sale.id, load.id, format_cents(total), format_cents(paid_cents),
        )
        return sale

    return run_with_retry(_op)


def record_payment(sale_id: int, additional_payment, *, actor: User | None = None) -> Sale:
    """Add a payment to a sale; the running total may never exceed the sale amount."""
    additional_cents = parse_money_cents(additional_payment, "additional_payment", allow_zero=False)

    def _op():
        begin_write()
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if not sale:
            raise NotFoundError("Sale not found")
        _require_truck_access(actor, sale.truck_load)

        new_paid = sale.amount_paid_cents + additional_cents
        if new_paid > sale.total_amount_cents:
            raise ValidationError(
                f"Total payment ({format_cents(new_paid)}) would exceed sale amount "
                f"({format_cents(sale.total_amount_cents)})",
                details={
                    "amount_paid": format_cents(sale.amount_paid_cents),
                    "additional_payment": format_cents(additional_cents),
                    "total_amount": format_cents(sale.total_amount_cents),
                },
            )

        sale.amount_paid_cents = new_paid
        _refresh_payment_status(sale)
        db.session.commit()
        current_app.logger.info(
            "Payment of %s recorded on sale %s (%s)",
            format_cents(additional_cents), sale.id, sale.payment_status,
        )
        return sale

    return run_with_retry(_op)


def get_sale(sale_id: int) -> Sale:
    sale = db.session.query(Sale).filter_by(id=sale_id).first()
    if not sale:
        raise NotFoundError("Sale not found")
    return sale


def list_sales(
    *,
    truck_load_id: int | None = None,
    shop_id: int | None = None,
    payment_status: str | None = None,
    sale_date: date | None = None,
) -> list[Sale]:
    q = db.session.query(Sale)
    if truck_load_id is not None:
        q = q.filter(Sale.truck_load_id == truck_load_id)
    if shop_id is not None:
        q = q.filter(Sale.shop_id == shop_id)
    if payment_status is not None:
        if payment_status not in (PAYMENT_STATUS_PENDING, PAYMENT_STATUS_PAID):
            raise ValidationError("payment_status must be 'pending' or 'paid'")
        q = q.filter(Sale.payment_status == payment_status)
    if sale_date is not None:
        q = q.filter(Sale.sale_date == sale_date)
    return q.order_by(Sale.sale_date.desc(), Sale.id.desc()).all()
