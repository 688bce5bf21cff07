from __future__ import annotations

from ..extensions import db
from dairy_ledger.time_utils import to_utc_z
from dairy_ledger.validation import format_cents


ROLE_MANAGER = "manager"
ROLE_DRIVER = "driver"
VALID_ROLES = {ROLE_MANAGER, ROLE_DRIVER}


class User(db.Model):
    """
    Operator identity as supplied by the upstream gateway.

    Credentials and sessions live outside this service; only the role and
    active flag matter here (manager-only calls, driver-owns-truck checks).
    """
    __tablename__ = "users"
    __table_args__ = (
        db.CheckConstraint("role IN ('manager', 'driver')", name="ck_users_role"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), nullable=False, unique=True, index=True)
    full_name = db.Column(db.String(160), nullable=True)
    role = db.Column(db.String(16), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def is_manager(self) -> bool:
        return self.role == ROLE_MANAGER

    def __repr__(self) -> str:
        return f"<User id={self.id} username={self.username!r} role={self.role}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "full_name": self.full_name,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Catalogue entry. Prices are authoritative in cents.

    commission_per_unit_cents is what the business earns per unit sold,
    independent of the negotiated sale price.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("current_wholesale_price_cents >= 0", name="ck_products_price_nonneg"),
        db.CheckConstraint("commission_per_unit_cents >= 0", name="ck_products_commission_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(160), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)
    current_wholesale_price_cents = db.Column(db.Integer, nullable=False)
    commission_per_unit_cents = db.Column(db.Integer, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "current_wholesale_price": format_cents(self.current_wholesale_price_cents),
            "commission_per_unit": format_cents(self.commission_per_unit_cents),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Truck(db.Model):
    __tablename__ = "trucks"
    __table_args__ = (
        db.CheckConstraint("max_allowance_limit_cents >= 0", name="ck_trucks_limit_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    truck_number = db.Column(db.String(32), nullable=False, unique=True)
    driver_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    max_allowance_limit_cents = db.Column(db.Integer, nullable=False, default=400_000)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    driver = db.relationship("User", foreign_keys=[driver_id])

    def __repr__(self) -> str:
        return f"<Truck id={self.id} number={self.truck_number!r} active={self.is_active}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "truck_number": self.truck_number,
            "driver_id": self.driver_id,
            "driver_username": self.driver.username if self.driver else None,
            "max_allowance_limit": format_cents(self.max_allowance_limit_cents),
            "is_active": self.is_active,
        }


class Shop(db.Model):
    __tablename__ = "shops"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(160), nullable=False)
    location = db.Column(db.String(255), nullable=True)
    distance = db.Column(db.Float, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Shop id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "location": self.location,
            "distance": self.distance,
            "is_active": self.is_active,
        }
