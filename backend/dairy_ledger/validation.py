from __future__ import annotations

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

from dairy_ledger.time_utils import parse_iso_date


# Maximum amount: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical amounts
MAX_AMOUNT_CENTS = 999_999_999

# Maximum quantity accepted on a single line
MAX_QUANTITY = 1_000_000


class DomainError(Exception):
    """
    Base for every business rejection raised by the engine.

    Routes render these as {"error": message, "details": {...}} with status_code.
    """
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        body: dict[str, Any] = {"error": str(self)}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(DomainError, ValueError):
    """400-level input problem."""


class CapacityError(DomainError):
    """400-level shortfall: insufficient stock, pool or truck ceiling exceeded."""


class ConflictError(DomainError, ValueError):
    """409-level business rule conflict (e.g., duplicate load, already finalized)."""
    status_code = 409


class AuthorizationError(DomainError):
    """403-level: wrong role or truck not owned by the caller."""
    status_code = 403


class NotFoundError(DomainError):
    """404-level: unknown id."""
    status_code = 404


def require_payload(payload: Any) -> dict:
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def require_int(value: Any, field: str) -> int:
    """
    Strict integer coercion: rejects bools, floats, decimals and scientific notation.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def require_id(value: Any, field: str) -> int:
    ident = require_int(value, field)
    if ident <= 0:
        raise ValidationError(f"{field} must be a positive id")
    return ident


def require_quantity(value: Any, field: str = "quantity") -> int:
    qty = require_int(value, field)
    if qty <= 0:
        raise ValidationError(f"{field} must be > 0")
    if qty > MAX_QUANTITY:
        raise ValidationError(f"{field} cannot exceed {MAX_QUANTITY}")
    return qty


def require_non_negative_quantity(value: Any, field: str) -> int:
    qty = require_int(value, field)
    if qty < 0:
        raise ValidationError(f"{field} must be >= 0")
    return qty


def parse_money_cents(value: Any, field: str, *, allow_zero: bool = True) -> int:
    """
    Parse a decimal currency amount (number or string) into integer cents.

    Uses Decimal so "0.1" + "0.2" style drift never reaches storage.
    Rejects more than two decimal places, negatives, and non-finite values.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be a decimal amount")
    try:
        # str() first so floats parse by their shortest repr, not binary expansion
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a decimal amount")
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a decimal amount")
    if amount.as_tuple().exponent < -2:
        raise ValidationError(f"{field} must have at most two decimal places")
    if amount < 0:
        raise ValidationError(f"{field} must be >= 0")
    if amount == 0 and not allow_zero:
        raise ValidationError(f"{field} must be > 0")

    cents = int(amount * 100)
    if cents > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} cannot exceed {format_cents(MAX_AMOUNT_CENTS)}")
    return cents


def format_cents(cents: int | None) -> str | None:
    """Render integer cents as a two-decimal string ("9300.00")."""
    if cents is None:
        return None
    return str((Decimal(cents) / 100).quantize(Decimal("0.01")))


def parse_date_field(value: Any, field: str, *, required: bool = True) -> date | None:
    try:
        parsed = parse_iso_date(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD)")
    if parsed is None and required:
        raise ValidationError(f"{field} is required")
    return parsed


def parse_distance(value: Any, field: str = "distance_covered") -> float | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        distance = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number")
    if distance < 0:
        raise ValidationError(f"{field} must be >= 0")
    return distance


def optional_text(value: Any, field: str, max_length: int = 1000) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text


def require_list(value: Any, field: str, *, allow_empty: bool = False) -> list:
    if value is None:
        value = []
    if not isinstance(value, list):
        raise ValidationError(f"{field} must be a list")
    if not value and not allow_empty:
        raise ValidationError(f"{field} must not be empty")
    for entry in value:
        if not isinstance(entry, dict):
            raise ValidationError(f"Each entry in {field} must be an object")
    return value
