from __future__ import annotations

from datetime import datetime
from typing import Any

from rackstock.time_utils import coerce_datetime


ACTION_IN = "IN"
ACTION_OUT = "OUT"
ACTIONS = (ACTION_IN, ACTION_OUT)

PURPOSE_SALE = "Sale"
PURPOSE_DEMO = "Demo"
PURPOSE_DEMO_RETURN = "Demo Return"
PURPOSE_ADJUSTED = "Adjusted"
PURPOSE_TRANSFERRED = "Transferred"
PURPOSES = (PURPOSE_SALE, PURPOSE_DEMO, PURPOSE_DEMO_RETURN, PURPOSE_ADJUSTED, PURPOSE_TRANSFERRED)
STOCK_OUT_PURPOSES = (PURPOSE_SALE, PURPOSE_DEMO)


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate model number)."""


class NotFoundError(ValueError):
    """404-level reference to an unknown entity."""


class InsufficientStockError(ConflictError):
    """Requested quantity exceeds what the ledger holds for a triple."""

    def __init__(self, available: int, requested: int, message: str | None = None):
        self.available = available
        self.requested = requested
        super().__init__(
            message or f"Insufficient stock. Available: {available}, requested: {requested}"
        )


def coerce_quantity(value: Any, *, field: str = "quantity") -> int:
    """
    Strict positive integer check for movement quantities.

    Rejects bools, non-integral floats, scientific notation and blanks.
    Integral floats (4.0) and digit strings ("4") are accepted.
    """
    if value is None:
        raise ValidationError(f"{field} is required")

    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")

    if isinstance(value, int):
        qty = value
    elif isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            raise ValidationError(f"{field} must be a finite number")
        if not value.is_integer():
            raise ValidationError(f"{field} must be an integer, not a decimal")
        qty = int(value)
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            qty = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer") from None
    else:
        raise ValidationError(f"{field} must be an integer")

    if qty <= 0:
        raise ValidationError(f"{field} must be > 0")
    return qty


def coerce_date(value: Any, *, field: str = "date", default_now: bool = True) -> datetime | None:
    try:
        return coerce_datetime(value, field=field, default_now=default_now)
    except ValueError as e:
        raise ValidationError(str(e)) from None


def require_text(value: Any, *, field: str, max_length: int | None = None) -> str:
    if value is None:
        raise ValidationError(f"{field} is required")
    text = str(value).strip()
    if not text:
        raise ValidationError(f"{field} cannot be blank")
    if max_length and len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text


def optional_text(value: Any, *, field: str, max_length: int | None = None) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if max_length and len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text


def require_action(value: Any) -> str:
    action = str(value or "").strip().upper()
    if action not in ACTIONS:
        raise ValidationError("action must be IN or OUT")
    return action


def require_stock_out_purpose(value: Any) -> str:
    if value is None or str(value).strip() == "":
        raise ValidationError("purpose is required")
    purpose = str(value).strip()
    if purpose not in STOCK_OUT_PURPOSES:
        raise ValidationError(f"purpose must be one of: {', '.join(STOCK_OUT_PURPOSES)}")
    return purpose


def signed_quantity(action: str, quantity: int) -> int:
    """Ledger sign follows action: IN is positive, OUT is negative."""
    return abs(quantity) if action == ACTION_IN else -abs(quantity)
