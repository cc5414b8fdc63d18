from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable

from webill.time_utils import parse_iso_datetime


# Maximum amount: 999,999,999,999.99 fits Numeric(14, 2)
# This prevents database overflow issues and nonsensical totals
MAX_AMOUNT = Decimal("999999999999.99")

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


class ValidationError(ValueError):
    """400-level input problem or business-rule violation."""


class NotFoundError(LookupError):
    """404-level missing entity (transaction, invoice, item, party)."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., invoice already exists)."""


def to_money(value: Any, field: str, *, allow_negative: bool = False) -> Decimal:
    """
    Coerce JSON input to a 2-place Decimal.

    Accepts int, float, Decimal and numeric strings. Booleans, blanks and
    scientific-notation strings are rejected.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be a number")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain number (scientific notation not allowed)")
        value = stripped
    elif isinstance(value, float):
        value = repr(value)
    elif not isinstance(value, (int, Decimal)):
        raise ValidationError(f"{field} must be a number")

    try:
        amount = Decimal(value)
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite number")

    amount = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    if not allow_negative and amount < 0:
        raise ValidationError(f"{field} cannot be negative")
    if abs(amount) > MAX_AMOUNT:
        raise ValidationError(f"{field} exceeds maximum allowed amount")
    return amount


def optional_money(value: Any, field: str, default: Decimal | None = ZERO) -> Decimal | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    return to_money(value, field)


def to_rate(value: Any, field: str) -> Decimal:
    """Percent rate (e.g. 18 for 18%), 0..100, kept to 2 places."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return ZERO
    rate = to_money(value, field)
    if rate > 100:
        raise ValidationError(f"{field} must be between 0 and 100")
    return rate


def optional_rate(value: Any, field: str) -> Decimal | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return to_rate(value, field)


def to_quantity(value: Any, field: str = "quantity") -> int:
    """Strict positive integer: rejects floats, decimals and booleans."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a positive integer")
    if isinstance(value, int):
        qty = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped or not stripped.lstrip("-").isdigit():
            raise ValidationError(f"{field} must be a positive integer")
        qty = int(stripped)
    elif isinstance(value, float) and value.is_integer():
        qty = int(value)
    else:
        raise ValidationError(f"{field} must be a positive integer")
    if qty <= 0:
        raise ValidationError(f"{field} must be a positive integer")
    return qty


def to_int_id(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer id")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise ValidationError(f"{field} must be an integer id")


def optional_id(value: Any, field: str) -> int | None:
    if value in (None, ""):
        return None
    return to_int_id(value, field)


def to_datetime(value: Any, field: str, default: datetime | None = None) -> datetime | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 datetime")
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime")


def to_choice(value: Any, field: str, choices: Iterable[str], default: str | None = None) -> str:
    if value is None or value == "":
        if default is None:
            raise ValidationError(f"{field} is required")
        return default
    normalized = str(value).strip().upper()
    allowed = tuple(choices)
    if normalized not in allowed:
        raise ValidationError(f"{field} must be one of: {', '.join(allowed)}")
    return normalized


def clean_str(value: Any, max_len: int | None = None) -> str | None:
    if value is None:
        return None
    s = str(value).strip()
    if not s:
        return None
    if max_len is not None and len(s) > max_len:
        raise ValidationError(f"value exceeds {max_len} characters")
    return s


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def money_out(value: Any) -> float:
    """Render a stored amount for JSON (2 places)."""
    if value is None:
        return 0.0
    return float(Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP))
