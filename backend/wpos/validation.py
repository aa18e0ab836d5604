from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any


# Maximum price: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

# Largest value a SQLite or BIGINT column can hold
MAX_DB_INT = 2**63 - 1

# Sale line quantity ceiling
MAX_QUANTITY = 1_000_000

_CENT = Decimal("0.01")
_INT_RE = re.compile(r"[-+]?[0-9]+", re.ASCII)


class ValidationError(ValueError):
    """400-level input problem tied to a single field."""

    def __init__(self, field: str, message: str, context: dict | None = None):
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message
        self.context = context or {}

    def to_dict(self) -> dict:
        return {"field": self.field, "message": self.message, "context": self.context}


def parse_int(value: Any, field: str, *, minimum: int | None = None, maximum: int | None = MAX_DB_INT) -> int:
    """
    Strict integer parsing.

    Accepts ints and plain digit strings with at most one leading sign.
    Rejects bools, floats with a fractional part, scientific notation and
    anything past ``maximum`` (the signed 64-bit limit unless narrowed).
    """
    if value is None:
        raise ValidationError(field, "is required")
    if isinstance(value, bool):
        raise ValidationError(field, "must be an integer", {"value": value})

    if isinstance(value, int):
        parsed = value
    elif isinstance(value, float):
        if not value.is_integer():
            raise ValidationError(field, "must be an integer", {"value": value})
        parsed = int(value)
    elif isinstance(value, str):
        stripped = value.strip()
        if not _INT_RE.fullmatch(stripped):
            raise ValidationError(field, "must be an integer", {"value": value})
        try:
            parsed = int(stripped)
        except ValueError:
            raise ValidationError(field, "must be an integer", {"value": value})
    else:
        raise ValidationError(field, "must be an integer", {"value": repr(value)})

    if minimum is not None and parsed < minimum:
        raise ValidationError(field, f"must be at least {minimum}", {"value": parsed})
    if maximum is not None and parsed > maximum:
        raise ValidationError(field, f"must be at most {maximum}", {"value": parsed})
    if parsed < -MAX_DB_INT - 1:
        raise ValidationError(field, "is too small", {"value": parsed})
    return parsed


def parse_money_cents(value: Any, field: str, *, allow_negative: bool = False) -> int:
    """
    Convert a major-unit amount ("12.50", 12.5, 12) to integer cents.

    Rounds half-up to the cent. Floats go through str() so 0.1 stays 0.1.
    """
    if value is None:
        raise ValidationError(field, "is required")
    if isinstance(value, bool):
        raise ValidationError(field, "must be a number", {"value": value})
    if isinstance(value, (int, float, Decimal)):
        raw = str(value)
    elif isinstance(value, str):
        raw = value.strip()
    else:
        raise ValidationError(field, "must be a number", {"value": repr(value)})

    try:
        amount = Decimal(raw)
    except InvalidOperation:
        raise ValidationError(field, "must be a number", {"value": value})
    if not amount.is_finite():
        raise ValidationError(field, "must be a finite number", {"value": raw})

    cents = int((amount.quantize(_CENT, rounding=ROUND_HALF_UP) * 100).to_integral_value())
    if cents < 0 and not allow_negative:
        raise ValidationError(field, "must be non-negative", {"value": raw})
    if abs(cents) > MAX_PRICE_CENTS:
        raise ValidationError(field, "is too large", {"value": raw})
    return cents


def read_amount_cents(data: dict, name: str, field: str, *, allow_negative: bool = False) -> int:
    """
    Read ``<name>_cents`` (integer cents) or ``<name>`` (major units) from data.

    The cents form wins when both are present.
    """
    cents_key = f"{name}_cents"
    if data.get(cents_key) is not None:
        cents = parse_int(data[cents_key], f"{field}_cents", maximum=MAX_PRICE_CENTS)
        if cents < -MAX_PRICE_CENTS:
            raise ValidationError(f"{field}_cents", "is too large", {"value": cents})
        if cents < 0 and not allow_negative:
            raise ValidationError(f"{field}_cents", "must be non-negative", {"value": cents})
        return cents
    return parse_money_cents(data.get(name), field, allow_negative=allow_negative)


def cents_to_str(cents: int) -> str:
    return str((Decimal(cents) / 100).quantize(_CENT))
