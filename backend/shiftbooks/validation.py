from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

# Maximum single amount: 9,999,999,999.99 in major units
# This prevents database overflow issues and nonsensical amounts
MAX_AMOUNT_CENTS = 999_999_999_999


class ValidationError(ValueError):
    """400-level input problem."""


def parse_cents(
    value: Any,
    field: str = "amount_cents",
    *,
    allow_zero: bool = False,
    allow_negative: bool = False,
) -> int:
    """
    Strict integer minor-unit parsing.

    Rejects floats, booleans, scientific notation and decimal points: an
    amount that is not already an exact integer of minor units is an input
    error, never something to round.
    """
    if value is None:
        raise ValidationError(f"{field} is required")

    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")

    if isinstance(value, int):
        cents = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            cents = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    elif isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    else:
        raise ValidationError(f"{field} must be an integer")

    if cents < 0 and not allow_negative:
        raise ValidationError(f"{field} cannot be negative")
    if cents == 0 and not allow_zero:
        raise ValidationError(f"{field} must be greater than zero")
    if abs(cents) > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} exceeds maximum allowed amount")
    return cents


def parse_major_amount(value: Any, field: str = "amount", *, places: int = 2) -> int:
    """
    Convert a major-unit decimal string ("125.50") to minor units (12550).

    More fractional digits than `places` is rejected rather than rounded.
    Binary floats are rejected outright.
    """
    if isinstance(value, float) or isinstance(value, bool):
        raise ValidationError(f"{field} must be a decimal string, not a float")
    if value is None:
        raise ValidationError(f"{field} is required")

    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a decimal amount")

    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite amount")

    exponent = amount.as_tuple().exponent
    if isinstance(exponent, int) and -exponent > places:
        raise ValidationError(f"{field} has more than {places} decimal places")

    cents = int(amount.scaleb(places))
    if abs(cents) > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} exceeds maximum allowed amount")
    return cents


def format_cents(cents: int, *, places: int = 2) -> str:
    """Render minor units as a fixed-point display string ("-12.50")."""
    sign = "-" if cents < 0 else ""
    whole, frac = divmod(abs(cents), 10 ** places)
    if places == 0:
        return f"{sign}{whole}"
    return f"{sign}{whole}.{frac:0{places}d}"


def require_fields(payload: Any, *fields: str) -> dict:
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    missing = [f for f in fields if payload.get(f) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    return payload


def parse_int_list(raw: str | None, field: str) -> list[int]:
    """Parse "1,2,3" query strings."""
    if not raw:
        return []
    out = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            out.append(int(part))
        except ValueError:
            raise ValidationError(f"{field} must be a comma-separated list of integers")
    return out
