# Overview: Input coercion and validation shared by routes and services.

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from .time_utils import parse_iso_date


# Maximum single amount: 9,999,999.99
# Matches Numeric(12, 2) and rejects nonsensical figures
MAX_MONEY = Decimal("9999999.99")
PENNY = Decimal("0.01")


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., room already let)."""


class NotFoundError(ValueError):
    """404-level: row does not exist or is outside the caller's agency."""


@dataclass(frozen=True)
class Field:
    """
    Field policy:
    - kind: int | money | date | bool | str
    - required: must be present on create (partial=False)
    - nullable: explicit null accepted
    - choices: allowed values for str fields
    """
    kind: str
    required: bool = False
    nullable: bool = True
    max_length: int | None = None
    choices: frozenset | None = None


def coerce_int(key: str, value: Any) -> int:
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped or "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{key} must be a plain integer")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    raise ValidationError(f"{key} must be an integer")


def coerce_money(key: str, value: Any) -> Decimal:
    """
    Accept int, Decimal, float or numeric string and return pennies as Decimal.

    Floats go through str() so 0.1 becomes Decimal("0.1") rather than its
    binary expansion.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be a number")
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value if isinstance(value, (int, Decimal)) else str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{key} must be a number")
    if not amount.is_finite():
        raise ValidationError(f"{key} must be a finite number")
    amount = amount.quantize(PENNY, rounding=ROUND_HALF_UP)
    if abs(amount) > MAX_MONEY:
        raise ValidationError(f"{key} cannot exceed {MAX_MONEY}")
    return amount


def coerce_date(key: str, value: Any) -> date:
    try:
        parsed = parse_iso_date(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be an ISO-8601 date (YYYY-MM-DD)")
    if parsed is None:
        raise ValidationError(f"{key} must be an ISO-8601 date (YYYY-MM-DD)")
    return parsed


def coerce_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in {"true", "1", "yes"}:
        return True
    if isinstance(value, str) and value.strip().lower() in {"false", "0", "no"}:
        return False
    if isinstance(value, int):
        return bool(value)
    raise ValidationError(f"{key} must be a boolean")


_COERCERS = {
    "int": coerce_int,
    "money": coerce_money,
    "date": coerce_date,
    "bool": coerce_bool,
}


def validate_payload(payload: dict | None, fields: dict[str, Field], *, partial: bool = False) -> dict:
    """
    Validates + normalizes an incoming dict against a field policy.

    Unknown keys are rejected. partial=False enforces required fields;
    partial=True validates only the provided keys.

    Returns:
        Cleaned dict containing only known, coerced fields.

    Raises:
        ValidationError: On the first problem found.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = [k for k, f in fields.items() if f.required and payload.get(k) in (None, "")]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(sorted(missing))}")

    for key in payload:
        if key not in fields:
            raise ValidationError(f"Field not allowed: {key}")

    cleaned: dict = {}
    for key, raw in payload.items():
        spec = fields[key]
        if raw is None:
            if not spec.nullable:
                raise ValidationError(f"{key} cannot be null")
            cleaned[key] = None
            continue

        if spec.kind == "str":
            val = str(raw).strip()
            if not spec.nullable and val == "":
                raise ValidationError(f"{key} cannot be blank")
            if spec.max_length and len(val) > spec.max_length:
                raise ValidationError(f"{key} exceeds max length {spec.max_length}")
            if spec.choices is not None and val not in spec.choices:
                raise ValidationError(
                    f"{key} must be one of: {', '.join(sorted(spec.choices))}"
                )
        else:
            val = _COERCERS[spec.kind](key, raw)
        cleaned[key] = val

    return cleaned


_NAME_TITLES = {"mr", "mrs", "ms", "miss", "mx", "dr", "prof", "sir", "dame", "rev"}


def normalize_person_name(value: str | None) -> str:
    """
    Comparable form of a typed name: case-folded, punctuation and titles dropped.

    "Dr. Jane  O'Neill" -> "jane oneill"
    """
    if not value:
        return ""
    cleaned = "".join(ch for ch in value if ch.isalnum() or ch.isspace())
    words = [w for w in cleaned.casefold().split() if w not in _NAME_TITLES]
    return " ".join(words)


def signature_matches(typed_name: str | None, expected_name: str | None) -> bool:
    expected = normalize_person_name(expected_name)
    return bool(expected) and normalize_person_name(typed_name) == expected
