from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from sqlalchemy import Boolean, Integer, Numeric, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from stockroom.errors import ValidationFailure
from stockroom.time_utils import coerce_datetime


# Largest amount a Numeric(12, 2) column holds
MAX_MONEY = Decimal("9999999999.99")
CENT = Decimal("0.01")

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: API (camelCase) names clients are allowed to set
    - required_on_create: API names required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def to_column_key(api_name: str) -> str:
    """costPrice -> cost_price"""
    return _CAMEL_RE.sub("_", api_name).lower()


def to_money(value: Any, field: str = "amount") -> Decimal:
    """Coerce JSON numbers/strings to a non-negative 2dp Decimal."""
    if value is None or value == "":
        return Decimal("0.00")
    if isinstance(value, bool):
        raise ValidationFailure(f"{field} must be a number")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationFailure(f"{field} must be a number")
    if not amount.is_finite():
        raise ValidationFailure(f"{field} must be a number")
    if amount < 0:
        raise ValidationFailure(f"{field} cannot be negative")
    if amount > MAX_MONEY:
        raise ValidationFailure(f"{field} exceeds {MAX_MONEY}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def money_json(value: Decimal | None) -> float | None:
    return float(value) if value is not None else None


def to_int(value: Any, field: str, *, minimum: int | None = None) -> int:
    """Strict integer coercion: rejects floats, bools and scientific notation."""
    if isinstance(value, bool):
        raise ValidationFailure(f"{field} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, float):
        if not value.is_integer():
            raise ValidationFailure(f"{field} must be an integer, not a decimal")
        result = int(value)
    elif isinstance(value, str):
        stripped = value.strip()
        if not re.fullmatch(r"-?\d+", stripped):
            raise ValidationFailure(f"{field} must be an integer")
        result = int(stripped)
    else:
        raise ValidationFailure(f"{field} must be an integer")
    if minimum is not None and result < minimum:
        raise ValidationFailure(f"{field} must be at least {minimum}")
    return result


def to_datetime(value: Any, field: str) -> datetime | None:
    try:
        return coerce_datetime(value)
    except ValueError:
        raise ValidationFailure(f"{field} must be an ISO-8601 date or datetime")


def require_choice(value: Any, choices, field: str) -> str:
    if value not in choices:
        raise ValidationFailure(f"Invalid {field}. Must be one of: {', '.join(choices)}")
    return value


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, api_name: str, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Numeric):
        return to_money(value, api_name)

    if isinstance(coltype, Integer):
        return to_int(value, api_name)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in ("true", "false", "1", "0"):
            return value.lower() in ("true", "1")
        raise ValidationFailure(f"{api_name} must be a boolean")

    if isinstance(coltype, DateTime):
        return to_datetime(value, api_name)

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict keyed by column name.

    Keys outside the allowlist are ignored rather than rejected, since the
    frontend echoes whole documents back on update.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationFailure("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if payload.get(f) in (None, ""))
        if missing:
            raise ValidationFailure(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)
    patch: dict = {}

    for api_name, raw in payload.items():
        if api_name not in policy.writable_fields:
            continue
        key = to_column_key(api_name)
        col = cols.get(key)
        if col is None:
            raise ValidationFailure(f"Unknown field: {api_name}")

        if raw is None:
            if not col.nullable:
                raise ValidationFailure(f"{api_name} cannot be null")
            patch[key] = None
            continue

        val = _coerce_value(col, api_name, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationFailure(f"{api_name} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationFailure(f"{api_name} exceeds max length {col.type.length}")

        patch[key] = val

    return patch


def enforce_rules_product(patch: dict, *, is_perishable: bool | None = None, expiry_date=None) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    if "sku" in patch and patch["sku"] is not None:
        patch["sku"] = patch["sku"].upper()
        if " " in patch["sku"]:
            raise ValidationFailure("sku cannot contain spaces")

    if "barcode" in patch and patch["barcode"] == "":
        patch["barcode"] = None

    if patch.get("minimum_stock") is not None and patch["minimum_stock"] < 0:
        raise ValidationFailure("minimumStock must be >= 0")

    perishable = patch.get("is_perishable", is_perishable)
    expiry = patch.get("expiry_date", expiry_date)
    if perishable and expiry is None:
        raise ValidationFailure("expiryDate is required for perishable products")


def enforce_rules_location(patch: dict) -> None:
    from stockroom.models.catalog import LOCATION_TYPES

    if "code" in patch and patch["code"] is not None:
        patch["code"] = patch["code"].upper()
    if "type" in patch:
        require_choice(patch["type"], LOCATION_TYPES, "location type")
    if patch.get("capacity") is not None and patch["capacity"] < 0:
        raise ValidationFailure("capacity must be >= 0")


def enforce_rules_partner(patch: dict) -> None:
    from stockroom.models.partners import CUSTOMER_GROUPS, PAYMENT_TERMS

    if "email" in patch and patch["email"] is not None:
        email = patch["email"].lower()
        if "@" not in email or email.startswith("@") or email.endswith("@"):
            raise ValidationFailure("email must be a valid email address")
        patch["email"] = email
    if "payment_terms" in patch:
        require_choice(patch["payment_terms"], PAYMENT_TERMS, "paymentTerms")
    if "customer_group" in patch:
        require_choice(patch["customer_group"], CUSTOMER_GROUPS, "customerGroup")
