from __future__ import annotations

from stockroom.errors import ValidationFailure
from stockroom.time_utils import parse_iso_datetime


def arg_bool(args, name: str):
    """?name=true|false -> bool; absent -> None."""
    raw = args.get(name)
    if raw is None or raw == "":
        return None
    value = raw.strip().lower()
    if value in ("true", "1", "yes"):
        return True
    if value in ("false", "0", "no"):
        return False
    raise ValidationFailure(f"{name} must be true or false")


def arg_int(args, name: str):
    raw = args.get(name)
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValidationFailure(f"{name} must be an integer")


def arg_datetime(args, name: str):
    raw = args.get(name)
    if not raw:
        return None
    try:
        return parse_iso_datetime(raw)
    except ValueError:
        raise ValidationFailure(f"{name} must be an ISO-8601 date or datetime")
