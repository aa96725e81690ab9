from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from sqlalchemy import Boolean, Date, DateTime, Enum, Integer, Numeric, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError
from .money import to_money
from .time_utils import parse_iso_date, parse_iso_datetime

# Largest money amount accepted from clients (fits Numeric(12, 2))
MAX_AMOUNT = 9_999_999_999


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Enums before String: sqlalchemy.Enum subclasses String
    if isinstance(coltype, Enum) and coltype.enum_class is not None:
        enum_cls = coltype.enum_class
        if isinstance(value, enum_cls):
            return value
        if isinstance(value, str):
            try:
                return enum_cls(value.strip().upper())
            except ValueError:
                pass
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"Invalid {col.key}", [f"{col.key} must be one of {allowed}"])

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped or 'e' in stripped.lower() or '.' in stripped:
                raise ValidationError(f"Invalid {col.key}", [f"{col.key} must be a plain integer"])
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"Invalid {col.key}", [f"{col.key} must be an integer"])
        raise ValidationError(f"Invalid {col.key}", [f"{col.key} must be an integer"])

    # Money
    if isinstance(coltype, Numeric):
        try:
            amount = to_money(value)
        except ValueError:
            raise ValidationError(f"Invalid {col.key}", [f"{col.key} must be a number"])
        if abs(amount) > MAX_AMOUNT:
            raise ValidationError(f"Invalid {col.key}", [f"{col.key} cannot exceed {MAX_AMOUNT}"])
        return amount

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"Invalid {col.key}", [f"{col.key} must be true or false"])

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                dt = None
            if dt is not None:
                return dt
        raise ValidationError(f"Invalid {col.key}", [f"{col.key} must be an ISO-8601 datetime"])

    if isinstance(coltype, Date):
        if isinstance(value, date):
            return value
        if isinstance(value, str):
            try:
                d = parse_iso_date(value)
            except ValueError:
                d = None
            if d is not None:
                return d
        raise ValidationError(f"Invalid {col.key}", [f"{col.key} must be a YYYY-MM-DD date"])

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        if isinstance(value, (dict, list)):
            raise ValidationError(f"Invalid {col.key}", [f"{col.key} must be a string"])
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool = False,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned dict with only writable fields.

    Unlike the service layer, all problems are collected and reported in one
    ValidationError.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload", ["body must be a JSON object"])

    errors: list = []

    required = policy.required_on_create or set()
    if not partial:
        for f in sorted(required):
            if f not in payload:
                errors.append(f"{f} is required")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields or k not in cols:
            errors.append(f"Field not allowed: {k}")

    patch: dict = {}
    for k, raw in payload.items():
        if k not in policy.writable_fields or k not in cols:
            continue
        col = cols[k]

        if raw is None:
            if not col.nullable:
                errors.append(f"{k} cannot be null")
            else:
                patch[k] = None
            continue

        try:
            val = _coerce_value(col, raw)
        except ValidationError as e:
            errors.extend(e.details)
            continue

        if isinstance(col.type, (String, Text)) and not isinstance(col.type, Enum) and isinstance(val, str):
            if not col.nullable and val == "":
                errors.append(f"{k} cannot be blank")
                continue
            if isinstance(col.type, String) and col.type.length and len(val) > col.type.length:
                errors.append(f"{k} exceeds max length {col.type.length}")
                continue

        patch[k] = val

    if errors:
        raise ValidationError("Invalid payload", errors)
    return patch


def query_int(args, name: str, *, default: int | None = None, minimum: int | None = None, maximum: int | None = None) -> int | None:
    """Integer query-string parameter; missing or blank gives `default`."""
    raw = args.get(name)
    if raw is None or str(raw).strip() == "":
        return default
    try:
        value = int(str(raw).strip())
    except ValueError:
        raise ValidationError(f"Invalid {name}", [f"{name} must be an integer"])
    if minimum is not None and value < minimum:
        raise ValidationError(f"Invalid {name}", [f"{name} must be >= {minimum}"])
    if maximum is not None and value > maximum:
        raise ValidationError(f"Invalid {name}", [f"{name} must be <= {maximum}"])
    return value


def query_date_or_datetime(args, name: str):
    """
    Date-ish query-string parameter.

    "YYYY-MM-DD" gives a date (whole-day semantics downstream); anything
    longer is parsed as an ISO-8601 datetime.
    """
    raw = args.get(name)
    if raw is None or str(raw).strip() == "":
        return None
    s = str(raw).strip()
    try:
        if len(s) == 10:
            return parse_iso_date(s)
        return parse_iso_datetime(s)
    except ValueError:
        raise ValidationError(f"Invalid {name}", [f"{name} must be an ISO-8601 date or datetime"])


def query_date(args, name: str) -> date | None:
    raw = args.get(name)
    if raw is None or str(raw).strip() == "":
        return None
    try:
        return parse_iso_date(str(raw))
    except ValueError:
        raise ValidationError(f"Invalid {name}", [f"{name} must be a YYYY-MM-DD date"])
