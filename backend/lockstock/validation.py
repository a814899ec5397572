from __future__ import annotations
from datetime import datetime
from decimal import Decimal, InvalidOperation
from lockstock.time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, Numeric, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError
from .quantity_utils import MAX_QUANTITY, parse_quantity


MAX_LEAD_TIME_DAYS = 365


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    - extra_fields: accepted keys that are not columns of the model (handled by the service)
    """
    writable_fields: set[str]
    required_on_create: set[str] | None = None
    extra_fields: set[str] | None = None


MATERIAL_POLICY = ModelValidationPolicy(
    writable_fields={"sku", "name", "description", "uom", "min_stock"},
    required_on_create={"sku", "name"},
)

LOCATION_POLICY = ModelValidationPolicy(
    writable_fields={"name", "code"},
    required_on_create={"name"},
)

SUPPLIER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "email", "phone", "lead_time_days", "payment_terms"},
    required_on_create={"name"},
)

MOVEMENT_POLICY = ModelValidationPolicy(
    writable_fields={
        "material_id",
        "location_id",
        "quantity_delta",
        "reason",
        "note",
        "reference_type",
        "reference_id",
        "idempotency_key",
        "occurred_at",
    },
    required_on_create={"material_id", "location_id", "quantity_delta"},
)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                raise ValidationError(f"{col.key} must be an integer")
            if "e" in stripped.lower():
                raise ValidationError(f"{col.key} must be a plain integer (scientific notation not allowed)")
            if "." in stripped:
                raise ValidationError(f"{col.key} must be an integer (no decimals)")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be an integer")
        if isinstance(value, float):
            raise ValidationError(f"{col.key} must be an integer, not a decimal")
        raise ValidationError(f"{col.key} must be an integer")

    # Quantities - JSON numbers or plain numeric strings, at most three decimals
    if isinstance(coltype, Numeric):
        if isinstance(value, str):
            stripped = value.strip()
            if "e" in stripped.lower():
                raise ValidationError(f"{col.key} must be a plain number (scientific notation not allowed)")
            try:
                value = Decimal(stripped)
            except InvalidOperation:
                raise ValidationError(f"{col.key} must be a number")
        try:
            return parse_quantity(value)
        except ValueError as exc:
            raise ValidationError(f"{col.key} {exc}")

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{col.key} must be a boolean")

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    if isinstance(coltype, (String, Text)):
        if isinstance(value, (dict, list)):
            raise ValidationError(f"{col.key} must be a string")
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
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                details={"missing": missing},
            )

    cols = _columns_by_key(model)
    extra = policy.extra_fields or set()

    for k in payload.keys():
        if k in extra:
            continue
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        if k in extra:
            patch[k] = raw
            continue
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_material(patch: dict) -> None:
    if "min_stock" in patch and patch["min_stock"] is not None:
        min_stock = patch["min_stock"]
        if min_stock < 0:
            raise ValidationError("min_stock must be >= 0")
        if min_stock > MAX_QUANTITY:
            raise ValidationError(f"min_stock cannot exceed {MAX_QUANTITY}")


def enforce_rules_location(patch: dict) -> None:
    # Empty code means "no code"; the unique constraint must not see ""
    if "code" in patch and patch["code"] == "":
        patch["code"] = None


def enforce_rules_supplier(patch: dict) -> None:
    lead_time = patch.get("lead_time_days")
    if lead_time is not None and not 0 <= lead_time <= MAX_LEAD_TIME_DAYS:
        raise ValidationError(f"lead_time_days must be between 0 and {MAX_LEAD_TIME_DAYS}")

    email = patch.get("email")
    if email == "":
        patch["email"] = None
    elif email is not None and "@" not in email:
        raise ValidationError("email must be a valid email address")


def enforce_rules_movement(patch: dict) -> None:
    if "quantity_delta" in patch:
        delta = patch["quantity_delta"]
        if delta is None or delta == 0:
            raise ValidationError("quantity_delta must be non-zero")
        if abs(delta) > MAX_QUANTITY:
            raise ValidationError(f"quantity_delta magnitude cannot exceed {MAX_QUANTITY}")

    if patch.get("idempotency_key") == "":
        patch["idempotency_key"] = None
