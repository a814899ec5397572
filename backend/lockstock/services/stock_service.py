# Overview: Stock ledger; appends signed movements and derives balances from them.

"""
Lockstock Stock Ledger Invariants (authoritative)

Inventory model:
- Inventory is ledger-derived from StockMovement rows; there is no mutable
  quantity column anywhere.
- balance(material, location) = SUM(quantity_delta) over that pair's movements.
- balance(material) = the same sum across every location of the organization.
- A material with no movements has balance 0 (never an error).

Movement rules:
- quantity_delta is a non-zero decimal with at most three places (2.5 m, -0.75 t).
- reason is one of MOVEMENT_REASONS.
- material and location must belong to the caller's organization; a foreign
  id is reported as NotFound, exactly like a missing one.
- Movements are append-only. Corrections are new rows with reason 'correction'.
- An idempotency_key replay with the same payload returns the original row;
  the same key with a different payload is a Conflict.

Time semantics:
- occurred_at is business time (UTC-naive); created_at is system time.
- occurred_at may not be more than two minutes in the future.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import Conflict, InvalidArgument, InvalidState, NotFound
from ..models import Location, Material, StockMovement
from ..permissions import ROLE_MEMBER
from .authorization_service import AuthorizationContext, require_min_role
from .concurrency import run_in_transaction
from lockstock.quantity_utils import ZERO, parse_quantity, quantity_to_json, to_decimal
from lockstock.time_utils import parse_iso_datetime, utcnow


REASON_ADJUSTMENT = "adjustment"
REASON_TRANSFER_IN = "transfer_in"
REASON_TRANSFER_OUT = "transfer_out"
REASON_PURCHASE_RECEIVE = "purchase_receive"
REASON_CORRECTION = "correction"

MOVEMENT_REASONS = (
    REASON_ADJUSTMENT,
    REASON_TRANSFER_IN,
    REASON_TRANSFER_OUT,
    REASON_PURCHASE_RECEIVE,
    REASON_CORRECTION,
)


def _parse_occurred_at(value) -> datetime:
    """
    Normalize occurred_at to canonical UTC-naive datetime.

    None -> now; aware datetimes are converted to UTC; strings are ISO-8601.
    """
    if value is None:
        return utcnow()

    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    if isinstance(value, str):
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            dt = None
        if dt is None:
            raise InvalidArgument("occurred_at must be an ISO-8601 datetime")
        return dt

    raise InvalidArgument("occurred_at must be an ISO-8601 datetime")


def get_material_in_org(org_id: int, material_id: int, *, require_active: bool = False) -> Material:
    material = db.session.get(Material, material_id)
    if material is None or material.org_id != org_id:
        if material is not None:
            current_app.logger.warning(
                "cross-tenant material lookup material_id=%s org_id=%s", material_id, org_id
            )
        raise NotFound("Material not found.", details={"material_id": material_id})
    if require_active and not material.is_active:
        raise InvalidState("Material is inactive.", details={"material_id": material_id})
    return material


def get_location_in_org(org_id: int, location_id: int, *, require_active: bool = False) -> Location:
    location = db.session.get(Location, location_id)
    if location is None or location.org_id != org_id:
        if location is not None:
            current_app.logger.warning(
                "cross-tenant location lookup location_id=%s org_id=%s", location_id, org_id
            )
        raise NotFound("Location not found.", details={"location_id": location_id})
    if require_active and not location.is_active:
        raise InvalidState("Location is inactive.", details={"location_id": location_id})
    return location


def validate_quantity_delta(value) -> Decimal:
    try:
        delta = parse_quantity(value)
    except ValueError as exc:
        raise InvalidArgument(f"quantity_delta {exc}", details={"quantity_delta": str(value)})
    if delta == ZERO:
        raise InvalidArgument("quantity_delta cannot be zero")
    return delta


def append_movement(
    *,
    org_id: int,
    material_id: int,
    location_id: int,
    quantity_delta: Decimal,
    reason: str,
    created_by_user_id: int | None,
    occurred_at: datetime | None = None,
    note: str | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    receipt_id: int | None = None,
    idempotency_key: str | None = None,
) -> StockMovement:
    """
    Stage one movement row in the current transaction. Does not commit.

    Callers that own a larger unit of work (receiving) use this directly and
    have already validated material/location ownership.
    """
    quantity_delta = validate_quantity_delta(quantity_delta)
    if reason not in MOVEMENT_REASONS:
        raise InvalidArgument(f"reason must be one of: {', '.join(MOVEMENT_REASONS)}")

    movement = StockMovement(
        org_id=org_id,
        material_id=material_id,
        location_id=location_id,
        quantity_delta=quantity_delta,
        reason=reason,
        note=note,
        reference_type=reference_type,
        reference_id=reference_id,
        receipt_id=receipt_id,
        idempotency_key=idempotency_key,
        created_by_user_id=created_by_user_id,
        occurred_at=occurred_at or utcnow(),
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def _find_by_idempotency_key(org_id: int, key: str) -> StockMovement | None:
    return db.session.query(StockMovement).filter_by(org_id=org_id, idempotency_key=key).first()


def _replay_or_conflict(existing: StockMovement, *, material_id, location_id, quantity_delta, reason) -> StockMovement:
    same = (
        existing.material_id == material_id
        and existing.location_id == location_id
        and existing.quantity_delta == quantity_delta
        and existing.reason == reason
    )
    if not same:
        raise Conflict(
            "idempotency_key was already used for a different movement.",
            details={"movement_id": existing.id},
        )
    return existing


def record_movement(
    ctx: AuthorizationContext,
    *,
    material_id: int,
    location_id: int,
    quantity_delta: Decimal,
    reason: str = REASON_ADJUSTMENT,
    note: str | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    idempotency_key: str | None = None,
    occurred_at=None,
) -> StockMovement:
    """
    Append one immutable movement to the ledger and commit.

    Requires member role or higher.

    Raises:
        Forbidden: actor below member
        InvalidArgument: zero or malformed delta, unknown reason, bad occurred_at
        NotFound: material or location missing or in another organization
        InvalidState: material or location deactivated
        Conflict: idempotency_key reused with a different payload
    """
    require_min_role(ctx, ROLE_MEMBER)
    quantity_delta = validate_quantity_delta(quantity_delta)
    if reason not in MOVEMENT_REASONS:
        raise InvalidArgument(f"reason must be one of: {', '.join(MOVEMENT_REASONS)}")

    occurred_dt = _parse_occurred_at(occurred_at)
    if occurred_dt > utcnow() + timedelta(minutes=2):
        raise InvalidArgument("occurred_at cannot be in the future")

    payload = dict(
        material_id=material_id,
        location_id=location_id,
        quantity_delta=quantity_delta,
        reason=reason,
    )

    def _op():
        if idempotency_key:
            existing = _find_by_idempotency_key(ctx.org_id, idempotency_key)
            if existing is not None:
                return _replay_or_conflict(existing, **payload)

        get_material_in_org(ctx.org_id, material_id, require_active=True)
        get_location_in_org(ctx.org_id, location_id, require_active=True)

        movement = append_movement(
            org_id=ctx.org_id,
            created_by_user_id=ctx.user_id,
            occurred_at=occurred_dt,
            note=note,
            reference_type=reference_type,
            reference_id=reference_id,
            idempotency_key=idempotency_key,
            **payload,
        )
        db.session.commit()
        return movement

    try:
        return run_in_transaction(_op)
    except IntegrityError:
        # Lost a race on the idempotency key; the winner's row is now visible
        if not idempotency_key:
            raise
        existing = _find_by_idempotency_key(ctx.org_id, idempotency_key)
        if existing is None:
            raise
        return _replay_or_conflict(existing, **payload)


def sum_movements(org_id: int, material_id: int, location_id: int | None = None) -> Decimal:
    """Raw SUM(quantity_delta) with no ownership checks."""
    q = db.session.query(
        func.coalesce(func.sum(StockMovement.quantity_delta), 0)
    ).filter(
        StockMovement.org_id == org_id,
        StockMovement.material_id == material_id,
    )
    if location_id is not None:
        q = q.filter(StockMovement.location_id == location_id)
    return to_decimal(q.scalar())


def get_balance(org_id: int, material_id: int, location_id: int | None = None) -> Decimal:
    """
    Current on-hand quantity for a material, optionally at one location.

    Returns 0 when there are no movements. Raises NotFound when the material
    (or location) is missing or belongs to another organization.
    """
    get_material_in_org(org_id, material_id)
    if location_id is not None:
        get_location_in_org(org_id, location_id)
    return sum_movements(org_id, material_id, location_id)


def get_balances_by_location(org_id: int, material_id: int) -> list[dict]:
    """Per-location balances for a material; locations netting to zero are omitted."""
    get_material_in_org(org_id, material_id)

    rows = db.session.query(
        StockMovement.location_id,
        Location.name,
        func.sum(StockMovement.quantity_delta).label("quantity"),
    ).join(
        Location, Location.id == StockMovement.location_id
    ).filter(
        StockMovement.org_id == org_id,
        StockMovement.material_id == material_id,
    ).group_by(
        StockMovement.location_id, Location.name
    ).order_by(Location.name.asc()).all()

    return [
        {"location_id": row.location_id, "location_name": row.name, "quantity": quantity_to_json(row.quantity)}
        for row in rows
        if to_decimal(row.quantity) != ZERO
    ]


def get_total_quantities(org_id: int, material_ids: list[int] | None = None) -> dict[int, Decimal]:
    """material_id -> balance summed across all locations, for every material with movements."""
    q = db.session.query(
        StockMovement.material_id,
        func.sum(StockMovement.quantity_delta).label("quantity"),
    ).filter(StockMovement.org_id == org_id)
    if material_ids is not None:
        if not material_ids:
            return {}
        q = q.filter(StockMovement.material_id.in_(material_ids))
    rows = q.group_by(StockMovement.material_id).all()
    return {row.material_id: to_decimal(row.quantity) for row in rows}


def get_primary_locations(org_id: int, material_ids: list[int]) -> dict[int, str]:
    """material_id -> name of the location holding the largest positive balance."""
    if not material_ids:
        return {}
    rows = db.session.query(
        StockMovement.material_id,
        Location.name,
        func.sum(StockMovement.quantity_delta).label("quantity"),
    ).join(
        Location, Location.id == StockMovement.location_id
    ).filter(
        StockMovement.org_id == org_id,
        StockMovement.material_id.in_(material_ids),
    ).group_by(StockMovement.material_id, Location.id, Location.name).all()

    best: dict[int, tuple[Decimal, str]] = {}
    for row in rows:
        qty = to_decimal(row.quantity)
        if qty <= 0:
            continue
        current = best.get(row.material_id)
        if current is None or qty > current[0] or (qty == current[0] and row.name < current[1]):
            best[row.material_id] = (qty, row.name)
    return {material_id: name for material_id, (_, name) in best.items()}


def list_movements(
    org_id: int,
    *,
    material_id: int | None = None,
    location_id: int | None = None,
    reason: str | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[StockMovement], int]:
    """Movements newest first. Returns (items, total count)."""
    if material_id is not None:
        get_material_in_org(org_id, material_id)
    if location_id is not None:
        get_location_in_org(org_id, location_id)
    if reason is not None and reason not in MOVEMENT_REASONS:
        raise InvalidArgument(f"reason must be one of: {', '.join(MOVEMENT_REASONS)}")

    query = db.session.query(StockMovement).filter(StockMovement.org_id == org_id)
    if material_id is not None:
        query = query.filter(StockMovement.material_id == material_id)
    if location_id is not None:
        query = query.filter(StockMovement.location_id == location_id)
    if reason is not None:
        query = query.filter(StockMovement.reason == reason)
    if reference_type is not None:
        query = query.filter(StockMovement.reference_type == reference_type)
    if reference_id is not None:
        query = query.filter(StockMovement.reference_id == reference_id)

    total = query.count()
    items = query.order_by(
        StockMovement.occurred_at.desc(),
        StockMovement.id.desc(),
    ).offset(offset).limit(limit).all()
    return items, total
