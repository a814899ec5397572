# Overview: Purchase order records and the order status state machine.

"""
Purchase Order Service

LIFECYCLE:
1. draft: created together with its lines (an order without lines is invalid)
2. sent: the ONLY manual transition is draft -> sent (manager+)
3. partial / received: derived by receiving from line progress, never requested
4. cancelled: administrative cancellation from draft, sent or partial (manager+)

TERMINAL: received and cancelled accept no further manual or derived change.

Derivation rule (derive_status), applied after every receiving batch:
- every line fully received          -> received
- else any line with received > 0    -> partial
- else                                -> status unchanged

derive_status is a pure function of (status, lines); recomputing it from
unchanged lines always yields the same status.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Iterable

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..errors import Conflict, InvalidArgument, InvalidState, InvalidTransition, NotFound
from ..models import Material, PurchaseOrder, PurchaseOrderLine, Supplier
from ..permissions import ROLE_MANAGER
from .authorization_service import AuthorizationContext, require_min_role
from .concurrency import lock_for_update, run_in_transaction
from lockstock.quantity_utils import ZERO, parse_quantity, quantity_to_json, to_decimal
from lockstock.time_utils import parse_iso_date, utcnow


STATUS_DRAFT = "draft"
STATUS_SENT = "sent"
STATUS_PARTIAL = "partial"
STATUS_RECEIVED = "received"
STATUS_CANCELLED = "cancelled"

PO_STATUSES = (STATUS_DRAFT, STATUS_SENT, STATUS_PARTIAL, STATUS_RECEIVED, STATUS_CANCELLED)
TERMINAL_STATUSES = frozenset({STATUS_RECEIVED, STATUS_CANCELLED})
RECEIVABLE_STATUSES = frozenset({STATUS_SENT, STATUS_PARTIAL})
CANCELLABLE_STATUSES = frozenset({STATUS_DRAFT, STATUS_SENT, STATUS_PARTIAL})

CURRENCIES = ("EUR", "USD")


# =============================================================================
# STATE MACHINE
# =============================================================================

def validate_manual_transition(current: str, requested: str) -> None:
    """
    Validate a caller-requested status change.

    Only draft -> sent is accepted. Everything else (re-sending, skipping to
    partial/received, requesting cancelled, leaving a terminal state) raises
    InvalidTransition naming both states.
    """
    if requested not in PO_STATUSES:
        raise InvalidArgument(
            f"status must be one of: {', '.join(PO_STATUSES)}",
            details={"requested": requested},
        )
    if current != STATUS_DRAFT or requested != STATUS_SENT:
        raise InvalidTransition(current, requested)


def derive_status(current: str, lines: Iterable) -> str:
    """
    Order status implied by line progress.

    lines: objects exposing quantity_ordered and quantity_received.
    """
    if current in TERMINAL_STATUSES:
        return current

    lines = list(lines)
    if not lines:
        return current

    if all(line.quantity_received == line.quantity_ordered for line in lines):
        return STATUS_RECEIVED
    if any(line.quantity_received > 0 for line in lines):
        return STATUS_PARTIAL
    return current


def line_progress(lines: Iterable[PurchaseOrderLine]) -> list[dict]:
    return [
        {
            "id": line.id,
            "quantity_ordered": quantity_to_json(line.quantity_ordered),
            "quantity_received": quantity_to_json(line.quantity_received),
        }
        for line in lines
    ]


def purchase_order_progress(order: PurchaseOrder) -> dict:
    total_ordered = sum((to_decimal(line.quantity_ordered) for line in order.lines), ZERO)
    total_received = sum((to_decimal(line.quantity_received) for line in order.lines), ZERO)
    percentage = min(100, int(round(total_received * 100 / total_ordered))) if total_ordered > ZERO else 0
    return {
        "total_ordered": quantity_to_json(total_ordered),
        "total_received": quantity_to_json(total_received),
        "percentage": percentage,
    }


# =============================================================================
# LOOKUPS
# =============================================================================

def get_purchase_order(org_id: int, purchase_order_id: int, *, lock: bool = False) -> PurchaseOrder:
    """
    Load an order scoped to the organization.

    Raises NotFound when missing or owned by another organization.
    """
    query = db.session.query(PurchaseOrder).filter(
        PurchaseOrder.id == purchase_order_id,
        PurchaseOrder.org_id == org_id,
    )
    if lock:
        query = lock_for_update(query)
    order = query.first()
    if order is None:
        raise NotFound("Purchase order not found.", details={"purchase_order_id": purchase_order_id})
    return order


def get_purchase_order_detail(org_id: int, purchase_order_id: int) -> dict:
    order = get_purchase_order(org_id, purchase_order_id)
    result = order.to_dict()
    result["progress"] = purchase_order_progress(order)
    return result


def list_purchase_orders(
    org_id: int,
    *,
    status: str | None = None,
    supplier_id: int | None = None,
    search: str | None = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[PurchaseOrder], int]:
    """Orders newest first. Returns (items, total count)."""
    if status is not None and status not in PO_STATUSES:
        raise InvalidArgument(f"status must be one of: {', '.join(PO_STATUSES)}")

    query = db.session.query(PurchaseOrder).filter(PurchaseOrder.org_id == org_id)
    if status:
        query = query.filter(PurchaseOrder.status == status)
    if supplier_id:
        query = query.filter(PurchaseOrder.supplier_id == supplier_id)
    if search:
        term = f"%{search.strip()}%"
        query = query.filter(or_(PurchaseOrder.po_number.ilike(term), PurchaseOrder.notes.ilike(term)))

    total = query.count()
    items = query.order_by(
        PurchaseOrder.created_at.desc(),
        PurchaseOrder.id.desc(),
    ).offset(offset).limit(limit).all()
    return items, total


# =============================================================================
# CREATE
# =============================================================================

def _generate_po_number(org_id: int) -> str:
    prefix = current_app.config.get("PO_NUMBER_PREFIX", "PO")
    base = f"{prefix}-{utcnow().strftime('%Y%m%d-%H%M%S')}"
    candidate = base
    suffix = 2
    while db.session.query(PurchaseOrder.id).filter_by(org_id=org_id, po_number=candidate).first():
        candidate = f"{base}-{suffix}"
        suffix += 1
    return candidate


def _clean_text(value, field: str, *, max_length: int | None = None) -> str | None:
    """Strip an optional text field; blank means absent."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidArgument(f"{field} must be a string", details={"field": field})
    value = value.strip()
    if not value:
        return None
    if max_length is not None and len(value) > max_length:
        raise InvalidArgument(f"{field} exceeds max length {max_length}", details={"field": field})
    return value


def _clean_expected_at(value) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise InvalidArgument("expected_at must be a YYYY-MM-DD date", details={"field": "expected_at"})
    try:
        return parse_iso_date(value)
    except ValueError:
        raise InvalidArgument("expected_at must be a YYYY-MM-DD date", details={"field": "expected_at"})


def _validate_lines(org_id: int, lines) -> list[dict]:
    if not isinstance(lines, list) or not lines:
        raise InvalidArgument("A purchase order needs at least one line.")

    cleaned = []
    seen_materials: set[int] = set()
    for index, raw in enumerate(lines):
        if not isinstance(raw, dict):
            raise InvalidArgument(f"lines[{index}] must be an object")

        material_id = raw.get("material_id")
        quantity = raw.get("quantity_ordered")
        unit_price = raw.get("unit_price_cents")

        if isinstance(material_id, bool) or not isinstance(material_id, int):
            raise InvalidArgument(f"lines[{index}].material_id must be an integer")
        try:
            quantity = parse_quantity(quantity)
        except ValueError as exc:
            raise InvalidArgument(f"lines[{index}].quantity_ordered {exc}")
        if quantity <= ZERO:
            raise InvalidArgument(f"lines[{index}].quantity_ordered must be positive")
        if unit_price is not None and (
            isinstance(unit_price, bool) or not isinstance(unit_price, int) or unit_price < 0
        ):
            raise InvalidArgument(f"lines[{index}].unit_price_cents must be a non-negative integer")
        if material_id in seen_materials:
            raise InvalidArgument(
                f"Material {material_id} appears on more than one line. Combine the quantities instead."
            )
        seen_materials.add(material_id)

        material = db.session.get(Material, material_id)
        if material is None or material.org_id != org_id:
            raise NotFound("Material not found.", details={"material_id": material_id})
        if not material.is_active:
            raise InvalidState("Material is inactive.", details={"material_id": material_id})

        cleaned.append({
            "material_id": material_id,
            "quantity_ordered": quantity,
            "unit_price_cents": unit_price,
        })
    return cleaned


def create_purchase_order(
    ctx: AuthorizationContext,
    *,
    supplier_id: int,
    lines: list[dict],
    po_number: str | None = None,
    currency: str = "EUR",
    expected_at=None,
    notes: str | None = None,
) -> PurchaseOrder:
    """
    Create a draft purchase order and its lines in one transaction.

    Requires manager role or higher.

    Args:
        supplier_id: Supplier of the caller's organization
        lines: [{material_id, quantity_ordered, unit_price_cents?}], at least one
        po_number: Unique within the organization; generated when omitted
        currency: Display label (EUR or USD); amounts are never converted
        expected_at: Expected delivery date (date or YYYY-MM-DD)

    Raises:
        InvalidArgument, NotFound, InvalidState, Conflict (duplicate po_number)
    """
    require_min_role(ctx, ROLE_MANAGER)

    if not isinstance(currency, str) or currency not in CURRENCIES:
        raise InvalidArgument(f"currency must be one of: {', '.join(CURRENCIES)}")

    expected_at = _clean_expected_at(expected_at)
    po_number = _clean_text(po_number, "po_number", max_length=100)
    notes = _clean_text(notes, "notes")

    def _op():
        supplier = db.session.get(Supplier, supplier_id)
        if supplier is None or supplier.org_id != ctx.org_id:
            raise NotFound("Supplier not found.", details={"supplier_id": supplier_id})
        if not supplier.is_active:
            raise InvalidState("Supplier is inactive.", details={"supplier_id": supplier_id})

        cleaned_lines = _validate_lines(ctx.org_id, lines)

        number = po_number
        if number is None:
            number = _generate_po_number(ctx.org_id)
        elif db.session.query(PurchaseOrder.id).filter_by(org_id=ctx.org_id, po_number=number).first():
            raise Conflict(f"Purchase order number {number} already exists.")

        order = PurchaseOrder(
            org_id=ctx.org_id,
            supplier_id=supplier.id,
            po_number=number,
            status=STATUS_DRAFT,
            currency=currency,
            expected_at=expected_at,
            notes=notes,
            created_by_user_id=ctx.user_id,
        )
        db.session.add(order)
        db.session.flush()

        for line in cleaned_lines:
            db.session.add(PurchaseOrderLine(
                purchase_order_id=order.id,
                org_id=ctx.org_id,
                quantity_received=0,
                **line,
            ))

        db.session.commit()
        current_app.logger.info(
            "purchase order created id=%s po_number=%s org_id=%s lines=%d",
            order.id, order.po_number, ctx.org_id, len(cleaned_lines),
        )
        return order

    return run_in_transaction(_op)


# =============================================================================
# TRANSITIONS
# =============================================================================

def transition_status(ctx: AuthorizationContext, purchase_order_id: int, requested_status: str) -> PurchaseOrder:
    """
    Apply a manual status transition (only draft -> sent is legal).

    Requires manager role or higher.

    Raises:
        Forbidden, NotFound, InvalidArgument, InvalidTransition
    """
    require_min_role(ctx, ROLE_MANAGER)

    def _op():
        order = get_purchase_order(ctx.org_id, purchase_order_id, lock=True)
        validate_manual_transition(order.status, requested_status)

        previous = order.status
        order.status = requested_status
        order.sent_at = utcnow()
        order.sent_by_user_id = ctx.user_id
        db.session.commit()

        current_app.logger.info(
            "purchase order %s status %s -> %s by user_id=%s",
            order.po_number, previous, requested_status, ctx.user_id,
        )
        return order

    return run_in_transaction(_op)


def cancel_purchase_order(
    ctx: AuthorizationContext,
    purchase_order_id: int,
    *,
    reason: str | None = None,
) -> PurchaseOrder:
    """
    Administrative cancellation from draft, sent or partial.

    Already-received quantities and their ledger movements stay in place.

    Raises:
        Forbidden, NotFound, InvalidState (received or already cancelled)
    """
    require_min_role(ctx, ROLE_MANAGER)

    def _op():
        order = get_purchase_order(ctx.org_id, purchase_order_id, lock=True)
        if order.status not in CANCELLABLE_STATUSES:
            raise InvalidState(
                f"Cannot cancel a {order.status} purchase order.",
                details={"status": order.status},
            )

        previous = order.status
        order.status = STATUS_CANCELLED
        order.cancelled_at = utcnow()
        order.cancelled_by_user_id = ctx.user_id
        order.cancellation_reason = reason
        db.session.commit()

        current_app.logger.info(
            "purchase order %s cancelled from %s by user_id=%s",
            order.po_number, previous, ctx.user_id,
        )
        return order

    return run_in_transaction(_op)
