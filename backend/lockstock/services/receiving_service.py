# Overview: Applies receiving batches to purchase orders and feeds the stock ledger.

"""
Receiving Service

WHY: Goods arriving against a purchase order must move three things together:
line progress, the order's derived status and the stock ledger. A batch is
all-or-nothing; a single bad receipt rejects the whole batch and nothing is
written.

PROCEDURE (one transaction):
1. Lock the order row (scoped to the organization); status must be sent/partial
2. Validate every receipt: positive quantity (up to three decimals), line on this order,
   active location of this organization, and
   quantity_received + SUM(batch increments for the line) <= quantity_ordered
3. Write a receipt header, apply increments, append one purchase_receive
   movement per receipt
4. Re-derive the order status from all of its lines
5. Commit once

Over-receipts raise QuantityExceedsOrdered; quantities are never clamped.

CONCURRENCY: FOR UPDATE on the order row plus version_id on order and lines.
The order row is always touched (updated_at) so two batches on the same order
can never both commit against the same version. Losers are retried by
run_in_transaction and re-validate against fresh rows.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field, replace
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import Conflict, InvalidArgument, InvalidState, NotFound, QuantityExceedsOrdered
from ..models import PurchaseOrderLine, PurchaseOrderReceipt
from ..permissions import ROLE_MEMBER
from .authorization_service import AuthorizationContext, require_min_role
from .concurrency import run_in_transaction
from .purchase_order_service import (
    RECEIVABLE_STATUSES,
    derive_status,
    get_purchase_order,
    line_progress,
)
from .stock_service import REASON_PURCHASE_RECEIVE, append_movement, get_location_in_org
from lockstock.quantity_utils import ZERO, parse_quantity, to_decimal
from lockstock.time_utils import utcnow


REFERENCE_TYPE_PURCHASE_ORDER = "purchase_order"


@dataclass(frozen=True)
class ReceiptItem:
    line_id: int
    location_id: int
    quantity: Decimal


@dataclass
class ReceivingResult:
    status: str
    lines: list[dict] = field(default_factory=list)
    receipt_id: int | None = None
    replayed: bool = False

    def to_dict(self) -> dict:
        return {"status": self.status, "lines": self.lines}


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def parse_receipts(raw) -> list[ReceiptItem]:
    """
    Turn the wire shape [{po_line_id, location_id, quantity_received}] into
    ReceiptItems. Raises InvalidArgument on an empty batch or malformed entry.
    """
    if not isinstance(raw, list) or not raw:
        raise InvalidArgument("receipts must be a non-empty list")

    items = []
    for index, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise InvalidArgument(f"receipts[{index}] must be an object")
        line_id = entry.get("po_line_id")
        location_id = entry.get("location_id")
        quantity = entry.get("quantity_received")
        if not _is_int(line_id):
            raise InvalidArgument(f"receipts[{index}].po_line_id must be an integer")
        if not _is_int(location_id):
            raise InvalidArgument(f"receipts[{index}].location_id must be an integer")
        items.append(ReceiptItem(line_id=line_id, location_id=location_id, quantity=quantity))
    return items


def _validate_quantities(items: list[ReceiptItem]) -> list[ReceiptItem]:
    """Normalize every quantity to a positive Decimal; the whole batch fails on the first bad one."""
    validated = []
    for item in items:
        try:
            quantity = parse_quantity(item.quantity)
        except ValueError as exc:
            raise InvalidArgument(
                f"quantity_received {exc}",
                details={"line_id": item.line_id, "quantity_received": str(item.quantity)},
            )
        if quantity <= ZERO:
            raise InvalidArgument(
                "quantity_received must be positive",
                details={"line_id": item.line_id, "quantity_received": str(item.quantity)},
            )
        validated.append(replace(item, quantity=quantity))
    return validated


def _find_receipt(org_id: int, key: str) -> PurchaseOrderReceipt | None:
    return db.session.query(PurchaseOrderReceipt).filter_by(org_id=org_id, idempotency_key=key).first()


def _replay(org_id: int, purchase_order_id: int, receipt: PurchaseOrderReceipt) -> ReceivingResult:
    if receipt.purchase_order_id != purchase_order_id:
        raise Conflict(
            "idempotency_key was already used for another purchase order.",
            details={"purchase_order_id": receipt.purchase_order_id},
        )
    order = get_purchase_order(org_id, purchase_order_id)
    return ReceivingResult(
        status=order.status,
        lines=line_progress(order.lines),
        receipt_id=receipt.id,
        replayed=True,
    )


def receive_purchase_order(
    ctx: AuthorizationContext,
    purchase_order_id: int,
    receipts: list[ReceiptItem],
    *,
    idempotency_key: str | None = None,
) -> ReceivingResult:
    """
    Apply a receiving batch to a purchase order.

    Requires member role or higher.

    Args:
        purchase_order_id: Order of the caller's organization
        receipts: Non-empty list of ReceiptItem (see parse_receipts)
        idempotency_key: Optional client key; a replay on the same order
            returns current progress without applying anything

    Returns:
        ReceivingResult with the derived status and every line's progress

    Raises:
        Forbidden: actor below member
        InvalidArgument: empty batch or non-positive quantity
        NotFound: order, line or location missing / not in this org or order
        InvalidState: order not sent/partial, or location inactive
        QuantityExceedsOrdered: a line would be received past its ordered quantity
        Conflict: idempotency_key already used for another order
    """
    require_min_role(ctx, ROLE_MEMBER)

    if not receipts:
        raise InvalidArgument("receipts must be a non-empty list")
    receipts = _validate_quantities(receipts)

    def _op():
        if idempotency_key:
            existing = _find_receipt(ctx.org_id, idempotency_key)
            if existing is not None:
                return _replay(ctx.org_id, purchase_order_id, existing)

        order = get_purchase_order(ctx.org_id, purchase_order_id, lock=True)
        if order.status not in RECEIVABLE_STATUSES:
            raise InvalidState(
                f"Cannot receive against a {order.status} purchase order.",
                details={"status": order.status},
            )

        lines_by_id = {line.id: line for line in order.lines}

        # Batch increments summed per line, in first-seen order
        increments: OrderedDict[int, Decimal] = OrderedDict()
        for item in receipts:
            line = lines_by_id.get(item.line_id)
            if line is None:
                raise NotFound(
                    "Purchase order line not found on this order.",
                    details={"line_id": item.line_id, "purchase_order_id": order.id},
                )
            get_location_in_org(ctx.org_id, item.location_id, require_active=True)
            increments[line.id] = increments.get(line.id, ZERO) + item.quantity

        for line_id, increment in increments.items():
            line = lines_by_id[line_id]
            overflow = to_decimal(line.quantity_received) + increment - to_decimal(line.quantity_ordered)
            if overflow > 0:
                raise QuantityExceedsOrdered(
                    line_id,
                    overflow,
                    quantity_ordered=line.quantity_ordered,
                    quantity_received=line.quantity_received,
                )

        status_before = order.status
        receipt = PurchaseOrderReceipt(
            org_id=ctx.org_id,
            purchase_order_id=order.id,
            received_by_user_id=ctx.user_id,
            status_before=status_before,
            status_after=status_before,
            total_quantity=sum(increments.values(), ZERO),
            idempotency_key=idempotency_key,
        )
        db.session.add(receipt)
        db.session.flush()

        now = utcnow()
        for item in receipts:
            line = lines_by_id[item.line_id]
            append_movement(
                org_id=ctx.org_id,
                material_id=line.material_id,
                location_id=item.location_id,
                quantity_delta=item.quantity,
                reason=REASON_PURCHASE_RECEIVE,
                created_by_user_id=ctx.user_id,
                occurred_at=now,
                note=f"Received on {order.po_number}",
                reference_type=REFERENCE_TYPE_PURCHASE_ORDER,
                reference_id=order.id,
                receipt_id=receipt.id,
            )

        for line_id, increment in increments.items():
            lines_by_id[line_id].quantity_received += increment

        order.status = derive_status(order.status, order.lines)
        order.updated_at = now
        receipt.status_after = order.status

        db.session.commit()

        current_app.logger.info(
            "purchase order %s received %s unit(s) on %d line(s) status %s -> %s by user_id=%s",
            order.po_number, receipt.total_quantity, len(increments),
            status_before, order.status, ctx.user_id,
        )
        return ReceivingResult(
            status=order.status,
            lines=line_progress(order.lines),
            receipt_id=receipt.id,
        )

    try:
        return run_in_transaction(_op)
    except IntegrityError:
        # Lost a race on the idempotency key; replay against the winner
        if not idempotency_key:
            raise
        existing = _find_receipt(ctx.org_id, idempotency_key)
        if existing is None:
            raise
        return _replay(ctx.org_id, purchase_order_id, existing)


def list_receipts(org_id: int, purchase_order_id: int) -> list[PurchaseOrderReceipt]:
    get_purchase_order(org_id, purchase_order_id)
    return db.session.query(PurchaseOrderReceipt).filter_by(
        org_id=org_id, purchase_order_id=purchase_order_id
    ).order_by(PurchaseOrderReceipt.id.asc()).all()
