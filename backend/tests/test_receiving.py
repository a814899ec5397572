# Overview: Pytest coverage for purchase order receiving and its ledger side effects.

"""
Receiving Tests

Verifies:
- Receipts drive derived status: sent -> partial -> received
- Over-receipts raise QuantityExceedsOrdered and are never clamped
- Fractional quantities are received and compared exactly
- A batch is all-or-nothing: no line, movement or status change on failure
- Only sent/partial orders accept receipts
- Duplicate lines in one batch are summed before the overflow check
- Every receipt writes one purchase_receive movement linked to the order
"""

from decimal import Decimal

import pytest

from lockstock.errors import (
    Conflict,
    Forbidden,
    InvalidArgument,
    InvalidState,
    NotFound,
    QuantityExceedsOrdered,
)
from lockstock.models import PurchaseOrderLine, PurchaseOrderReceipt, StockMovement
from lockstock.services import purchase_order_service as po_service
from lockstock.services import stock_service
from lockstock.services.purchase_order_service import (
    STATUS_CANCELLED,
    STATUS_DRAFT,
    STATUS_PARTIAL,
    STATUS_RECEIVED,
    STATUS_SENT,
)
from lockstock.services.receiving_service import (
    ReceiptItem,
    list_receipts,
    parse_receipts,
    receive_purchase_order,
)
from lockstock.services.stock_service import REASON_PURCHASE_RECEIVE


@pytest.fixture
def sent_po(db_session, manager_ctx, supplier_a, material_a, material_a2):
    """Order with line A: 10 and line B: 5, already sent."""
    order = po_service.create_purchase_order(
        manager_ctx,
        supplier_id=supplier_a.id,
        lines=[
            {"material_id": material_a.id, "quantity_ordered": 10},
            {"material_id": material_a2.id, "quantity_ordered": 5},
        ],
    )
    return po_service.transition_status(manager_ctx, order.id, STATUS_SENT)


def _lines(order):
    line_a, line_b = order.lines
    return line_a, line_b


def _received(db_session, line_id):
    return db_session.get(PurchaseOrderLine, line_id).quantity_received


class TestReceivingLifecycle:

    def test_partial_then_received(self, db_session, sent_po, member_ctx, location_a, material_a, material_a2):
        line_a, line_b = _lines(sent_po)

        result = receive_purchase_order(member_ctx, sent_po.id, [ReceiptItem(line_a.id, location_a.id, 10)])

        assert result.status == STATUS_PARTIAL
        assert result.lines == [
            {"id": line_a.id, "quantity_ordered": 10, "quantity_received": 10},
            {"id": line_b.id, "quantity_ordered": 5, "quantity_received": 0},
        ]
        assert stock_service.get_balance(member_ctx.org_id, material_a.id, location_a.id) == 10

        result = receive_purchase_order(member_ctx, sent_po.id, [ReceiptItem(line_b.id, location_a.id, 5)])

        assert result.status == STATUS_RECEIVED
        assert result.to_dict()["lines"][1]["quantity_received"] == 5
        assert stock_service.get_balance(member_ctx.org_id, material_a2.id) == 5

    def test_received_order_rejects_more_receipts(self, db_session, sent_po, member_ctx, location_a):
        line_a, line_b = _lines(sent_po)
        receive_purchase_order(
            member_ctx,
            sent_po.id,
            [ReceiptItem(line_a.id, location_a.id, 10), ReceiptItem(line_b.id, location_a.id, 5)],
        )

        with pytest.raises(InvalidState):
            receive_purchase_order(member_ctx, sent_po.id, [ReceiptItem(line_a.id, location_a.id, 1)])

    def test_over_receipt_rejected_not_clamped(self, db_session, sent_po, member_ctx, location_a, material_a):
        line_a, _ = _lines(sent_po)
        receive_purchase_order(member_ctx, sent_po.id, [ReceiptItem(line_a.id, location_a.id, 8)])

        with pytest.raises(QuantityExceedsOrdered) as exc:
            receive_purchase_order(member_ctx, sent_po.id, [ReceiptItem(line_a.id, location_a.id, 3)])

        assert exc.value.line_id == line_a.id
        assert exc.value.overflow == 1
        assert _received(db_session, line_a.id) == 8
        assert stock_service.get_balance(member_ctx.org_id, material_a.id) == 8
        assert po_service.get_purchase_order(member_ctx.org_id, sent_po.id).status == STATUS_PARTIAL

    def test_failed_batch_writes_nothing(self, db_session, sent_po, member_ctx, location_a):
        line_a, line_b = _lines(sent_po)

        with pytest.raises(QuantityExceedsOrdered):
            receive_purchase_order(
                member_ctx,
                sent_po.id,
                [ReceiptItem(line_a.id, location_a.id, 4), ReceiptItem(line_b.id, location_a.id, 6)],
            )

        assert _received(db_session, line_a.id) == 0
        assert _received(db_session, line_b.id) == 0
        assert db_session.query(StockMovement).count() == 0
        assert db_session.query(PurchaseOrderReceipt).count() == 0
        assert po_service.get_purchase_order(member_ctx.org_id, sent_po.id).status == STATUS_SENT

    def test_duplicate_lines_are_summed(self, db_session, sent_po, member_ctx, location_a, location_a2):
        line_a, _ = _lines(sent_po)

        with pytest.raises(QuantityExceedsOrdered):
            receive_purchase_order(
                member_ctx,
                sent_po.id,
                [ReceiptItem(line_a.id, location_a.id, 6), ReceiptItem(line_a.id, location_a2.id, 5)],
            )

        result = receive_purchase_order(
            member_ctx,
            sent_po.id,
            [ReceiptItem(line_a.id, location_a.id, 6), ReceiptItem(line_a.id, location_a2.id, 4)],
        )
        assert result.lines[0]["quantity_received"] == 10
        assert result.status == STATUS_PARTIAL
        assert db_session.query(StockMovement).count() == 2

    def test_fractional_receipts(self, db_session, manager_ctx, member_ctx, supplier_a, material_a2, location_a):
        """Sand ordered as 2.5 t and delivered in three loads."""
        order = po_service.create_purchase_order(
            manager_ctx,
            supplier_id=supplier_a.id,
            lines=[{"material_id": material_a2.id, "quantity_ordered": 2.5}],
        )
        order = po_service.transition_status(manager_ctx, order.id, STATUS_SENT)
        line_id = order.lines[0].id

        result = receive_purchase_order(
            member_ctx,
            order.id,
            [ReceiptItem(line_id, location_a.id, 1.25), ReceiptItem(line_id, location_a.id, Decimal("0.5"))],
        )
        assert result.status == STATUS_PARTIAL
        assert result.lines[0]["quantity_received"] == 1.75

        with pytest.raises(QuantityExceedsOrdered) as exc:
            receive_purchase_order(member_ctx, order.id, [ReceiptItem(line_id, location_a.id, 0.8)])
        assert exc.value.overflow == Decimal("0.05")

        result = receive_purchase_order(member_ctx, order.id, [ReceiptItem(line_id, location_a.id, 0.75)])
        assert result.status == STATUS_RECEIVED
        assert _received(db_session, line_id) == Decimal("2.5")
        assert stock_service.get_balance(member_ctx.org_id, material_a2.id) == Decimal("2.5")


class TestReceivingPreconditions:

    def test_draft_not_receivable(self, db_session, manager_ctx, member_ctx, supplier_a, material_a, location_a):
        order = po_service.create_purchase_order(
            manager_ctx,
            supplier_id=supplier_a.id,
            lines=[{"material_id": material_a.id, "quantity_ordered": 3}],
        )
        assert order.status == STATUS_DRAFT

        with pytest.raises(InvalidState):
            receive_purchase_order(member_ctx, order.id, [ReceiptItem(order.lines[0].id, location_a.id, 1)])

    def test_cancelled_not_receivable(self, db_session, sent_po, manager_ctx, member_ctx, location_a):
        line_a, _ = _lines(sent_po)
        po_service.cancel_purchase_order(manager_ctx, sent_po.id)

        with pytest.raises(InvalidState):
            receive_purchase_order(member_ctx, sent_po.id, [ReceiptItem(line_a.id, location_a.id, 1)])

    def test_cancel_after_partial_keeps_stock(self, db_session, sent_po, manager_ctx, member_ctx, location_a, material_a):
        line_a, _ = _lines(sent_po)
        receive_purchase_order(member_ctx, sent_po.id, [ReceiptItem(line_a.id, location_a.id, 3)])

        order = po_service.cancel_purchase_order(manager_ctx, sent_po.id)

        assert order.status == STATUS_CANCELLED
        assert _received(db_session, line_a.id) == 3
        assert stock_service.get_balance(member_ctx.org_id, material_a.id) == 3

    def test_empty_batch_rejected(self, db_session, sent_po, member_ctx):
        with pytest.raises(InvalidArgument):
            receive_purchase_order(member_ctx, sent_po.id, [])

    @pytest.mark.parametrize("quantity", [0, -1, 2.0005, "2", None])
    def test_non_positive_quantity_rejected(self, db_session, sent_po, member_ctx, location_a, quantity):
        line_a, _ = _lines(sent_po)
        with pytest.raises(InvalidArgument):
            receive_purchase_order(member_ctx, sent_po.id, [ReceiptItem(line_a.id, location_a.id, quantity)])

    def test_line_from_other_order_not_found(
        self, db_session, sent_po, manager_ctx, member_ctx, supplier_a, material_a, location_a
    ):
        other = po_service.create_purchase_order(
            manager_ctx,
            supplier_id=supplier_a.id,
            lines=[{"material_id": material_a.id, "quantity_ordered": 3}],
        )
        with pytest.raises(NotFound):
            receive_purchase_order(member_ctx, sent_po.id, [ReceiptItem(other.lines[0].id, location_a.id, 1)])

    def test_foreign_location_not_found(self, db_session, sent_po, member_ctx, location_b):
        line_a, _ = _lines(sent_po)
        with pytest.raises(NotFound):
            receive_purchase_order(member_ctx, sent_po.id, [ReceiptItem(line_a.id, location_b.id, 1)])
        assert db_session.query(StockMovement).count() == 0

    def test_inactive_location_rejected(self, db_session, sent_po, member_ctx, location_a):
        line_a, _ = _lines(sent_po)
        location_a.is_active = False
        db_session.commit()

        with pytest.raises(InvalidState):
            receive_purchase_order(member_ctx, sent_po.id, [ReceiptItem(line_a.id, location_a.id, 1)])

    def test_other_org_cannot_receive(self, db_session, sent_po, owner_b_ctx, location_b):
        line_a, _ = _lines(sent_po)
        with pytest.raises(NotFound):
            receive_purchase_order(owner_b_ctx, sent_po.id, [ReceiptItem(line_a.id, location_b.id, 1)])

    def test_viewer_cannot_receive(self, db_session, sent_po, viewer_ctx, location_a):
        line_a, _ = _lines(sent_po)
        with pytest.raises(Forbidden):
            receive_purchase_order(viewer_ctx, sent_po.id, [ReceiptItem(line_a.id, location_a.id, 1)])


class TestReceiptRecords:

    def test_movements_reference_order_and_receipt(self, db_session, sent_po, member_ctx, location_a, location_a2):
        line_a, line_b = _lines(sent_po)
        result = receive_purchase_order(
            member_ctx,
            sent_po.id,
            [ReceiptItem(line_a.id, location_a.id, 2), ReceiptItem(line_b.id, location_a2.id, 1)],
        )

        movements = db_session.query(StockMovement).order_by(StockMovement.id).all()
        assert len(movements) == 2
        for movement in movements:
            assert movement.reason == REASON_PURCHASE_RECEIVE
            assert movement.reference_type == "purchase_order"
            assert movement.reference_id == sent_po.id
            assert movement.receipt_id == result.receipt_id
            assert movement.created_by_user_id == member_ctx.user_id
        assert [m.quantity_delta for m in movements] == [2, 1]

        receipts = list_receipts(member_ctx.org_id, sent_po.id)
        assert len(receipts) == 1
        assert receipts[0].status_before == STATUS_SENT
        assert receipts[0].status_after == STATUS_PARTIAL
        assert receipts[0].total_quantity == 3

    def test_idempotency_key_replays(self, db_session, sent_po, member_ctx, location_a, material_a):
        line_a, _ = _lines(sent_po)
        batch = [ReceiptItem(line_a.id, location_a.id, 4)]

        first = receive_purchase_order(member_ctx, sent_po.id, batch, idempotency_key="delivery-77")
        second = receive_purchase_order(member_ctx, sent_po.id, batch, idempotency_key="delivery-77")

        assert not first.replayed
        assert second.replayed
        assert second.receipt_id == first.receipt_id
        assert second.lines[0]["quantity_received"] == 4
        assert stock_service.get_balance(member_ctx.org_id, material_a.id) == 4

    def test_idempotency_key_on_other_order_conflicts(
        self, db_session, sent_po, manager_ctx, member_ctx, supplier_a, material_a, location_a
    ):
        line_a, _ = _lines(sent_po)
        receive_purchase_order(member_ctx, sent_po.id, [ReceiptItem(line_a.id, location_a.id, 1)], idempotency_key="k")

        other = po_service.create_purchase_order(
            manager_ctx,
            supplier_id=supplier_a.id,
            lines=[{"material_id": material_a.id, "quantity_ordered": 3}],
        )
        po_service.transition_status(manager_ctx, other.id, STATUS_SENT)

        with pytest.raises(Conflict):
            receive_purchase_order(
                member_ctx, other.id, [ReceiptItem(other.lines[0].id, location_a.id, 1)], idempotency_key="k"
            )

    def test_progress_after_receipt(self, db_session, sent_po, member_ctx, location_a):
        line_a, _ = _lines(sent_po)
        receive_purchase_order(member_ctx, sent_po.id, [ReceiptItem(line_a.id, location_a.id, 6)])

        detail = po_service.get_purchase_order_detail(member_ctx.org_id, sent_po.id)
        assert detail["progress"] == {"total_ordered": 15, "total_received": 6, "percentage": 40}


class TestParseReceipts:

    def test_wire_shape(self):
        items = parse_receipts([{"po_line_id": 3, "location_id": 9, "quantity_received": 2}])
        assert items == [ReceiptItem(line_id=3, location_id=9, quantity=2)]

    @pytest.mark.parametrize(
        "raw",
        [
            [],
            None,
            {"po_line_id": 1},
            [{"po_line_id": "1", "location_id": 1, "quantity_received": 1}],
            [{"po_line_id": 1, "quantity_received": 1}],
        ],
    )
    def test_malformed(self, raw):
        with pytest.raises(InvalidArgument):
            parse_receipts(raw)
