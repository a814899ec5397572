# Overview: Pytest coverage for optimistic locking and retry on interleaved receiving.

"""
Concurrency Tests

Two receiving batches race on the same purchase order line. The first batch
loads the order, then a second batch commits from its own session before the
first one flushes. The first batch's version check fails (StaleDataError),
run_in_transaction rolls back and retries, and the retry re-validates against
the fresh rows:

- if the remaining quantity no longer fits, QuantityExceedsOrdered
- otherwise the batch is applied on top of the winner's progress

quantity_received never passes quantity_ordered and nothing is half-written.
"""

import pytest
from sqlalchemy.orm.exc import StaleDataError

from lockstock.errors import QuantityExceedsOrdered
from lockstock.models import PurchaseOrderLine, PurchaseOrderReceipt, StockMovement
from lockstock.services import purchase_order_service as po_service
from lockstock.services import receiving_service, stock_service
from lockstock.services.concurrency import run_in_transaction
from lockstock.services.purchase_order_service import STATUS_PARTIAL, STATUS_RECEIVED, STATUS_SENT
from lockstock.services.receiving_service import ReceiptItem, receive_purchase_order


@pytest.fixture
def sent_order(db_session, manager_ctx, supplier_a, material_a):
    order = po_service.create_purchase_order(
        manager_ctx,
        supplier_id=supplier_a.id,
        lines=[{"material_id": material_a.id, "quantity_ordered": 10}],
    )
    return po_service.transition_status(manager_ctx, order.id, STATUS_SENT)


@pytest.fixture
def competing_receipt(app, monkeypatch):
    """
    Commit a competing batch from a separate session the first time the
    receiving service validates a location, i.e. after the order was loaded.
    Returns a dict counting validation passes.
    """
    state = {"calls": 0, "fired": False}

    def install(ctx, order_id, line_id, location_id, quantity):
        original = receiving_service.get_location_in_org

        def interleaved(org_id, loc_id, **kwargs):
            state["calls"] += 1
            if not state["fired"]:
                state["fired"] = True
                with app.app_context():
                    receive_purchase_order(ctx, order_id, [ReceiptItem(line_id, location_id, quantity)])
                # The competitor's own validation pass does not count
                state["calls"] -= 1
            return original(org_id, loc_id, **kwargs)

        monkeypatch.setattr(receiving_service, "get_location_in_org", interleaved)
        return state

    return install


def _line(db_session, line_id):
    return db_session.get(PurchaseOrderLine, line_id)


class TestInterleavedReceiving:

    def test_loser_rejected_when_remainder_no_longer_fits(
        self, db_session, sent_order, member_ctx, location_a, material_a, competing_receipt
    ):
        line_id = sent_order.lines[0].id
        state = competing_receipt(member_ctx, sent_order.id, line_id, location_a.id, 6)

        with pytest.raises(QuantityExceedsOrdered) as exc:
            receive_purchase_order(member_ctx, sent_order.id, [ReceiptItem(line_id, location_a.id, 6)])

        # First pass lost on the version check, second pass re-validated
        assert state["calls"] == 2
        assert exc.value.overflow == 2

        db_session.expire_all()
        assert _line(db_session, line_id).quantity_received == 6
        assert stock_service.get_balance(member_ctx.org_id, material_a.id) == 6
        assert db_session.query(PurchaseOrderReceipt).count() == 1
        assert db_session.query(StockMovement).count() == 1
        assert po_service.get_purchase_order(member_ctx.org_id, sent_order.id).status == STATUS_PARTIAL

    def test_loser_applied_against_fresh_row(
        self, db_session, sent_order, member_ctx, location_a, material_a, competing_receipt
    ):
        line_id = sent_order.lines[0].id
        state = competing_receipt(member_ctx, sent_order.id, line_id, location_a.id, 6)

        result = receive_purchase_order(member_ctx, sent_order.id, [ReceiptItem(line_id, location_a.id, 4)])

        assert state["calls"] == 2
        assert result.status == STATUS_RECEIVED
        assert result.lines == [{"id": line_id, "quantity_ordered": 10, "quantity_received": 10}]

        db_session.expire_all()
        assert _line(db_session, line_id).quantity_received == 10
        assert stock_service.get_balance(member_ctx.org_id, material_a.id) == 10
        receipts = db_session.query(PurchaseOrderReceipt).order_by(PurchaseOrderReceipt.id).all()
        assert [(r.status_before, r.status_after) for r in receipts] == [
            (STATUS_SENT, STATUS_PARTIAL),
            (STATUS_PARTIAL, STATUS_RECEIVED),
        ]


class TestRunInTransaction:

    def test_retries_stale_data_then_succeeds(self, app, db_session):
        attempts = []

        def op():
            attempts.append(1)
            if len(attempts) < 3:
                raise StaleDataError("version mismatch")
            return "done"

        assert run_in_transaction(op, backoff_base=0) == "done"
        assert len(attempts) == 3

    def test_gives_up_after_attempts(self, app, db_session):
        attempts = []

        def op():
            attempts.append(1)
            raise StaleDataError("version mismatch")

        with pytest.raises(StaleDataError):
            run_in_transaction(op, attempts=2, backoff_base=0)
        assert len(attempts) == 2

    def test_domain_errors_are_not_retried(self, app, db_session):
        attempts = []

        def op():
            attempts.append(1)
            raise QuantityExceedsOrdered(1, 2, quantity_ordered=10, quantity_received=8)

        with pytest.raises(QuantityExceedsOrdered):
            run_in_transaction(op, backoff_base=0)
        assert len(attempts) == 1
