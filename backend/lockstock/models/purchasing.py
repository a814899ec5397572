from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from lockstock.quantity_utils import quantity_to_json, to_decimal
from lockstock.time_utils import to_utc_z, to_iso_date


class PurchaseOrder(db.Model):
    """
    Purchase order placed with a supplier.

    LIFECYCLE (see services/purchase_order_service.py):
    1. draft: created together with its lines
    2. sent: the only manual transition, draft -> sent
    3. partial / received: derived from line progress by receiving
    4. cancelled: administrative, from draft/sent/partial

    received and cancelled are terminal. Orders are never deleted.

    version_id gives optimistic locking; receiving also takes a row lock.
    """
    __tablename__ = "purchase_orders"
    __table_args__ = (
        db.UniqueConstraint("org_id", "po_number", name="uq_purchase_orders_org_number"),
        db.Index("ix_purchase_orders_org_status", "org_id", "status"),
        db.Index("ix_purchase_orders_supplier", "supplier_id"),
        db.CheckConstraint(
            "status IN ('draft', 'sent', 'partial', 'received', 'cancelled')",
            name="ck_purchase_orders_status",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False)

    po_number = db.Column(db.String(100), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="draft", index=True)

    # Display label only; amounts are never converted
    currency = db.Column(db.String(3), nullable=False, default="EUR")

    expected_at = db.Column(db.Date, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    sent_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    supplier = db.relationship("Supplier", backref=db.backref("purchase_orders", lazy=True))
    lines = db.relationship(
        "PurchaseOrderLine",
        back_populates="purchase_order",
        order_by="PurchaseOrderLine.id",
        lazy=True,
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<PurchaseOrder id={self.id} po_number={self.po_number!r} status={self.status}>"

    def to_dict(self, *, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "org_id": self.org_id,
            "supplier_id": self.supplier_id,
            "supplier": {"id": self.supplier.id, "name": self.supplier.name} if self.supplier else None,
            "po_number": self.po_number,
            "status": self.status,
            "currency": self.currency,
            "expected_at": to_iso_date(self.expected_at),
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "sent_at": to_utc_z(self.sent_at) if self.sent_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancellation_reason": self.cancellation_reason,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class PurchaseOrderLine(db.Model):
    """
    One material on a purchase order.

    INVARIANT: 0 <= quantity_received <= quantity_ordered, and quantity_received
    only ever grows. Enforced by the receiving service and backed by CHECKs.
    """
    __tablename__ = "purchase_order_lines"
    __table_args__ = (
        db.CheckConstraint("quantity_ordered > 0", name="ck_po_lines_ordered_positive"),
        db.CheckConstraint(
            "quantity_received >= 0 AND quantity_received <= quantity_ordered",
            name="ck_po_lines_received_range",
        ),
        db.CheckConstraint("unit_price_cents IS NULL OR unit_price_cents >= 0", name="ck_po_lines_price"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    material_id = db.Column(db.Integer, db.ForeignKey("materials.id"), nullable=False, index=True)

    quantity_ordered = db.Column(db.Numeric(14, 3), nullable=False)
    quantity_received = db.Column(db.Numeric(14, 3), nullable=False, default=0)

    unit_price_cents = db.Column(db.Integer, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    purchase_order = db.relationship("PurchaseOrder", back_populates="lines")
    material = db.relationship("Material")

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def quantity_outstanding(self) -> Decimal:
        return to_decimal(self.quantity_ordered) - to_decimal(self.quantity_received)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_order_id": self.purchase_order_id,
            "material_id": self.material_id,
            "quantity_ordered": quantity_to_json(self.quantity_ordered),
            "quantity_received": quantity_to_json(self.quantity_received),
            "quantity_outstanding": quantity_to_json(self.quantity_outstanding),
            "unit_price_cents": self.unit_price_cents,
            "version_id": self.version_id,
        }


class PurchaseOrderReceipt(db.Model):
    """
    Header for one successfully applied receiving batch.

    Every ledger movement written by the batch points here via receipt_id.
    idempotency_key (optional) is unique per organization; replaying a key
    returns the order's current progress without applying anything twice.
    """
    __tablename__ = "purchase_order_receipts"
    __table_args__ = (
        db.UniqueConstraint("org_id", "idempotency_key", name="uq_po_receipts_org_idempotency_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)

    received_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    status_before = db.Column(db.String(16), nullable=False)
    status_after = db.Column(db.String(16), nullable=False)
    total_quantity = db.Column(db.Numeric(14, 3), nullable=False)

    idempotency_key = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    purchase_order = db.relationship("PurchaseOrder", backref=db.backref("receipts", lazy=True))
    movements = db.relationship("StockMovement", lazy=True, order_by="StockMovement.id")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_order_id": self.purchase_order_id,
            "received_by_user_id": self.received_by_user_id,
            "status_before": self.status_before,
            "status_after": self.status_after,
            "total_quantity": quantity_to_json(self.total_quantity),
            "idempotency_key": self.idempotency_key,
            "movement_ids": [m.id for m in self.movements],
            "created_at": to_utc_z(self.created_at),
        }
