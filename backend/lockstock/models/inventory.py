from __future__ import annotations

from ..extensions import db
from lockstock.quantity_utils import quantity_to_json
from lockstock.time_utils import to_utc_z


class StockMovement(db.Model):
    """
    One signed change of on-hand quantity for a (material, location) pair.

    IMMUTABLE: rows are never updated or deleted. A mistake is fixed by a new
    movement with reason 'correction'. The balance of a pair is SUM(quantity_delta)
    over its rows; there is no stored balance to drift out of sync.

    idempotency_key (optional) is unique per organization so a client retrying
    a request cannot append the same movement twice.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_movements_org_material_location", "org_id", "material_id", "location_id"),
        db.Index("ix_movements_org_occurred", "org_id", "occurred_at"),
        db.Index("ix_movements_reference", "reference_type", "reference_id"),
        db.UniqueConstraint("org_id", "idempotency_key", name="uq_movements_org_idempotency_key"),
        db.CheckConstraint("quantity_delta <> 0", name="ck_movements_nonzero_delta"),
        db.CheckConstraint(
            "reason IN ('adjustment', 'transfer_in', 'transfer_out', 'purchase_receive', 'correction')",
            name="ck_movements_reason",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    material_id = db.Column(db.Integer, db.ForeignKey("materials.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)

    quantity_delta = db.Column(db.Numeric(14, 3), nullable=False)
    reason = db.Column(db.String(32), nullable=False, default="adjustment", index=True)

    note = db.Column(db.String(1000), nullable=True)
    reference_type = db.Column(db.String(80), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    # Set when the movement was written by a purchase order receiving batch
    receipt_id = db.Column(db.Integer, db.ForeignKey("purchase_order_receipts.id"), nullable=True, index=True)

    idempotency_key = db.Column(db.String(128), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    material = db.relationship("Material")
    location = db.relationship("Location")

    def __repr__(self) -> str:
        return (
            f"<StockMovement id={self.id} material_id={self.material_id} "
            f"location_id={self.location_id} delta={self.quantity_delta} reason={self.reason}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "material_id": self.material_id,
            "location_id": self.location_id,
            "quantity_delta": quantity_to_json(self.quantity_delta),
            "reason": self.reason,
            "note": self.note,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "receipt_id": self.receipt_id,
            "idempotency_key": self.idempotency_key,
            "created_by_user_id": self.created_by_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
        }
