from __future__ import annotations

from ..extensions import db
from lockstock.quantity_utils import quantity_to_json
from lockstock.time_utils import to_utc_z


class Material(db.Model):
    """
    Material master data.

    SKU is unique within an organization. min_stock is the threshold the stock
    classifier compares on-hand quantity against.

    On-hand quantity is NOT a column: it is always derived from StockMovement
    rows (see services/stock_service.py). Materials are never hard-deleted;
    deactivation hides them from reporting and blocks new movements.
    """
    __tablename__ = "materials"
    __table_args__ = (
        db.UniqueConstraint("org_id", "sku", name="uq_materials_org_sku"),
        db.Index("ix_materials_org_name", "org_id", "name"),
        db.Index("ix_materials_org_active", "org_id", "is_active"),
        db.CheckConstraint("min_stock >= 0", name="ck_materials_min_stock"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    sku = db.Column(db.String(80), nullable=False)
    name = db.Column(db.String(160), nullable=False)
    description = db.Column(db.Text, nullable=True)
    uom = db.Column(db.String(30), nullable=False, default="unit")

    min_stock = db.Column(db.Numeric(14, 3), nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    organization = db.relationship("Organization", backref=db.backref("materials", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Material id={self.id} sku={self.sku!r} org_id={self.org_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "uom": self.uom,
            "min_stock": quantity_to_json(self.min_stock),
            "is_active": self.is_active,
            "created_by_user_id": self.created_by_user_id,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Location(db.Model):
    """
    Physical placement for stock (warehouse, shelf, van...).

    Names are unique within an organization; codes too when given.
    """
    __tablename__ = "locations"
    __table_args__ = (
        db.UniqueConstraint("org_id", "name", name="uq_locations_org_name"),
        db.UniqueConstraint("org_id", "code", name="uq_locations_org_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    code = db.Column(db.String(32), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Location id={self.id} name={self.name!r} org_id={self.org_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Supplier(db.Model):
    """
    Supplier a purchase order is placed with.

    Scoped to organizations; a purchase order may only reference a supplier of
    its own organization.
    """
    __tablename__ = "suppliers"
    __table_args__ = (
        db.Index("ix_suppliers_org_active", "org_id", "is_active"),
        db.CheckConstraint("lead_time_days >= 0 AND lead_time_days <= 365", name="ck_suppliers_lead_time"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    name = db.Column(db.String(160), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(60), nullable=True)
    lead_time_days = db.Column(db.Integer, nullable=False, default=0)
    payment_terms = db.Column(db.String(200), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def __repr__(self) -> str:
        return f"<Supplier id={self.id} name={self.name!r} org_id={self.org_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "lead_time_days": self.lead_time_days,
            "payment_terms": self.payment_terms,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
